"""
Access Applications Notifications

Email notifications sent on lifecycle changes and by the batch jobs.

Design Principles:
- Choosing what to send is pure (``notifications_for_state_change``)
- Each kind knows its recipients, subject and body
- ``send_notification`` raises ``NotificationError`` so batch jobs can retry
- ``on_state_change`` is best effort: failures are logged, never raised
"""

import enum
import logging
from collections.abc import Sequence
from dataclasses import dataclass

from app.core.config import AppConfig, settings
from app.core.email import render_email, send_email
from app.modules.access_applications.calculations import (
    format_reference_date,
    get_attestation_by_date,
)
from app.modules.access_applications.domain import (
    Application,
    ApplicationState,
    Collaborator,
)
from app.modules.access_applications.errors import NotificationError

logger = logging.getLogger(__name__)


class NotificationKind(str, enum.Enum):
    REVIEW_NEW = "REVIEW_NEW"
    REVIEW_REVISED = "REVIEW_REVISED"
    REVIEW_RENEWAL = "REVIEW_RENEWAL"
    SUBMISSION_CONFIRMATION = "SUBMISSION_CONFIRMATION"
    REVISIONS_REQUESTED = "REVISIONS_REQUESTED"
    REJECTED = "REJECTED"
    APPROVED = "APPROVED"
    CLOSED_APPROVED = "CLOSED_APPROVED"
    PAUSED = "PAUSED"
    EXPIRED = "EXPIRED"
    ATTESTATION_REQUIRED = "ATTESTATION_REQUIRED"
    ATTESTATION_RECEIVED = "ATTESTATION_RECEIVED"
    FIRST_EXPIRY = "FIRST_EXPIRY"
    SECOND_EXPIRY = "SECOND_EXPIRY"
    ETHICS_LETTER_SUBMITTED = "ETHICS_LETTER_SUBMITTED"
    COLLABORATOR_ADDED = "COLLABORATOR_ADDED"
    COLLABORATOR_REMOVED = "COLLABORATOR_REMOVED"
    COLLABORATOR_APPROVED = "COLLABORATOR_APPROVED"


# Sent once per collaborator rather than to the applicant
COLLABORATOR_KINDS = frozenset(
    {NotificationKind.COLLABORATOR_REMOVED, NotificationKind.COLLABORATOR_APPROVED}
)

# Sent to the reviewer address only
REVIEWER_KINDS = frozenset(
    {
        NotificationKind.REVIEW_NEW,
        NotificationKind.REVIEW_REVISED,
        NotificationKind.REVIEW_RENEWAL,
        NotificationKind.ETHICS_LETTER_SUBMITTED,
        NotificationKind.COLLABORATOR_ADDED,
    }
)

# Applicant emails that blind-copy the reviewer address
_REVIEWER_COPIED = frozenset(
    {
        NotificationKind.REJECTED,
        NotificationKind.REVISIONS_REQUESTED,
        NotificationKind.APPROVED,
        NotificationKind.CLOSED_APPROVED,
        NotificationKind.ATTESTATION_RECEIVED,
    }
)


@dataclass(frozen=True)
class EmailMessage:
    to: tuple[str, ...]
    subject: str
    html: str
    bcc: tuple[str, ...] = ()


def notifications_for_state_change(
    old: Application,
    new: Application,
) -> list[NotificationKind]:
    """
    List the notifications a state change calls for, in sending order.

    Returns an empty list when the state did not change.
    """
    if old.state == new.state:
        return []

    kinds: list[NotificationKind] = []
    was_approved = old.state == ApplicationState.APPROVED
    if new.state == ApplicationState.REVIEW:
        # Resubmissions still carry the revision request until they reach REVIEW
        if old.revisions_requested:
            kinds.append(NotificationKind.REVIEW_REVISED)
        elif old.is_renewal:
            kinds.append(NotificationKind.REVIEW_RENEWAL)
        else:
            kinds.append(NotificationKind.REVIEW_NEW)
        kinds.append(NotificationKind.SUBMISSION_CONFIRMATION)
    elif new.state == ApplicationState.REVISIONS_REQUESTED:
        kinds.append(NotificationKind.REVISIONS_REQUESTED)
    elif new.state == ApplicationState.REJECTED:
        kinds.append(NotificationKind.REJECTED)
    elif new.state == ApplicationState.APPROVED:
        # Resuming or attesting a paused application is not a new approval
        if old.state != ApplicationState.PAUSED:
            kinds.extend([NotificationKind.APPROVED, NotificationKind.COLLABORATOR_APPROVED])
    elif new.state == ApplicationState.CLOSED:
        if old.state in (ApplicationState.APPROVED, ApplicationState.PAUSED):
            kinds.append(NotificationKind.CLOSED_APPROVED)
            if was_approved:
                kinds.append(NotificationKind.COLLABORATOR_REMOVED)
    elif new.state == ApplicationState.PAUSED:
        kinds.append(NotificationKind.PAUSED)
        if was_approved:
            kinds.append(NotificationKind.COLLABORATOR_REMOVED)
    elif new.state == ApplicationState.EXPIRED:
        kinds.append(NotificationKind.EXPIRED)
        if was_approved:
            kinds.append(NotificationKind.COLLABORATOR_REMOVED)
    return kinds


# =============================================================================
# Message building
# =============================================================================


def applicant_emails(application: Application) -> tuple[str, ...]:
    info = application.sections.applicant.info
    return (application.submitter_email, info.google_email, info.institution_email)


def _collaborator_emails(collaborator: Collaborator) -> tuple[str, ...]:
    return (collaborator.info.google_email, collaborator.info.institution_email)


def _application_url(application: Application) -> str:
    return f"{settings.frontend_url.rstrip('/')}/applications/{application.app_id}"


def _subject(application: Application, title: str) -> str:
    return f"[{application.app_id}] {title}"


def _applicant_name(application: Application) -> str:
    return application.sections.applicant.info.display_name or "Applicant"


def _project_title(application: Application) -> str:
    return application.sections.project_info.title or "your project"


def _applicant_content(
    kind: NotificationKind,
    application: Application,
    config: AppConfig,
) -> tuple[str, list[str]]:
    """Title and paragraphs for the emails addressed to the applicant."""
    timezone = config.reference_timezone
    expiry = format_reference_date(application.expires_at_utc, timezone)
    project = _project_title(application)
    expiry_durations = config.durations.expiry

    if kind == NotificationKind.SUBMISSION_CONFIRMATION:
        return "We Received your Application", [
            f"Your application for {project} has been submitted for review.",
            "You will be notified by email once the review is complete.",
        ]
    if kind == NotificationKind.REVISIONS_REQUESTED:
        paragraphs = ["Your application has been reopened so you can make the requested revisions."]
        request = application.revision_request
        for name in type(request).model_fields:
            item = getattr(request, name)
            if item.requested and item.details:
                paragraphs.append(f"{name.replace('_', ' ').title()}: {item.details}")
        return "Your Application has been Reopened for Revisions", paragraphs
    if kind == NotificationKind.REJECTED:
        paragraphs = [f"Your application for {project} has been rejected."]
        if application.denial_reason:
            paragraphs.append(f"Reason: {application.denial_reason}")
        return "Your Application has been Rejected", paragraphs
    if kind == NotificationKind.APPROVED:
        return "Your Application has been Approved", [
            f"Your application for {project} has been approved.",
            f"Access is granted until {expiry}.",
        ]
    if kind == NotificationKind.CLOSED_APPROVED:
        return "Your Access to Controlled Data has been Removed", [
            "Your application has been closed and access to controlled data has been removed.",
        ]
    if kind == NotificationKind.PAUSED:
        return "Your Access to Controlled Data has been Paused", [
            "Access for this application has been paused.",
            "If an annual attestation is required, submit it to restore access.",
        ]
    if kind == NotificationKind.EXPIRED:
        return "Your Access to Controlled Data has Expired", [
            f"Your access period ended on {expiry}.",
            f"You can still renew this application within {expiry_durations.days_post_expiry} days.",
        ]
    if kind == NotificationKind.ATTESTATION_REQUIRED:
        attest_by = ""
        if application.approved_at_utc is not None:
            attest_by = format_reference_date(
                get_attestation_by_date(application.approved_at_utc, config), timezone
            )
        return "An Annual Attestation is Required", [
            "An annual attestation is required to keep access to controlled data.",
            f"Please attest by {attest_by} or access will be paused.",
        ]
    if kind == NotificationKind.ATTESTATION_RECEIVED:
        return "We have Received your Annual Attestation", [
            "Thank you. Your annual attestation has been received.",
        ]
    if kind == NotificationKind.FIRST_EXPIRY:
        return f"Your Access is Expiring in {expiry_durations.days_to_expiry_1} days", [
            f"Your access to controlled data expires on {expiry}.",
            "You can renew your application before then to keep access.",
        ]
    if kind == NotificationKind.SECOND_EXPIRY:
        return f"Your Access is Expiring in {expiry_durations.days_to_expiry_2} days", [
            f"Your access to controlled data expires on {expiry}.",
            "You can renew your application before then to keep access.",
        ]
    raise ValueError(f"Not an applicant notification: {kind}")


def _reviewer_content(
    kind: NotificationKind,
    application: Application,
    collaborator: Collaborator | None,
) -> tuple[str, list[str]]:
    applicant = _applicant_name(application)
    if kind == NotificationKind.REVIEW_NEW:
        return "A New Application has been Submitted", [
            f"{applicant} submitted a new application for review."
        ]
    if kind == NotificationKind.REVIEW_REVISED:
        return "A Revised Application has been Submitted", [
            f"{applicant} submitted revisions for review."
        ]
    if kind == NotificationKind.REVIEW_RENEWAL:
        return "A Renewal Application has been Submitted", [
            f"{applicant} submitted a renewal of {application.source_app_id} for review."
        ]
    if kind == NotificationKind.ETHICS_LETTER_SUBMITTED:
        return "A New Ethics Letter has been Submitted", [
            f"{applicant} uploaded a new ethics letter to an approved application."
        ]
    if kind == NotificationKind.COLLABORATOR_ADDED:
        name = collaborator.info.display_name if collaborator else "A collaborator"
        return "A New Collaborator has been Added", [
            f"{name} was added to an approved application by {applicant}."
        ]
    raise ValueError(f"Not a reviewer notification: {kind}")


def _collaborator_content(kind: NotificationKind) -> tuple[str, list[str]]:
    if kind == NotificationKind.COLLABORATOR_APPROVED:
        return "You have been Granted Access", [
            "You have been granted access to controlled data as a collaborator."
        ]
    return "Your Access to Controlled Data has been Removed", [
        "Your access to controlled data as a collaborator has been removed."
    ]


def build_messages(
    kind: NotificationKind,
    application: Application,
    config: AppConfig,
    collaborator: Collaborator | None = None,
) -> list[EmailMessage]:
    """
    Build the emails for one notification.

    Collaborator notifications produce one message per collaborator (or only
    for ``collaborator`` when given).
    """
    url = _application_url(application)
    if kind in REVIEWER_KINDS:
        title, paragraphs = _reviewer_content(kind, application, collaborator)
        html = render_email(title, paragraphs, "View Application", url)
        return [EmailMessage(to=(settings.reviewer_email,), subject=_subject(application, title), html=html)]

    if kind in COLLABORATOR_KINDS:
        targets = (collaborator,) if collaborator else application.sections.collaborators.items
        title, paragraphs = _collaborator_content(kind)
        html = render_email(title, [f"Application {application.app_id}.", *paragraphs])
        return [
            EmailMessage(to=_collaborator_emails(c), subject=_subject(application, title), html=html)
            for c in targets
        ]

    title, paragraphs = _applicant_content(kind, application, config)
    html = render_email(
        title,
        [f"Dear {_applicant_name(application)},", *paragraphs],
        "View Application",
        url,
    )
    bcc = (settings.reviewer_email,) if kind in _REVIEWER_COPIED else ()
    return [
        EmailMessage(
            to=applicant_emails(application),
            subject=_subject(application, title),
            html=html,
            bcc=bcc,
        )
    ]


# =============================================================================
# Dispatch
# =============================================================================


async def send_notification(
    kind: NotificationKind,
    application: Application,
    config: AppConfig,
    collaborator: Collaborator | None = None,
) -> None:
    """
    Send one notification.

    Raises:
        NotificationError: If any of its emails could not be sent
    """
    failed = 0
    for message in build_messages(kind, application, config, collaborator):
        sent = await send_email(message.to, message.subject, message.html, message.bcc)
        if not sent:
            failed += 1
    if failed:
        raise NotificationError(f"{kind.value} notification failed for {application.app_id}")
    logger.info(f"Sent {kind.value} notification for {application.app_id}")


async def send_notifications(
    kinds: Sequence[NotificationKind],
    application: Application,
    config: AppConfig,
    collaborator: Collaborator | None = None,
) -> None:
    """Best-effort dispatch; failures are logged and the remaining kinds still go out."""
    for kind in kinds:
        try:
            await send_notification(kind, application, config, collaborator)
        except Exception as e:
            logger.error(
                f"Failed to send {kind.value} notification for {application.app_id}: {e}",
                exc_info=True,
            )


async def on_state_change(old: Application, new: Application, config: AppConfig) -> None:
    await send_notifications(notifications_for_state_change(old, new), new, config)
