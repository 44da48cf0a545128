"""
Access Applications State Manager

Pure lifecycle functions for the application aggregate. Each operation takes
the current snapshot and returns a ``Transition`` holding the next snapshot and
the document ids it no longer references.

Design Principles:
- No I/O and no clock reads: ``now``, the author and ``AppConfig`` are inputs
- Snapshots are immutable; every step builds a new one with ``model_copy``
- Guards raise the typed errors from ``errors.py``; callers never receive a
  partially applied update
- A CLOSED application is rejected before anything else is looked at
- Lifecycle transitions append exactly one audit event; every mutation
  refreshes ``last_updated_at_utc`` and the search values
"""

import uuid
from collections.abc import Iterable
from datetime import datetime
from typing import Any, TypeVar

from pydantic import BaseModel

from app.core.config import AppConfig
from app.modules.access_applications.calculations import (
    as_utc,
    days_elapsed,
    format_reference_date,
    get_attestation_by_date,
    get_expiry_date,
    is_attestable,
    is_attestation_overdue,
    is_expirable,
    is_renewable,
    renewal_period_is_ended,
)
from app.modules.access_applications.domain import (
    ALL_SECTIONS,
    NOTIFICATION_FLAGS,
    REVISABLE_SECTIONS,
    Application,
    ApplicationState,
    AppType,
    ApprovedAppDocument,
    Collaborator,
    DacoRole,
    DocumentType,
    EthicsLetterDocument,
    FieldError,
    Meta,
    PauseReason,
    RevisionRequest,
    Sections,
    SectionStatus,
    SignatureSection,
    Transition,
    UpdateAuthor,
    UpdateEvent,
    UpdateEventType,
)
from app.modules.access_applications.errors import (
    ApplicationClosedError,
    ApplicationValidationError,
    CollaboratorConflictError,
    CollaboratorNotFoundError,
    DocumentNotFoundError,
    ForbiddenActionError,
    InvalidApplicationStateError,
)
from app.modules.access_applications.schemas import (
    AgreementsUpdate,
    ApplicantUpdate,
    ApplicationUpdate,
    CollaboratorCreate,
    CollaboratorUpdate,
    EthicsLetterUpdate,
    ProjectInfoUpdate,
    RepresentativeUpdate,
    SectionsUpdate,
    TermsUpdate,
    ViewApplication,
)
from app.modules.access_applications.sections import (
    build_collaborator,
    merge_agreements,
    merge_applicant,
    merge_collaborator,
    merge_ethics_letter,
    merge_project_info,
    merge_representative,
    merge_revision_request,
    merge_terms,
)
from app.modules.access_applications.validations import (
    REQUIRED_MESSAGE,
    ValidationResult,
    collaborator_matches_applicant,
    is_blank,
    transition_section_state,
    validate_agreements,
    validate_applicant_section,
    validate_collaborator,
    validate_ethics_letter,
    validate_project_info,
    validate_representative_section,
    validate_terms,
)

S = TypeVar("S", bound=BaseModel)

PRE_SUBMISSION_STATES = (
    ApplicationState.DRAFT,
    ApplicationState.SIGN_AND_SUBMIT,
    ApplicationState.REVISIONS_REQUESTED,
)

_APPROVED_LOCKED = (
    "appendices",
    "data_access_agreement",
    "terms",
    "applicant",
    "representative",
    "project_info",
    "signature",
)

# Sections shown as LOCKED, by state and by whether the viewer is a reviewer
LOCKED_SECTIONS: dict[ApplicationState, dict[bool, tuple[str, ...]]] = {
    ApplicationState.DRAFT: {True: ALL_SECTIONS, False: ()},
    ApplicationState.SIGN_AND_SUBMIT: {True: ALL_SECTIONS, False: ()},
    ApplicationState.REVISIONS_REQUESTED: {
        True: ALL_SECTIONS,
        False: ("appendices", "data_access_agreement", "terms"),
    },
    ApplicationState.REVIEW: {True: ALL_SECTIONS, False: ALL_SECTIONS},
    ApplicationState.APPROVED: {True: _APPROVED_LOCKED, False: _APPROVED_LOCKED},
    ApplicationState.PAUSED: {True: ALL_SECTIONS, False: ALL_SECTIONS},
    ApplicationState.REJECTED: {True: ALL_SECTIONS, False: ALL_SECTIONS},
    ApplicationState.CLOSED: {True: ALL_SECTIONS, False: ALL_SECTIONS},
    ApplicationState.EXPIRED: {True: ALL_SECTIONS, False: ALL_SECTIONS},
}


# =============================================================================
# Snapshot helpers
# =============================================================================


def _with_sections(app: Application, **changes: Any) -> Application:
    return app.model_copy(update={"sections": app.sections.model_copy(update=changes)})


def _with_meta(section: S, **changes: Any) -> S:
    meta = section.meta.model_copy(update=changes)  # type: ignore[attr-defined]
    return section.model_copy(update={"meta": meta})


def _validated(section: S, result: ValidationResult, now: datetime) -> S:
    """Store a fresh validation result on a section the caller just edited."""
    return _with_meta(
        section,
        status=result.status,
        errors=result.errors,
        updated=True,
        last_updated_at_utc=now,
    )


def _reset_signature(signature: SignatureSection, status: SectionStatus) -> SignatureSection:
    return SignatureSection(meta=signature.meta.model_copy(update={"status": status}))


def get_search_values(app: Application, timezone: str) -> tuple[str, ...]:
    """
    Build the free-text search values for an application.

    Dates are rendered in the reference timezone. Blank values are dropped.
    """
    applicant = app.sections.applicant
    ethics_required = app.sections.ethics_letter.declared_as_required
    values = [
        app.app_id or "",
        app.state.value,
        "" if ethics_required is None else ("yes" if ethics_required else "no"),
        format_reference_date(app.last_updated_at_utc, timezone),
        format_reference_date(app.expires_at_utc, timezone),
        applicant.info.display_name,
        applicant.info.google_email,
        applicant.info.primary_affiliation,
        applicant.address.country,
    ]
    return tuple(value for value in values if not is_blank(value))


def create_update_event(
    app: Application,
    author: UpdateAuthor,
    event_type: UpdateEventType,
    now: datetime,
) -> UpdateEvent:
    """Audit record with a snapshot of the facts reported on at the time of the event."""
    last_updated = app.last_updated_at_utc or now
    applicant = app.sections.applicant
    return UpdateEvent(
        date=now,
        event_type=event_type,
        author=author,
        app_type=AppType.RENEWAL if app.is_renewal else AppType.NEW,
        days_elapsed=days_elapsed(now, last_updated),
        institution=applicant.info.primary_affiliation,
        country=applicant.address.country,
        applicant=applicant.info.display_name,
        project_title=app.sections.project_info.title,
        ethics_letter_required=app.sections.ethics_letter.declared_as_required,
    )


def append_event(
    app: Application,
    author: UpdateAuthor,
    event_type: UpdateEventType,
    now: datetime,
) -> Application:
    event = create_update_event(app, author, event_type, now)
    return app.model_copy(update={"updates": (*app.updates, event)})


def touch(app: Application, config: AppConfig, now: datetime) -> Application:
    touched = app.model_copy(update={"last_updated_at_utc": now})
    return touched.model_copy(
        update={"search_values": get_search_values(touched, config.reference_timezone)}
    )


def finish(
    current: Application,
    updated: Application,
    config: AppConfig,
    now: datetime,
) -> Transition:
    if updated is current:
        return Transition(application=current)
    touched = touch(updated, config, now)
    orphaned = sorted(current.document_ids() - touched.document_ids())
    return Transition(application=touched, orphaned_document_ids=tuple(orphaned))


def _ensure_not_closed(app: Application) -> None:
    if app.state == ApplicationState.CLOSED:
        raise ApplicationClosedError(app.app_id)


# =============================================================================
# Creation
# =============================================================================


def new_application(
    author: UpdateAuthor,
    submitter_email: str,
    config: AppConfig,
    now: datetime,
) -> Application:
    """A fresh DRAFT application owned by ``author``."""
    app = Application(
        submitter_id=author.id,
        submitter_email=submitter_email,
        created_at_utc=now,
        last_updated_at_utc=now,
    )
    app = append_event(app, author, UpdateEventType.CREATED, now)
    return touch(app, config, now)


def assign_identity(app: Application, app_number: int, config: AppConfig) -> Application:
    """Attach the storage-assigned number and the derived application id."""
    identified = app.model_copy(
        update={"app_number": app_number, "app_id": f"{config.app_id_prefix}-{app_number}"}
    )
    return identified.model_copy(
        update={"search_values": get_search_values(identified, config.reference_timezone)}
    )


# =============================================================================
# Section updates
# =============================================================================


def _update_terms(app: Application, patch: TermsUpdate, now: datetime) -> Application:
    terms = merge_terms(app.sections.terms, patch)
    return _with_sections(app, terms=_validated(terms, validate_terms(terms), now))


def _revalidate_representative(app: Application) -> Application:
    representative = app.sections.representative
    result = validate_representative_section(representative, app.sections.applicant)
    status = transition_section_state(
        representative.meta.updated,
        result.is_valid,
        app.revision_request.representative.requested,
    )
    return _with_sections(
        app, representative=_with_meta(representative, status=status, errors=result.errors)
    )


def _validated_collaborator(collaborator: Collaborator, app: Application) -> Collaborator:
    result = validate_collaborator(
        collaborator, app.sections.applicant, check_applicant_conflict=True
    )
    return _with_meta(collaborator, status=result.status, errors=result.errors)


def _set_collaborators(
    app: Application,
    items: Iterable[Collaborator],
    now: datetime | None = None,
) -> Application:
    """
    Replace the collaborator list and derive the section status from its items.

    Passing ``now`` marks the section as edited by the submitter.
    """
    items = tuple(items)
    section = app.sections.collaborators
    meta_changes: dict[str, Any] = {}
    if now is not None:
        meta_changes = {"updated": True, "last_updated_at_utc": now}
    meta = section.meta.model_copy(update=meta_changes)
    is_valid = all(item.meta.status == SectionStatus.COMPLETE for item in items)
    status = transition_section_state(
        meta.updated, is_valid, app.revision_request.collaborators.requested
    )
    meta = meta.model_copy(update={"status": status})
    return _with_sections(app, collaborators=section.model_copy(update={"items": items, "meta": meta}))


def _update_applicant(app: Application, patch: ApplicantUpdate, now: datetime) -> Application:
    applicant = merge_applicant(app.sections.applicant, patch)
    app = _with_sections(
        app, applicant=_validated(applicant, validate_applicant_section(applicant), now)
    )
    # Representative and collaborators are checked against the applicant
    if app.sections.representative.meta.status != SectionStatus.PRISTINE:
        app = _revalidate_representative(app)
    if app.sections.collaborators.meta.status != SectionStatus.PRISTINE:
        items = [_validated_collaborator(c, app) for c in app.sections.collaborators.items]
        app = _set_collaborators(app, items)
    return app


def _update_representative(
    app: Application,
    patch: RepresentativeUpdate,
    now: datetime,
) -> Application:
    representative = merge_representative(app.sections.representative, patch)
    representative = _with_meta(representative, updated=True, last_updated_at_utc=now)
    return _revalidate_representative(_with_sections(app, representative=representative))


def _update_project_info(app: Application, patch: ProjectInfoUpdate, now: datetime) -> Application:
    project_info = merge_project_info(app.sections.project_info, patch)
    return _with_sections(
        app, project_info=_validated(project_info, validate_project_info(project_info), now)
    )


def _update_ethics_letter(
    app: Application,
    patch: EthicsLetterUpdate,
    now: datetime,
) -> Application:
    ethics_letter = merge_ethics_letter(app.sections.ethics_letter, patch)
    return _with_sections(
        app, ethics_letter=_validated(ethics_letter, validate_ethics_letter(ethics_letter), now)
    )


def _set_ethics_documents(
    app: Application,
    docs: Iterable[EthicsLetterDocument],
    now: datetime,
) -> Application:
    ethics_letter = app.sections.ethics_letter.model_copy(
        update={"approval_letter_docs": tuple(docs)}
    )
    return _with_sections(
        app, ethics_letter=_validated(ethics_letter, validate_ethics_letter(ethics_letter), now)
    )


def _update_agreements(
    app: Application,
    name: str,
    patch: AgreementsUpdate,
    now: datetime,
) -> Application:
    section = merge_agreements(getattr(app.sections, name), patch)
    return _with_sections(app, **{name: _validated(section, validate_agreements(section), now)})


def _apply_draft_edits(app: Application, sections: SectionsUpdate | None, now: datetime) -> Application:
    if sections is None:
        return app
    if sections.terms is not None:
        app = _update_terms(app, sections.terms, now)
    if sections.applicant is not None:
        app = _update_applicant(app, sections.applicant, now)
    if sections.representative is not None:
        app = _update_representative(app, sections.representative, now)
    if sections.project_info is not None:
        app = _update_project_info(app, sections.project_info, now)
    if sections.ethics_letter is not None:
        app = _update_ethics_letter(app, sections.ethics_letter, now)
    if sections.data_access_agreement is not None:
        app = _update_agreements(app, "data_access_agreement", sections.data_access_agreement, now)
    if sections.appendices is not None:
        app = _update_agreements(app, "appendices", sections.appendices, now)
    return app


def _apply_revision_edits(
    app: Application,
    sections: SectionsUpdate | None,
    now: datetime,
) -> Application:
    """Apply edits to requested sections only. Edits to other sections are ignored."""
    if sections is None:
        return app
    requested = app.revision_request
    if sections.applicant is not None and requested.applicant.requested:
        app = _update_applicant(app, sections.applicant, now)
    if sections.representative is not None and requested.representative.requested:
        app = _update_representative(app, sections.representative, now)
    if sections.project_info is not None and requested.project_info.requested:
        app = _update_project_info(app, sections.project_info, now)
    if sections.ethics_letter is not None and requested.ethics_letter.requested:
        app = _update_ethics_letter(app, sections.ethics_letter, now)
    return app


# =============================================================================
# Sign and submit
# =============================================================================


def is_ready_to_sign_and_submit(app: Application) -> bool:
    """All required sections COMPLETE; collaborators are optional."""
    sections = app.sections
    required = (
        sections.terms,
        sections.applicant,
        sections.representative,
        sections.project_info,
        sections.ethics_letter,
        sections.data_access_agreement,
        sections.appendices,
    )
    if any(section.meta.status != SectionStatus.COMPLETE for section in required):
        return False
    return sections.collaborators.meta.status in (SectionStatus.COMPLETE, SectionStatus.PRISTINE)


def _is_returned(app: Application) -> bool:
    return app.revision_request.any_section_requested()


def _to_sign_and_submit_or_roll_back(app: Application) -> Application:
    """
    Move to SIGN AND SUBMIT when every required section is complete, otherwise
    back to the editing state. Any signed document is discarded either way.
    """
    if _is_returned(app):
        signature_requested = app.revision_request.signature.requested
        ready_status = (
            SectionStatus.REVISIONS_REQUESTED if signature_requested else SectionStatus.PRISTINE
        )
        rollback_status = (
            SectionStatus.REVISIONS_REQUESTED_DISABLED
            if signature_requested
            else SectionStatus.DISABLED
        )
        rollback_state = ApplicationState.REVISIONS_REQUESTED
    else:
        ready_status = SectionStatus.PRISTINE
        rollback_status = SectionStatus.DISABLED
        rollback_state = ApplicationState.DRAFT

    signature = app.sections.signature
    if not is_ready_to_sign_and_submit(app):
        app = _with_sections(app, signature=_reset_signature(signature, rollback_status))
        return app.model_copy(update={"state": rollback_state})

    collaborators = app.sections.collaborators
    if collaborators.meta.status == SectionStatus.PRISTINE:
        collaborators = _with_meta(collaborators, status=SectionStatus.COMPLETE)
    app = _with_sections(
        app,
        collaborators=collaborators,
        signature=_reset_signature(signature, ready_status),
    )
    return app.model_copy(update={"state": ApplicationState.SIGN_AND_SUBMIT})


def _invalidate_signed_document(app: Application) -> Application:
    """Discard the signed document after a change made in SIGN AND SUBMIT."""
    signature = app.sections.signature
    status = signature.meta.status
    if status == SectionStatus.COMPLETE:
        status = SectionStatus.PRISTINE
    return _with_sections(app, signature=_reset_signature(signature, status))


def _clear_updated_flags(app: Application) -> Application:
    changes = {}
    for name in Sections.model_fields:
        section = getattr(app.sections, name)
        if section.meta.updated:
            changes[name] = _with_meta(section, updated=False)
    return _with_sections(app, **changes) if changes else app


def _submit(app: Application, author: UpdateAuthor, now: datetime) -> Application:
    signature = app.sections.signature
    if signature.meta.status != SectionStatus.COMPLETE or not signature.signed_app_doc_obj_id:
        raise InvalidApplicationStateError(
            "The signed application must be uploaded before submitting"
        )
    submitted = app.model_copy(
        update={
            "state": ApplicationState.REVIEW,
            "submitted_at_utc": now,
            "revision_request": RevisionRequest(),
        }
    )
    submitted = append_event(submitted, author, UpdateEventType.SUBMITTED, now)
    return _clear_updated_flags(submitted)


# =============================================================================
# Lifecycle transitions
# =============================================================================


def _close(app: Application, author: UpdateAuthor, now: datetime) -> Application:
    changes: dict[str, Any] = {
        "state": ApplicationState.CLOSED,
        "closed_by": author.id,
        "closed_at_utc": now,
    }
    if app.expires_at_utc is not None:
        changes["expires_at_utc"] = now
    return append_event(app.model_copy(update=changes), author, UpdateEventType.CLOSED, now)


def _close_unsubmitted(app: Application, author: UpdateAuthor, now: datetime) -> Application:
    """
    Close a DRAFT, SIGN AND SUBMIT or REVISIONS REQUESTED application.

    The submitter may always withdraw. The system may only close renewals whose
    renewal period has ended. A renewal closed before then is detached from its
    source so the source can be renewed again.
    """
    period_ended = renewal_period_is_ended(app, now)
    if author.role == DacoRole.SYSTEM:
        if not (app.is_renewal and period_ended):
            raise InvalidApplicationStateError(
                "Only renewals past their renewal period can be closed by the system"
            )
    elif author.role != DacoRole.SUBMITTER:
        raise ForbiddenActionError()
    if app.is_renewal and not period_ended:
        app = app.model_copy(update={"source_app_id": None})
    return _close(app, author, now)


def _approve(
    app: Application,
    author: UpdateAuthor,
    config: AppConfig,
    now: datetime,
    custom_expiry: datetime | None = None,
) -> Application:
    expires_at = as_utc(custom_expiry) if custom_expiry is not None else get_expiry_date(now, config)
    approved = app.model_copy(
        update={
            "state": ApplicationState.APPROVED,
            "approved_at_utc": now,
            "expires_at_utc": expires_at,
        }
    )
    return append_event(approved, author, UpdateEventType.APPROVED, now)


def _reject(app: Application, update_part: ApplicationUpdate, author: UpdateAuthor, now: datetime) -> Application:
    if is_blank(update_part.denial_reason):
        raise ApplicationValidationError(
            "A denial reason is required to reject an application",
            [FieldError(field="denial_reason", message=REQUIRED_MESSAGE)],
        )
    rejected = app.model_copy(
        update={"state": ApplicationState.REJECTED, "denial_reason": update_part.denial_reason}
    )
    return append_event(rejected, author, UpdateEventType.REJECTED, now)


def _mark_sections_for_revision(app: Application) -> Application:
    request = app.revision_request
    changes: dict[str, Any] = {}
    for name in REVISABLE_SECTIONS:
        if name != "signature" and request.is_requested(name):
            changes[name] = _with_meta(
                getattr(app.sections, name),
                status=SectionStatus.REVISIONS_REQUESTED,
                updated=False,
            )
    if request.signature.requested:
        # The signature opens last, once the other requested sections are revised
        signature_status = (
            SectionStatus.REVISIONS_REQUESTED_DISABLED
            if request.any_non_signature_requested()
            else SectionStatus.REVISIONS_REQUESTED
        )
    else:
        signature_status = SectionStatus.DISABLED
    changes["signature"] = _reset_signature(app.sections.signature, signature_status)
    return _with_sections(app, **changes)


def _request_revisions(
    app: Application,
    update_part: ApplicationUpdate,
    author: UpdateAuthor,
    now: datetime,
) -> Application:
    patch = update_part.revision_request
    requested = patch is not None and any(
        getattr(patch, name) is not None and getattr(patch, name).requested
        for name in REVISABLE_SECTIONS
    )
    if not requested:
        raise ApplicationValidationError(
            "At least one specific section should be requested for revision",
            [FieldError(field="revision_request", message=REQUIRED_MESSAGE)],
        )
    app = app.model_copy(
        update={"revision_request": merge_revision_request(app.revision_request, patch)}
    )
    app = _mark_sections_for_revision(app)
    app = app.model_copy(update={"state": ApplicationState.REVISIONS_REQUESTED})
    return append_event(app, author, UpdateEventType.REVISIONS_REQUESTED, now)


def _pause(
    app: Application,
    update_part: ApplicationUpdate,
    author: UpdateAuthor,
    config: AppConfig,
    now: datetime,
) -> Application:
    if app.state == ApplicationState.PAUSED:
        return app
    reason = update_part.pause_reason
    if author.role == DacoRole.SYSTEM:
        if reason != PauseReason.PENDING_ATTESTATION:
            raise ApplicationValidationError("Invalid pause reason")
        if not is_attestation_overdue(app, config, now):
            raise InvalidApplicationStateError("Attestation is not yet overdue")
    elif author.role == DacoRole.ADMIN:
        if not config.features.admin_pause_enabled:
            raise ForbiddenActionError("Administrative pause is not enabled")
        if reason != PauseReason.ADMIN_PAUSE:
            raise ApplicationValidationError("Invalid pause reason")
    else:
        raise ForbiddenActionError()
    paused = app.model_copy(update={"state": ApplicationState.PAUSED, "pause_reason": reason})
    return append_event(paused, author, UpdateEventType.PAUSED, now)


def _resume(app: Application, author: UpdateAuthor, now: datetime) -> Application:
    """Lift an administrative pause. Attestation pauses are lifted by attesting."""
    if author.role != DacoRole.ADMIN:
        raise ForbiddenActionError()
    if app.pause_reason != PauseReason.ADMIN_PAUSE:
        raise InvalidApplicationStateError(
            "A paused application can only be re-approved through attestation"
        )
    resumed = app.model_copy(update={"state": ApplicationState.APPROVED, "pause_reason": None})
    return append_event(resumed, author, UpdateEventType.APPROVED, now)


def _expire(app: Application, author: UpdateAuthor, now: datetime) -> Application:
    if author.role != DacoRole.SYSTEM:
        raise ForbiddenActionError()
    if not is_expirable(app, now):
        raise InvalidApplicationStateError("Application has not reached its expiry date")
    expired = app.model_copy(update={"state": ApplicationState.EXPIRED, "pause_reason": None})
    return append_event(expired, author, UpdateEventType.EXPIRED, now)


def _close_granted(app: Application, author: UpdateAuthor, now: datetime) -> Application:
    """Close an APPROVED, PAUSED or EXPIRED application."""
    if author.role not in (DacoRole.ADMIN, DacoRole.SYSTEM):
        raise ForbiddenActionError()
    return _close(app, author, now)


def _attest(app: Application, author: UpdateAuthor, config: AppConfig, now: datetime) -> Application:
    """
    Record the submitter's attestation.

    Only a pause for pending attestation is lifted by attesting. An application
    under an administrative pause records the attestation and stays PAUSED
    until a reviewer resumes it.
    """
    if author.role != DacoRole.SUBMITTER:
        raise ForbiddenActionError()
    if not is_attestable(app, config, now):
        raise InvalidApplicationStateError("Application is not attestable")
    changes: dict[str, Any] = {"attested_at_utc": now}
    if app.state == ApplicationState.PAUSED and app.pause_reason == PauseReason.PENDING_ATTESTATION:
        changes.update(state=ApplicationState.APPROVED, pause_reason=None)
    return append_event(app.model_copy(update=changes), author, UpdateEventType.ATTESTED, now)


def _invalid_request(app: Application, requested: ApplicationState) -> InvalidApplicationStateError:
    return InvalidApplicationStateError(
        f"Cannot move an application from {app.state.value} to {requested.value}"
    )


# =============================================================================
# Update routing by state
# =============================================================================


def _update_draft(
    app: Application,
    update_part: ApplicationUpdate,
    is_reviewer: bool,
    author: UpdateAuthor,
    config: AppConfig,
    now: datetime,
) -> Application:
    if update_part.state == ApplicationState.CLOSED:
        return _close_unsubmitted(app, author, now)
    if is_reviewer or author.role != DacoRole.SUBMITTER:
        raise ForbiddenActionError()
    if update_part.state not in (None, ApplicationState.DRAFT):
        raise _invalid_request(app, update_part.state)
    if update_part.sections is None:
        return app
    app = _apply_draft_edits(app, update_part.sections, now)
    return _to_sign_and_submit_or_roll_back(app)


def _update_sign_and_submit(
    app: Application,
    update_part: ApplicationUpdate,
    is_reviewer: bool,
    author: UpdateAuthor,
    config: AppConfig,
    now: datetime,
) -> Application:
    if update_part.state == ApplicationState.CLOSED:
        return _close_unsubmitted(app, author, now)
    if is_reviewer or author.role != DacoRole.SUBMITTER:
        raise ForbiddenActionError()
    if update_part.state == ApplicationState.REVIEW:
        return _submit(app, author, now)
    if update_part.state not in (None, ApplicationState.SIGN_AND_SUBMIT):
        raise _invalid_request(app, update_part.state)
    if update_part.sections is None:
        return app
    # Editing a section re-opens the form
    if _is_returned(app):
        app = _apply_revision_edits(app, update_part.sections, now)
    else:
        app = _apply_draft_edits(app, update_part.sections, now)
    return _to_sign_and_submit_or_roll_back(app)


def _update_revisions_requested(
    app: Application,
    update_part: ApplicationUpdate,
    is_reviewer: bool,
    author: UpdateAuthor,
    config: AppConfig,
    now: datetime,
) -> Application:
    if update_part.state == ApplicationState.CLOSED:
        return _close_unsubmitted(app, author, now)
    if is_reviewer or author.role != DacoRole.SUBMITTER:
        raise ForbiddenActionError()
    if update_part.state not in (None, ApplicationState.REVISIONS_REQUESTED):
        raise _invalid_request(app, update_part.state)
    if update_part.sections is None:
        return app
    app = _apply_revision_edits(app, update_part.sections, now)
    return _to_sign_and_submit_or_roll_back(app)


def _update_review(
    app: Application,
    update_part: ApplicationUpdate,
    is_reviewer: bool,
    author: UpdateAuthor,
    config: AppConfig,
    now: datetime,
) -> Application:
    if not is_reviewer or author.role != DacoRole.ADMIN:
        raise ForbiddenActionError()
    if update_part.state == ApplicationState.CLOSED:
        raise InvalidApplicationStateError("Cannot close an application in REVIEW state")
    # A custom expiry only takes effect on approval
    if update_part.state == ApplicationState.APPROVED:
        return _approve(app, author, config, now, update_part.expires_at_utc)
    if update_part.state == ApplicationState.REJECTED:
        return _reject(app, update_part, author, now)
    if update_part.state == ApplicationState.REVISIONS_REQUESTED:
        return _request_revisions(app, update_part, author, now)
    if update_part.state not in (None, ApplicationState.REVIEW):
        raise _invalid_request(app, update_part.state)
    return app


def _update_approved(
    app: Application,
    update_part: ApplicationUpdate,
    is_reviewer: bool,
    author: UpdateAuthor,
    config: AppConfig,
    now: datetime,
) -> Application:
    requested = update_part.state
    if requested == ApplicationState.CLOSED:
        return _close_granted(app, author, now)
    if requested == ApplicationState.PAUSED:
        return _pause(app, update_part, author, config, now)
    if requested == ApplicationState.EXPIRED:
        return _expire(app, author, now)
    if requested not in (None, ApplicationState.APPROVED):
        raise _invalid_request(app, requested)
    return app


def _update_paused(
    app: Application,
    update_part: ApplicationUpdate,
    is_reviewer: bool,
    author: UpdateAuthor,
    config: AppConfig,
    now: datetime,
) -> Application:
    requested = update_part.state
    if requested == ApplicationState.CLOSED:
        return _close_granted(app, author, now)
    if requested == ApplicationState.EXPIRED:
        return _expire(app, author, now)
    if requested == ApplicationState.APPROVED:
        return _resume(app, author, now)
    if requested not in (None, ApplicationState.PAUSED):
        raise _invalid_request(app, requested)
    return app


def _update_expired(
    app: Application,
    update_part: ApplicationUpdate,
    is_reviewer: bool,
    author: UpdateAuthor,
    config: AppConfig,
    now: datetime,
) -> Application:
    requested = update_part.state
    if requested == ApplicationState.CLOSED:
        return _close_granted(app, author, now)
    if requested in (None, ApplicationState.EXPIRED):
        return app
    raise _invalid_request(app, requested)


def _update_rejected(
    app: Application,
    update_part: ApplicationUpdate,
    is_reviewer: bool,
    author: UpdateAuthor,
    config: AppConfig,
    now: datetime,
) -> Application:
    raise InvalidApplicationStateError("A rejected application cannot be modified")


_STATE_HANDLERS = {
    ApplicationState.DRAFT: _update_draft,
    ApplicationState.SIGN_AND_SUBMIT: _update_sign_and_submit,
    ApplicationState.REVISIONS_REQUESTED: _update_revisions_requested,
    ApplicationState.REVIEW: _update_review,
    ApplicationState.APPROVED: _update_approved,
    ApplicationState.PAUSED: _update_paused,
    ApplicationState.EXPIRED: _update_expired,
    ApplicationState.REJECTED: _update_rejected,
}


def update_app(
    current: Application,
    update_part: ApplicationUpdate,
    is_reviewer: bool,
    author: UpdateAuthor,
    config: AppConfig,
    now: datetime,
) -> Transition:
    """
    Apply a partial update to an application.

    Args:
        current: Current snapshot
        update_part: Section edits, a requested state, or an attestation
        is_reviewer: Caller acts as a reviewer
        author: Verified caller identity recorded in the audit log
        config: Durations and feature flags
        now: Instant of the update

    Returns:
        Transition with the next snapshot and the orphaned document ids

    Raises:
        ApplicationClosedError: The application is CLOSED
        ForbiddenActionError: The caller's role may not perform the change
        InvalidApplicationStateError: The state does not permit the change
        ApplicationValidationError: Required input is missing or invalid
    """
    _ensure_not_closed(current)
    if update_part.is_attesting is not None:
        if not update_part.is_attesting:
            return Transition(application=current)
        return finish(current, _attest(current, author, config, now), config, now)
    handler = _STATE_HANDLERS[current.state]
    updated = handler(current, update_part, is_reviewer, author, config, now)
    return finish(current, updated, config, now)


# =============================================================================
# Collaborators
# =============================================================================


def _collaborators_editable(app: Application) -> bool:
    if app.state in (ApplicationState.DRAFT, ApplicationState.SIGN_AND_SUBMIT):
        return True
    return (
        app.state == ApplicationState.REVISIONS_REQUESTED
        and app.revision_request.collaborators.requested
    )


def _check_collaborator_conflicts(app: Application, collaborator: Collaborator) -> None:
    info = collaborator.info
    for existing in app.sections.collaborators.items:
        if existing.id == collaborator.id:
            continue
        same_google = not is_blank(info.google_email) and existing.info.google_email == info.google_email
        same_institution = (
            not is_blank(info.institution_email)
            and existing.info.institution_email == info.institution_email
        )
        if same_google or same_institution:
            raise CollaboratorConflictError(
                CollaboratorConflictError.COLLABORATOR_EXISTS,
                "A collaborator with the same email already exists",
            )
    if collaborator_matches_applicant(collaborator, app.sections.applicant):
        raise CollaboratorConflictError(
            CollaboratorConflictError.COLLABORATOR_SAME_AS_APPLICANT,
            "The applicant does not need to be added as a collaborator",
        )


def _checked_collaborator(app: Application, collaborator: Collaborator) -> Collaborator:
    result = validate_collaborator(collaborator, app.sections.applicant)
    if not result.is_valid:
        raise ApplicationValidationError("Invalid collaborator", result.errors)
    _check_collaborator_conflicts(app, collaborator)
    return collaborator.model_copy(update={"meta": Meta(status=SectionStatus.COMPLETE)})


def _after_collaborators_change(app: Application) -> Application:
    if app.state == ApplicationState.SIGN_AND_SUBMIT:
        return _invalidate_signed_document(app)
    if app.state in (ApplicationState.DRAFT, ApplicationState.REVISIONS_REQUESTED):
        return _to_sign_and_submit_or_roll_back(app)
    return app


def add_collaborator(
    current: Application,
    collaborator: CollaboratorCreate,
    is_reviewer: bool,
    author: UpdateAuthor,
    config: AppConfig,
    now: datetime,
) -> Transition:
    """
    Add a collaborator with a server-assigned id.

    Reviewers may only add collaborators to APPROVED applications.
    """
    _ensure_not_closed(current)
    if is_reviewer and current.state != ApplicationState.APPROVED:
        raise ForbiddenActionError()
    if not (_collaborators_editable(current) or current.state == ApplicationState.APPROVED):
        raise InvalidApplicationStateError("Collaborators cannot be added in this state")
    new_collaborator = _checked_collaborator(
        current, build_collaborator(uuid.uuid4().hex, collaborator)
    )
    app = _set_collaborators(current, (*current.sections.collaborators.items, new_collaborator), now)
    return finish(current, _after_collaborators_change(app), config, now)


def update_collaborator(
    current: Application,
    collaborator: CollaboratorUpdate,
    is_reviewer: bool,
    author: UpdateAuthor,
    config: AppConfig,
    now: datetime,
) -> Transition:
    _ensure_not_closed(current)
    if is_reviewer:
        raise ForbiddenActionError()
    if not _collaborators_editable(current):
        raise InvalidApplicationStateError("Collaborators cannot be updated in this state")
    items = current.sections.collaborators.items
    existing = next((c for c in items if c.id == collaborator.id), None)
    if existing is None:
        raise CollaboratorNotFoundError(collaborator.id)
    updated = _checked_collaborator(current, merge_collaborator(existing, collaborator))
    app = _set_collaborators(
        current, (updated if c.id == updated.id else c for c in items), now
    )
    return finish(current, _after_collaborators_change(app), config, now)


def delete_collaborator(
    current: Application,
    collaborator_id: str,
    is_reviewer: bool,
    author: UpdateAuthor,
    config: AppConfig,
    now: datetime,
) -> Transition:
    _ensure_not_closed(current)
    if is_reviewer and current.state != ApplicationState.APPROVED:
        raise ForbiddenActionError()
    if not (_collaborators_editable(current) or current.state == ApplicationState.APPROVED):
        raise InvalidApplicationStateError("Collaborators cannot be removed in this state")
    items = current.sections.collaborators.items
    if not any(c.id == collaborator_id for c in items):
        raise CollaboratorNotFoundError(collaborator_id)
    app = _set_collaborators(current, (c for c in items if c.id != collaborator_id), now)
    return finish(current, _after_collaborators_change(app), config, now)


# =============================================================================
# Documents
# =============================================================================


def _ethics_editable(app: Application) -> bool:
    if app.state in (ApplicationState.DRAFT, ApplicationState.SIGN_AND_SUBMIT):
        return True
    return (
        app.state == ApplicationState.REVISIONS_REQUESTED
        and app.revision_request.ethics_letter.requested
    )


def _after_ethics_change(app: Application) -> Application:
    if app.state == ApplicationState.APPROVED:
        return app
    return _to_sign_and_submit_or_roll_back(app)


def check_document_upload(
    current: Application,
    doc_type: DocumentType,
    is_reviewer: bool,
    author: UpdateAuthor,
) -> None:
    """
    Raise unless ``author`` may attach a ``doc_type`` document to ``current``.

    Runs before the file reaches storage, so a refused upload never touches
    an object the application already references.
    """
    _ensure_not_closed(current)

    if doc_type == DocumentType.APPROVED_PDF:
        if not is_reviewer or author.role != DacoRole.ADMIN:
            raise ForbiddenActionError()
        if current.state not in (ApplicationState.APPROVED, ApplicationState.PAUSED):
            raise InvalidApplicationStateError("Cannot upload an approved PDF in this state")
        return

    if is_reviewer and current.state != ApplicationState.APPROVED:
        raise ForbiddenActionError()

    if doc_type == DocumentType.ETHICS:
        if not (_ethics_editable(current) or current.state == ApplicationState.APPROVED):
            raise InvalidApplicationStateError("Cannot upload an ethics letter in this state")
        if not current.sections.ethics_letter.declared_as_required:
            raise InvalidApplicationStateError("Must declare ethics letter as required first")
        return

    if is_reviewer:
        raise ForbiddenActionError()
    if current.state != ApplicationState.SIGN_AND_SUBMIT:
        raise InvalidApplicationStateError("Cannot upload signed application in this state")


def add_document(
    current: Application,
    object_id: str,
    name: str,
    doc_type: DocumentType,
    is_reviewer: bool,
    author: UpdateAuthor,
    config: AppConfig,
    now: datetime,
) -> Transition:
    """Attach an uploaded document (ethics letter, signed application or approved PDF)."""
    check_document_upload(current, doc_type, is_reviewer, author)

    if doc_type == DocumentType.APPROVED_PDF:
        docs = tuple(d.model_copy(update={"is_current": False}) for d in current.approved_app_docs)
        new_doc = ApprovedAppDocument(object_id=object_id, name=name, uploaded_at_utc=now)
        app = current.model_copy(update={"approved_app_docs": (*docs, new_doc)})
        return finish(current, app, config, now)

    if doc_type == DocumentType.ETHICS:
        ethics_letter = current.sections.ethics_letter
        doc = EthicsLetterDocument(object_id=object_id, name=name, uploaded_at_utc=now)
        app = _set_ethics_documents(current, (*ethics_letter.approval_letter_docs, doc), now)
        return finish(current, _after_ethics_change(app), config, now)

    signature = current.sections.signature.model_copy(
        update={
            "signed_app_doc_obj_id": object_id,
            "signed_doc_name": name,
            "uploaded_at_utc": now,
        }
    )
    signature = _with_meta(signature, status=SectionStatus.COMPLETE, last_updated_at_utc=now)
    return finish(current, _with_sections(current, signature=signature), config, now)


def delete_document(
    current: Application,
    object_id: str,
    doc_type: DocumentType,
    is_reviewer: bool,
    author: UpdateAuthor,
    config: AppConfig,
    now: datetime,
) -> Transition:
    _ensure_not_closed(current)

    if doc_type == DocumentType.APPROVED_PDF:
        if not is_reviewer or author.role != DacoRole.ADMIN:
            raise ForbiddenActionError()
        removed = next((d for d in current.approved_app_docs if d.object_id == object_id), None)
        if removed is None:
            raise DocumentNotFoundError(object_id)
        remaining = [d for d in current.approved_app_docs if d.object_id != object_id]
        if removed.is_current and remaining:
            latest = max(remaining, key=lambda d: d.uploaded_at_utc)
            remaining = [d.model_copy(update={"is_current": d is latest}) for d in remaining]
        app = current.model_copy(update={"approved_app_docs": tuple(remaining)})
        return finish(current, app, config, now)

    if is_reviewer:
        raise ForbiddenActionError()

    if doc_type == DocumentType.ETHICS:
        if not _ethics_editable(current):
            raise InvalidApplicationStateError("Cannot delete an ethics letter in this state")
        docs = current.sections.ethics_letter.approval_letter_docs
        if not any(d.object_id == object_id for d in docs):
            raise DocumentNotFoundError(object_id)
        app = _set_ethics_documents(current, (d for d in docs if d.object_id != object_id), now)
        return finish(current, _after_ethics_change(app), config, now)

    if current.state != ApplicationState.SIGN_AND_SUBMIT:
        raise InvalidApplicationStateError("Cannot delete the signed application in this state")
    if current.sections.signature.signed_app_doc_obj_id != object_id:
        raise DocumentNotFoundError(object_id)
    signature = _reset_signature(current.sections.signature, SectionStatus.INCOMPLETE)
    return finish(current, _with_sections(current, signature=signature), config, now)


# =============================================================================
# Renewal links
# =============================================================================


def unlink_from_renewal(source: Application, config: AppConfig, now: datetime) -> Transition:
    """Detach a source application from its (closed) renewal."""
    _ensure_not_closed(source)
    if source.renewal_app_id is None:
        return Transition(application=source)
    return finish(source, source.model_copy(update={"renewal_app_id": None}), config, now)


# =============================================================================
# Batch notification flags
# =============================================================================


def mark_notification_sent(
    current: Application,
    flag: str,
    config: AppConfig,
    now: datetime,
) -> Transition:
    """Record that the batch notification ``flag`` was delivered at ``now``."""
    if flag not in NOTIFICATION_FLAGS:
        raise ValueError(f"Unknown notification flag: {flag}")
    notifications = current.email_notifications.model_copy(update={flag: now})
    return finish(current, current.model_copy(update={"email_notifications": notifications}), config, now)


# =============================================================================
# Views
# =============================================================================


def _view_status(app: Application, name: str, is_reviewer: bool) -> SectionStatus:
    section = getattr(app.sections, name)
    status = section.meta.status
    if name in LOCKED_SECTIONS[app.state][is_reviewer]:
        return SectionStatus.LOCKED

    if app.revisions_requested:
        if name not in REVISABLE_SECTIONS:
            return SectionStatus.LOCKED
        if not is_reviewer and name != "signature" and status == SectionStatus.COMPLETE:
            if app.revision_request.is_requested(name):
                return SectionStatus.REVISIONS_MADE
            return SectionStatus.LOCKED

    if app.state == ApplicationState.APPROVED:
        if name == "ethics_letter":
            required = app.sections.ethics_letter.declared_as_required
            return SectionStatus.AMMENDABLE if required else SectionStatus.LOCKED
        if name == "collaborators":
            return SectionStatus.AMMENDABLE
    return status


def prepare_for_view(
    current: Application,
    is_reviewer: bool,
    config: AppConfig,
    now: datetime,
) -> ViewApplication:
    """
    Shape an application for display to the caller.

    Replaces section statuses with view statuses, hides the audit log from
    non-reviewers and the representative address when it mirrors the
    applicant's, and adds the derived eligibility flags.
    """
    view_sections = {
        name: _with_meta(
            getattr(current.sections, name),
            status=_view_status(current, name, is_reviewer),
        )
        for name in ALL_SECTIONS
    }
    sections = current.sections.model_copy(update=view_sections)
    attestation_by = None
    if current.approved_at_utc is not None:
        attestation_by = get_attestation_by_date(current.approved_at_utc, config)

    data = current.model_dump(exclude={"revisions_requested"})
    data.update(
        sections=sections,
        updates=current.updates if is_reviewer else (),
        is_attestable=is_attestable(current, config, now),
        is_renewable=is_renewable(current, config, now),
        attestation_by_utc=attestation_by,
    )
    return ViewApplication.model_validate(data)
