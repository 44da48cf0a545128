"""
Access Applications Domain Model

Immutable value types for the application aggregate: sections, collaborators,
revision requests, the audit log and the application itself.

Design Principles:
- All models are frozen; transitions build new snapshots with ``model_copy``
- Collections are tuples so a snapshot can never be changed in place
- Enum values are the wire strings stored in the JSON document
- ``revisions_requested`` is derived from the revision request, never stored
"""

import enum
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, computed_field

from app.modules.access_applications.constants import (
    APPENDIX_AGREEMENTS,
    DATA_ACCESS_AGREEMENTS,
    TERMS_AGREEMENT_NAME,
)


class ApplicationState(str, enum.Enum):
    """Lifecycle state of an application."""

    DRAFT = "DRAFT"
    SIGN_AND_SUBMIT = "SIGN AND SUBMIT"
    REVIEW = "REVIEW"
    REVISIONS_REQUESTED = "REVISIONS REQUESTED"
    APPROVED = "APPROVED"
    PAUSED = "PAUSED"
    REJECTED = "REJECTED"
    CLOSED = "CLOSED"
    EXPIRED = "EXPIRED"


class SectionStatus(str, enum.Enum):
    """Completeness (or view) status of a single section."""

    PRISTINE = "PRISTINE"
    INCOMPLETE = "INCOMPLETE"
    COMPLETE = "COMPLETE"
    REVISIONS_REQUESTED = "REVISIONS REQUESTED"
    REVISIONS_REQUESTED_DISABLED = "REVISIONS REQUESTED DISABLED"
    REVISIONS_MADE = "REVISIONS MADE"
    LOCKED = "LOCKED"
    DISABLED = "DISABLED"
    AMMENDABLE = "AMMENDABLE"


class PauseReason(str, enum.Enum):
    PENDING_ATTESTATION = "PENDING ATTESTATION"
    ADMIN_PAUSE = "ADMIN PAUSE"


class DacoRole(str, enum.Enum):
    """Role of the caller, derived from verified token claims."""

    SUBMITTER = "SUBMITTER"
    ADMIN = "ADMIN"
    SYSTEM = "SYSTEM"


class UpdateEventType(str, enum.Enum):
    CREATED = "CREATED"
    SUBMITTED = "SUBMITTED"
    REVISIONS_REQUESTED = "REVISIONS REQUESTED"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    CLOSED = "CLOSED"
    EXPIRED = "EXPIRED"
    PAUSED = "PAUSED"
    ATTESTED = "ATTESTED"


class AppType(str, enum.Enum):
    NEW = "NEW"
    RENEWAL = "RENEWAL"


class CollaboratorType(str, enum.Enum):
    STUDENT = "student"
    PERSONNEL = "personnel"


class DocumentType(str, enum.Enum):
    """Kinds of uploaded documents referenced by an application."""

    ETHICS = "ETHICS"
    SIGNED_APP = "SIGNED_APP"
    APPROVED_PDF = "APPROVED_PDF"


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True)


class FieldError(_Frozen):
    field: str
    message: str


class Meta(_Frozen):
    """Section metadata: derived status, field errors and update tracking."""

    status: SectionStatus = SectionStatus.PRISTINE
    errors: tuple[FieldError, ...] = ()
    # Set when the section was edited after a revision request, cleared on submit
    updated: bool = False
    last_updated_at_utc: datetime | None = None


class AgreementItem(_Frozen):
    name: str
    accepted: bool = False


class PersonalInfo(_Frozen):
    title: str = ""
    first_name: str = ""
    middle_name: str = ""
    last_name: str = ""
    display_name: str = ""
    suffix: str = ""
    primary_affiliation: str = ""
    institution_email: str = ""
    google_email: str = ""
    website: str = ""
    position_title: str = ""


class Address(_Frozen):
    building: str = ""
    street_address: str = ""
    city_and_province: str = ""
    country: str = ""
    postal_code: str = ""


class TermsSection(_Frozen):
    meta: Meta = Meta()
    agreement: AgreementItem = AgreementItem(name=TERMS_AGREEMENT_NAME)


class ApplicantSection(_Frozen):
    meta: Meta = Meta()
    info: PersonalInfo = PersonalInfo()
    address: Address = Address()


class RepresentativeSection(_Frozen):
    meta: Meta = Meta()
    info: PersonalInfo = PersonalInfo()
    address_same_as_applicant: bool = False
    address: Address = Address()


class Collaborator(_Frozen):
    id: str | None = None
    meta: Meta = Meta()
    info: PersonalInfo = PersonalInfo()
    type: CollaboratorType | None = None


class CollaboratorsSection(_Frozen):
    meta: Meta = Meta()
    items: tuple[Collaborator, ...] = ()


class ProjectInfoSection(_Frozen):
    meta: Meta = Meta()
    title: str = ""
    website: str = ""
    background: str = ""
    aims: str = ""
    summary: str = ""
    methodology: str = ""
    publications_urls: tuple[str, ...] = ()


class EthicsLetterDocument(_Frozen):
    object_id: str
    name: str = ""
    uploaded_at_utc: datetime | None = None


class EthicsLetterSection(_Frozen):
    meta: Meta = Meta()
    declared_as_required: bool | None = None
    approval_letter_docs: tuple[EthicsLetterDocument, ...] = ()


class AgreementsSection(_Frozen):
    """Checklist section (data access agreement, appendices)."""

    meta: Meta = Meta()
    agreements: tuple[AgreementItem, ...] = ()


class SignatureSection(_Frozen):
    meta: Meta = Meta(status=SectionStatus.DISABLED)
    signed_app_doc_obj_id: str = ""
    signed_doc_name: str = ""
    uploaded_at_utc: datetime | None = None


def default_data_access_agreement() -> AgreementsSection:
    return AgreementsSection(
        agreements=tuple(AgreementItem(name=name) for name in DATA_ACCESS_AGREEMENTS)
    )


def default_appendices() -> AgreementsSection:
    return AgreementsSection(
        agreements=tuple(AgreementItem(name=name) for name in APPENDIX_AGREEMENTS)
    )


class Sections(_Frozen):
    terms: TermsSection = TermsSection()
    applicant: ApplicantSection = ApplicantSection()
    representative: RepresentativeSection = RepresentativeSection()
    collaborators: CollaboratorsSection = CollaboratorsSection()
    project_info: ProjectInfoSection = ProjectInfoSection()
    ethics_letter: EthicsLetterSection = EthicsLetterSection()
    data_access_agreement: AgreementsSection = Field(default_factory=default_data_access_agreement)
    appendices: AgreementsSection = Field(default_factory=default_appendices)
    signature: SignatureSection = SignatureSection()


# Section names in the order sections are displayed and locked
ALL_SECTIONS: tuple[str, ...] = (
    "appendices",
    "data_access_agreement",
    "terms",
    "applicant",
    "collaborators",
    "ethics_letter",
    "representative",
    "project_info",
    "signature",
)

# Sections a reviewer can request revisions for
REVISABLE_SECTIONS: tuple[str, ...] = (
    "applicant",
    "representative",
    "project_info",
    "collaborators",
    "ethics_letter",
    "signature",
)


class RevisionRequestItem(_Frozen):
    details: str = ""
    requested: bool = False


class RevisionRequest(_Frozen):
    applicant: RevisionRequestItem = RevisionRequestItem()
    representative: RevisionRequestItem = RevisionRequestItem()
    project_info: RevisionRequestItem = RevisionRequestItem()
    collaborators: RevisionRequestItem = RevisionRequestItem()
    ethics_letter: RevisionRequestItem = RevisionRequestItem()
    signature: RevisionRequestItem = RevisionRequestItem()
    general: RevisionRequestItem = RevisionRequestItem()

    def is_requested(self, section: str) -> bool:
        return getattr(self, section).requested

    def any_section_requested(self) -> bool:
        """True if any specific (non-general) section has a revision request."""
        return any(self.is_requested(s) for s in REVISABLE_SECTIONS)

    def any_non_signature_requested(self) -> bool:
        return any(self.is_requested(s) for s in REVISABLE_SECTIONS if s != "signature")


class UpdateAuthor(_Frozen):
    id: str
    role: DacoRole


class UpdateEvent(_Frozen):
    """Append-only audit record with a snapshot of key application facts."""

    date: datetime
    event_type: UpdateEventType
    author: UpdateAuthor
    app_type: AppType
    days_elapsed: int
    institution: str = ""
    country: str = ""
    applicant: str = ""
    project_title: str = ""
    ethics_letter_required: bool | None = None


class ApprovedAppDocument(_Frozen):
    object_id: str
    name: str = ""
    uploaded_at_utc: datetime
    is_current: bool = True


class EmailNotifications(_Frozen):
    """Batch notification idempotency flags (timestamp of the successful send)."""

    attestation_required_notification_sent: datetime | None = None
    application_paused_notification_sent: datetime | None = None
    first_expiry_notification_sent: datetime | None = None
    second_expiry_notification_sent: datetime | None = None
    application_expired_notification_sent: datetime | None = None


NOTIFICATION_FLAGS: tuple[str, ...] = tuple(EmailNotifications.model_fields)


class Application(_Frozen):
    """Root aggregate for an access application."""

    app_id: str | None = None
    app_number: int | None = None
    state: ApplicationState = ApplicationState.DRAFT
    submitter_id: str
    submitter_email: str = ""

    submitted_at_utc: datetime | None = None
    approved_at_utc: datetime | None = None
    expires_at_utc: datetime | None = None
    closed_at_utc: datetime | None = None
    closed_by: str | None = None
    denial_reason: str | None = None
    created_at_utc: datetime | None = None
    last_updated_at_utc: datetime | None = None

    attested_at_utc: datetime | None = None
    pause_reason: PauseReason | None = None

    is_renewal: bool = False
    source_app_id: str | None = None
    renewal_app_id: str | None = None
    renewal_period_end_date_utc: datetime | None = None

    revision_request: RevisionRequest = RevisionRequest()
    sections: Sections = Sections()
    updates: tuple[UpdateEvent, ...] = ()
    approved_app_docs: tuple[ApprovedAppDocument, ...] = ()
    email_notifications: EmailNotifications = EmailNotifications()
    search_values: tuple[str, ...] = ()

    # Persistence version marker used for compare-and-set writes
    version: int = 0

    @computed_field  # type: ignore[prop-decorator]
    @property
    def revisions_requested(self) -> bool:
        return any(
            getattr(self.revision_request, name).requested
            for name in RevisionRequest.model_fields
        )

    @property
    def was_ever_approved(self) -> bool:
        return self.approved_at_utc is not None

    def document_ids(self) -> set[str]:
        """All external document identifiers referenced by this snapshot."""
        ids = {d.object_id for d in self.sections.ethics_letter.approval_letter_docs}
        ids.update(d.object_id for d in self.approved_app_docs)
        if self.sections.signature.signed_app_doc_obj_id:
            ids.add(self.sections.signature.signed_app_doc_obj_id)
        return ids


class Transition(_Frozen):
    """Result of a state manager operation."""

    application: Application
    orphaned_document_ids: tuple[str, ...] = ()
