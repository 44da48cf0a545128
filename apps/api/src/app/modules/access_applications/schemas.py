"""
Access Applications Schemas

Pydantic schemas for partial updates, requests and response views.

Update schemas follow one rule: a field left as ``None`` means "leave the
current value untouched". They never carry derived values (statuses, display
names, revision flags), which the state manager computes itself.
"""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from app.modules.access_applications.domain import (
    Application,
    ApplicationState,
    CollaboratorType,
    PauseReason,
    PersonalInfo,
)


class PersonalInfoUpdate(BaseModel):
    title: str | None = None
    first_name: str | None = None
    middle_name: str | None = None
    last_name: str | None = None
    suffix: str | None = None
    primary_affiliation: str | None = None
    institution_email: str | None = None
    google_email: str | None = None
    website: str | None = None
    position_title: str | None = None


class AddressUpdate(BaseModel):
    building: str | None = None
    street_address: str | None = None
    city_and_province: str | None = None
    country: str | None = None
    postal_code: str | None = None


class AgreementAcceptance(BaseModel):
    accepted: bool


class AgreementItemUpdate(BaseModel):
    name: str
    accepted: bool


class TermsUpdate(BaseModel):
    agreement: AgreementAcceptance | None = None


class ApplicantUpdate(BaseModel):
    info: PersonalInfoUpdate | None = None
    address: AddressUpdate | None = None


class RepresentativeUpdate(BaseModel):
    info: PersonalInfoUpdate | None = None
    address_same_as_applicant: bool | None = None
    address: AddressUpdate | None = None


class ProjectInfoUpdate(BaseModel):
    title: str | None = None
    website: str | None = None
    background: str | None = None
    aims: str | None = None
    summary: str | None = None
    methodology: str | None = None
    publications_urls: list[str] | None = None


class EthicsLetterUpdate(BaseModel):
    """Ethics declaration. Approval letters are managed through document uploads."""

    declared_as_required: bool | None = None


class AgreementsUpdate(BaseModel):
    agreements: list[AgreementItemUpdate] | None = None


class SectionsUpdate(BaseModel):
    """Editable form sections. Collaborators and signature have their own operations."""

    terms: TermsUpdate | None = None
    applicant: ApplicantUpdate | None = None
    representative: RepresentativeUpdate | None = None
    project_info: ProjectInfoUpdate | None = None
    ethics_letter: EthicsLetterUpdate | None = None
    data_access_agreement: AgreementsUpdate | None = None
    appendices: AgreementsUpdate | None = None


class RevisionRequestItemUpdate(BaseModel):
    details: str | None = None
    requested: bool | None = None


class RevisionRequestUpdate(BaseModel):
    applicant: RevisionRequestItemUpdate | None = None
    representative: RevisionRequestItemUpdate | None = None
    project_info: RevisionRequestItemUpdate | None = None
    collaborators: RevisionRequestItemUpdate | None = None
    ethics_letter: RevisionRequestItemUpdate | None = None
    signature: RevisionRequestItemUpdate | None = None
    general: RevisionRequestItemUpdate | None = None


class ApplicationUpdate(BaseModel):
    """
    Request body for PATCH /applications/{app_id}.

    A single update may carry section edits, a requested state change, or one
    of the special requests (attestation, renewal).
    """

    state: ApplicationState | None = None
    sections: SectionsUpdate | None = None
    revision_request: RevisionRequestUpdate | None = None
    denial_reason: str | None = Field(None, max_length=2000)
    expires_at_utc: datetime | None = None
    pause_reason: PauseReason | None = None
    is_attesting: bool | None = None
    is_renewal: bool | None = None


class CollaboratorCreate(BaseModel):
    """Request body for POST /applications/{app_id}/collaborators."""

    info: PersonalInfoUpdate = PersonalInfoUpdate()
    type: CollaboratorType | None = None


class CollaboratorUpdate(BaseModel):
    """Request body for PUT /applications/{app_id}/collaborators/{collaborator_id}."""

    id: str
    info: PersonalInfoUpdate = PersonalInfoUpdate()
    type: CollaboratorType | None = None


class ViewApplication(Application):
    """
    Application as returned to a caller.

    Section statuses are replaced by view statuses (LOCKED, REVISIONS MADE,
    AMMENDABLE), the audit log is hidden from non-reviewers and the derived
    eligibility flags are included.
    """

    is_attestable: bool = False
    is_renewable: bool = False
    attestation_by_utc: datetime | None = None


class ApplicantSummary(BaseModel):
    info: PersonalInfo


class ApplicationSummary(BaseModel):
    """Row of the application search results."""

    model_config = ConfigDict(from_attributes=True)

    app_id: str
    state: ApplicationState
    submitter_id: str
    submitted_at_utc: datetime | None = None
    approved_at_utc: datetime | None = None
    expires_at_utc: datetime | None = None
    closed_at_utc: datetime | None = None
    closed_by: str | None = None
    created_at_utc: datetime | None = None
    last_updated_at_utc: datetime | None = None
    is_renewal: bool = False
    source_app_id: str | None = None
    renewal_app_id: str | None = None
    ethics_required: bool | None = None
    applicant: ApplicantSummary
    is_attestable: bool = False
    is_renewable: bool = False


class PagingInfo(BaseModel):
    total_count: int
    pages_count: int
    index: int


class SearchResult(BaseModel):
    paging_info: PagingInfo
    items: list[ApplicationSummary]


class DocumentUploadResponse(BaseModel):
    object_id: str
    application: ViewApplication


class CountryListResponse(BaseModel):
    countries: list[str]


# =============================================================================
# Batch job reports
# =============================================================================


class JobItemError(BaseModel):
    id: str
    message: str


class JobReportDetails(BaseModel):
    ids: list[str] = Field(default_factory=list)
    count: int = 0
    errors: list[JobItemError] = Field(default_factory=list)
    error_count: int = 0


class JobReport(BaseModel):
    """
    Outcome of one batch check.

    A check that ran to completion has ``details`` (item failures included);
    a check that raised has ``error`` instead.
    """

    job_name: str
    started_at: datetime
    finished_at: datetime
    success: bool
    details: JobReportDetails | None = None
    error: str | None = None


class BatchJobsReport(BaseModel):
    run_at: datetime
    reports: list[JobReport]

    @property
    def success(self) -> bool:
        return all(report.success for report in self.reports)


class RegisteredJob(BaseModel):
    job_id: str
    registered: bool = True
    next_run_time: str | None = None
    is_paused: bool | None = None


class JobRunResult(BaseModel):
    """Outcome of running a registered job on demand."""

    job_id: str
    status: str
    executed_at: str
    error: str | None = None


class JobStatusChange(BaseModel):
    job_id: str
    is_paused: bool
