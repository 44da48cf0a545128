"""
Access Applications Section Validators

Pure functions deriving a section's completeness status and its ordered list
of field errors from the section content (and, where a rule spans sections,
from the applicant section).

Design Principles:
- Validators never mutate their input and never raise for invalid content
- Re-validating unchanged content always yields the same result
- Field errors are ordered by the form layout so the UI can display them as-is
"""

from typing import NamedTuple

from email_validator import EmailNotValidError, validate_email
from pydantic import HttpUrl, TypeAdapter, ValidationError

from app.modules.access_applications.constants import (
    COUNTRIES,
    MAX_WORDS_PER_FIELD,
    MIN_PUBLICATIONS,
    MIN_SUMMARY_WORDS,
)
from app.modules.access_applications.domain import (
    Address,
    AgreementsSection,
    ApplicantSection,
    Collaborator,
    EthicsLetterSection,
    FieldError,
    PersonalInfo,
    ProjectInfoSection,
    RepresentativeSection,
    SectionStatus,
    TermsSection,
)

REQUIRED_MESSAGE = "This field is required."
INVALID_EMAIL_MESSAGE = "Please enter a valid email address."
INVALID_URL_MESSAGE = "Please enter a valid url."

_HTTP_URL = TypeAdapter(HttpUrl)


class ValidationResult(NamedTuple):
    status: SectionStatus
    errors: tuple[FieldError, ...]

    @property
    def is_valid(self) -> bool:
        return self.status == SectionStatus.COMPLETE


def _result(errors: list[FieldError]) -> ValidationResult:
    status = SectionStatus.INCOMPLETE if errors else SectionStatus.COMPLETE
    return ValidationResult(status=status, errors=tuple(errors))


def is_blank(value: str | None) -> bool:
    return value is None or value.strip() == ""


def is_valid_email(value: str) -> bool:
    try:
        validate_email(value, check_deliverability=False)
    except EmailNotValidError:
        return False
    return True


def is_valid_url(value: str) -> bool:
    try:
        _HTTP_URL.validate_python(value.strip())
    except ValidationError:
        return False
    return True


def count_words(text: str) -> int:
    return len(text.split())


def same_affiliation(first: str, second: str) -> bool:
    return first.strip().lower() == second.strip().lower()


def _required(value: str, field: str, errors: list[FieldError]) -> bool:
    if is_blank(value):
        errors.append(FieldError(field=field, message=REQUIRED_MESSAGE))
        return False
    return True


def _email_errors(value: str, field: str, errors: list[FieldError], required: bool = True) -> None:
    if is_blank(value):
        if required:
            errors.append(FieldError(field=field, message=REQUIRED_MESSAGE))
        return
    if not is_valid_email(value):
        errors.append(FieldError(field=field, message=INVALID_EMAIL_MESSAGE))


def personal_info_errors(
    info: PersonalInfo,
    prefix: str = "",
    *,
    require_google_email: bool = True,
    require_website: bool = False,
) -> list[FieldError]:
    """
    Collect field errors for a person's details.

    Args:
        info: The personal info block
        prefix: Field name prefix (e.g. "info.")
        require_google_email: Google email is mandatory (not for representatives)
        require_website: Institution website is mandatory (applicant only)

    Returns:
        Ordered list of field errors
    """
    errors: list[FieldError] = []
    _required(info.first_name, f"{prefix}first_name", errors)
    _required(info.last_name, f"{prefix}last_name", errors)
    _required(info.primary_affiliation, f"{prefix}primary_affiliation", errors)
    _email_errors(info.institution_email, f"{prefix}institution_email", errors)
    _email_errors(
        info.google_email, f"{prefix}google_email", errors, required=require_google_email
    )
    if is_blank(info.website):
        if require_website:
            errors.append(FieldError(field=f"{prefix}website", message=REQUIRED_MESSAGE))
    elif not is_valid_url(info.website):
        errors.append(FieldError(field=f"{prefix}website", message=INVALID_URL_MESSAGE))
    _required(info.position_title, f"{prefix}position_title", errors)
    return errors


def address_errors(address: Address, prefix: str = "address.") -> list[FieldError]:
    errors: list[FieldError] = []
    _required(address.street_address, f"{prefix}street_address", errors)
    _required(address.city_and_province, f"{prefix}city_and_province", errors)
    if _required(address.country, f"{prefix}country", errors) and address.country not in COUNTRIES:
        errors.append(
            FieldError(field=f"{prefix}country", message="Please select a country from the list.")
        )
    _required(address.postal_code, f"{prefix}postal_code", errors)
    return errors


def validate_terms(section: TermsSection) -> ValidationResult:
    if section.agreement.accepted:
        return _result([])
    return _result([FieldError(field="agreement", message="You must accept the terms.")])


def validate_applicant_section(section: ApplicantSection) -> ValidationResult:
    errors = personal_info_errors(section.info, "info.", require_website=True)
    errors.extend(address_errors(section.address))
    return _result(errors)


def validate_representative_section(
    section: RepresentativeSection,
    applicant: ApplicantSection,
) -> ValidationResult:
    """
    Validate the institutional representative.

    The address is only checked when it is not the same as the applicant's.
    The representative must share the applicant's primary affiliation.
    """
    errors = personal_info_errors(section.info, "info.", require_google_email=False)
    if not section.address_same_as_applicant:
        errors.extend(address_errors(section.address))
    if not is_blank(section.info.primary_affiliation) and not same_affiliation(
        section.info.primary_affiliation, applicant.info.primary_affiliation
    ):
        errors.append(
            FieldError(
                field="info.primary_affiliation",
                message="Primary affiliation must be the same as the applicant's.",
            )
        )
    return _result(errors)


def collaborator_matches_applicant(collaborator: Collaborator, applicant: ApplicantSection) -> bool:
    """True if the collaborator shares a google or institution email with the applicant."""
    info = collaborator.info
    applicant_info = applicant.info
    return (
        not is_blank(info.google_email) and info.google_email == applicant_info.google_email
    ) or (
        not is_blank(info.institution_email)
        and info.institution_email == applicant_info.institution_email
    )


def validate_collaborator(
    collaborator: Collaborator,
    applicant: ApplicantSection,
    *,
    check_applicant_conflict: bool = False,
) -> ValidationResult:
    """
    Validate a single collaborator.

    Args:
        collaborator: The collaborator to check
        applicant: The applicant section (affiliation and identity reference)
        check_applicant_conflict: Also flag a collaborator that is the applicant.
            Used when the applicant changes, so the affected collaborator is
            marked incomplete instead of the applicant update being refused.
    """
    errors = personal_info_errors(collaborator.info, "info.")
    if collaborator.type is None:
        errors.append(FieldError(field="type", message=REQUIRED_MESSAGE))
    if not is_blank(collaborator.info.primary_affiliation) and not same_affiliation(
        collaborator.info.primary_affiliation, applicant.info.primary_affiliation
    ):
        errors.append(
            FieldError(
                field="info.primary_affiliation",
                message="Primary affiliation must be the same as the applicant's.",
            )
        )
    if check_applicant_conflict and collaborator_matches_applicant(collaborator, applicant):
        errors.append(
            FieldError(
                field="info.google_email",
                message="The applicant does not need to be added as a collaborator.",
            )
        )
    return _result(errors)


def validate_project_info(section: ProjectInfoSection) -> ValidationResult:
    errors: list[FieldError] = []
    _required(section.title, "title", errors)
    if not is_blank(section.website) and not is_valid_url(section.website):
        errors.append(FieldError(field="website", message=INVALID_URL_MESSAGE))

    for field in ("background", "aims", "summary", "methodology"):
        text = getattr(section, field)
        if not _required(text, field, errors):
            continue
        if count_words(text) > MAX_WORDS_PER_FIELD:
            errors.append(
                FieldError(field=field, message=f"Must not exceed {MAX_WORDS_PER_FIELD} words.")
            )
        elif field == "summary" and count_words(text) < MIN_SUMMARY_WORDS:
            errors.append(
                FieldError(field=field, message=f"Must be at least {MIN_SUMMARY_WORDS} words.")
            )

    seen: set[str] = set()
    valid_unique = 0
    for i, url in enumerate(section.publications_urls):
        field = f"publications_urls.{i}"
        if is_blank(url):
            continue
        normalized = url.strip()
        if normalized in seen:
            errors.append(FieldError(field=field, message="Publication URLs must be unique."))
            continue
        seen.add(normalized)
        if not is_valid_url(normalized):
            errors.append(FieldError(field=field, message=INVALID_URL_MESSAGE))
            continue
        valid_unique += 1

    if valid_unique < MIN_PUBLICATIONS:
        errors.append(
            FieldError(
                field="publications_urls",
                message=f"At least {MIN_PUBLICATIONS} unique publications are required.",
            )
        )
    return _result(errors)


def validate_ethics_letter(section: EthicsLetterSection) -> ValidationResult:
    errors: list[FieldError] = []
    if section.declared_as_required is None:
        errors.append(FieldError(field="declared_as_required", message=REQUIRED_MESSAGE))
    elif section.declared_as_required and not section.approval_letter_docs:
        errors.append(
            FieldError(
                field="approval_letter_docs",
                message="At least one ethics approval letter is required.",
            )
        )
    return _result(errors)


def validate_agreements(section: AgreementsSection) -> ValidationResult:
    errors = [
        FieldError(field=item.name, message="You must accept this agreement.")
        for item in section.agreements
        if not item.accepted
    ]
    return _result(errors)


def transition_section_state(
    was_updated: bool,
    is_valid: bool,
    revisions_requested: bool,
) -> SectionStatus:
    """
    Derive the status of a section that may have an open revision request.

    A requested section that is valid but was not touched since the request
    keeps showing REVISIONS REQUESTED.
    """
    if not was_updated and revisions_requested:
        return SectionStatus.REVISIONS_REQUESTED if is_valid else SectionStatus.INCOMPLETE
    return SectionStatus.COMPLETE if is_valid else SectionStatus.INCOMPLETE
