"""
Unit tests for the access application section validators.

These tests cover:
- Personal info and address field errors (and their order)
- Representative and collaborator affiliation rules
- Project info word limits and publication URLs
- Ethics letter and agreement checklists
- Status derivation for sections with revision requests
"""

from app.modules.access_applications.domain import (
    Address,
    AgreementItem,
    AgreementsSection,
    ApplicantSection,
    Collaborator,
    CollaboratorType,
    EthicsLetterDocument,
    EthicsLetterSection,
    PersonalInfo,
    ProjectInfoSection,
    RepresentativeSection,
    SectionStatus,
    TermsSection,
)
from app.modules.access_applications.validations import (
    INVALID_EMAIL_MESSAGE,
    REQUIRED_MESSAGE,
    address_errors,
    count_words,
    is_valid_url,
    personal_info_errors,
    transition_section_state,
    validate_agreements,
    validate_applicant_section,
    validate_collaborator,
    validate_ethics_letter,
    validate_project_info,
    validate_representative_section,
    validate_terms,
)

from .conftest import AFFILIATION, words


def _info(**changes) -> PersonalInfo:
    base = PersonalInfo(
        first_name="Ada",
        last_name="Lovelace",
        primary_affiliation=AFFILIATION,
        institution_email="ada.lovelace@oicr.on.ca",
        google_email="ada.lovelace@gmail.com",
        website="https://oicr.on.ca",
        position_title="Principal Investigator",
    )
    return base.model_copy(update=changes)


def _address(**changes) -> Address:
    base = Address(
        street_address="661 University Avenue",
        city_and_province="Toronto, Ontario",
        country="Canada",
        postal_code="M5G 0A3",
    )
    return base.model_copy(update=changes)


def _project(**changes) -> ProjectInfoSection:
    base = ProjectInfoSection(
        title="Germline variants",
        background=words(20),
        aims=words(20),
        summary=words(100),
        methodology=words(20),
        publications_urls=(
            "https://doi.org/10.1000/1",
            "https://doi.org/10.1000/2",
            "https://doi.org/10.1000/3",
        ),
    )
    return base.model_copy(update=changes)


class TestPersonalInfo:
    """Tests for personal info field checks."""

    def test_complete_info_has_no_errors(self):
        assert personal_info_errors(_info(), "info.") == []

    def test_errors_follow_form_order(self):
        errors = personal_info_errors(PersonalInfo(), "info.", require_website=True)
        assert [e.field for e in errors] == [
            "info.first_name",
            "info.last_name",
            "info.primary_affiliation",
            "info.institution_email",
            "info.google_email",
            "info.website",
            "info.position_title",
        ]
        assert all(e.message == REQUIRED_MESSAGE for e in errors)

    def test_invalid_email_reported(self):
        errors = personal_info_errors(_info(institution_email="not-an-email"), "info.")
        assert [(e.field, e.message) for e in errors] == [
            ("info.institution_email", INVALID_EMAIL_MESSAGE)
        ]

    def test_google_email_optional_for_representative(self):
        errors = personal_info_errors(_info(google_email=""), require_google_email=False)
        assert errors == []

    def test_website_optional_unless_required(self):
        assert personal_info_errors(_info(website="")) == []
        errors = personal_info_errors(_info(website=""), require_website=True)
        assert [e.field for e in errors] == ["website"]

    def test_invalid_website_reported(self):
        errors = personal_info_errors(_info(website="not a url"))
        assert [e.field for e in errors] == ["website"]


class TestAddress:
    """Tests for address field checks."""

    def test_country_must_be_in_list(self):
        errors = address_errors(_address(country="Atlantis"))
        assert [e.field for e in errors] == ["address.country"]

    def test_building_is_optional(self):
        assert address_errors(_address(building="")) == []

    def test_missing_fields(self):
        errors = address_errors(Address())
        assert [e.field for e in errors] == [
            "address.street_address",
            "address.city_and_province",
            "address.country",
            "address.postal_code",
        ]


class TestSectionValidators:
    """Tests for the per-section validators."""

    def test_terms_must_be_accepted(self):
        assert validate_terms(TermsSection()).status == SectionStatus.INCOMPLETE
        accepted = TermsSection(agreement=AgreementItem(name="terms", accepted=True))
        assert validate_terms(accepted).is_valid

    def test_applicant_requires_website(self):
        section = ApplicantSection(info=_info(website=""), address=_address())
        result = validate_applicant_section(section)
        assert result.status == SectionStatus.INCOMPLETE
        assert [e.field for e in result.errors] == ["info.website"]

    def test_applicant_complete(self):
        result = validate_applicant_section(ApplicantSection(info=_info(), address=_address()))
        assert result.is_valid
        assert result.errors == ()

    def test_representative_address_skipped_when_same_as_applicant(self):
        applicant = ApplicantSection(info=_info(), address=_address())
        representative = RepresentativeSection(
            info=_info(google_email="", institution_email="grace@oicr.on.ca"),
            address_same_as_applicant=True,
        )
        assert validate_representative_section(representative, applicant).is_valid

    def test_representative_affiliation_must_match_applicant(self):
        applicant = ApplicantSection(info=_info(), address=_address())
        representative = RepresentativeSection(
            info=_info(primary_affiliation="University Health Network"),
            address=_address(),
        )
        result = validate_representative_section(representative, applicant)
        assert [e.field for e in result.errors] == ["info.primary_affiliation"]

    def test_representative_affiliation_match_ignores_case(self):
        applicant = ApplicantSection(info=_info(), address=_address())
        representative = RepresentativeSection(
            info=_info(primary_affiliation=AFFILIATION.upper()),
            address=_address(),
        )
        assert validate_representative_section(representative, applicant).is_valid

    def test_collaborator_requires_type(self):
        applicant = ApplicantSection(info=_info(), address=_address())
        collaborator = Collaborator(
            info=_info(google_email="alan@gmail.com", institution_email="alan@oicr.on.ca")
        )
        result = validate_collaborator(collaborator, applicant)
        assert [e.field for e in result.errors] == ["type"]

    def test_collaborator_same_as_applicant_flagged_on_request(self):
        applicant = ApplicantSection(info=_info(), address=_address())
        collaborator = Collaborator(info=_info(), type=CollaboratorType.STUDENT)
        assert validate_collaborator(collaborator, applicant).is_valid
        result = validate_collaborator(collaborator, applicant, check_applicant_conflict=True)
        assert [e.field for e in result.errors] == ["info.google_email"]


class TestProjectInfo:
    """Tests for project info validation."""

    def test_complete_project(self):
        assert validate_project_info(_project()).is_valid

    def test_word_limit(self):
        result = validate_project_info(_project(aims=words(201)))
        assert [e.field for e in result.errors] == ["aims"]

    def test_summary_minimum(self):
        result = validate_project_info(_project(summary=words(99)))
        assert [e.field for e in result.errors] == ["summary"]

    def test_publications_must_be_unique(self):
        urls = ("https://doi.org/10.1000/1", "https://doi.org/10.1000/1", "https://doi.org/10.1000/2")
        result = validate_project_info(_project(publications_urls=urls))
        assert [e.field for e in result.errors] == ["publications_urls.1", "publications_urls"]

    def test_blank_publications_ignored(self):
        urls = (
            "https://doi.org/10.1000/1",
            "",
            "https://doi.org/10.1000/2",
            "https://doi.org/10.1000/3",
        )
        assert validate_project_info(_project(publications_urls=urls)).is_valid

    def test_invalid_publication_url(self):
        urls = ("https://doi.org/10.1000/1", "nonsense", "https://doi.org/10.1000/2")
        result = validate_project_info(_project(publications_urls=urls))
        assert [e.field for e in result.errors] == ["publications_urls.1", "publications_urls"]


class TestEthicsAndAgreements:
    """Tests for the ethics letter and agreement checklists."""

    def test_ethics_declaration_required(self):
        result = validate_ethics_letter(EthicsLetterSection())
        assert [e.field for e in result.errors] == ["declared_as_required"]

    def test_ethics_not_required_is_complete(self):
        assert validate_ethics_letter(EthicsLetterSection(declared_as_required=False)).is_valid

    def test_required_ethics_needs_a_letter(self):
        section = EthicsLetterSection(declared_as_required=True)
        assert [e.field for e in validate_ethics_letter(section).errors] == ["approval_letter_docs"]
        with_letter = section.model_copy(
            update={"approval_letter_docs": (EthicsLetterDocument(object_id="doc-1"),)}
        )
        assert validate_ethics_letter(with_letter).is_valid

    def test_agreements_list_unaccepted_items(self):
        section = AgreementsSection(
            agreements=(AgreementItem(name="a", accepted=True), AgreementItem(name="b"))
        )
        assert [e.field for e in validate_agreements(section).errors] == ["b"]


class TestTransitionSectionState:
    """Tests for status derivation under revision requests."""

    def test_untouched_requested_section_keeps_requested_status(self):
        assert (
            transition_section_state(False, True, True) == SectionStatus.REVISIONS_REQUESTED
        )

    def test_untouched_invalid_requested_section_is_incomplete(self):
        assert transition_section_state(False, False, True) == SectionStatus.INCOMPLETE

    def test_updated_section_uses_validity(self):
        assert transition_section_state(True, True, True) == SectionStatus.COMPLETE
        assert transition_section_state(True, False, False) == SectionStatus.INCOMPLETE


class TestHelpers:
    def test_count_words(self):
        assert count_words("  one two\nthree  ") == 3

    def test_is_valid_url(self):
        assert is_valid_url("https://oicr.on.ca/research")
        assert not is_valid_url("oicr")
