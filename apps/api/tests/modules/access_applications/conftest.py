"""
Fixtures for access applications tests.
"""

from datetime import UTC, datetime
from unittest.mock import AsyncMock, MagicMock

import pytest

from app.core.auth import SystemPrincipal, UserPrincipal
from app.core.config import AppConfig
from app.modules.access_applications import state
from app.modules.access_applications.constants import APPENDIX_AGREEMENTS, DATA_ACCESS_AGREEMENTS
from app.modules.access_applications.domain import (
    Application,
    ApplicationState,
    CollaboratorType,
    DacoRole,
    DocumentType,
    PauseReason,
)
from app.modules.access_applications.schemas import (
    AddressUpdate,
    AgreementAcceptance,
    AgreementItemUpdate,
    AgreementsUpdate,
    ApplicantUpdate,
    ApplicationUpdate,
    CollaboratorCreate,
    EthicsLetterUpdate,
    PersonalInfoUpdate,
    ProjectInfoUpdate,
    RepresentativeUpdate,
    RevisionRequestItemUpdate,
    RevisionRequestUpdate,
    SectionsUpdate,
    TermsUpdate,
)

NOW = datetime(2026, 3, 10, 15, 0, tzinfo=UTC)
AFFILIATION = "Ontario Institute for Cancer Research"


def words(count: int, stem: str = "word") -> str:
    return " ".join(f"{stem}{i}" for i in range(count))


@pytest.fixture
def config() -> AppConfig:
    return AppConfig()


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def submitter() -> UserPrincipal:
    return UserPrincipal(id="submitter-1", email="submitter@oicr.on.ca", role=DacoRole.SUBMITTER)


@pytest.fixture
def other_submitter() -> UserPrincipal:
    return UserPrincipal(id="submitter-2", email="someone@uhn.ca", role=DacoRole.SUBMITTER)


@pytest.fixture
def admin() -> UserPrincipal:
    return UserPrincipal(id="admin-1", email="reviewer@oicr.on.ca", role=DacoRole.ADMIN)


@pytest.fixture
def system() -> SystemPrincipal:
    return SystemPrincipal()


@pytest.fixture
def mock_db():
    """Create a mock database session."""
    db = AsyncMock()
    db.commit = AsyncMock()
    db.rollback = AsyncMock()
    db.execute = AsyncMock()
    db.flush = AsyncMock()
    db.add = MagicMock()
    return db


@pytest.fixture
def mock_storage():
    """Create a mock object storage."""
    storage = AsyncMock()
    storage.upload = AsyncMock(return_value="new-object")
    storage.delete = AsyncMock()
    storage.download_as_stream = AsyncMock()
    return storage


@pytest.fixture
def applicant_update() -> ApplicantUpdate:
    return ApplicantUpdate(
        info=PersonalInfoUpdate(
            title="Dr",
            first_name="Ada",
            last_name="Lovelace",
            primary_affiliation=AFFILIATION,
            institution_email="ada.lovelace@oicr.on.ca",
            google_email="ada.lovelace@gmail.com",
            website="https://oicr.on.ca",
            position_title="Principal Investigator",
        ),
        address=AddressUpdate(
            building="MaRS Centre",
            street_address="661 University Avenue",
            city_and_province="Toronto, Ontario",
            country="Canada",
            postal_code="M5G 0A3",
        ),
    )


@pytest.fixture
def complete_sections_update(applicant_update) -> SectionsUpdate:
    """Edits that complete every required section."""
    return SectionsUpdate(
        terms=TermsUpdate(agreement=AgreementAcceptance(accepted=True)),
        applicant=applicant_update,
        representative=RepresentativeUpdate(
            info=PersonalInfoUpdate(
                first_name="Grace",
                last_name="Hopper",
                primary_affiliation=AFFILIATION,
                institution_email="grace.hopper@oicr.on.ca",
                position_title="Director of Research",
            ),
            address_same_as_applicant=True,
        ),
        project_info=ProjectInfoUpdate(
            title="Germline variants in pancreatic cancer",
            website="https://example.org/project",
            background=words(50, "background"),
            aims=words(40, "aim"),
            summary=words(120, "summary"),
            methodology=words(60, "method"),
            publications_urls=[
                "https://doi.org/10.1000/1",
                "https://doi.org/10.1000/2",
                "https://doi.org/10.1000/3",
            ],
        ),
        ethics_letter=EthicsLetterUpdate(declared_as_required=False),
        data_access_agreement=AgreementsUpdate(
            agreements=[AgreementItemUpdate(name=name, accepted=True) for name in DATA_ACCESS_AGREEMENTS]
        ),
        appendices=AgreementsUpdate(
            agreements=[AgreementItemUpdate(name=name, accepted=True) for name in APPENDIX_AGREEMENTS]
        ),
    )


@pytest.fixture
def collaborator_create() -> CollaboratorCreate:
    return CollaboratorCreate(
        info=PersonalInfoUpdate(
            first_name="Alan",
            last_name="Turing",
            primary_affiliation=AFFILIATION,
            institution_email="alan.turing@oicr.on.ca",
            google_email="alan.turing@gmail.com",
            position_title="Research Associate",
        ),
        type=CollaboratorType.PERSONNEL,
    )


@pytest.fixture
def draft_app(submitter, config, now) -> Application:
    """A stored DRAFT application (DACO-1, version 1)."""
    draft = state.new_application(submitter.author(), submitter.email, config, now)
    return state.assign_identity(draft, 1, config).model_copy(update={"version": 1})


@pytest.fixture
def make_app(draft_app, complete_sections_update, submitter, admin, config, now):
    """
    Factory building an application in the requested state through the
    state manager, optionally overriding fields on the result.
    """

    def _apply(app: Application, update: ApplicationUpdate, principal) -> Application:
        transition = state.update_app(
            app, update, principal.is_reviewer, principal.author(), config, now
        )
        return transition.application

    def _make(target: ApplicationState, **changes) -> Application:
        if target == ApplicationState.DRAFT:
            return draft_app.model_copy(update=changes)

        app = _apply(draft_app, ApplicationUpdate(sections=complete_sections_update), submitter)
        if target == ApplicationState.SIGN_AND_SUBMIT:
            return app.model_copy(update=changes)

        app = state.add_document(
            app,
            "signed-1",
            "signed.pdf",
            DocumentType.SIGNED_APP,
            False,
            submitter.author(),
            config,
            now,
        ).application
        app = _apply(app, ApplicationUpdate(state=ApplicationState.REVIEW), submitter)
        if target == ApplicationState.REVIEW:
            return app.model_copy(update=changes)

        if target == ApplicationState.REVISIONS_REQUESTED:
            app = _apply(
                app,
                ApplicationUpdate(
                    state=ApplicationState.REVISIONS_REQUESTED,
                    revision_request=RevisionRequestUpdate(
                        applicant=RevisionRequestItemUpdate(
                            requested=True, details="Please use your institutional address."
                        )
                    ),
                ),
                admin,
            )
            return app.model_copy(update=changes)

        if target == ApplicationState.REJECTED:
            app = _apply(
                app,
                ApplicationUpdate(
                    state=ApplicationState.REJECTED, denial_reason="Out of scope"
                ),
                admin,
            )
            return app.model_copy(update=changes)

        app = _apply(app, ApplicationUpdate(state=ApplicationState.APPROVED), admin)
        if target == ApplicationState.APPROVED:
            return app.model_copy(update=changes)
        if target == ApplicationState.PAUSED:
            app = app.model_copy(
                update={"state": ApplicationState.PAUSED, "pause_reason": PauseReason.ADMIN_PAUSE}
            )
            return app.model_copy(update=changes)
        if target == ApplicationState.EXPIRED:
            return app.model_copy(update={"state": ApplicationState.EXPIRED, **changes})
        if target == ApplicationState.CLOSED:
            app = _apply(app, ApplicationUpdate(state=ApplicationState.CLOSED), admin)
            return app.model_copy(update=changes)
        raise ValueError(f"Unsupported state: {target}")

    return _make
