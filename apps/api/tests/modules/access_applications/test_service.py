"""
Unit tests for access applications service layer.

These tests cover:
- Creating, reading and searching applications
- Updates (state changes, no-ops, renewals, attestations, renewal withdrawal)
- Orphaned document cleanup
- Collaborator operations and their notifications
- Document upload, removal and download
- History export
"""

from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, patch

import pytest

from app.core.config import settings
from app.core.storage import StorageError
from app.modules.access_applications import state
from app.modules.access_applications.domain import (
    ApplicationState,
    DocumentType,
    PauseReason,
)
from app.modules.access_applications.errors import (
    ApplicationNotFoundError,
    ApplicationValidationError,
    DocumentNotFoundError,
    ForbiddenActionError,
    InvalidApplicationStateError,
    VersionConflictError,
)
from app.modules.access_applications.notifications import NotificationKind
from app.modules.access_applications.repository import SORTABLE_COLUMNS
from app.modules.access_applications.schemas import (
    ApplicationUpdate,
    ProjectInfoUpdate,
    SectionsUpdate,
)
from app.modules.access_applications.service import (
    HISTORY_COLUMNS,
    create_application,
    create_collaborator,
    delete_collaborator,
    delete_document,
    export_application_history,
    get_application,
    get_document_stream,
    search_applications,
    update_application,
    upload_document,
)

from .conftest import NOW

PDF = b"%PDF-1.7 test document"


async def _run_work(db, work):
    return await work(db)


def _bump_version(session, application, expected_version):
    return application.model_copy(update={"version": expected_version + 1})


def _signed(app, submitter, config, object_id="signed-1"):
    return state.add_document(
        app, object_id, "signed.pdf", DocumentType.SIGNED_APP, False,
        submitter.author(), config, NOW,
    ).application


@pytest.fixture(autouse=True)
def fixed_clock():
    with patch("app.modules.access_applications.service._utcnow", return_value=NOW) as clock:
        yield clock


@pytest.fixture
def mock_repo():
    with patch("app.modules.access_applications.service.repository") as repo:
        repo.SORTABLE_COLUMNS = SORTABLE_COLUMNS
        repo.with_transaction = AsyncMock(side_effect=_run_work)
        repo.upsert = AsyncMock(side_effect=_bump_version)
        repo.find_referenced_document_ids = AsyncMock(return_value=set())
        yield repo


@pytest.fixture
def mock_notify():
    with (
        patch(
            "app.modules.access_applications.service.on_state_change", new_callable=AsyncMock
        ) as on_change,
        patch(
            "app.modules.access_applications.service.send_notifications", new_callable=AsyncMock
        ) as send_many,
    ):
        yield on_change, send_many


class TestCreateAndGet:
    """Tests for creating and reading applications."""

    @pytest.mark.asyncio
    async def test_create_application(self, mock_db, mock_repo, submitter, config):
        """A submitter creates a DRAFT application with a generated id."""

        async def _create(session, application, config):
            return state.assign_identity(application, 7, config).model_copy(update={"version": 1})

        mock_repo.create = AsyncMock(side_effect=_create)

        view = await create_application(mock_db, submitter, config)

        assert view.app_id == "DACO-7"
        assert view.state == ApplicationState.DRAFT
        assert view.submitter_id == "submitter-1"
        assert view.updates == ()
        mock_repo.with_transaction.assert_called_once()

    @pytest.mark.asyncio
    async def test_only_submitters_create(self, mock_db, mock_repo, admin, config):
        with pytest.raises(ForbiddenActionError):
            await create_application(mock_db, admin, config)
        mock_repo.create.assert_not_called()

    @pytest.mark.asyncio
    async def test_get_own_application(self, mock_db, mock_repo, make_app, submitter, config):
        mock_repo.get_by_app_id = AsyncMock(return_value=make_app(ApplicationState.REVIEW))

        view = await get_application(mock_db, "DACO-1", submitter, config)

        assert view.app_id == "DACO-1"
        assert view.updates == ()

    @pytest.mark.asyncio
    async def test_reviewer_sees_audit_log(self, mock_db, mock_repo, make_app, admin, config):
        app = make_app(ApplicationState.REVIEW)
        mock_repo.get_by_app_id = AsyncMock(return_value=app)

        view = await get_application(mock_db, "DACO-1", admin, config)

        assert len(view.updates) == len(app.updates)

    @pytest.mark.asyncio
    async def test_other_submitter_gets_not_found(
        self, mock_db, mock_repo, make_app, other_submitter, config
    ):
        """Another submitter's application is reported as missing."""
        mock_repo.get_by_app_id = AsyncMock(return_value=make_app(ApplicationState.REVIEW))

        with pytest.raises(ApplicationNotFoundError):
            await get_application(mock_db, "DACO-1", other_submitter, config)

    @pytest.mark.asyncio
    async def test_missing_application(self, mock_db, mock_repo, admin, config):
        mock_repo.get_by_app_id = AsyncMock(return_value=None)

        with pytest.raises(ApplicationNotFoundError) as exc_info:
            await get_application(mock_db, "DACO-404", admin, config)
        assert exc_info.value.status_code == 404


class TestSearchApplications:
    """Tests for searching applications."""

    @pytest.mark.asyncio
    async def test_submitter_search_is_scoped(self, mock_db, mock_repo, make_app, submitter, config):
        """Submitters only search their own applications."""
        mock_repo.count = AsyncMock(return_value=3)
        mock_repo.find_many = AsyncMock(
            return_value=[make_app(ApplicationState.APPROVED), make_app(ApplicationState.DRAFT)]
        )

        result = await search_applications(
            mock_db, submitter, "  lovelace ", [], [], 0, 2, config
        )

        criteria = mock_repo.count.call_args.args[1]
        assert criteria.submitter_id == "submitter-1"
        assert criteria.search == "lovelace"
        kwargs = mock_repo.find_many.call_args.kwargs
        assert kwargs["sort"] == (("last_updated_at_utc", "desc"),)
        assert kwargs["skip"] == 0
        assert kwargs["limit"] == 2

        assert result.paging_info.total_count == 3
        assert result.paging_info.pages_count == 2
        assert [item.state for item in result.items] == [
            ApplicationState.APPROVED,
            ApplicationState.DRAFT,
        ]
        assert result.items[0].applicant.info.display_name == "Ada Lovelace"
        assert result.items[0].ethics_required is False

    @pytest.mark.asyncio
    async def test_reviewer_search(self, mock_db, mock_repo, admin, config):
        mock_repo.count = AsyncMock(return_value=0)
        mock_repo.find_many = AsyncMock(return_value=[])

        result = await search_applications(
            mock_db,
            admin,
            None,
            [ApplicationState.REVIEW],
            [("submitted_at_utc", "asc")],
            1,
            25,
            config,
        )

        criteria = mock_repo.count.call_args.args[1]
        assert criteria.submitter_id is None
        assert criteria.states == (ApplicationState.REVIEW,)
        assert mock_repo.find_many.call_args.kwargs["skip"] == 25
        assert result.paging_info.pages_count == 0
        assert result.items == []

    @pytest.mark.asyncio
    async def test_invalid_parameters(self, mock_db, mock_repo, admin, config):
        """Unknown sort fields and negative pages are rejected together."""
        with pytest.raises(ApplicationValidationError) as exc_info:
            await search_applications(
                mock_db, admin, None, [], [("password", "asc")], -1, 25, config
            )

        assert [e.field for e in exc_info.value.errors] == ["sort", "page"]
        mock_repo.count.assert_not_called()


class TestUpdateApplication:
    """Tests for update_application."""

    @pytest.mark.asyncio
    async def test_submit(
        self, mock_db, mock_repo, mock_notify, mock_storage, make_app, submitter, config
    ):
        """Submitting stores the new snapshot and notifies on the state change."""
        on_change, _ = mock_notify
        current = _signed(make_app(ApplicationState.SIGN_AND_SUBMIT), submitter, config)
        mock_repo.get_by_app_id = AsyncMock(return_value=current)

        view = await update_application(
            mock_db,
            "DACO-1",
            ApplicationUpdate(state=ApplicationState.REVIEW),
            submitter,
            config,
            mock_storage,
        )

        assert view.state == ApplicationState.REVIEW
        assert view.version == 2
        stored_app, expected_version = mock_repo.upsert.call_args.args[1:]
        assert stored_app.state == ApplicationState.REVIEW
        assert expected_version == 1
        old, new, _ = on_change.call_args.args
        assert old is current
        assert new.state == ApplicationState.REVIEW
        mock_storage.delete.assert_not_called()

    @pytest.mark.asyncio
    async def test_no_op_is_not_written(
        self, mock_db, mock_repo, mock_notify, mock_storage, draft_app, submitter, config
    ):
        on_change, _ = mock_notify
        mock_repo.get_by_app_id = AsyncMock(return_value=draft_app)

        view = await update_application(
            mock_db, "DACO-1", ApplicationUpdate(), submitter, config, mock_storage
        )

        assert view.app_id == "DACO-1"
        mock_repo.upsert.assert_not_called()
        on_change.assert_not_called()

    @pytest.mark.asyncio
    async def test_orphaned_signed_document_deleted(
        self, mock_db, mock_repo, mock_notify, mock_storage, make_app, submitter, config
    ):
        """Editing after signing deletes the discarded signed document."""
        current = _signed(make_app(ApplicationState.SIGN_AND_SUBMIT), submitter, config)
        mock_repo.get_by_app_id = AsyncMock(return_value=current)
        update = ApplicationUpdate(
            sections=SectionsUpdate(project_info=ProjectInfoUpdate(title="A new title"))
        )

        await update_application(mock_db, "DACO-1", update, submitter, config, mock_storage)

        mock_repo.find_referenced_document_ids.assert_called_once_with(
            mock_db, ("signed-1",), "DACO-1"
        )
        mock_storage.delete.assert_called_once_with("signed-1")

    @pytest.mark.asyncio
    async def test_shared_documents_are_kept(
        self, mock_db, mock_repo, mock_notify, mock_storage, make_app, submitter, config
    ):
        """Documents still referenced by another application are not deleted."""
        current = _signed(make_app(ApplicationState.SIGN_AND_SUBMIT), submitter, config)
        mock_repo.get_by_app_id = AsyncMock(return_value=current)
        mock_repo.find_referenced_document_ids = AsyncMock(return_value={"signed-1"})
        update = ApplicationUpdate(
            sections=SectionsUpdate(project_info=ProjectInfoUpdate(title="A new title"))
        )

        await update_application(mock_db, "DACO-1", update, submitter, config, mock_storage)

        mock_storage.delete.assert_not_called()

    @pytest.mark.asyncio
    async def test_renewal_request(
        self, mock_db, mock_repo, mock_notify, mock_storage, make_app, submitter, config
    ):
        """``is_renewal`` creates and returns the renewal application."""
        source = make_app(ApplicationState.APPROVED)
        renewal_app = source.model_copy(
            update={"app_id": "DACO-2", "state": ApplicationState.DRAFT, "is_renewal": True}
        )
        mock_repo.get_by_app_id = AsyncMock(return_value=source)

        with patch("app.modules.access_applications.service.renewal") as mock_renewal:
            mock_renewal.renew = AsyncMock(return_value=renewal_app)
            view = await update_application(
                mock_db, "DACO-1", ApplicationUpdate(is_renewal=True), submitter, config, mock_storage
            )

        assert view.app_id == "DACO-2"
        assert view.is_renewal
        mock_renewal.renew.assert_called_once_with(mock_db, "DACO-1", submitter, config, NOW)
        mock_repo.upsert.assert_not_called()

    @pytest.mark.asyncio
    async def test_attestation_sends_receipt(
        self, mock_db, mock_repo, mock_notify, mock_storage, make_app, submitter, config, fixed_clock
    ):
        """Attesting lifts the attestation pause and confirms receipt."""
        attestation_day = datetime(2027, 3, 15, 12, 0, tzinfo=UTC)
        fixed_clock.return_value = attestation_day
        _, send_many = mock_notify
        current = make_app(ApplicationState.PAUSED, pause_reason=PauseReason.PENDING_ATTESTATION)
        mock_repo.get_by_app_id = AsyncMock(return_value=current)

        view = await update_application(
            mock_db, "DACO-1", ApplicationUpdate(is_attesting=True), submitter, config, mock_storage
        )

        assert view.state == ApplicationState.APPROVED
        assert view.attested_at_utc == attestation_day
        assert send_many.call_args.args[0] == [NotificationKind.ATTESTATION_RECEIVED]

    @pytest.mark.asyncio
    async def test_withdrawn_renewal_unlinks_source(
        self, mock_db, mock_repo, mock_notify, mock_storage, make_app, submitter, config
    ):
        """Closing a renewal early frees its source for another renewal."""
        renewal_app = make_app(
            ApplicationState.DRAFT,
            is_renewal=True,
            source_app_id="DACO-0",
            renewal_period_end_date_utc=NOW + timedelta(days=60),
        )
        source = make_app(
            ApplicationState.APPROVED, app_id="DACO-0", renewal_app_id="DACO-1", version=4
        )
        apps = {"DACO-1": renewal_app, "DACO-0": source}
        mock_repo.get_by_app_id = AsyncMock(side_effect=lambda db, app_id: apps.get(app_id))

        view = await update_application(
            mock_db,
            "DACO-1",
            ApplicationUpdate(state=ApplicationState.CLOSED),
            submitter,
            config,
            mock_storage,
        )

        assert view.state == ApplicationState.CLOSED
        assert view.source_app_id is None
        mock_repo.with_transaction.assert_called_once()
        assert mock_repo.upsert.call_count == 2
        unlinked, expected_version = mock_repo.upsert.call_args_list[1].args[1:]
        assert unlinked.app_id == "DACO-0"
        assert unlinked.renewal_app_id is None
        assert expected_version == 4

    @pytest.mark.asyncio
    async def test_version_conflict(
        self, mock_db, mock_repo, mock_notify, mock_storage, make_app, admin, config
    ):
        """A concurrent write surfaces as a conflict and sends nothing."""
        on_change, _ = mock_notify
        mock_repo.get_by_app_id = AsyncMock(return_value=make_app(ApplicationState.REVIEW))
        mock_repo.upsert = AsyncMock(side_effect=VersionConflictError("DACO-1", 3))

        with pytest.raises(VersionConflictError):
            await update_application(
                mock_db,
                "DACO-1",
                ApplicationUpdate(state=ApplicationState.APPROVED),
                admin,
                config,
                mock_storage,
            )
        on_change.assert_not_called()


class TestCollaborators:
    """Tests for the collaborator operations."""

    @pytest.mark.asyncio
    async def test_create_collaborator(
        self, mock_db, mock_repo, mock_notify, make_app, collaborator_create, submitter, config
    ):
        _, send_many = mock_notify
        mock_repo.get_by_app_id = AsyncMock(return_value=make_app(ApplicationState.SIGN_AND_SUBMIT))

        added = await create_collaborator(mock_db, "DACO-1", collaborator_create, submitter, config)

        assert added.id
        assert added.info.display_name == "Alan Turing"
        mock_repo.upsert.assert_called_once()
        send_many.assert_not_called()

    @pytest.mark.asyncio
    async def test_collaborator_added_to_approved_application(
        self, mock_db, mock_repo, mock_notify, make_app, collaborator_create, admin, config
    ):
        """Reviewers are told about collaborators added after approval."""
        _, send_many = mock_notify
        mock_repo.get_by_app_id = AsyncMock(return_value=make_app(ApplicationState.APPROVED))

        added = await create_collaborator(mock_db, "DACO-1", collaborator_create, admin, config)

        kinds, _app, _config, collaborator = send_many.call_args.args
        assert kinds == [NotificationKind.COLLABORATOR_ADDED]
        assert collaborator == added

    @pytest.mark.asyncio
    async def test_removed_collaborator_is_notified(
        self, mock_db, mock_repo, mock_notify, make_app, collaborator_create, admin, config
    ):
        _, send_many = mock_notify
        app = state.add_collaborator(
            make_app(ApplicationState.APPROVED), collaborator_create, True, admin.author(), config, NOW
        ).application
        removed = app.sections.collaborators.items[0]
        mock_repo.get_by_app_id = AsyncMock(return_value=app)

        await delete_collaborator(mock_db, "DACO-1", removed.id, admin, config)

        kinds, stored, _config, collaborator = send_many.call_args.args
        assert kinds == [NotificationKind.COLLABORATOR_REMOVED]
        assert collaborator == removed
        assert stored.sections.collaborators.items == ()


class TestUploadDocument:
    """Tests for document uploads."""

    @pytest.mark.asyncio
    async def test_rejects_non_pdf(self, mock_db, mock_repo, mock_storage, submitter, config):
        """Only PDF files are accepted; nothing is loaded or stored otherwise."""
        with pytest.raises(ApplicationValidationError) as exc_info:
            await upload_document(
                mock_db, "DACO-1", DocumentType.ETHICS, "letter.docx",
                "application/msword", PDF, submitter, config, mock_storage,
            )
        assert exc_info.value.errors[0].field == "file"
        mock_repo.get_by_app_id.assert_not_called()
        mock_storage.upload.assert_not_called()

    @pytest.mark.asyncio
    async def test_rejects_empty_and_oversized(self, mock_db, mock_repo, mock_storage, submitter, config):
        for data in (b"", b"0" * (settings.file_upload_limit_bytes + 1)):
            with pytest.raises(ApplicationValidationError):
                await upload_document(
                    mock_db, "DACO-1", DocumentType.ETHICS, "letter.pdf",
                    "application/pdf", data, submitter, config, mock_storage,
                )
        mock_storage.upload.assert_not_called()

    @pytest.mark.asyncio
    async def test_signed_application_reuses_object(
        self, mock_db, mock_repo, mock_notify, mock_storage, make_app, submitter, config
    ):
        """A re-uploaded signed application overwrites the existing object."""
        current = _signed(make_app(ApplicationState.SIGN_AND_SUBMIT), submitter, config)
        mock_repo.get_by_app_id = AsyncMock(return_value=current)
        mock_storage.upload = AsyncMock(return_value="signed-1")

        response = await upload_document(
            mock_db, "DACO-1", DocumentType.SIGNED_APP, "signed-v2.pdf",
            "application/pdf", PDF, submitter, config, mock_storage,
        )

        mock_storage.upload.assert_called_once_with(PDF, "application/pdf", "signed-1")
        assert response.object_id == "signed-1"
        assert response.application.sections.signature.signed_doc_name == "signed-v2.pdf"
        mock_storage.delete.assert_not_called()

    @pytest.mark.asyncio
    async def test_new_object_removed_when_attach_fails(
        self, mock_db, mock_repo, mock_notify, mock_storage, make_app, submitter, config
    ):
        """An object stored for an attachment that fails to save is deleted again."""
        mock_repo.get_by_app_id = AsyncMock(return_value=make_app(ApplicationState.SIGN_AND_SUBMIT))
        mock_repo.upsert = AsyncMock(side_effect=VersionConflictError("DACO-1", 1))

        with pytest.raises(VersionConflictError):
            await upload_document(
                mock_db, "DACO-1", DocumentType.SIGNED_APP, "signed.pdf",
                "application/pdf", PDF, submitter, config, mock_storage,
            )

        mock_storage.upload.assert_called_once_with(PDF, "application/pdf", None)
        mock_storage.delete.assert_called_once_with("new-object")

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "app_state",
        [ApplicationState.DRAFT, ApplicationState.REVIEW, ApplicationState.APPROVED],
    )
    async def test_signed_application_refused_before_storage(
        self, mock_db, mock_repo, mock_notify, mock_storage, make_app, submitter, config, app_state
    ):
        """Outside SIGN AND SUBMIT the stored signed application is left untouched."""
        mock_repo.get_by_app_id = AsyncMock(return_value=make_app(app_state))

        with pytest.raises(InvalidApplicationStateError):
            await upload_document(
                mock_db, "DACO-1", DocumentType.SIGNED_APP, "replacement.pdf",
                "application/pdf", PDF, submitter, config, mock_storage,
            )

        mock_storage.upload.assert_not_called()
        mock_storage.delete.assert_not_called()
        mock_repo.upsert.assert_not_called()

    @pytest.mark.asyncio
    async def test_reviewer_cannot_upload_signed_application(
        self, mock_db, mock_repo, mock_notify, mock_storage, make_app, admin, config
    ):
        mock_repo.get_by_app_id = AsyncMock(return_value=make_app(ApplicationState.APPROVED))

        with pytest.raises(ForbiddenActionError):
            await upload_document(
                mock_db, "DACO-1", DocumentType.SIGNED_APP, "replacement.pdf",
                "application/pdf", PDF, admin, config, mock_storage,
            )

        mock_storage.upload.assert_not_called()

    @pytest.mark.asyncio
    async def test_ethics_letter_on_approved_application(
        self, mock_db, mock_repo, mock_notify, mock_storage, make_app, submitter, config
    ):
        """A new ethics letter on an approved application notifies reviewers."""
        _, send_many = mock_notify
        app = make_app(ApplicationState.APPROVED)
        ethics_letter = app.sections.ethics_letter.model_copy(update={"declared_as_required": True})
        app = app.model_copy(
            update={"sections": app.sections.model_copy(update={"ethics_letter": ethics_letter})}
        )
        mock_repo.get_by_app_id = AsyncMock(return_value=app)

        response = await upload_document(
            mock_db, "DACO-1", DocumentType.ETHICS, "ethics.pdf",
            None, PDF, submitter, config, mock_storage,
        )

        assert response.object_id == "new-object"
        mock_storage.upload.assert_called_once_with(PDF, "application/pdf", None)
        assert send_many.call_args.args[0] == [NotificationKind.ETHICS_LETTER_SUBMITTED]


class TestDocuments:
    """Tests for document removal and download."""

    @pytest.mark.asyncio
    async def test_delete_signed_document(
        self, mock_db, mock_repo, mock_storage, make_app, submitter, config
    ):
        current = _signed(make_app(ApplicationState.SIGN_AND_SUBMIT), submitter, config)
        mock_repo.get_by_app_id = AsyncMock(return_value=current)

        view = await delete_document(
            mock_db, "DACO-1", DocumentType.SIGNED_APP, "signed-1", submitter, config, mock_storage
        )

        assert view.sections.signature.signed_app_doc_obj_id == ""
        mock_storage.delete.assert_called_once_with("signed-1")

    @pytest.mark.asyncio
    async def test_download(self, mock_db, mock_repo, mock_storage, make_app, submitter):
        stream = object()
        mock_storage.download_as_stream = AsyncMock(return_value=stream)
        mock_repo.get_by_app_id = AsyncMock(return_value=make_app(ApplicationState.REVIEW))

        name, result = await get_document_stream(
            mock_db, "DACO-1", DocumentType.SIGNED_APP, "signed-1", submitter, mock_storage
        )

        assert name == "signed.pdf"
        assert result is stream
        mock_storage.download_as_stream.assert_called_once_with("signed-1")

    @pytest.mark.asyncio
    async def test_download_checks_document_type(
        self, mock_db, mock_repo, mock_storage, make_app, submitter
    ):
        """A document is only served under the type it is referenced as."""
        mock_repo.get_by_app_id = AsyncMock(return_value=make_app(ApplicationState.REVIEW))

        with pytest.raises(DocumentNotFoundError):
            await get_document_stream(
                mock_db, "DACO-1", DocumentType.ETHICS, "signed-1", submitter, mock_storage
            )
        mock_storage.download_as_stream.assert_not_called()

    @pytest.mark.asyncio
    async def test_download_storage_failure(
        self, mock_db, mock_repo, mock_storage, make_app, admin
    ):
        mock_storage.download_as_stream = AsyncMock(side_effect=StorageError("unreachable"))
        mock_repo.get_by_app_id = AsyncMock(return_value=make_app(ApplicationState.REVIEW))

        with pytest.raises(StorageError):
            await get_document_stream(
                mock_db, "DACO-1", DocumentType.SIGNED_APP, "signed-1", admin, mock_storage
            )


class TestExportHistory:
    @pytest.mark.asyncio
    async def test_export(self, mock_db, mock_repo, make_app, other_submitter, config):
        """Events of all applications are listed oldest first as TSV."""
        earlier = NOW - timedelta(days=1)
        other = state.assign_identity(
            state.new_application(other_submitter.author(), other_submitter.email, config, earlier),
            2,
            config,
        )
        mock_repo.find_many = AsyncMock(return_value=[make_app(ApplicationState.APPROVED), other])

        tsv = await export_application_history(mock_db, config)

        lines = tsv.splitlines()
        assert lines[0] == "\t".join(HISTORY_COLUMNS)
        assert lines[1].split("\t")[:6] == ["DACO-2", "2026-03-09", "CREATED", "NEW", "SUBMITTER", "0"]
        assert lines[-1].split("\t")[:3] == ["DACO-1", "2026-03-10", "APPROVED"]
        assert lines[-1].split("\t")[-1] == "No"
        assert len(lines) == 1 + 1 + 3
