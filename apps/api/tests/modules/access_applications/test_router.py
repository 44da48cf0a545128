"""
Tests for the access applications HTTP routes.

The service layer is mocked; these tests cover request parsing, the mapping
of service errors to HTTP responses, and reviewer-only access.
"""

from unittest.mock import AsyncMock, patch

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from app.api import api_router
from app.core.auth import get_current_principal
from app.core.database import get_db
from app.core.storage import StorageError, get_storage
from app.modules.access_applications import service, state
from app.modules.access_applications.constants import COUNTRIES
from app.modules.access_applications.domain import ApplicationState, DocumentType, FieldError
from app.modules.access_applications.errors import (
    ApplicationNotFoundError,
    ApplicationValidationError,
)
from app.modules.access_applications.schemas import DocumentUploadResponse

from .conftest import NOW


@pytest.fixture
def make_client(mock_storage):
    """Build a test client acting as the given principal."""

    def _make(principal) -> TestClient:
        async def _db():
            yield AsyncMock()

        api = FastAPI()
        api.include_router(api_router, prefix="/api/v1")
        api.dependency_overrides[get_db] = _db
        api.dependency_overrides[get_storage] = lambda: mock_storage
        api.dependency_overrides[get_current_principal] = lambda: principal
        return TestClient(api)

    return _make


@pytest.fixture
def draft_view(draft_app, config):
    return state.prepare_for_view(draft_app, False, config, NOW)


class TestApplicationRoutes:
    """Tests for the application endpoints."""

    def test_countries(self, make_client, submitter):
        response = make_client(submitter).get("/api/v1/applications/countries")

        assert response.status_code == 200
        assert response.json()["countries"] == list(COUNTRIES)

    def test_create(self, make_client, submitter, draft_view):
        with patch.object(
            service, "create_application", new_callable=AsyncMock, return_value=draft_view
        ):
            response = make_client(submitter).post("/api/v1/applications")

        assert response.status_code == 201
        assert response.json()["app_id"] == "DACO-1"
        assert response.json()["state"] == "DRAFT"

    def test_not_found(self, make_client, other_submitter):
        """Service errors keep their status code and error code."""
        with patch.object(
            service,
            "get_application",
            new_callable=AsyncMock,
            side_effect=ApplicationNotFoundError("DACO-1"),
        ):
            response = make_client(other_submitter).get("/api/v1/applications/DACO-1")

        assert response.status_code == 404
        assert response.json()["detail"]["error"] == "APPLICATION_NOT_FOUND"

    def test_validation_errors_are_listed(self, make_client, submitter):
        error = ApplicationValidationError(
            "Invalid section content",
            [FieldError(field="title", message="This field is required.")],
        )
        with patch.object(service, "update_application", new_callable=AsyncMock, side_effect=error):
            response = make_client(submitter).patch("/api/v1/applications/DACO-1", json={})

        assert response.status_code == 400
        detail = response.json()["detail"]
        assert detail["error"] == "VALIDATION_ERROR"
        assert detail["errors"][0]["field"] == "title"

    def test_unexpected_error(self, make_client, admin):
        with patch.object(
            service, "get_application", new_callable=AsyncMock, side_effect=RuntimeError("boom")
        ):
            response = make_client(admin).get("/api/v1/applications/DACO-1")

        assert response.status_code == 500
        assert response.json()["detail"]["error"] == "INTERNAL_ERROR"

    def test_search_parses_sort(self, make_client, admin):
        """``field:direction`` pairs are passed to the service."""
        search = AsyncMock(
            return_value={"paging_info": {"total_count": 0, "pages_count": 0, "index": 0}, "items": []}
        )
        with patch.object(service, "search_applications", search):
            response = make_client(admin).get(
                "/api/v1/applications",
                params={"sort": ["state:desc", "app_id"], "states": ["REVIEW"], "page_size": 10},
            )

        assert response.status_code == 200
        kwargs = search.call_args.kwargs
        assert kwargs["sort"] == [("state", "desc"), ("app_id", "asc")]
        assert kwargs["states"] == [ApplicationState.REVIEW]
        assert kwargs["page_size"] == 10

    def test_search_rejects_bad_direction(self, make_client, admin):
        response = make_client(admin).get("/api/v1/applications", params={"sort": "state:up"})
        assert response.status_code == 400

    def test_collaborator_id_mismatch(self, make_client, submitter):
        response = make_client(submitter).put(
            "/api/v1/applications/DACO-1/collaborators/abc",
            json={"id": "xyz", "type": "PERSONNEL"},
        )
        assert response.status_code == 400


class TestDocumentRoutes:
    """Tests for the document endpoints."""

    def test_upload(self, make_client, submitter, draft_view, mock_storage):
        upload = AsyncMock(
            return_value=DocumentUploadResponse(object_id="new-object", application=draft_view)
        )
        with patch.object(service, "upload_document", upload):
            response = make_client(submitter).post(
                "/api/v1/applications/DACO-1/assets/ETHICS/upload",
                files={"file": ("letter.pdf", b"%PDF-1.7", "application/pdf")},
            )

        assert response.status_code == 201
        assert response.json()["object_id"] == "new-object"
        args = upload.call_args.args
        assert args[1:6] == ("DACO-1", DocumentType.ETHICS, "letter.pdf", "application/pdf", b"%PDF-1.7")
        assert args[-1] is mock_storage

    def test_upload_storage_failure(self, make_client, submitter):
        with patch.object(
            service, "upload_document", new_callable=AsyncMock, side_effect=StorageError("down")
        ):
            response = make_client(submitter).post(
                "/api/v1/applications/DACO-1/assets/ETHICS/upload",
                files={"file": ("letter.pdf", b"%PDF-1.7", "application/pdf")},
            )

        assert response.status_code == 502
        assert response.json()["detail"]["error"] == "STORAGE_ERROR"

    def test_download(self, make_client, submitter):
        async def _chunks():
            yield b"%PDF-"
            yield b"1.7"

        with patch.object(
            service,
            "get_document_stream",
            new_callable=AsyncMock,
            return_value=("signed.pdf", _chunks()),
        ):
            response = make_client(submitter).get(
                "/api/v1/applications/DACO-1/assets/SIGNED_APP/assets/signed-1"
            )

        assert response.status_code == 200
        assert response.content == b"%PDF-1.7"
        assert response.headers["content-type"] == "application/pdf"
        assert "signed.pdf" in response.headers["content-disposition"]

    def test_unknown_document_type(self, make_client, submitter):
        response = make_client(submitter).get(
            "/api/v1/applications/DACO-1/assets/RESUME/assets/signed-1"
        )
        assert response.status_code == 422


class TestAdminRoutes:
    """Tests for the reviewer-only endpoints."""

    def test_history_export(self, make_client, admin):
        with patch.object(
            service,
            "export_application_history",
            new_callable=AsyncMock,
            return_value="Application #\tDate of Status Change\n",
        ):
            response = make_client(admin).get("/api/v1/admin/applications/history")

        assert response.status_code == 200
        assert response.text.startswith("Application #")
        assert response.headers["content-type"].startswith("text/tab-separated-values")

    def test_submitter_cannot_export(self, make_client, submitter):
        response = make_client(submitter).get("/api/v1/admin/applications/history")

        assert response.status_code == 403
        assert response.json()["detail"]["error"] == "ADMIN_ACCESS_REQUIRED"

    def test_run_batch_transitions(self, make_client, admin):
        with patch(
            "app.modules.access_applications.admin_router.run_all_jobs",
            new_callable=AsyncMock,
            return_value={"run_at": NOW.isoformat(), "reports": []},
        ) as run_all:
            response = make_client(admin).post("/api/v1/admin/jobs/batch-transitions")

        assert response.status_code == 200
        assert response.json()["reports"] == []
        run_all.assert_called_once()

    def test_run_job_now(self, make_client, admin):
        result = {"job_id": "nightly", "status": "success", "executed_at": NOW.isoformat()}
        with patch(
            "app.modules.access_applications.admin_router.trigger_job_manually",
            new_callable=AsyncMock,
            return_value=result,
        ) as trigger:
            response = make_client(admin).post("/api/v1/admin/jobs/nightly/run")

        assert response.status_code == 200
        assert response.json()["status"] == "success"
        trigger.assert_called_once_with("nightly")

    def test_run_unknown_job(self, make_client, admin):
        with patch(
            "app.modules.access_applications.admin_router.trigger_job_manually",
            new_callable=AsyncMock,
            side_effect=KeyError("missing"),
        ):
            response = make_client(admin).post("/api/v1/admin/jobs/missing/run")

        assert response.status_code == 404
        assert response.json()["detail"]["error"] == "JOB_NOT_FOUND"

    def test_pause_and_resume_job(self, make_client, admin):
        client = make_client(admin)
        with (
            patch("app.modules.access_applications.admin_router.pause_job", return_value=True),
            patch("app.modules.access_applications.admin_router.resume_job", return_value=True),
        ):
            paused = client.post("/api/v1/admin/jobs/nightly/pause")
            resumed = client.post("/api/v1/admin/jobs/nightly/resume")

        assert paused.json() == {"job_id": "nightly", "is_paused": True}
        assert resumed.json() == {"job_id": "nightly", "is_paused": False}

    def test_pause_unknown_job(self, make_client, admin):
        with patch("app.modules.access_applications.admin_router.pause_job", return_value=False):
            response = make_client(admin).post("/api/v1/admin/jobs/missing/pause")

        assert response.status_code == 404

    def test_submitter_cannot_control_jobs(self, make_client, submitter):
        response = make_client(submitter).post("/api/v1/admin/jobs/nightly/pause")
        assert response.status_code == 403
