"""
Access Applications Router

API endpoints used by submitters and reviewers to work on applications.
All endpoints require a bearer token; the caller's role comes from the
token scopes (see ``app.core.auth``).

Endpoints:
- POST /applications - Create a DRAFT application (submitters)
- GET /applications - Search visible applications
- GET /applications/{app_id} - Get one application
- PATCH /applications/{app_id} - Edit sections, change state, attest or renew
- POST /applications/{app_id}/collaborators - Add a collaborator
- PUT /applications/{app_id}/collaborators/{collaborator_id} - Update a collaborator
- DELETE /applications/{app_id}/collaborators/{collaborator_id} - Remove a collaborator
- POST /applications/{app_id}/assets/{doc_type}/upload - Upload a PDF document
- DELETE /applications/{app_id}/assets/{doc_type}/assets/{object_id} - Remove a document
- GET /applications/{app_id}/assets/{doc_type}/assets/{object_id} - Download a document
- GET /applications/countries - Countries accepted in addresses

Security:
- Submitters only see their own applications (others return 404)
- Documents are only served when referenced by a visible application
- Uploads are limited to PDF files under the configured size
"""

import logging
from urllib.parse import quote

from fastapi import APIRouter, Depends, File, HTTPException, Query, UploadFile, status
from fastapi.responses import StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.auth import Principal, get_current_principal
from app.core.config import settings
from app.core.database import get_db
from app.core.storage import S3ObjectStorage, StorageError, get_storage
from app.modules.access_applications import service
from app.modules.access_applications.constants import COUNTRIES
from app.modules.access_applications.domain import ApplicationState, Collaborator, DocumentType
from app.modules.access_applications.errors import (
    ApplicationServiceError,
    ApplicationValidationError,
)
from app.modules.access_applications.schemas import (
    ApplicationUpdate,
    CollaboratorCreate,
    CollaboratorUpdate,
    CountryListResponse,
    DocumentUploadResponse,
    SearchResult,
    ViewApplication,
)

logger = logging.getLogger(__name__)

router = APIRouter()


# ============================================
# Helper Functions
# ============================================


def _handle_service_error(e: ApplicationServiceError) -> None:
    """Convert service errors to HTTPExceptions."""
    detail: dict = {
        "error": e.error_code,
        "message": e.message,
    }
    if isinstance(e, ApplicationValidationError):
        detail["errors"] = [error.model_dump() for error in e.errors]
    raise HTTPException(status_code=e.status_code, detail=detail)


def _internal_error(action: str, e: Exception) -> HTTPException:
    logger.exception(f"Error {action}: {e}")
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail={
            "error": "INTERNAL_ERROR",
            "message": "An unexpected error occurred.",
        },
    )


def _parse_sort(sort: list[str]) -> list[tuple[str, str]]:
    """
    Parse ``field:direction`` sort parameters.

    Raises:
        HTTPException 400: Malformed direction
    """
    parsed = []
    for item in sort:
        field, _, direction = item.partition(":")
        direction = (direction or "asc").lower()
        if direction not in ("asc", "desc"):
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail={
                    "error": "VALIDATION_ERROR",
                    "message": f"Invalid sort direction '{direction}' for {field}",
                },
            )
        parsed.append((field, direction))
    return parsed


# ============================================
# Applications
# ============================================


@router.get(
    "/countries",
    response_model=CountryListResponse,
    summary="List Countries",
)
async def list_countries(
    _principal: Principal = Depends(get_current_principal),
) -> CountryListResponse:
    """Countries accepted in applicant and representative addresses."""
    return CountryListResponse(countries=list(COUNTRIES))


@router.post(
    "",
    response_model=ViewApplication,
    status_code=status.HTTP_201_CREATED,
    summary="Create Application",
    description="""
Create a new DRAFT application for the calling submitter.

The application id (e.g. `DACO-12`) is assigned from a database sequence.
Reviewers and system callers cannot create applications.
""",
    responses={
        201: {"description": "Application created", "model": ViewApplication},
        403: {"description": "Caller is not a submitter"},
    },
)
async def create_application(
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
) -> ViewApplication:
    try:
        return await service.create_application(db, principal, settings.app_config())
    except ApplicationServiceError as e:
        _handle_service_error(e)
    except Exception as e:
        raise _internal_error("creating application", e) from e


@router.get(
    "",
    response_model=SearchResult,
    summary="Search Applications",
    description="""
Search the applications visible to the caller.

**Filters:**
- `query`: Free text matched against ids, names, emails, institution and dates
- `states`: Restrict to these states (repeatable)

**Sorting:**
- `sort`: `field:direction` pairs (repeatable), e.g. `state:asc`.
  Default: `last_updated_at_utc:desc`

**Pagination:**
- `page`: Zero-based page index. Default: 0
- `page_size`: Items per page (1-100). Default: 25
""",
)
async def search_applications(
    query: str | None = Query(
        None,
        max_length=200,
        description="Free text search",
    ),
    states: list[ApplicationState] = Query(
        [],
        description="Restrict to these states",
    ),
    sort: list[str] = Query(
        [],
        description="Sort fields as field:direction",
    ),
    page: int = Query(0, ge=0, description="Zero-based page index"),
    page_size: int = Query(25, ge=1, le=100, description="Items per page"),
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
) -> SearchResult:
    sort_pairs = _parse_sort(sort)
    try:
        return await service.search_applications(
            db,
            principal,
            query=query,
            states=states,
            sort=sort_pairs,
            page=page,
            page_size=page_size,
            config=settings.app_config(),
        )
    except ApplicationServiceError as e:
        _handle_service_error(e)
    except Exception as e:
        raise _internal_error("searching applications", e) from e


@router.get(
    "/{app_id}",
    response_model=ViewApplication,
    summary="Get Application",
    responses={404: {"description": "Application not found"}},
)
async def get_application(
    app_id: str,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
) -> ViewApplication:
    try:
        return await service.get_application(db, app_id, principal, settings.app_config())
    except ApplicationServiceError as e:
        _handle_service_error(e)
    except Exception as e:
        raise _internal_error("getting application", e) from e


@router.patch(
    "/{app_id}",
    response_model=ViewApplication,
    summary="Update Application",
    description="""
Apply a partial update to an application.

A single request may carry section edits, a requested `state`, a
`revision_request` (reviewers), `is_attesting` (submitters) or
`is_renewal` (submitters). A renewal request returns the new renewal
application instead of the source.
""",
    responses={
        400: {"description": "Invalid section content"},
        403: {"description": "Role does not permit the change"},
        404: {"description": "Application not found"},
        409: {"description": "State does not permit the change, or concurrent update"},
    },
)
async def update_application(
    app_id: str,
    data: ApplicationUpdate,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    storage: S3ObjectStorage = Depends(get_storage),
) -> ViewApplication:
    try:
        return await service.update_application(
            db, app_id, data, principal, settings.app_config(), storage
        )
    except ApplicationServiceError as e:
        _handle_service_error(e)
    except Exception as e:
        raise _internal_error("updating application", e) from e


# ============================================
# Collaborators
# ============================================


@router.post(
    "/{app_id}/collaborators",
    response_model=Collaborator,
    status_code=status.HTTP_201_CREATED,
    summary="Add Collaborator",
)
async def create_collaborator(
    app_id: str,
    data: CollaboratorCreate,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
) -> Collaborator:
    try:
        return await service.create_collaborator(db, app_id, data, principal, settings.app_config())
    except ApplicationServiceError as e:
        _handle_service_error(e)
    except Exception as e:
        raise _internal_error("adding collaborator", e) from e


@router.put(
    "/{app_id}/collaborators/{collaborator_id}",
    response_model=Collaborator,
    summary="Update Collaborator",
)
async def update_collaborator(
    app_id: str,
    collaborator_id: str,
    data: CollaboratorUpdate,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
) -> Collaborator:
    if data.id != collaborator_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={
                "error": "VALIDATION_ERROR",
                "message": "Collaborator id in the path and body must match",
            },
        )
    try:
        return await service.update_collaborator(db, app_id, data, principal, settings.app_config())
    except ApplicationServiceError as e:
        _handle_service_error(e)
    except Exception as e:
        raise _internal_error("updating collaborator", e) from e


@router.delete(
    "/{app_id}/collaborators/{collaborator_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Remove Collaborator",
)
async def delete_collaborator(
    app_id: str,
    collaborator_id: str,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
) -> None:
    try:
        await service.delete_collaborator(
            db, app_id, collaborator_id, principal, settings.app_config()
        )
    except ApplicationServiceError as e:
        _handle_service_error(e)
    except Exception as e:
        raise _internal_error("removing collaborator", e) from e


# ============================================
# Documents
# ============================================


@router.post(
    "/{app_id}/assets/{doc_type}/upload",
    response_model=DocumentUploadResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Upload Document",
    description="""
Upload a PDF document: an ethics letter (`ETHICS`), the signed application
(`SIGNED_APP`) or the approved application PDF (`APPROVED_PDF`, reviewers).
""",
)
async def upload_document(
    app_id: str,
    doc_type: DocumentType,
    file: UploadFile = File(..., description="PDF document"),
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    storage: S3ObjectStorage = Depends(get_storage),
) -> DocumentUploadResponse:
    data = await file.read()
    try:
        return await service.upload_document(
            db,
            app_id,
            doc_type,
            file.filename or "document.pdf",
            file.content_type,
            data,
            principal,
            settings.app_config(),
            storage,
        )
    except ApplicationServiceError as e:
        _handle_service_error(e)
    except StorageError as e:
        logger.error(f"Upload to storage failed for {app_id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail={
                "error": "STORAGE_ERROR",
                "message": "The document could not be stored. Please try again.",
            },
        ) from e
    except Exception as e:
        raise _internal_error("uploading document", e) from e


@router.delete(
    "/{app_id}/assets/{doc_type}/assets/{object_id}",
    response_model=ViewApplication,
    summary="Remove Document",
)
async def delete_document(
    app_id: str,
    doc_type: DocumentType,
    object_id: str,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    storage: S3ObjectStorage = Depends(get_storage),
) -> ViewApplication:
    try:
        return await service.delete_document(
            db, app_id, doc_type, object_id, principal, settings.app_config(), storage
        )
    except ApplicationServiceError as e:
        _handle_service_error(e)
    except Exception as e:
        raise _internal_error("removing document", e) from e


@router.get(
    "/{app_id}/assets/{doc_type}/assets/{object_id}",
    response_class=StreamingResponse,
    summary="Download Document",
    responses={200: {"content": {"application/pdf": {}}}},
)
async def download_document(
    app_id: str,
    doc_type: DocumentType,
    object_id: str,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    storage: S3ObjectStorage = Depends(get_storage),
) -> StreamingResponse:
    try:
        name, stream = await service.get_document_stream(
            db, app_id, doc_type, object_id, principal, storage
        )
    except ApplicationServiceError as e:
        _handle_service_error(e)
    except StorageError as e:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail={
                "error": "STORAGE_ERROR",
                "message": "The document could not be read.",
            },
        ) from e

    return StreamingResponse(
        stream,
        media_type=service.PDF_CONTENT_TYPE,
        headers={"Content-Disposition": f"attachment; filename*=UTF-8''{quote(name)}"},
    )
