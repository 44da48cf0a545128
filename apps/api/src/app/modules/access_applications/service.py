"""
Access Applications Service Layer

Orchestrates the lifecycle core, persistence, object storage and
notifications for the HTTP routes.

Every mutation follows the same flow:
1. Load the current snapshot (submitters only see their own applications)
2. Run the pure state manager operation
3. Compare-and-set write inside ``repository.with_transaction``
4. Delete documents no longer referenced by any application (best effort)
5. Send notifications (best effort)
6. Return the snapshot prepared for the caller

Security considerations:
- The caller's role comes from the verified token (``Principal``), never
  from the request body
- A submitter asking for another submitter's application gets a 404, not a
  403, so application ids cannot be discovered by guessing
- Documents are only served when referenced by an application the caller
  can see
"""

import csv
import io
import logging
import math
from collections.abc import AsyncIterator, Sequence
from datetime import UTC, datetime

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.auth import Principal
from app.core.config import AppConfig, settings
from app.core.storage import S3ObjectStorage, StorageError, cleanup_documents
from app.modules.access_applications import renewal, repository, state
from app.modules.access_applications.calculations import (
    format_reference_date,
    is_attestable,
    is_renewable,
    renewal_period_is_ended,
)
from app.modules.access_applications.domain import (
    Application,
    ApplicationState,
    Collaborator,
    DacoRole,
    DocumentType,
    FieldError,
    Transition,
)
from app.modules.access_applications.errors import (
    ApplicationNotFoundError,
    ApplicationValidationError,
    DocumentNotFoundError,
    ForbiddenActionError,
    TransactionFailureError,
    VersionConflictError,
)
from app.modules.access_applications.notifications import (
    NotificationKind,
    on_state_change,
    send_notifications,
)
from app.modules.access_applications.repository import ApplicationCriteria
from app.modules.access_applications.schemas import (
    ApplicantSummary,
    ApplicationSummary,
    ApplicationUpdate,
    CollaboratorCreate,
    CollaboratorUpdate,
    DocumentUploadResponse,
    PagingInfo,
    SearchResult,
    ViewApplication,
)

logger = logging.getLogger(__name__)

PDF_CONTENT_TYPE = "application/pdf"
DEFAULT_SORT = (("last_updated_at_utc", "desc"),)


def _utcnow() -> datetime:
    return datetime.now(UTC)


# =============================================================================
# Helpers
# =============================================================================


def _can_see_all(principal: Principal) -> bool:
    return principal.role in (DacoRole.ADMIN, DacoRole.SYSTEM)


async def _load(db: AsyncSession, app_id: str, principal: Principal) -> Application:
    """
    Load an application the caller is allowed to see.

    Raises:
        ApplicationNotFoundError: Missing, or owned by another submitter
    """
    application = await repository.get_by_app_id(db, app_id)
    if application is None:
        raise ApplicationNotFoundError(app_id)
    if not _can_see_all(principal) and application.submitter_id != principal.id:
        logger.warning(f"{principal.id} tried to access application {app_id} they do not own")
        raise ApplicationNotFoundError(app_id)
    return application


async def _save(db: AsyncSession, current: Application, transition: Transition) -> Application:
    if transition.application is current:
        return current
    return await repository.with_transaction(
        db, lambda session: repository.upsert(session, transition.application, current.version)
    )


async def _cleanup_orphans(
    db: AsyncSession,
    storage: S3ObjectStorage,
    app_id: str | None,
    orphaned_ids: Sequence[str],
) -> None:
    """
    Delete documents the application stopped referencing.

    Ethics letters may be shared between a renewal and its source, so ids
    still referenced by another application are kept.
    """
    if not orphaned_ids:
        return
    try:
        referenced = await repository.find_referenced_document_ids(db, orphaned_ids, app_id)
    except Exception as e:
        logger.error(f"Could not check references for orphaned documents of {app_id}: {e}", exc_info=True)
        return
    deletable = [object_id for object_id in orphaned_ids if object_id not in referenced]
    deleted = await cleanup_documents(storage, deletable)
    if deleted:
        logger.info(f"Deleted {len(deleted)} orphaned documents of {app_id}")


def _view(application: Application, principal: Principal, config: AppConfig, now: datetime) -> ViewApplication:
    return state.prepare_for_view(application, principal.is_reviewer, config, now)


def _to_summary(application: Application, config: AppConfig, now: datetime) -> ApplicationSummary:
    return ApplicationSummary(
        app_id=application.app_id or "",
        state=application.state,
        submitter_id=application.submitter_id,
        submitted_at_utc=application.submitted_at_utc,
        approved_at_utc=application.approved_at_utc,
        expires_at_utc=application.expires_at_utc,
        closed_at_utc=application.closed_at_utc,
        closed_by=application.closed_by,
        created_at_utc=application.created_at_utc,
        last_updated_at_utc=application.last_updated_at_utc,
        is_renewal=application.is_renewal,
        source_app_id=application.source_app_id,
        renewal_app_id=application.renewal_app_id,
        ethics_required=application.sections.ethics_letter.declared_as_required,
        applicant=ApplicantSummary(info=application.sections.applicant.info),
        is_attestable=is_attestable(application, config, now),
        is_renewable=is_renewable(application, config, now),
    )


# =============================================================================
# Applications
# =============================================================================


async def create_application(
    db: AsyncSession,
    principal: Principal,
    config: AppConfig,
) -> ViewApplication:
    """
    Create a DRAFT application for the calling submitter.

    Raises:
        ForbiddenActionError: Caller is not a submitter
    """
    if principal.role != DacoRole.SUBMITTER:
        raise ForbiddenActionError("Only submitters can create applications")
    now = _utcnow()
    draft = state.new_application(principal.author(), principal.email, config, now)
    created = await repository.with_transaction(
        db, lambda session: repository.create(session, draft, config)
    )
    logger.info(f"Application {created.app_id} created by {principal.id}")
    return _view(created, principal, config, now)


async def get_application(
    db: AsyncSession,
    app_id: str,
    principal: Principal,
    config: AppConfig,
) -> ViewApplication:
    application = await _load(db, app_id, principal)
    return _view(application, principal, config, _utcnow())


async def search_applications(
    db: AsyncSession,
    principal: Principal,
    query: str | None,
    states: Sequence[ApplicationState],
    sort: Sequence[tuple[str, str]],
    page: int,
    page_size: int,
    config: AppConfig,
) -> SearchResult:
    """
    Search applications visible to the caller.

    Args:
        query: Free text matched against the search values
        states: Restrict to these states (all states when empty)
        sort: (field, "asc" | "desc") pairs
        page: Zero-based page index
        page_size: Items per page

    Raises:
        ApplicationValidationError: Unknown sort field or bad paging values
    """
    errors = [
        FieldError(field="sort", message=f"Unsupported sort field: {field}")
        for field, _ in sort
        if field not in repository.SORTABLE_COLUMNS
    ]
    if page < 0:
        errors.append(FieldError(field="page", message="Must be zero or greater"))
    if page_size < 1:
        errors.append(FieldError(field="page_size", message="Must be at least 1"))
    if errors:
        raise ApplicationValidationError("Invalid search parameters", errors)

    criteria = ApplicationCriteria(
        states=tuple(states),
        submitter_id=None if _can_see_all(principal) else principal.id,
        search=query.strip() if query and query.strip() else None,
    )
    total = await repository.count(db, criteria)
    applications = await repository.find_many(
        db,
        criteria,
        sort=tuple(sort) or DEFAULT_SORT,
        skip=page * page_size,
        limit=page_size,
    )
    now = _utcnow()
    return SearchResult(
        paging_info=PagingInfo(
            total_count=total,
            pages_count=math.ceil(total / page_size),
            index=page,
        ),
        items=[_to_summary(application, config, now) for application in applications],
    )


def _is_closing_unsubmitted_renewal(current: Application, updated: Application, now: datetime) -> bool:
    return (
        current.is_renewal
        and current.state in state.PRE_SUBMISSION_STATES
        and updated.state == ApplicationState.CLOSED
        and not renewal_period_is_ended(current, now)
    )


async def _close_renewal_and_unlink(
    db: AsyncSession,
    current: Application,
    closed: Application,
    config: AppConfig,
    now: datetime,
) -> Application:
    """
    Write a withdrawn renewal and detach its source in one transaction, so
    the source can be renewed again.

    Raises:
        VersionConflictError: Either record changed concurrently
        TransactionFailureError: The writes were rolled back
    """
    source = await repository.get_by_app_id(db, current.source_app_id) if current.source_app_id else None

    async def _work(session: AsyncSession) -> Application:
        stored = await repository.upsert(session, closed, current.version)
        if (
            source is not None
            and source.state != ApplicationState.CLOSED
            and source.renewal_app_id == current.app_id
        ):
            unlinked = state.unlink_from_renewal(source, config, now)
            await repository.upsert(session, unlinked.application, source.version)
        return stored

    logger.info(f"Closing unsubmitted renewal {current.app_id} of {current.source_app_id}")
    try:
        return await repository.with_transaction(db, _work)
    except VersionConflictError:
        raise
    except Exception as e:
        logger.error(f"Closing renewal {current.app_id} rolled back: {e}", exc_info=True)
        raise TransactionFailureError(f"Failed to close renewal {current.app_id}") from e


async def update_application(
    db: AsyncSession,
    app_id: str,
    update_part: ApplicationUpdate,
    principal: Principal,
    config: AppConfig,
    storage: S3ObjectStorage,
) -> ViewApplication:
    """
    Apply a partial update: section edits, a state change, an attestation or
    a renewal request (``is_renewal``).

    A renewal request returns the new renewal application.
    """
    now = _utcnow()
    current = await _load(db, app_id, principal)

    if update_part.is_renewal:
        created = await renewal.renew(db, app_id, principal, config, now)
        return _view(created, principal, config, now)

    transition = state.update_app(current, update_part, principal.is_reviewer, principal.author(), config, now)
    if transition.application is current:
        return _view(current, principal, config, now)

    if _is_closing_unsubmitted_renewal(current, transition.application, now):
        stored = await _close_renewal_and_unlink(db, current, transition.application, config, now)
    else:
        stored = await _save(db, current, transition)
    if stored.state != current.state:
        logger.info(f"Application {app_id} moved from {current.state.value} to {stored.state.value}")

    await _cleanup_orphans(db, storage, app_id, transition.orphaned_document_ids)
    await on_state_change(current, stored, config)
    if current.attested_at_utc is None and stored.attested_at_utc is not None:
        logger.info(f"Application {app_id} attested by {principal.id}")
        await send_notifications([NotificationKind.ATTESTATION_RECEIVED], stored, config)
    return _view(stored, principal, config, now)


# =============================================================================
# Collaborators
# =============================================================================


async def create_collaborator(
    db: AsyncSession,
    app_id: str,
    collaborator: CollaboratorCreate,
    principal: Principal,
    config: AppConfig,
) -> Collaborator:
    now = _utcnow()
    current = await _load(db, app_id, principal)
    existing_ids = {c.id for c in current.sections.collaborators.items}
    transition = state.add_collaborator(
        current, collaborator, principal.is_reviewer, principal.author(), config, now
    )
    stored = await _save(db, current, transition)
    added = next(c for c in stored.sections.collaborators.items if c.id not in existing_ids)
    logger.info(f"Collaborator {added.id} added to {app_id}")
    if stored.state == ApplicationState.APPROVED:
        await send_notifications([NotificationKind.COLLABORATOR_ADDED], stored, config, added)
    return added


async def update_collaborator(
    db: AsyncSession,
    app_id: str,
    collaborator: CollaboratorUpdate,
    principal: Principal,
    config: AppConfig,
) -> Collaborator:
    now = _utcnow()
    current = await _load(db, app_id, principal)
    transition = state.update_collaborator(
        current, collaborator, principal.is_reviewer, principal.author(), config, now
    )
    stored = await _save(db, current, transition)
    logger.info(f"Collaborator {collaborator.id} updated on {app_id}")
    return next(c for c in stored.sections.collaborators.items if c.id == collaborator.id)


async def delete_collaborator(
    db: AsyncSession,
    app_id: str,
    collaborator_id: str,
    principal: Principal,
    config: AppConfig,
) -> None:
    now = _utcnow()
    current = await _load(db, app_id, principal)
    removed = next(
        (c for c in current.sections.collaborators.items if c.id == collaborator_id), None
    )
    transition = state.delete_collaborator(
        current, collaborator_id, principal.is_reviewer, principal.author(), config, now
    )
    stored = await _save(db, current, transition)
    logger.info(f"Collaborator {collaborator_id} removed from {app_id}")
    if removed is not None and stored.state == ApplicationState.APPROVED:
        await send_notifications([NotificationKind.COLLABORATOR_REMOVED], stored, config, removed)


# =============================================================================
# Documents
# =============================================================================


def _check_upload(file_name: str, content_type: str | None, data: bytes) -> None:
    errors = []
    if content_type != PDF_CONTENT_TYPE and not file_name.lower().endswith(".pdf"):
        errors.append(FieldError(field="file", message="Only PDF documents are accepted"))
    if not data:
        errors.append(FieldError(field="file", message="The file is empty"))
    elif len(data) > settings.file_upload_limit_bytes:
        errors.append(
            FieldError(
                field="file",
                message=f"The file exceeds the {settings.file_upload_limit_bytes} bytes limit",
            )
        )
    if errors:
        raise ApplicationValidationError("Invalid document", errors)


async def upload_document(
    db: AsyncSession,
    app_id: str,
    doc_type: DocumentType,
    file_name: str,
    content_type: str | None,
    data: bytes,
    principal: Principal,
    config: AppConfig,
    storage: S3ObjectStorage,
) -> DocumentUploadResponse:
    """
    Store a document and attach it to the application.

    A new signed application overwrites the previous object. If attaching
    fails, a newly created object is deleted again.
    """
    _check_upload(file_name, content_type, data)
    now = _utcnow()
    current = await _load(db, app_id, principal)
    state.check_document_upload(current, doc_type, principal.is_reviewer, principal.author())

    existing_id = None
    if doc_type == DocumentType.SIGNED_APP:
        existing_id = current.sections.signature.signed_app_doc_obj_id or None
    object_id = await storage.upload(data, content_type or PDF_CONTENT_TYPE, existing_id)

    try:
        transition = state.add_document(
            current,
            object_id,
            file_name,
            doc_type,
            principal.is_reviewer,
            principal.author(),
            config,
            now,
        )
        stored = await _save(db, current, transition)
    except Exception:
        if existing_id is None:
            await cleanup_documents(storage, [object_id])
        raise

    logger.info(f"{doc_type.value} document {object_id} attached to {app_id}")
    await _cleanup_orphans(db, storage, app_id, transition.orphaned_document_ids)
    if stored.state == ApplicationState.APPROVED and doc_type == DocumentType.ETHICS:
        await send_notifications([NotificationKind.ETHICS_LETTER_SUBMITTED], stored, config)
    return DocumentUploadResponse(
        object_id=object_id, application=_view(stored, principal, config, now)
    )


async def delete_document(
    db: AsyncSession,
    app_id: str,
    doc_type: DocumentType,
    object_id: str,
    principal: Principal,
    config: AppConfig,
    storage: S3ObjectStorage,
) -> ViewApplication:
    now = _utcnow()
    current = await _load(db, app_id, principal)
    transition = state.delete_document(
        current, object_id, doc_type, principal.is_reviewer, principal.author(), config, now
    )
    stored = await _save(db, current, transition)
    logger.info(f"{doc_type.value} document {object_id} removed from {app_id}")
    await _cleanup_orphans(db, storage, app_id, transition.orphaned_document_ids)
    return _view(stored, principal, config, now)


def _document_name(application: Application, doc_type: DocumentType, object_id: str) -> str | None:
    """Name of a document of the given type referenced by the application (None if not referenced)."""
    if doc_type == DocumentType.ETHICS:
        docs = application.sections.ethics_letter.approval_letter_docs
    elif doc_type == DocumentType.APPROVED_PDF:
        docs = application.approved_app_docs
    else:
        signature = application.sections.signature
        if object_id and signature.signed_app_doc_obj_id == object_id:
            return signature.signed_doc_name
        return None
    return next((doc.name for doc in docs if doc.object_id == object_id), None)


async def get_document_stream(
    db: AsyncSession,
    app_id: str,
    doc_type: DocumentType,
    object_id: str,
    principal: Principal,
    storage: S3ObjectStorage,
) -> tuple[str, AsyncIterator[bytes]]:
    """
    Open a document for download.

    Returns:
        (file name, chunk iterator)

    Raises:
        DocumentNotFoundError: The application does not reference the document
        StorageError: The object could not be read
    """
    application = await _load(db, app_id, principal)
    name = _document_name(application, doc_type, object_id)
    if name is None:
        raise DocumentNotFoundError(object_id)
    try:
        stream = await storage.download_as_stream(object_id)
    except StorageError:
        logger.error(f"Failed to open document {object_id} of {app_id}", exc_info=True)
        raise
    return name or f"{object_id}.pdf", stream


# =============================================================================
# Reports
# =============================================================================

HISTORY_COLUMNS = (
    "Application #",
    "Date of Status Change",
    "Application Status",
    "Application Type",
    "Action Performed By",
    "Days Since Last Status Change",
    "Institution",
    "Country",
    "Applicant",
    "Project Title",
    "Ethics Letter",
)


async def export_application_history(db: AsyncSession, config: AppConfig) -> str:
    """
    Tab-separated audit history of every application, oldest event first.

    Reviewer only (enforced by the route).
    """
    applications = await repository.find_many(db, ApplicationCriteria())
    rows = []
    for application in applications:
        for event in application.updates:
            ethics = event.ethics_letter_required
            rows.append(
                (
                    event.date,
                    [
                        application.app_id or "",
                        format_reference_date(event.date, config.reference_timezone),
                        event.event_type.value,
                        event.app_type.value,
                        event.author.role.value,
                        str(event.days_elapsed),
                        event.institution,
                        event.country,
                        event.applicant,
                        event.project_title,
                        "" if ethics is None else ("Yes" if ethics else "No"),
                    ],
                )
            )
    rows.sort(key=lambda row: row[0])

    output = io.StringIO()
    writer = csv.writer(output, delimiter="\t", lineterminator="\n")
    writer.writerow(HISTORY_COLUMNS)
    writer.writerows(values for _, values in rows)
    logger.info(f"Exported {len(rows)} application history events")
    return output.getvalue()
