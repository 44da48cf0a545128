"""
Access Applications Repository

Database operations for access applications.

Design Principles:
- All queries are parameterized (no SQL injection)
- Single responsibility: only database operations, no lifecycle rules
- Writes only flush; the caller owns the transaction (see ``with_transaction``)
- Updates are compare-and-set on ``version`` so a stale snapshot never wins
"""

import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from datetime import datetime
from typing import Any, TypeVar

from sqlalchemy import Select, and_, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import AppConfig
from app.modules.access_applications.domain import (
    NOTIFICATION_FLAGS,
    Application,
    ApplicationState,
    PauseReason,
)
from app.modules.access_applications.errors import VersionConflictError
from app.modules.access_applications.models import APP_NUMBER_SEQUENCE, ApplicationRecord
from app.modules.access_applications.state import assign_identity

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Sort keys accepted by searches, mapped to columns
SORTABLE_COLUMNS = {
    "app_id": ApplicationRecord.app_number,
    "state": ApplicationRecord.state,
    "submitted_at_utc": ApplicationRecord.submitted_at_utc,
    "approved_at_utc": ApplicationRecord.approved_at_utc,
    "expires_at_utc": ApplicationRecord.expires_at_utc,
    "created_at_utc": ApplicationRecord.created_at_utc,
    "last_updated_at_utc": ApplicationRecord.last_updated_at_utc,
}


@dataclass(frozen=True)
class ApplicationCriteria:
    """
    Filter over stored applications. Unset fields do not constrain the query.

    Date bounds are inclusive. ``pause_reasons`` may contain ``None`` to match
    applications without a pause reason. ``notification_unset`` names an
    ``EmailNotifications`` flag that must not have been set yet.
    """

    states: tuple[ApplicationState, ...] = ()
    app_ids: tuple[str, ...] = ()
    submitter_id: str | None = None
    approved_from: datetime | None = None
    approved_to: datetime | None = None
    expires_from: datetime | None = None
    expires_to: datetime | None = None
    expires_after: datetime | None = None
    renewal_period_end_before: datetime | None = None
    attested: bool | None = None
    is_renewal: bool | None = None
    pause_reasons: tuple[PauseReason | None, ...] = ()
    notification_unset: str | None = None
    search: str | None = None


def build_conditions(criteria: ApplicationCriteria) -> list[Any]:
    """Translate criteria into SQLAlchemy where-clauses."""
    record = ApplicationRecord
    conditions: list[Any] = []
    if criteria.states:
        conditions.append(record.state.in_(criteria.states))
    if criteria.app_ids:
        conditions.append(record.app_id.in_(criteria.app_ids))
    if criteria.submitter_id is not None:
        conditions.append(record.submitter_id == criteria.submitter_id)
    if criteria.approved_from is not None:
        conditions.append(record.approved_at_utc >= criteria.approved_from)
    if criteria.approved_to is not None:
        conditions.append(record.approved_at_utc <= criteria.approved_to)
    if criteria.expires_from is not None:
        conditions.append(record.expires_at_utc >= criteria.expires_from)
    if criteria.expires_to is not None:
        conditions.append(record.expires_at_utc <= criteria.expires_to)
    if criteria.expires_after is not None:
        conditions.append(record.expires_at_utc > criteria.expires_after)
    if criteria.renewal_period_end_before is not None:
        conditions.append(record.renewal_period_end_date_utc < criteria.renewal_period_end_before)
    if criteria.attested is True:
        conditions.append(record.attested_at_utc.is_not(None))
    elif criteria.attested is False:
        conditions.append(record.attested_at_utc.is_(None))
    if criteria.is_renewal is not None:
        conditions.append(record.is_renewal == criteria.is_renewal)
    if criteria.pause_reasons:
        reasons = [reason for reason in criteria.pause_reasons if reason is not None]
        clauses = [record.pause_reason.in_(reasons)] if reasons else []
        if None in criteria.pause_reasons:
            clauses.append(record.pause_reason.is_(None))
        conditions.append(or_(*clauses))
    if criteria.notification_unset is not None:
        if criteria.notification_unset not in NOTIFICATION_FLAGS:
            raise ValueError(f"Unknown notification flag: {criteria.notification_unset}")
        conditions.append(getattr(record, criteria.notification_unset).is_(None))
    if criteria.search:
        pattern = f"%{criteria.search.strip()}%"
        conditions.append(func.array_to_string(record.search_values, " ").ilike(pattern))
    return conditions


def _select(criteria: ApplicationCriteria) -> Select:
    return select(ApplicationRecord).where(and_(*build_conditions(criteria)))


def to_record_values(application: Application) -> dict[str, Any]:
    """Column values for a snapshot (the version column is handled by the writers)."""
    notifications = application.email_notifications
    values: dict[str, Any] = {
        "app_id": application.app_id,
        "state": application.state,
        "submitter_id": application.submitter_id,
        "submitted_at_utc": application.submitted_at_utc,
        "approved_at_utc": application.approved_at_utc,
        "expires_at_utc": application.expires_at_utc,
        "attested_at_utc": application.attested_at_utc,
        "pause_reason": application.pause_reason,
        "is_renewal": application.is_renewal,
        "source_app_id": application.source_app_id,
        "renewal_app_id": application.renewal_app_id,
        "renewal_period_end_date_utc": application.renewal_period_end_date_utc,
        "search_values": list(application.search_values),
        "document": application.model_dump(
            mode="json", exclude={"revisions_requested", "version"}
        ),
        "last_updated_at_utc": application.last_updated_at_utc,
    }
    for flag in NOTIFICATION_FLAGS:
        values[flag] = getattr(notifications, flag)
    return values


def to_application(record: ApplicationRecord) -> Application:
    application = Application.model_validate(record.document)
    return application.model_copy(update={"version": record.version})


async def find_one(db: AsyncSession, criteria: ApplicationCriteria) -> Application | None:
    result = await db.execute(_select(criteria).limit(1))
    record = result.scalar_one_or_none()
    return to_application(record) if record else None


async def get_by_app_id(db: AsyncSession, app_id: str) -> Application | None:
    """Get application by its public id."""
    return await find_one(db, ApplicationCriteria(app_ids=(app_id,)))


async def find_many(
    db: AsyncSession,
    criteria: ApplicationCriteria,
    sort: Sequence[tuple[str, str]] = (),
    skip: int = 0,
    limit: int | None = None,
) -> list[Application]:
    """
    Find applications matching the criteria.

    Args:
        db: Database session
        criteria: Filter
        sort: (field, "asc" | "desc") pairs; see ``SORTABLE_COLUMNS``
        skip: Number of rows to skip
        limit: Maximum rows to return (all when None)

    Returns:
        Matching applications in the requested order
    """
    query = _select(criteria)
    order_by = []
    for field, direction in sort:
        column = SORTABLE_COLUMNS.get(field)
        if column is None:
            raise ValueError(f"Unsupported sort field: {field}")
        order_by.append(column.desc() if direction.lower() == "desc" else column.asc())
    order_by.append(ApplicationRecord.app_number.asc())
    query = query.order_by(*order_by).offset(skip)
    if limit is not None:
        query = query.limit(limit)
    result = await db.execute(query)
    return [to_application(record) for record in result.scalars().all()]


async def count(db: AsyncSession, criteria: ApplicationCriteria) -> int:
    result = await db.execute(
        select(func.count())
        .select_from(ApplicationRecord)
        .where(and_(*build_conditions(criteria)))
    )
    return result.scalar_one()


async def create(db: AsyncSession, application: Application, config: AppConfig) -> Application:
    """
    Insert a new application.

    Draws the next application number from the sequence and derives the
    public id from it. Returns the stored snapshot (version 1).
    """
    app_number = await db.scalar(select(APP_NUMBER_SEQUENCE.next_value()))
    stored = assign_identity(application, app_number, config).model_copy(update={"version": 1})
    values = to_record_values(stored)
    db.add(ApplicationRecord(app_number=app_number, version=1, **values))
    await db.flush()
    logger.info(f"Created application {stored.app_id}")
    return stored


async def upsert(db: AsyncSession, application: Application, expected_version: int) -> Application:
    """
    Compare-and-set write of an application snapshot.

    Raises:
        VersionConflictError: The stored version is not ``expected_version``
    """
    result = await db.execute(
        update(ApplicationRecord)
        .where(
            ApplicationRecord.app_id == application.app_id,
            ApplicationRecord.version == expected_version,
        )
        .values(**to_record_values(application), version=expected_version + 1)
    )
    if result.rowcount == 0:
        raise VersionConflictError(application.app_id or "", expected_version)
    return application.model_copy(update={"version": expected_version + 1})


async def find_referenced_document_ids(
    db: AsyncSession,
    object_ids: Sequence[str],
    exclude_app_id: str | None = None,
) -> set[str]:
    """
    Return which of ``object_ids`` are still referenced as ethics letters by
    another application. Renewals share ethics letters with their source.
    """
    referenced: set[str] = set()
    for object_id in object_ids:
        containment = {
            "sections": {"ethics_letter": {"approval_letter_docs": [{"object_id": object_id}]}}
        }
        query = select(func.count()).select_from(ApplicationRecord).where(
            ApplicationRecord.document.contains(containment)
        )
        if exclude_app_id is not None:
            query = query.where(ApplicationRecord.app_id != exclude_app_id)
        if (await db.execute(query)).scalar_one() > 0:
            referenced.add(object_id)
    return referenced


async def with_transaction(db: AsyncSession, work: Callable[[AsyncSession], Awaitable[T]]) -> T:
    """
    Run ``work`` and commit once. Any exception rolls back and propagates.
    """
    try:
        result = await work(db)
        await db.commit()
    except Exception:
        await db.rollback()
        raise
    return result
