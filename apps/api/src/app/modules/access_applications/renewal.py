"""
Access Applications Renewal

Creates a renewal application from an approved (or recently expired) source
application and links the two records in a single transaction.
"""

import logging
from datetime import datetime

from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.auth import Principal
from app.core.config import AppConfig
from app.modules.access_applications import repository
from app.modules.access_applications.calculations import (
    get_renewal_period_end_date,
    is_renewable,
)
from app.modules.access_applications.domain import (
    Application,
    DacoRole,
    Meta,
    Sections,
    SectionStatus,
    Transition,
    UpdateAuthor,
    UpdateEventType,
)
from app.modules.access_applications.errors import (
    ApplicationNotFoundError,
    ForbiddenActionError,
    InvalidApplicationStateError,
    TransactionFailureError,
    VersionConflictError,
)
from app.modules.access_applications.state import append_event, finish, touch

logger = logging.getLogger(__name__)

_COPIED_SECTIONS = (
    "terms",
    "applicant",
    "representative",
    "collaborators",
    "project_info",
    "ethics_letter",
)


def _copied_as_complete(section: BaseModel) -> BaseModel:
    return section.model_copy(update={"meta": Meta(status=SectionStatus.COMPLETE)})


def build_renewal_application(
    source: Application,
    author: UpdateAuthor,
    config: AppConfig,
    now: datetime,
) -> Application:
    """
    Build the DRAFT renewal of ``source``.

    Form content is carried over and marked COMPLETE. The agreements must be
    accepted again and the application signed again, so those sections start
    over. The renewal must be submitted before ``renewal_period_end_date_utc``.
    """
    if source.expires_at_utc is None:
        raise InvalidApplicationStateError("Source application has no expiry date")
    copied = {name: _copied_as_complete(getattr(source.sections, name)) for name in _COPIED_SECTIONS}
    renewal = Application(
        submitter_id=author.id,
        submitter_email=source.submitter_email,
        created_at_utc=now,
        last_updated_at_utc=now,
        is_renewal=True,
        source_app_id=source.app_id,
        renewal_period_end_date_utc=get_renewal_period_end_date(source.expires_at_utc, config),
        sections=Sections(**copied),
    )
    renewal = append_event(renewal, author, UpdateEventType.CREATED, now)
    return touch(renewal, config, now)


def link_source_to_renewal(
    source: Application,
    renewal_app_id: str,
    config: AppConfig,
    now: datetime,
) -> Transition:
    if source.renewal_app_id:
        raise InvalidApplicationStateError(
            f"Application {source.app_id} already has a renewal ({source.renewal_app_id})"
        )
    return finish(source, source.model_copy(update={"renewal_app_id": renewal_app_id}), config, now)


async def renew(
    db: AsyncSession,
    source_app_id: str,
    principal: Principal,
    config: AppConfig,
    now: datetime,
) -> Application:
    """
    Create a renewal of ``source_app_id`` for its submitter.

    The renewal insert and the source update commit together or not at all.

    Raises:
        ForbiddenActionError: Caller is not the submitter of the source
        ApplicationNotFoundError: Source does not exist
        InvalidApplicationStateError: Source is not renewable
        VersionConflictError: Source changed concurrently
        TransactionFailureError: The writes were rolled back
    """
    author = principal.author()
    if author.role != DacoRole.SUBMITTER:
        raise ForbiddenActionError("Only the submitter can renew an application")

    source = await repository.get_by_app_id(db, source_app_id)
    if source is None or source.submitter_id != author.id:
        raise ApplicationNotFoundError(source_app_id)
    if source.renewal_app_id:
        raise InvalidApplicationStateError(
            f"Application {source_app_id} already has a renewal ({source.renewal_app_id})"
        )
    if not is_renewable(source, config, now):
        raise InvalidApplicationStateError(f"Application {source_app_id} is not renewable")

    async def _work(session: AsyncSession) -> Application:
        renewal = await repository.create(
            session, build_renewal_application(source, author, config, now), config
        )
        linked = link_source_to_renewal(source, renewal.app_id, config, now)
        await repository.upsert(session, linked.application, source.version)
        return renewal

    logger.info(f"Creating renewal for application {source_app_id}")
    try:
        renewal = await repository.with_transaction(db, _work)
    except VersionConflictError:
        raise
    except Exception as e:
        logger.error(f"Renewal of {source_app_id} rolled back: {e}", exc_info=True)
        raise TransactionFailureError(f"Failed to renew application {source_app_id}") from e

    logger.info(f"Created renewal {renewal.app_id} from {source_app_id}")
    return renewal
