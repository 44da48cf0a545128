"""
Access Applications Batch Jobs

Daily batch checks driving time-based lifecycle transitions:
1. Notify applicants whose annual attestation is coming due
2. Pause applications whose attestation is overdue
3. First and second expiry warnings
4. Expire applications that reached their expiry date
5. Close renewals left unsubmitted past their renewal period

Design Principles:
- Checks are idempotent: notification checks only pick up applications whose
  notification flag is unset, and the flag is written after the send succeeds
- Every check of one run shares the same reference instant ``now``
- Items are processed in fixed-size chunks; one item's failure never stops
  its siblings, and one check's failure never stops the next check
- Each item uses its own database session; writes are compare-and-set

Schedule:
- ``run_scheduled_jobs`` runs once a day at ``BATCH_JOBS_HOUR_UTC``
- All checks can also be triggered manually via the admin endpoints
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from datetime import UTC, datetime, timedelta

from apscheduler.triggers.cron import CronTrigger

from app.core.auth import SystemPrincipal
from app.core.config import AppConfig, settings
from app.core.database import async_session_maker
from app.core.scheduler import register_job
from app.modules.access_applications import repository
from app.modules.access_applications.calculations import add_period, end_of_day, start_of_day
from app.modules.access_applications.domain import (
    Application,
    ApplicationState,
    PauseReason,
)
from app.modules.access_applications.notifications import (
    NotificationKind,
    notifications_for_state_change,
    send_notification,
    send_notifications,
)
from app.modules.access_applications.repository import ApplicationCriteria
from app.modules.access_applications.schemas import (
    ApplicationUpdate,
    BatchJobsReport,
    JobItemError,
    JobReport,
    JobReportDetails,
)
from app.modules.access_applications.state import mark_notification_sent, update_app

logger = logging.getLogger(__name__)

JOB_ID_BATCH_TRANSITIONS = "access_applications_batch_transitions"

ATTESTATION_REQUIRED_JOB = "ATTESTATION REQUIRED NOTIFICATIONS"
PAUSING_JOB = "PAUSING APPLICATIONS"
FIRST_EXPIRY_JOB = "FIRST EXPIRY NOTIFICATIONS"
SECOND_EXPIRY_JOB = "SECOND EXPIRY NOTIFICATIONS"
EXPIRING_JOB = "EXPIRING APPLICATIONS"
CLOSING_RENEWALS_JOB = "CLOSING UNSUBMITTED RENEWALS"

_GRANTED_STATES = (ApplicationState.APPROVED, ApplicationState.PAUSED)
_UNSUBMITTED_STATES = (
    ApplicationState.DRAFT,
    ApplicationState.SIGN_AND_SUBMIT,
    ApplicationState.REVISIONS_REQUESTED,
)

ItemProcessor = Callable[[Application], Awaitable[str]]


# =============================================================================
# Candidate criteria
# =============================================================================


def build_attestation_required_criteria(config: AppConfig, now: datetime) -> ApplicationCriteria:
    """APPROVED applications approved one attestation period (minus the notice window) ago."""
    attestation = config.durations.attestation
    period_ago = add_period(now, -attestation.count, attestation.unit_of_time)
    return ApplicationCriteria(
        states=(ApplicationState.APPROVED,),
        approved_from=start_of_day(period_ago),
        approved_to=end_of_day(period_ago + timedelta(days=attestation.days_to_attestation)),
        expires_after=end_of_day(now),
        attested=False,
        notification_unset="attestation_required_notification_sent",
    )


def build_pausing_criteria(config: AppConfig, now: datetime) -> ApplicationCriteria:
    """
    Applications past their attestation-by date without an attestation.

    Already PAUSED applications are included (unless paused by an admin) so a
    failed notification is retried without pausing again.
    """
    attestation = config.durations.attestation
    period_ago = add_period(now, -attestation.count, attestation.unit_of_time)
    return ApplicationCriteria(
        states=_GRANTED_STATES,
        pause_reasons=(None, PauseReason.PENDING_ATTESTATION),
        approved_to=end_of_day(period_ago),
        attested=False,
        notification_unset="application_paused_notification_sent",
    )


def build_first_expiry_criteria(config: AppConfig, now: datetime) -> ApplicationCriteria:
    expiry = config.durations.expiry
    return ApplicationCriteria(
        states=_GRANTED_STATES,
        expires_from=start_of_day(now + timedelta(days=expiry.days_to_expiry_2)),
        expires_to=end_of_day(now + timedelta(days=expiry.days_to_expiry_1)),
        notification_unset="first_expiry_notification_sent",
    )


def build_second_expiry_criteria(config: AppConfig, now: datetime) -> ApplicationCriteria:
    second_notice_day = now + timedelta(days=config.durations.expiry.days_to_expiry_2)
    return ApplicationCriteria(
        states=_GRANTED_STATES,
        expires_from=start_of_day(second_notice_day),
        expires_to=end_of_day(second_notice_day),
        notification_unset="second_expiry_notification_sent",
    )


def build_expiring_criteria(config: AppConfig, now: datetime) -> ApplicationCriteria:
    """
    Applications whose expiry day has come, up to ``days_post_expiry`` days back.

    EXPIRED applications are included so a failed notification is retried.
    """
    return ApplicationCriteria(
        states=(*_GRANTED_STATES, ApplicationState.EXPIRED),
        expires_from=start_of_day(now) - timedelta(days=config.durations.expiry.days_post_expiry),
        expires_to=end_of_day(now),
        notification_unset="application_expired_notification_sent",
    )


def build_closing_renewals_criteria(config: AppConfig, now: datetime) -> ApplicationCriteria:
    return ApplicationCriteria(
        states=_UNSUBMITTED_STATES,
        is_renewal=True,
        renewal_period_end_before=start_of_day(now),
    )


# =============================================================================
# Item processing
# =============================================================================


async def _save(application: Application, expected_version: int) -> Application:
    async with async_session_maker() as db:
        return await repository.with_transaction(
            db, lambda session: repository.upsert(session, application, expected_version)
        )


async def _transition(
    current: Application,
    update_part: ApplicationUpdate,
    config: AppConfig,
    now: datetime,
) -> Application:
    """Apply a system-authored update and persist it."""
    author = SystemPrincipal().author()
    transition = update_app(current, update_part, False, author, config, now)
    return await _save(transition.application, current.version)


async def _notify_and_flag(
    application: Application,
    kinds: Sequence[NotificationKind],
    flag: str,
    config: AppConfig,
    now: datetime,
) -> Application:
    """
    Send the check's notification, then record its flag.

    The first kind must be delivered (``NotificationError`` otherwise); the
    rest, such as the per-collaborator emails, are best effort.
    """
    primary, *secondary = kinds
    await send_notification(primary, application, config)
    await send_notifications(secondary, application, config)
    flagged = mark_notification_sent(application, flag, config, now)
    return await _save(flagged.application, application.version)


def _attestation_required_processor(config: AppConfig, now: datetime) -> ItemProcessor:
    async def process(app: Application) -> str:
        await _notify_and_flag(
            app,
            [NotificationKind.ATTESTATION_REQUIRED],
            "attestation_required_notification_sent",
            config,
            now,
        )
        return app.app_id or ""

    return process


def _pausing_processor(config: AppConfig, now: datetime) -> ItemProcessor:
    async def process(app: Application) -> str:
        kinds = [NotificationKind.PAUSED]
        if app.state != ApplicationState.PAUSED:
            paused = await _transition(
                app,
                ApplicationUpdate(
                    state=ApplicationState.PAUSED,
                    pause_reason=PauseReason.PENDING_ATTESTATION,
                ),
                config,
                now,
            )
            if paused.state != ApplicationState.PAUSED:
                raise RuntimeError(f"Failed to transition {app.app_id} from {app.state.value} to PAUSED")
            kinds = notifications_for_state_change(app, paused)
            app = paused
            logger.info(f"{PAUSING_JOB} - Paused {app.app_id}")
        await _notify_and_flag(app, kinds, "application_paused_notification_sent", config, now)
        return app.app_id or ""

    return process


def _expiry_warning_processor(
    kind: NotificationKind,
    flag: str,
    config: AppConfig,
    now: datetime,
) -> ItemProcessor:
    async def process(app: Application) -> str:
        await _notify_and_flag(app, [kind], flag, config, now)
        return app.app_id or ""

    return process


def _expiring_processor(config: AppConfig, now: datetime) -> ItemProcessor:
    async def process(app: Application) -> str:
        kinds = [NotificationKind.EXPIRED]
        if app.state != ApplicationState.EXPIRED:
            expired = await _transition(
                app, ApplicationUpdate(state=ApplicationState.EXPIRED), config, now
            )
            if expired.state != ApplicationState.EXPIRED:
                raise RuntimeError(f"Failed to transition {app.app_id} from {app.state.value} to EXPIRED")
            kinds = notifications_for_state_change(app, expired)
            app = expired
            logger.info(f"{EXPIRING_JOB} - Expired {app.app_id}")
        await _notify_and_flag(app, kinds, "application_expired_notification_sent", config, now)
        return app.app_id or ""

    return process


def _closing_renewals_processor(config: AppConfig, now: datetime) -> ItemProcessor:
    async def process(app: Application) -> str:
        closed = await _transition(app, ApplicationUpdate(state=ApplicationState.CLOSED), config, now)
        if closed.state != ApplicationState.CLOSED:
            raise RuntimeError(f"Failed to transition {app.app_id} from {app.state.value} to CLOSED")
        logger.info(f"{CLOSING_RENEWALS_JOB} - Closed {app.app_id}")
        return app.app_id or ""

    return process


# =============================================================================
# Check runner
# =============================================================================


def _chunks(items: Sequence[Application], size: int) -> list[Sequence[Application]]:
    return [items[i : i + size] for i in range(0, len(items), size)]


def _build_details(
    job_name: str,
    candidates: Sequence[Application],
    outcomes: Sequence[str | BaseException],
) -> JobReportDetails:
    ids: list[str] = []
    errors: list[JobItemError] = []
    for app, outcome in zip(candidates, outcomes, strict=True):
        if isinstance(outcome, BaseException):
            logger.warning(f"{job_name} - {app.app_id} failed: {outcome}")
            errors.append(JobItemError(id=app.app_id or "", message=str(outcome)))
        else:
            ids.append(outcome)
    return JobReportDetails(ids=ids, count=len(ids), errors=errors, error_count=len(errors))


async def run_check(
    job_name: str,
    criteria: ApplicationCriteria,
    process: ItemProcessor,
    config: AppConfig,
) -> JobReport:
    """
    Run one batch check and report on it.

    Per-item failures are recorded in the report details. An exception raised
    outside item processing (e.g. the database is unreachable) produces a
    failed report rather than propagating.
    """
    started_at = datetime.now(UTC)
    logger.info(f"{job_name} - Initiating...")
    try:
        async with async_session_maker() as db:
            total = await repository.count(db, criteria)
            if total == 0:
                logger.info(f"{job_name} - No applications to process")
                return JobReport(
                    job_name=job_name,
                    started_at=started_at,
                    finished_at=datetime.now(UTC),
                    success=True,
                    details=JobReportDetails(),
                )
            logger.info(f"{job_name} - {total} applications to process")
            candidates = await repository.find_many(db, criteria)

        outcomes: list[str | BaseException] = []
        for chunk in _chunks(candidates, max(config.request_chunk_size, 1)):
            outcomes.extend(
                await asyncio.gather(*(process(app) for app in chunk), return_exceptions=True)
            )
        details = _build_details(job_name, candidates, outcomes)
    except Exception as e:
        logger.error(f"{job_name} - Failed to complete: {e}", exc_info=True)
        return JobReport(
            job_name=job_name,
            started_at=started_at,
            finished_at=datetime.now(UTC),
            success=False,
            error=str(e),
        )

    if details.error_count:
        logger.warning(f"{job_name} - Completed with {details.error_count} errors")
    logger.info(f"{job_name} - Completed. Processed: {details.count}")
    return JobReport(
        job_name=job_name,
        started_at=started_at,
        finished_at=datetime.now(UTC),
        success=True,
        details=details,
    )


def build_checks(
    config: AppConfig,
    now: datetime,
) -> list[tuple[str, ApplicationCriteria, ItemProcessor]]:
    """The batch checks in execution order."""
    return [
        (
            ATTESTATION_REQUIRED_JOB,
            build_attestation_required_criteria(config, now),
            _attestation_required_processor(config, now),
        ),
        (PAUSING_JOB, build_pausing_criteria(config, now), _pausing_processor(config, now)),
        (
            FIRST_EXPIRY_JOB,
            build_first_expiry_criteria(config, now),
            _expiry_warning_processor(
                NotificationKind.FIRST_EXPIRY, "first_expiry_notification_sent", config, now
            ),
        ),
        (
            SECOND_EXPIRY_JOB,
            build_second_expiry_criteria(config, now),
            _expiry_warning_processor(
                NotificationKind.SECOND_EXPIRY, "second_expiry_notification_sent", config, now
            ),
        ),
        (EXPIRING_JOB, build_expiring_criteria(config, now), _expiring_processor(config, now)),
        (
            CLOSING_RENEWALS_JOB,
            build_closing_renewals_criteria(config, now),
            _closing_renewals_processor(config, now),
        ),
    ]


async def run_all_jobs(
    now: datetime | None = None,
    config: AppConfig | None = None,
) -> BatchJobsReport:
    """
    Run every batch check, in order, against one reference instant.

    Args:
        now: Reference instant (defaults to the current time)
        config: Configuration snapshot (defaults to the environment settings)

    Returns:
        Combined report; a failed check does not prevent the following ones
    """
    run_at = now or datetime.now(UTC)
    config = config or settings.app_config()
    logger.info(f"Starting batch transitions for {run_at.isoformat()}")

    reports = []
    for job_name, criteria, process in build_checks(config, run_at):
        reports.append(await run_check(job_name, criteria, process, config))

    report = BatchJobsReport(run_at=run_at, reports=reports)
    logger.info(f"Batch transitions completed: {report.model_dump_json()}")
    return report


async def run_scheduled_jobs() -> BatchJobsReport | None:
    """Scheduler entry point; does nothing when batch jobs are disabled."""
    if not settings.batch_jobs_enabled:
        logger.info("Batch jobs are disabled - skipping scheduled run")
        return None
    return await run_all_jobs()


def register_access_application_jobs() -> None:
    """
    Register the daily batch run with the scheduler.

    Called during application startup, before the scheduler is started.
    """
    register_job(
        job_id=JOB_ID_BATCH_TRANSITIONS,
        func=run_scheduled_jobs,
        trigger=CronTrigger(hour=settings.batch_jobs_hour_utc, minute=0, timezone="UTC"),
    )
    logger.info(
        f"Registered job: {JOB_ID_BATCH_TRANSITIONS} (daily at {settings.batch_jobs_hour_utc:02d}:00 UTC)"
    )
