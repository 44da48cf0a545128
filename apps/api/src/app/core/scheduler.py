"""
Background Job Scheduler

Runs the periodic batch work (attestation, pausing, expiry and renewal
checks) with APScheduler's AsyncIO scheduler inside the API process.

Jobs are registered by the modules during startup and added to the
scheduler when it starts. A job may also be registered while the scheduler
is running; it is then added immediately. Registered jobs can also be run
on demand, paused and resumed (see the admin job endpoints).

Usage:
    from app.core.scheduler import register_job, start_scheduler, stop_scheduler

    register_job("batch_transitions", run_scheduled_jobs, CronTrigger(hour=8))

    async def lifespan(app):
        await start_scheduler()
        yield
        await stop_scheduler()
"""

import logging
from collections.abc import Callable, Coroutine
from datetime import UTC, datetime
from typing import Any

from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_EXECUTED, JobExecutionEvent
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.base import BaseTrigger

logger = logging.getLogger(__name__)

JobFunc = Callable[[], Coroutine[Any, Any, Any]]

_scheduler: AsyncIOScheduler | None = None

# job id -> (function, trigger), kept so jobs survive a scheduler restart
_registry: dict[str, tuple[JobFunc, BaseTrigger]] = {}


class SchedulerConfig:
    """Settings for the background scheduler."""

    TIMEZONE = "UTC"

    JOB_DEFAULTS = {
        # A daily run missed while the API was down runs once on startup
        "coalesce": True,
        "max_instances": 1,
        "misfire_grace_time": 60 * 60,
    }


def _on_job_event(event: JobExecutionEvent) -> None:
    if event.exception:
        logger.error(
            f"Scheduled job {event.job_id} failed: {event.exception}",
            exc_info=event.exception,
        )
    else:
        logger.info(f"Scheduled job {event.job_id} finished")


def _add_to_scheduler(job_id: str, func: JobFunc, trigger: BaseTrigger) -> None:
    if _scheduler is None:
        return
    _scheduler.add_job(func, trigger=trigger, id=job_id, replace_existing=True)
    logger.info(f"Scheduled job: {job_id}")


async def start_scheduler() -> AsyncIOScheduler:
    """
    Create and start the scheduler with every registered job.

    Returns:
        The running scheduler (the existing one if already started)
    """
    global _scheduler

    if _scheduler is not None and _scheduler.running:
        logger.warning("Scheduler already running")
        return _scheduler

    _scheduler = AsyncIOScheduler(
        timezone=SchedulerConfig.TIMEZONE,
        job_defaults=SchedulerConfig.JOB_DEFAULTS,
    )
    _scheduler.add_listener(_on_job_event, EVENT_JOB_EXECUTED | EVENT_JOB_ERROR)
    for job_id, (func, trigger) in _registry.items():
        _add_to_scheduler(job_id, func, trigger)

    _scheduler.start()
    logger.info(f"Background scheduler started with {len(_registry)} jobs")
    return _scheduler


async def stop_scheduler() -> None:
    """Stop the scheduler, waiting for running jobs to finish."""
    global _scheduler

    if _scheduler is None or not _scheduler.running:
        logger.debug("Scheduler not running, nothing to stop")
        return

    _scheduler.shutdown(wait=True)
    _scheduler = None
    logger.info("Background scheduler stopped")


def register_job(job_id: str, func: JobFunc, trigger: BaseTrigger) -> None:
    """
    Register a job. Registering the same id again replaces the job.

    Args:
        job_id: Unique identifier for the job
        func: Async function to execute
        trigger: APScheduler trigger (usually a CronTrigger)
    """
    _registry[job_id] = (func, trigger)
    if _scheduler is None:
        logger.debug(f"Scheduler not started, job {job_id} will be added on start")
        return
    _add_to_scheduler(job_id, func, trigger)


def list_registered_jobs() -> list[dict[str, Any]]:
    """
    Describe the registered jobs.

    Returns:
        One dict per job with ``job_id``, ``registered`` and, once the
        scheduler runs, ``next_run_time`` and ``is_paused``
    """
    jobs = []
    for job_id in _registry:
        info: dict[str, Any] = {"job_id": job_id, "registered": True}
        if _scheduler is not None:
            scheduled = _scheduler.get_job(job_id)
            next_run = scheduled.next_run_time if scheduled else None
            info["next_run_time"] = next_run.isoformat() if next_run else None
            info["is_paused"] = next_run is None
        jobs.append(info)
    return jobs


async def trigger_job_manually(job_id: str) -> dict[str, Any]:
    """
    Run a registered job now, outside its schedule.

    The job function is awaited directly, so the result reflects this run.

    Returns:
        Dict with ``job_id``, ``status`` ("success" or "error"),
        ``executed_at`` and, on failure, ``error``

    Raises:
        KeyError: If no job is registered under ``job_id``
    """
    if job_id not in _registry:
        raise KeyError(job_id)

    func, _ = _registry[job_id]
    executed_at = datetime.now(UTC)
    logger.info(f"Manually running job: {job_id}")
    try:
        await func()
    except Exception as e:
        logger.error(f"Manual run of job {job_id} failed: {e}", exc_info=True)
        return {
            "job_id": job_id,
            "status": "error",
            "executed_at": executed_at.isoformat(),
            "error": str(e),
        }
    logger.info(f"Manual run of job {job_id} finished")
    return {"job_id": job_id, "status": "success", "executed_at": executed_at.isoformat()}


def pause_job(job_id: str) -> bool:
    """
    Stop a scheduled job from firing until it is resumed.

    Returns:
        True if the job was paused, False if the scheduler is not running or
        the job is unknown
    """
    if _scheduler is None or _scheduler.get_job(job_id) is None:
        logger.warning(f"Cannot pause job {job_id}: not scheduled")
        return False
    _scheduler.pause_job(job_id)
    logger.info(f"Paused job: {job_id}")
    return True


def resume_job(job_id: str) -> bool:
    """
    Resume a paused job on its trigger.

    Returns:
        True if the job was resumed, False if the scheduler is not running or
        the job is unknown
    """
    if _scheduler is None or _scheduler.get_job(job_id) is None:
        logger.warning(f"Cannot resume job {job_id}: not scheduled")
        return False
    _scheduler.resume_job(job_id)
    logger.info(f"Resumed job: {job_id}")
    return True
