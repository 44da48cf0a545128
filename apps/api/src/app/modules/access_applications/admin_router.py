"""
Access Applications Admin Router

Endpoints for reviewers to operate the batch transitions and export the
application history.

Endpoints:
- POST /admin/jobs/batch-transitions - Run every batch check now
- GET /admin/jobs - List the registered scheduled jobs
- POST /admin/jobs/{job_id}/run - Run a scheduled job now
- POST /admin/jobs/{job_id}/pause - Pause a scheduled job
- POST /admin/jobs/{job_id}/resume - Resume a paused job
- GET /admin/applications/history - Download the audit history as TSV

Security:
- All endpoints require a valid JWT token with the reviewer scope
- Audit logging for all admin actions
"""

import logging
from datetime import UTC, datetime

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import PlainTextResponse
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.auth import UserPrincipal, get_current_admin
from app.core.config import settings
from app.core.database import get_db
from app.core.scheduler import (
    list_registered_jobs,
    pause_job,
    resume_job,
    trigger_job_manually,
)
from app.modules.access_applications import service
from app.modules.access_applications.jobs import run_all_jobs
from app.modules.access_applications.schemas import (
    BatchJobsReport,
    JobRunResult,
    JobStatusChange,
    RegisteredJob,
)

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post(
    "/jobs/batch-transitions",
    response_model=BatchJobsReport,
    summary="Run Batch Transitions",
    description="""
Run the attestation, pausing, expiry notice, expiring and renewal closing
checks immediately, in that order, and return one report per check.

A failing check is reported and does not stop the following checks.
Runs even when scheduled batch jobs are disabled.
""",
    responses={
        200: {"description": "Combined report", "model": BatchJobsReport},
        401: {"description": "Unauthorized - invalid or missing token"},
        403: {"description": "Forbidden - not a reviewer"},
    },
)
async def run_batch_transitions(
    admin: UserPrincipal = Depends(get_current_admin),
) -> BatchJobsReport:
    logger.info(f"Reviewer {admin.id} triggered batch transitions")
    try:
        return await run_all_jobs(config=settings.app_config())
    except Exception as e:
        logger.exception(f"Error running batch transitions: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={
                "error": "INTERNAL_ERROR",
                "message": "An unexpected error occurred.",
            },
        ) from e


@router.get(
    "/jobs",
    response_model=list[RegisteredJob],
    summary="List Scheduled Jobs",
)
async def list_jobs(
    _admin: UserPrincipal = Depends(get_current_admin),
) -> list[RegisteredJob]:
    return [RegisteredJob(**job) for job in list_registered_jobs()]


def _job_not_found(job_id: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail={
            "error": "JOB_NOT_FOUND",
            "message": f"No scheduled job {job_id}",
        },
    )


@router.post(
    "/jobs/{job_id}/run",
    response_model=JobRunResult,
    summary="Run Scheduled Job Now",
    responses={
        200: {"description": "Run outcome (status is error if the job raised)"},
        404: {"description": "Unknown job"},
    },
)
async def run_job(
    job_id: str,
    admin: UserPrincipal = Depends(get_current_admin),
) -> JobRunResult:
    logger.info(f"Reviewer {admin.id} triggered job {job_id}")
    try:
        result = await trigger_job_manually(job_id)
    except KeyError as e:
        raise _job_not_found(job_id) from e
    return JobRunResult(**result)


@router.post(
    "/jobs/{job_id}/pause",
    response_model=JobStatusChange,
    summary="Pause Scheduled Job",
)
async def pause_scheduled_job(
    job_id: str,
    admin: UserPrincipal = Depends(get_current_admin),
) -> JobStatusChange:
    if not pause_job(job_id):
        raise _job_not_found(job_id)
    logger.info(f"Reviewer {admin.id} paused job {job_id}")
    return JobStatusChange(job_id=job_id, is_paused=True)


@router.post(
    "/jobs/{job_id}/resume",
    response_model=JobStatusChange,
    summary="Resume Scheduled Job",
)
async def resume_scheduled_job(
    job_id: str,
    admin: UserPrincipal = Depends(get_current_admin),
) -> JobStatusChange:
    if not resume_job(job_id):
        raise _job_not_found(job_id)
    logger.info(f"Reviewer {admin.id} resumed job {job_id}")
    return JobStatusChange(job_id=job_id, is_paused=False)


@router.get(
    "/applications/history",
    response_class=PlainTextResponse,
    summary="Export Application History",
    description="Tab-separated history of every application state change, oldest first.",
)
async def export_history(
    db: AsyncSession = Depends(get_db),
    admin: UserPrincipal = Depends(get_current_admin),
) -> PlainTextResponse:
    try:
        content = await service.export_application_history(db, settings.app_config())
    except Exception as e:
        logger.exception(f"Error exporting application history: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={
                "error": "INTERNAL_ERROR",
                "message": "An unexpected error occurred.",
            },
        ) from e

    logger.info(f"Reviewer {admin.id} exported the application history")
    filename = f"application-history-{datetime.now(UTC):%Y-%m-%d}.tsv"
    return PlainTextResponse(
        content,
        media_type="text/tab-separated-values",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
