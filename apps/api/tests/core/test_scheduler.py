"""
Unit tests for the background job scheduler registry.
"""

from datetime import UTC, datetime
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from apscheduler.triggers.cron import CronTrigger

from app.core import scheduler


@pytest.fixture(autouse=True)
def empty_registry():
    with patch.dict(scheduler._registry, clear=True):
        yield


class TestRegisterJob:
    def test_register_before_start(self):
        """Jobs registered before start are only recorded."""
        scheduler.register_job("nightly", AsyncMock(), CronTrigger(hour=8))

        assert scheduler.list_registered_jobs() == [{"job_id": "nightly", "registered": True}]

    def test_register_while_running(self):
        running = MagicMock()
        func = AsyncMock()
        trigger = CronTrigger(hour=8)

        with patch.object(scheduler, "_scheduler", running):
            scheduler.register_job("nightly", func, trigger)

        running.add_job.assert_called_once_with(
            func, trigger=trigger, id="nightly", replace_existing=True
        )

    def test_list_running_jobs(self):
        """Listing reports the next run, or paused when there is none."""
        next_run = datetime(2026, 3, 11, 8, 0, tzinfo=UTC)
        running = MagicMock()
        running.get_job.side_effect = lambda job_id: (
            MagicMock(next_run_time=next_run) if job_id == "nightly" else None
        )

        with patch.object(scheduler, "_scheduler", running):
            scheduler.register_job("nightly", AsyncMock(), CronTrigger(hour=8))
            scheduler.register_job("weekly", AsyncMock(), CronTrigger(day_of_week="mon"))
            jobs = scheduler.list_registered_jobs()

        assert jobs[0]["next_run_time"] == next_run.isoformat()
        assert jobs[0]["is_paused"] is False
        assert jobs[1]["next_run_time"] is None
        assert jobs[1]["is_paused"] is True


class TestStopScheduler:
    @pytest.mark.asyncio
    async def test_stop_when_not_started(self):
        with patch.object(scheduler, "_scheduler", None):
            await scheduler.stop_scheduler()


class TestTriggerJobManually:
    """Tests for running a registered job on demand."""

    @pytest.mark.asyncio
    async def test_runs_job(self):
        func = AsyncMock()
        scheduler.register_job("nightly", func, CronTrigger(hour=8))

        result = await scheduler.trigger_job_manually("nightly")

        func.assert_awaited_once()
        assert result["job_id"] == "nightly"
        assert result["status"] == "success"
        assert "error" not in result

    @pytest.mark.asyncio
    async def test_failure_is_reported(self):
        """A job that raises is reported, not propagated."""
        scheduler.register_job(
            "nightly", AsyncMock(side_effect=RuntimeError("database down")), CronTrigger(hour=8)
        )

        result = await scheduler.trigger_job_manually("nightly")

        assert result["status"] == "error"
        assert result["error"] == "database down"

    @pytest.mark.asyncio
    async def test_unknown_job(self):
        with pytest.raises(KeyError):
            await scheduler.trigger_job_manually("missing")


class TestPauseResume:
    """Tests for pausing and resuming scheduled jobs."""

    def test_pause_and_resume(self):
        running = MagicMock()
        running.get_job.return_value = MagicMock()

        with patch.object(scheduler, "_scheduler", running):
            assert scheduler.pause_job("nightly") is True
            assert scheduler.resume_job("nightly") is True

        running.pause_job.assert_called_once_with("nightly")
        running.resume_job.assert_called_once_with("nightly")

    def test_unknown_job(self):
        running = MagicMock()
        running.get_job.return_value = None

        with patch.object(scheduler, "_scheduler", running):
            assert scheduler.pause_job("missing") is False
            assert scheduler.resume_job("missing") is False

        running.pause_job.assert_not_called()
        running.resume_job.assert_not_called()

    def test_not_started(self):
        with patch.object(scheduler, "_scheduler", None):
            assert scheduler.pause_job("nightly") is False
            assert scheduler.resume_job("nightly") is False
