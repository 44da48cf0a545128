"""
Access Applications Temporal Calculations

Pure, total functions deciding from configured durations and timestamps
whether an application is attestable, renewable, pausable or expirable as of
a given instant.

Design Principles:
- ``now`` is always an explicit argument, never read from the clock
- Comparisons are made at day granularity (UTC start/end of day) so batch
  runs triggered at different times of the same day agree
- Configuration is the immutable ``AppConfig`` passed in by the caller
"""

import calendar
from datetime import UTC, date, datetime, time, timedelta
from zoneinfo import ZoneInfo

from app.core.config import AppConfig, UnitOfTime
from app.modules.access_applications.domain import Application, ApplicationState


def as_utc(dt: datetime) -> datetime:
    """Treat naive datetimes as UTC and convert aware ones to UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def start_of_day(dt: datetime) -> datetime:
    return datetime.combine(as_utc(dt).date(), time.min, tzinfo=UTC)


def end_of_day(dt: datetime) -> datetime:
    return datetime.combine(as_utc(dt).date(), time.max, tzinfo=UTC)


def _add_months(dt: datetime, months: int) -> datetime:
    month_index = dt.month - 1 + months
    year = dt.year + month_index // 12
    month = month_index % 12 + 1
    # Clamp to the last day of the target month (Jan 31 + 1 month = Feb 28/29)
    day = min(dt.day, calendar.monthrange(year, month)[1])
    return dt.replace(year=year, month=month, day=day)


def add_period(dt: datetime, count: int, unit: UnitOfTime) -> datetime:
    """
    Add ``count`` units of time to a datetime.

    Month and year arithmetic is calendar based and clamps to the end of the
    month, so Feb 29 plus one year is Feb 28.
    """
    if unit == "days":
        return dt + timedelta(days=count)
    if unit == "weeks":
        return dt + timedelta(weeks=count)
    if unit == "months":
        return _add_months(dt, count)
    if unit == "years":
        return _add_months(dt, count * 12)
    raise ValueError(f"Unsupported unit of time: {unit}")


def days_elapsed(base: datetime, other: datetime) -> int:
    """Whole calendar days from ``other`` to ``base`` (negative if ``other`` is later)."""
    return (start_of_day(base) - start_of_day(other)).days


def get_attestation_by_date(approved_at: datetime, config: AppConfig) -> datetime:
    attestation = config.durations.attestation
    return add_period(as_utc(approved_at), attestation.count, attestation.unit_of_time)


def get_expiry_date(now: datetime, config: AppConfig) -> datetime:
    """Expiry for an application approved at ``now``."""
    expiry = config.durations.expiry
    return add_period(as_utc(now), expiry.count, expiry.unit_of_time)


def get_renewal_period_end_date(expires_at: datetime, config: AppConfig) -> datetime:
    return as_utc(expires_at) + timedelta(days=config.durations.expiry.days_post_expiry)


def is_attestable(app: Application, config: AppConfig, now: datetime) -> bool:
    """
    Whether the submitter may attest now.

    False once attested (attestation is reset only by a renewal, which creates
    a new application). Otherwise true from ``days_to_attestation`` days before
    the attestation-by date onward, with no upper bound.
    """
    if app.attested_at_utc is not None:
        return False
    if app.state not in (ApplicationState.APPROVED, ApplicationState.PAUSED):
        return False
    if app.approved_at_utc is None:
        return False
    attestation_by = get_attestation_by_date(app.approved_at_utc, config)
    elapsed = days_elapsed(now, attestation_by)
    return elapsed >= -config.durations.attestation.days_to_attestation


def is_attestation_overdue(app: Application, config: AppConfig, now: datetime) -> bool:
    """Whether the attestation-by day has been reached without an attestation."""
    if app.attested_at_utc is not None or app.approved_at_utc is None:
        return False
    attestation_by = get_attestation_by_date(app.approved_at_utc, config)
    return days_elapsed(now, attestation_by) >= 0


def is_renewable(app: Application, config: AppConfig, now: datetime) -> bool:
    """
    Whether a renewal may be created from this application now.

    The renewal window runs from ``days_to_expiry_1`` days before expiry to
    ``days_post_expiry`` days after it, inclusive by day.
    """
    if not config.features.renewal_enabled:
        return False
    if app.renewal_app_id:
        return False
    if not app.was_ever_approved or app.expires_at_utc is None:
        return False
    if app.state not in (
        ApplicationState.APPROVED,
        ApplicationState.PAUSED,
        ApplicationState.EXPIRED,
    ):
        return False
    expiry = config.durations.expiry
    window_start = start_of_day(app.expires_at_utc - timedelta(days=expiry.days_to_expiry_1))
    window_end = end_of_day(app.expires_at_utc + timedelta(days=expiry.days_post_expiry))
    return window_start <= as_utc(now) <= window_end


def is_expirable(app: Application, now: datetime) -> bool:
    """Whether the expiry day has been reached for an application that was approved."""
    if not app.was_ever_approved or app.expires_at_utc is None:
        return False
    return start_of_day(now) >= start_of_day(app.expires_at_utc)


def renewal_period_is_ended(app: Application, now: datetime) -> bool:
    if app.renewal_period_end_date_utc is None:
        return False
    return as_utc(now) > end_of_day(app.renewal_period_end_date_utc)


def to_reference_date(dt: datetime, timezone: str) -> date:
    return as_utc(dt).astimezone(ZoneInfo(timezone)).date()


def format_reference_date(dt: datetime | None, timezone: str) -> str:
    """Render ``YYYY-MM-DD`` in the reference timezone (empty for missing dates)."""
    if dt is None:
        return ""
    return to_reference_date(dt, timezone).isoformat()
