"""Resolve the reporting window for a recap run."""
from __future__ import annotations

from datetime import UTC, date, datetime, time, timedelta
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from loguru import logger

from daily_recap.errors import WindowResolutionError
from daily_recap.models import TimeWindow

REST_DAYS = frozenset({5, 6})
DAYS_IN_WEEK = 7
END_OF_DAY = time(23, 59, 59)
LOCAL_DISPLAY_FORMAT = "%Y-%m-%d %H:%M:%S %Z"


def load_zone(tz_name: str) -> ZoneInfo:
    """Return the reference timezone or raise a window error."""
    try:
        return ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise WindowResolutionError(f"unknown timezone {tz_name!r}") from exc


def local_today(tz: ZoneInfo, now: datetime | None = None) -> date:
    """Return the current calendar date in the reference timezone."""
    if now is None:
        now = datetime.now(UTC)
    if now.tzinfo is None:
        now = now.replace(tzinfo=tz)
    return now.astimezone(tz).date()


def last_working_day(day: date, rest_days: frozenset[int]) -> date:
    """Walk back from ``day`` to the nearest working day."""
    for _ in range(DAYS_IN_WEEK):
        if day.weekday() not in rest_days:
            return day
        day -= timedelta(days=1)
    raise WindowResolutionError("every weekday is configured as a rest day")


def is_first_working_day(today: date, rest_days: frozenset[int]) -> bool:
    """Return True when today ends a rest period."""
    yesterday = today - timedelta(days=1)
    return today.weekday() not in rest_days and yesterday.weekday() in rest_days


def to_utc(day: date, at: time, tz: ZoneInfo) -> datetime:
    """Convert a local wall-clock time on ``day`` to UTC."""
    return datetime.combine(day, at, tzinfo=tz).astimezone(UTC)


def resolve_window(
    tz_name: str,
    now: datetime | None = None,
    rest_days: frozenset[int] = REST_DAYS,
) -> TimeWindow:
    """Compute the UTC bounds of the reporting window.

    On the first working day after a rest period the window covers the last
    working day before it plus the whole rest period. Otherwise it covers
    the previous calendar day. Bounds are resolved per date in the reference
    timezone so DST changes inside the window shift the UTC offset.
    """
    if len(rest_days) >= DAYS_IN_WEEK:
        raise WindowResolutionError("every weekday is configured as a rest day")
    tz = load_zone(tz_name)
    try:
        today = local_today(tz, now)
        yesterday = today - timedelta(days=1)
        extended = is_first_working_day(today, rest_days)
        start_day = (
            last_working_day(yesterday, rest_days) if extended else yesterday
        )
        start = to_utc(start_day, time.min, tz)
        end = to_utc(yesterday, END_OF_DAY, tz)
    except (OverflowError, ValueError) as exc:
        raise WindowResolutionError(str(exc)) from exc

    if extended:
        period_label = f"Weekend & {start_day:%A}"
    else:
        period_label = yesterday.strftime("%B %d, %Y")
    window = TimeWindow(
        start=start,
        end=end,
        is_extended=extended,
        period_label=period_label,
    )
    logger.info(
        "Resolved window: {start} → {end}",
        start=start.astimezone(tz).strftime(LOCAL_DISPLAY_FORMAT),
        end=end.astimezone(tz).strftime(LOCAL_DISPLAY_FORMAT),
        since=window.since_iso,
        until=window.until_iso,
        extended=extended,
    )
    return window


def run_title(window: TimeWindow) -> str:
    """Return the notification title for the window."""
    if window.is_extended:
        return f"🚀 {window.period_label} Development Summary"
    return "🚀 Yesterday's Development Summary"
