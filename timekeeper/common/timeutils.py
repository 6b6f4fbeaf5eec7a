"""Epoch-second time arithmetic. Pure functions, no state.

All instants in the engine are integer seconds since the Unix epoch so that
durations never accumulate floating-point drift.
"""

from __future__ import annotations

import calendar
import time
from datetime import date, datetime, time as dtime, timedelta, timezone, tzinfo
from typing import Optional
from zoneinfo import ZoneInfo

from timekeeper.config import settings

SECONDS_PER_MINUTE = 60
SECONDS_PER_HOUR = 3600


def epoch_now() -> int:
    """Current time in whole epoch seconds.

    Wrapped so tests can patch it.
    """
    return int(time.time())


def default_tz() -> tzinfo:
    return ZoneInfo(settings.TIMEZONE)


def elapsed_seconds(start: int, end: int) -> int:
    """Seconds from *start* to *end*, never negative."""
    return max(0, int(end) - int(start))


def seconds_to_minutes(seconds: int) -> int:
    """Whole minutes, floored."""
    return int(seconds) // SECONDS_PER_MINUTE


def seconds_to_hours(seconds: int) -> float:
    return round(int(seconds) / SECONDS_PER_HOUR, 2)


def minutes_to_hours(minutes: int) -> float:
    return round(int(minutes) / 60, 2)


def minutes_between(start: int, end: int) -> int:
    """Floored minutes between two instants (negative if *end* precedes *start*)."""
    return (int(end) - int(start)) // SECONDS_PER_MINUTE


def to_epoch(moment: datetime) -> int:
    """Convert an aware datetime to epoch seconds; naive values are taken as UTC."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return int(moment.timestamp())


def from_epoch(seconds: int, tz: Optional[tzinfo] = None) -> datetime:
    return datetime.fromtimestamp(int(seconds), tz=tz or timezone.utc)


def local_date(seconds: int, tz: Optional[tzinfo] = None) -> date:
    """Calendar date of an instant in *tz* (configured zone by default)."""
    return from_epoch(seconds, tz or default_tz()).date()


def day_bounds(day: date, tz: Optional[tzinfo] = None) -> tuple[int, int]:
    """Epoch seconds of [start of *day*, start of next day) in *tz*."""
    tz = tz or default_tz()
    start = datetime.combine(day, dtime.min, tzinfo=tz)
    end = datetime.combine(day + timedelta(days=1), dtime.min, tzinfo=tz)
    return to_epoch(start), to_epoch(end)


def days_between(earlier: date, later: date) -> int:
    return (later - earlier).days


def month_bounds(day: date) -> tuple[date, date]:
    """First and last calendar day of *day*'s month."""
    last = calendar.monthrange(day.year, day.month)[1]
    return day.replace(day=1), day.replace(day=last)
