"""
Recurrence Calculator
Turns a medication's recurrence rule into concrete dose timestamps
"""

import logging
import math
import re
from typing import Iterator, List, Optional
from dataclasses import dataclass, field
from datetime import datetime, date, time, timedelta, timezone
from zoneinfo import ZoneInfo

from config import settings, schedule_limits


logger = logging.getLogger(__name__)


START_TIME_PATTERN = re.compile(r"^([0-1]?[0-9]|2[0-3]):([0-5][0-9])$")


class InvalidScheduleError(ValueError):
    """Recurrence rule or treatment duration is out of range or malformed"""


class InvalidBackfillError(ValueError):
    """Retroactive dose history cannot be reconstructed from the given input"""


@dataclass
class BackfillPlan:
    """Doses already taken plus the upcoming series that continues them"""
    taken: List[datetime] = field(default_factory=list)
    upcoming: List[datetime] = field(default_factory=list)


# ==================== TIME HELPERS ====================

def operating_timezone(name: Optional[str] = None) -> ZoneInfo:
    return ZoneInfo(name or settings.TIMEZONE)


def as_utc(value: datetime) -> datetime:
    """Aware UTC datetime; naive values are taken to already be UTC"""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def from_client(value: datetime, tz: Optional[ZoneInfo] = None) -> datetime:
    """Aware UTC datetime; naive values are wall-clock time in the operating timezone"""
    if value.tzinfo is None:
        value = value.replace(tzinfo=tz or operating_timezone())
    return value.astimezone(timezone.utc)


def as_naive_utc(value: datetime) -> datetime:
    """Storage representation used by the models"""
    return as_utc(value).replace(tzinfo=None)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def local_today(now: Optional[datetime] = None, tz: Optional[ZoneInfo] = None) -> date:
    """Calendar date in the operating timezone"""
    tz = tz or operating_timezone()
    return as_utc(now or utc_now()).astimezone(tz).date()


def local_date_of(value: datetime, tz: Optional[ZoneInfo] = None) -> date:
    tz = tz or operating_timezone()
    return as_utc(value).astimezone(tz).date()


# ==================== VALIDATION ====================

def parse_start_time(value: str) -> time:
    """Parse "H:MM" / "HH:MM" within 00:00-23:59"""
    if not isinstance(value, str):
        raise InvalidScheduleError("Start time must be a string in HH:MM format")

    match = START_TIME_PATTERN.match(value.strip())
    if not match:
        raise InvalidScheduleError(f"Invalid start time '{value}'. Use HH:MM (00:00-23:59)")

    return time(int(match.group(1)), int(match.group(2)))


def normalize_start_time(value: str) -> str:
    """Canonical zero-padded HH:MM form"""
    return parse_start_time(value).strftime("%H:%M")


def validate_frequency(hours) -> float:
    """Frequency in hours, bounded to [0.5, 8760]"""
    if isinstance(hours, bool):
        raise InvalidScheduleError("Frequency must be a number of hours")
    try:
        value = float(hours)
    except (TypeError, ValueError):
        raise InvalidScheduleError("Frequency must be a number of hours")

    if not math.isfinite(value):
        raise InvalidScheduleError("Frequency must be a finite number of hours")

    if value < schedule_limits.MIN_FREQUENCY_HOURS or value > schedule_limits.MAX_FREQUENCY_HOURS:
        raise InvalidScheduleError(
            f"Frequency must be between {schedule_limits.MIN_FREQUENCY_HOURS} "
            f"and {schedule_limits.MAX_FREQUENCY_HOURS:g} hours"
        )
    return value


def validate_duration(days: Optional[int]) -> Optional[int]:
    """Treatment duration in days; None means continuous"""
    if days is None:
        return None
    if isinstance(days, bool) or not isinstance(days, int):
        raise InvalidScheduleError("Duration must be a whole number of days")
    if days < schedule_limits.MIN_DURATION_DAYS or days > schedule_limits.MAX_DURATION_DAYS:
        raise InvalidScheduleError(
            f"Duration must be between {schedule_limits.MIN_DURATION_DAYS} "
            f"and {schedule_limits.MAX_DURATION_DAYS} days"
        )
    return days


def treatment_end(started_at: Optional[date], duration_days: Optional[int],
                  tz: Optional[ZoneInfo] = None) -> Optional[datetime]:
    """
    UTC instant at which a finite treatment ends: local midnight after
    its last day. None for continuous treatments.
    """
    if started_at is None or duration_days is None:
        return None
    tz = tz or operating_timezone()
    last_midnight = datetime.combine(started_at + timedelta(days=duration_days), time(0, 0), tzinfo=tz)
    return last_midnight.astimezone(timezone.utc)


# ==================== GENERATION ====================

def _bounded_series(first: datetime, step: timedelta, now: datetime,
                    horizon_days: int, until: Optional[datetime]) -> Iterator[datetime]:
    horizon_end = now + timedelta(days=horizon_days)
    if until is not None:
        until = as_utc(until)

    index = 0
    while True:
        # Multiply rather than accumulate so fractional steps do not drift
        occurrence = first + index * step
        if occurrence > horizon_end:
            return
        if until is not None and occurrence >= until:
            return
        yield occurrence
        index += 1


def next_occurrences(
    start_time,
    frequency_hours: float,
    now: Optional[datetime] = None,
    horizon_days: int = 7,
    until: Optional[datetime] = None,
    tz: Optional[ZoneInfo] = None
) -> Iterator[datetime]:
    """
    Future dose timestamps for a recurrence rule.

    The series is anchored on today's start_time in the operating
    timezone, rolled to tomorrow when that moment is not after now,
    and stepped by frequency_hours of absolute time. Every yielded
    value is an aware UTC datetime in (now, now + horizon_days].

    Args:
        start_time: "HH:MM" string or datetime.time
        frequency_hours: Interval between doses
        now: Reference instant (defaults to the current time)
        horizon_days: How far ahead to generate
        until: Exclusive upper bound, e.g. the end of treatment
        tz: Operating timezone override
    """
    if not isinstance(start_time, time):
        start_time = parse_start_time(start_time)
    step = timedelta(hours=validate_frequency(frequency_hours))
    tz = tz or operating_timezone()
    now = as_utc(now or utc_now())

    local_now = now.astimezone(tz)
    first_local = datetime.combine(local_now.date(), start_time, tzinfo=tz)
    if first_local <= local_now:
        first_local = datetime.combine(local_now.date() + timedelta(days=1), start_time, tzinfo=tz)

    first = first_local.astimezone(timezone.utc)
    return _bounded_series(first, step, now, horizon_days, until)


def continue_occurrences(
    anchor: datetime,
    frequency_hours: float,
    now: Optional[datetime] = None,
    horizon_days: int = 7,
    until: Optional[datetime] = None
) -> Iterator[datetime]:
    """
    Extend an existing series past anchor, keeping its spacing.

    Yields anchor + k * frequency_hours for the smallest k >= 1 that is
    not before now, then onward within the same bounds as
    next_occurrences.
    """
    step = timedelta(hours=validate_frequency(frequency_hours))
    anchor = as_utc(anchor)
    now = as_utc(now or utc_now())

    elapsed = (now - anchor) / step
    k = max(1, math.ceil(elapsed))
    while anchor + k * step < now:
        k += 1

    return _bounded_series(anchor + k * step, step, now, horizon_days, until)


def backfill(
    last_taken_time: datetime,
    doses_already_taken: int,
    frequency_hours: float,
    now: Optional[datetime] = None,
    horizon_days: int = 7,
    until: Optional[datetime] = None
) -> BackfillPlan:
    """
    Reconstruct the history of a treatment that began before it was
    registered, and the series that continues it.

    History is doses_already_taken timestamps spaced frequency_hours
    apart and ending at last_taken_time; all of them are to be stored
    as taken. The upcoming part starts at last_taken_time +
    frequency_hours, skipping anything already in the past.
    """
    step = timedelta(hours=validate_frequency(frequency_hours))
    now = as_utc(now or utc_now())
    last = as_utc(last_taken_time)

    if isinstance(doses_already_taken, bool) or not isinstance(doses_already_taken, int):
        raise InvalidBackfillError("Number of doses already taken must be an integer")
    if doses_already_taken < 1:
        raise InvalidBackfillError("Number of doses already taken must be at least 1")
    if last > now:
        raise InvalidBackfillError("Last dose time cannot be in the future")
    if now - last > timedelta(days=schedule_limits.BACKFILL_MAX_AGE_DAYS):
        raise InvalidBackfillError(
            f"Last dose time cannot be more than {schedule_limits.BACKFILL_MAX_AGE_DAYS} days ago"
        )

    taken = [last - (doses_already_taken - 1 - i) * step for i in range(doses_already_taken)]
    upcoming = list(continue_occurrences(last, frequency_hours, now, horizon_days, until))

    logger.debug(
        f"Backfill planned {len(taken)} taken doses from {taken[0].isoformat()} "
        f"and {len(upcoming)} upcoming"
    )
    return BackfillPlan(taken=taken, upcoming=upcoming)
