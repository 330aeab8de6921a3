"""Service for computing the next weekly fire time of an alarm instance."""

from __future__ import annotations

from datetime import datetime, timedelta

from dateutil.relativedelta import FR, MO, SA, SU, TH, TU, WE, relativedelta

from alarmclock.domain.clock import parse_time, python_weekday

DEFAULT_LOOK_AHEAD_MINUTES = 5

WEEK = timedelta(days=7)

# Indexed by datetime.weekday(): Monday=0 ... Sunday=6
_RELATIVE_WEEKDAYS = (MO, TU, WE, TH, FR, SA, SU)


def local_now() -> datetime:
    return datetime.now().astimezone()


def next_fire_time(
    day: str,
    time: str,
    now: datetime,
    look_ahead_minutes: int = DEFAULT_LOOK_AHEAD_MINUTES,
) -> datetime:
    """Return the next instant *day* at *time* should fire after *now*.

    All arithmetic uses the local wall clock of *now* (a naive *now* is taken
    to be in the device's local timezone). The candidate is this week's
    occurrence, i.e. the first *day* on or after today. It is pushed back by
    exactly one week when it is not strictly in the future, or when it is
    less than *look_ahead_minutes* away, because near-immediate triggers can
    be dropped by the notification platform.

    Raises ``InvalidDayError`` / ``InvalidTimeError`` for malformed input.
    """
    if look_ahead_minutes < 0:
        raise ValueError("look_ahead_minutes must not be negative")

    weekday = _RELATIVE_WEEKDAYS[python_weekday(day)]
    hour, minute = parse_time(time)

    if now.tzinfo is None:
        now = now.astimezone()

    candidate = now.replace(hour=hour, minute=minute, second=0, microsecond=0)
    candidate += relativedelta(weekday=weekday(0))

    buffer = timedelta(minutes=look_ahead_minutes)
    if candidate <= now or candidate - now < buffer:
        candidate += WEEK
    return candidate


def upcoming_fire_times(
    day: str,
    time: str,
    now: datetime,
    count: int = 4,
    look_ahead_minutes: int = DEFAULT_LOOK_AHEAD_MINUTES,
) -> list[datetime]:
    """The next *count* weekly occurrences, starting at ``next_fire_time``."""
    first = next_fire_time(day, time, now, look_ahead_minutes)
    return [first + WEEK * n for n in range(count)]
