"""Weekday and time-of-day helpers shared by the store and the calculator."""

from __future__ import annotations

import re

from alarmclock.domain.errors import InvalidDayError, InvalidTimeError
from alarmclock.domain.models import DaySelection

# Sunday=0 ... Saturday=6
WEEKDAYS = (
    "Sunday",
    "Monday",
    "Tuesday",
    "Wednesday",
    "Thursday",
    "Friday",
    "Saturday",
)

_TIME_RE = re.compile(r"^(\d{1,2}):(\d{2})$")

_PRESETS = {
    DaySelection.EVERYDAY: WEEKDAYS,
    DaySelection.WEEKDAYS: ("Monday", "Tuesday", "Wednesday", "Thursday", "Friday"),
    DaySelection.WEEKENDS: ("Saturday", "Sunday"),
    DaySelection.EVERY_2_DAYS: ("Monday", "Wednesday", "Friday", "Sunday"),
}


def weekday_index(day: str) -> int:
    """Return the Sunday=0 index of a weekday name.

    Raises ``InvalidDayError`` for anything that is not one of the seven
    English day names.
    """
    if isinstance(day, str):
        name = day.strip().capitalize()
        if name in WEEKDAYS:
            return WEEKDAYS.index(name)
    raise InvalidDayError(day)


def parse_day(day: str) -> str:
    """Return the canonical spelling of *day* (``"monday"`` -> ``"Monday"``)."""
    return WEEKDAYS[weekday_index(day)]


def platform_weekday(day: str) -> int:
    """Weekday in the notification platform's convention: 1=Sunday ... 7=Saturday."""
    return weekday_index(day) + 1


def python_weekday(day: str) -> int:
    """Weekday in ``datetime.weekday()`` convention: Monday=0 ... Sunday=6."""
    return (weekday_index(day) - 1) % 7


def parse_time(time: str) -> tuple[int, int]:
    """Parse ``"HH:MM"`` (24-hour, no seconds) into ``(hour, minute)``."""
    match = _TIME_RE.match(time.strip()) if isinstance(time, str) else None
    if match is None:
        raise InvalidTimeError(time)
    hour, minute = int(match.group(1)), int(match.group(2))
    if not (0 <= hour <= 23 and 0 <= minute <= 59):
        raise InvalidTimeError(time)
    return hour, minute


def format_time(hour: int, minute: int) -> str:
    return f"{hour:02d}:{minute:02d}"


def normalize_time(time: str) -> str:
    """Canonical ``HH:MM`` form of *time*, e.g. ``"6:00"`` -> ``"06:00"``."""
    return format_time(*parse_time(time))


def slot_key(day: str, time: str) -> tuple[str, str]:
    """Uniqueness key of an alarm instance within its event.

    Malformed values fall back to their raw text so that invalid instances
    loaded from storage can still be compared.
    """
    try:
        day_key = parse_day(day)
    except InvalidDayError:
        day_key = str(day)
    try:
        time_key = normalize_time(time)
    except InvalidTimeError:
        time_key = str(time)
    return day_key, time_key


def days_for_selection(
    selection: DaySelection, custom_days: list[str] | None = None
) -> list[str]:
    """Expand a day-selection preset into weekday names.

    ``custom`` returns the caller's own list (canonicalised, order kept,
    repeats dropped).
    """
    if selection == DaySelection.CUSTOM:
        days: list[str] = []
        for day in custom_days or []:
            name = parse_day(day)
            if name not in days:
                days.append(name)
        return days
    return list(_PRESETS[selection])
