"""Service for normalising user-entered times of day."""

from __future__ import annotations

import re

import dateparser

from alarmclock.domain.clock import format_time, normalize_time
from alarmclock.domain.errors import InvalidTimeError

_SETTINGS = {
    "RETURN_AS_TIMEZONE_AWARE": False,
    "PREFER_DATES_FROM": "current_period",
}

# "6:30", "6.30", "6:30:15", "6pm", "6:30 a.m."
_CLOCK_RE = re.compile(
    r"\b\d{1,2}(?:[:.]\d{2}){1,2}\b|\b\d{1,2}\s*[ap]\.?\s*m\b", re.IGNORECASE
)


def parse_alarm_time(raw: str) -> str:
    """Turn ``"06:30"``, ``"6:30 am"`` or ``"6pm"`` into 24-hour ``HH:MM``.

    Strict ``H:MM`` / ``HH:MM`` input is taken as-is; anything else goes
    through ``dateparser``, but only when it contains a clock reading.
    Date words alone ("tomorrow", "monday") carry no time of day.
    Only the time of day is kept, seconds are dropped.
    Raises ``InvalidTimeError`` if no time can be read.
    """
    if not raw or not raw.strip():
        raise InvalidTimeError(raw)
    text = raw.strip()
    try:
        return normalize_time(text)
    except InvalidTimeError:
        pass

    if _CLOCK_RE.search(text) is None:
        raise InvalidTimeError(raw)

    parsed = dateparser.parse(text, languages=["en"], settings=_SETTINGS)
    if parsed is None:
        raise InvalidTimeError(raw)
    return format_time(parsed.hour, parsed.minute)
