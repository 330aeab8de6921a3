"""Errors raised by the alarm scheduling core."""

from __future__ import annotations


class AlarmClockError(Exception):
    """Base class for every error raised by the scheduling core."""


class ValidationError(AlarmClockError):
    """Bad input when creating or renaming an event."""


class DuplicateAlarmError(AlarmClockError):
    """An alarm instance with the same (day, time) already exists in the event."""

    def __init__(self, day: str, time: str) -> None:
        super().__init__(f"An alarm for {day} at {time} already exists")
        self.day = day
        self.time = time


class InvalidAlarmError(AlarmClockError):
    """A single alarm instance is malformed and cannot be scheduled."""


class InvalidDayError(InvalidAlarmError):
    def __init__(self, day: object) -> None:
        super().__init__(f"Invalid day: {day!r}")
        self.day = day


class InvalidTimeError(InvalidAlarmError):
    def __init__(self, time: object) -> None:
        super().__init__(f"Invalid time (expected HH:MM, 24-hour): {time!r}")
        self.time = time


class SchedulingError(AlarmClockError):
    """The notification collaborator refused to arm or cancel a trigger."""


class EventNotFoundError(AlarmClockError):
    def __init__(self, event_id: str) -> None:
        super().__init__(f"Event not found: {event_id}")
        self.event_id = event_id


class PersistenceError(AlarmClockError):
    """The event list could not be saved; the change was not applied."""
