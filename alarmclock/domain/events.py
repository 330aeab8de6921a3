"""Domain events published after scheduling side effects."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel


class TriggerArmed(BaseModel):
    """Fired after a weekly trigger was armed for an alarm instance."""

    event_id: str
    alarm_id: str
    fire_at: datetime
    rescheduled: bool = False


class TriggersCancelled(BaseModel):
    """Fired after triggers were cancelled; ``alarm_id`` is None for a whole event."""

    event_id: str
    alarm_id: str | None = None
    reason: str


class AlarmSkipped(BaseModel):
    """Fired when an alarm instance is malformed and cannot be scheduled."""

    event_id: str
    alarm_id: str
    reason: str


class SchedulingFailed(BaseModel):
    """Fired when the notification platform refused an arm or cancel."""

    event_id: str
    alarm_id: str | None = None
    error: str


class AlarmFired(BaseModel):
    event_id: str
    alarm_id: str
    fired_at: datetime


class AlarmSnoozed(BaseModel):
    event_id: str
    alarm_id: str
    fire_at: datetime
    snooze_count: int


class AlarmDismissed(BaseModel):
    event_id: str
    alarm_id: str
