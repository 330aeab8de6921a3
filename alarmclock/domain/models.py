"""Domain models for weekly recurring alarms."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import StrEnum

from pydantic import BaseModel, Field


class DaySelection(StrEnum):
    EVERYDAY = "everyday"
    WEEKDAYS = "weekdays"
    WEEKENDS = "weekends"
    EVERY_2_DAYS = "every2days"
    CUSTOM = "custom"


class TriggerKind(StrEnum):
    WEEKLY = "weekly"
    SNOOZE = "snooze"


class AlarmAction(StrEnum):
    ARMED = "armed"
    CANCELLED = "cancelled"
    RESCHEDULED = "rescheduled"
    UNCHANGED = "unchanged"
    SKIPPED = "skipped"
    FAILED = "failed"


class TimelineEntryType(StrEnum):
    ARMED = "armed"
    CANCELLED = "cancelled"
    SKIPPED = "skipped"
    FAILED = "failed"
    FIRED = "fired"
    SNOOZED = "snoozed"
    DISMISSED = "dismissed"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid.uuid4())


# ---------------------------------------------------------------------------
# Core domain models
# ---------------------------------------------------------------------------


class AlarmInstance(BaseModel):
    """One (weekday, time-of-day) recurrence point inside an event.

    ``day`` and ``time`` are stored as given; they are validated when the
    instance is scheduled so that bad data read back from storage does not
    prevent the rest of the event from loading.
    """

    id: str = Field(default_factory=_new_id)
    day: str
    time: str
    description: str = ""
    enabled: bool = True


class Event(BaseModel):
    id: str = Field(default_factory=_new_id)
    name: str
    description: str = ""
    sound_ref: str = "default"
    enabled: bool = True
    created_at: datetime = Field(default_factory=_utcnow)
    alarms: list[AlarmInstance] = Field(default_factory=list)

    def get_alarm(self, alarm_id: str) -> AlarmInstance | None:
        for alarm in self.alarms:
            if alarm.id == alarm_id:
                return alarm
        return None

    def is_armed(self, alarm: AlarmInstance) -> bool:
        """Effective armed state: both the event and the instance are enabled."""
        return self.enabled and alarm.enabled


class AlarmSpec(BaseModel):
    """Input for one alarm instance when an event is created."""

    day: str
    time: str
    description: str = ""


# ---------------------------------------------------------------------------
# Trigger correlation and reconciliation
# ---------------------------------------------------------------------------


class CorrelationId(BaseModel, frozen=True):
    event_id: str
    alarm_id: str


class TriggerFilter(BaseModel, frozen=True):
    """Matches every trigger of an event, or of one alarm when ``alarm_id`` is set."""

    event_id: str
    alarm_id: str | None = None

    def matches(self, correlation: CorrelationId) -> bool:
        if correlation.event_id != self.event_id:
            return False
        return self.alarm_id is None or correlation.alarm_id == self.alarm_id


class ArmedTrigger(BaseModel):
    handle: str = Field(default_factory=_new_id)
    correlation: CorrelationId
    kind: TriggerKind = TriggerKind.WEEKLY
    weekday: int | None = None  # 1=Sunday ... 7=Saturday
    hour: int | None = None
    minute: int | None = None
    title: str
    body: str
    sound_ref: str
    fire_at: datetime | None = None


class DesiredTrigger(BaseModel):
    correlation: CorrelationId
    weekday: int
    hour: int
    minute: int
    title: str
    body: str
    sound_ref: str
    fire_at: datetime

    def same_schedule(self, trigger: ArmedTrigger) -> bool:
        """True when *trigger* already fires at this slot with this content.

        ``fire_at`` is not compared; it drifts forward every week while the
        weekly slot stays the same.
        """
        return (
            trigger.kind == TriggerKind.WEEKLY
            and trigger.weekday == self.weekday
            and trigger.hour == self.hour
            and trigger.minute == self.minute
            and trigger.title == self.title
            and trigger.body == self.body
            and trigger.sound_ref == self.sound_ref
        )


class AlarmOutcome(BaseModel):
    event_id: str
    alarm_id: str | None = None
    action: AlarmAction
    fire_at: datetime | None = None
    error: str | None = None


class ReconcileReport(BaseModel):
    outcomes: list[AlarmOutcome] = Field(default_factory=list)
    arm_calls: int = 0
    cancel_calls: int = 0

    @property
    def failures(self) -> list[AlarmOutcome]:
        return [o for o in self.outcomes if o.action == AlarmAction.FAILED]

    @property
    def skipped(self) -> list[AlarmOutcome]:
        return [o for o in self.outcomes if o.action == AlarmAction.SKIPPED]

    def for_event(self, event_id: str) -> list[AlarmOutcome]:
        return [o for o in self.outcomes if o.event_id == event_id]


class FiredAlarm(BaseModel):
    """What the UI shows when a trigger goes off."""

    event_id: str
    alarm_id: str
    name: str
    description: str
    sound_ref: str
    day: str
    time: str
    snooze_count: int = 0


class TimeGroup(BaseModel):
    time: str
    days: list[str]
    description: str = ""


class EventSummary(BaseModel):
    event_id: str
    name: str
    enabled: bool
    total_alarms: int
    enabled_alarms: int
    active_days: list[str]
    times: list[TimeGroup]


class TimelineEntry(BaseModel):
    id: str = Field(default_factory=_new_id)
    event_id: str
    alarm_id: str | None = None
    timestamp: datetime = Field(default_factory=_utcnow)
    type: TimelineEntryType
    payload: dict = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Request / Response DTOs
# ---------------------------------------------------------------------------


class CreateEventRequest(BaseModel):
    name: str
    description: str = ""
    sound_ref: str | None = None
    alarms: list[AlarmSpec] = Field(default_factory=list)


class UpdateEventRequest(BaseModel):
    name: str | None = None
    description: str | None = None
    sound_ref: str | None = None


class AddAlarmRequest(BaseModel):
    """Either a single ``day`` or a day-selection preset."""

    time: str
    description: str = ""
    day: str | None = None
    selection: DaySelection | None = None
    days: list[str] = Field(default_factory=list)


class UpdateAlarmRequest(BaseModel):
    day: str | None = None
    time: str | None = None
    description: str | None = None


class EnabledRequest(BaseModel):
    enabled: bool


class SnoozeRequest(BaseModel):
    event_id: str
    alarm_id: str
    minutes: int | None = Field(default=None, gt=0)


class NextFireTime(BaseModel):
    alarm_id: str
    day: str
    time: str
    fire_at: datetime | None = None
    error: str | None = None


class EventMutationResponse(BaseModel):
    event: Event | None = None
    alarm_ids: list[str] = Field(default_factory=list)
    report: ReconcileReport
