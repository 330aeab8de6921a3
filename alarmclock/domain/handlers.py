"""Bus handlers that write scheduling signals to the timeline."""

from __future__ import annotations

from alarmclock.domain.bus import EventBus
from alarmclock.domain.events import (
    AlarmDismissed,
    AlarmFired,
    AlarmSkipped,
    AlarmSnoozed,
    SchedulingFailed,
    TriggerArmed,
    TriggersCancelled,
)
from alarmclock.domain.models import TimelineEntry, TimelineEntryType
from alarmclock.repos.memory import TimelineRepository


class HandlerRegistry:
    """Records every scheduling signal in the per-event timeline."""

    def __init__(self, bus: EventBus, timeline_repo: TimelineRepository) -> None:
        self.bus = bus
        self.timeline_repo = timeline_repo
        self._register()

    def _register(self) -> None:
        self.bus.subscribe(TriggerArmed, self.on_trigger_armed)
        self.bus.subscribe(TriggersCancelled, self.on_triggers_cancelled)
        self.bus.subscribe(AlarmSkipped, self.on_alarm_skipped)
        self.bus.subscribe(SchedulingFailed, self.on_scheduling_failed)
        self.bus.subscribe(AlarmFired, self.on_alarm_fired)
        self.bus.subscribe(AlarmSnoozed, self.on_alarm_snoozed)
        self.bus.subscribe(AlarmDismissed, self.on_alarm_dismissed)

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    def on_trigger_armed(self, event: TriggerArmed) -> None:
        self.timeline_repo.add(
            TimelineEntry(
                event_id=event.event_id,
                alarm_id=event.alarm_id,
                type=TimelineEntryType.ARMED,
                payload={
                    "fire_at": event.fire_at.isoformat(),
                    "rescheduled": event.rescheduled,
                },
            )
        )

    def on_triggers_cancelled(self, event: TriggersCancelled) -> None:
        self.timeline_repo.add(
            TimelineEntry(
                event_id=event.event_id,
                alarm_id=event.alarm_id,
                type=TimelineEntryType.CANCELLED,
                payload={"reason": event.reason},
            )
        )

    def on_alarm_skipped(self, event: AlarmSkipped) -> None:
        self.timeline_repo.add(
            TimelineEntry(
                event_id=event.event_id,
                alarm_id=event.alarm_id,
                type=TimelineEntryType.SKIPPED,
                payload={"reason": event.reason},
            )
        )

    def on_scheduling_failed(self, event: SchedulingFailed) -> None:
        self.timeline_repo.add(
            TimelineEntry(
                event_id=event.event_id,
                alarm_id=event.alarm_id,
                type=TimelineEntryType.FAILED,
                payload={"error": event.error},
            )
        )

    def on_alarm_fired(self, event: AlarmFired) -> None:
        self.timeline_repo.add(
            TimelineEntry(
                event_id=event.event_id,
                alarm_id=event.alarm_id,
                timestamp=event.fired_at,
                type=TimelineEntryType.FIRED,
            )
        )

    def on_alarm_snoozed(self, event: AlarmSnoozed) -> None:
        self.timeline_repo.add(
            TimelineEntry(
                event_id=event.event_id,
                alarm_id=event.alarm_id,
                type=TimelineEntryType.SNOOZED,
                payload={
                    "fire_at": event.fire_at.isoformat(),
                    "snooze_count": event.snooze_count,
                },
            )
        )

    def on_alarm_dismissed(self, event: AlarmDismissed) -> None:
        self.timeline_repo.add(
            TimelineEntry(
                event_id=event.event_id,
                alarm_id=event.alarm_id,
                type=TimelineEntryType.DISMISSED,
            )
        )
