"""Process-wide owner of the event list and its armed triggers.

Every mutation follows the same sequence: transform the event in the store,
save the full list, then run a reconciliation pass. Store errors are raised
before any side effect; scheduling problems never fail the mutation and are
returned in the ``ReconcileReport`` (and recorded in the timeline).
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from datetime import datetime, timedelta

from alarmclock.config import Settings
from alarmclock.domain.bus import EventBus
from alarmclock.domain.clock import days_for_selection, normalize_time, parse_day
from alarmclock.domain.errors import (
    EventNotFoundError,
    InvalidAlarmError,
    PersistenceError,
    SchedulingError,
    ValidationError,
)
from alarmclock.domain.events import (
    AlarmDismissed,
    AlarmFired,
    AlarmSnoozed,
    SchedulingFailed,
)
from alarmclock.domain.models import (
    AlarmInstance,
    AlarmSpec,
    CorrelationId,
    DaySelection,
    Event,
    EventSummary,
    FiredAlarm,
    NextFireTime,
    ReconcileReport,
    TimeGroup,
    TriggerFilter,
    TriggerKind,
)
from alarmclock.repos.storage import EventStorage
from alarmclock.services import store as store_ops
from alarmclock.services.next_fire import local_now, next_fire_time
from alarmclock.services.notifier import NotificationScheduler
from alarmclock.services.reconciler import Reconciler, notification_body
from alarmclock.services.store import EventStore

logger = logging.getLogger(__name__)


def _clean_spec(spec: AlarmSpec) -> AlarmSpec:
    """Canonical day name and ``HH:MM`` time; raises on malformed input."""
    return spec.model_copy(
        update={"day": parse_day(spec.day), "time": normalize_time(spec.time)}
    )


class ScheduleService:
    def __init__(
        self,
        storage: EventStorage,
        notifier: NotificationScheduler,
        settings: Settings,
        bus: EventBus | None = None,
        clock: Callable[[], datetime] = local_now,
    ) -> None:
        self.storage = storage
        self.notifier = notifier
        self.settings = settings
        self.bus = bus or EventBus()
        self.store = EventStore()
        self.reconciler = Reconciler(
            notifier, self.bus, look_ahead_minutes=settings.look_ahead_minutes
        )
        self._clock = clock
        self._lock = asyncio.Lock()
        self._snooze_counts: dict[CorrelationId, int] = {}

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> ReconcileReport:
        """Load persisted events and bring the armed triggers in line with them."""
        events = await self.storage.load()
        self.store.load(events)
        logger.info("Loaded %d events", len(events))
        return await self.reconcile()

    async def reconcile(self) -> ReconcileReport:
        # Passes are serialised; each one reads the store as it is when the
        # lock is acquired, so a pass queued behind an older one still
        # converges on the latest state.
        async with self._lock:
            return await self.reconciler.reconcile(self.store.events, self._clock())

    @property
    def events(self) -> list[Event]:
        return self.store.events

    def get_event(self, event_id: str) -> Event:
        event = self.store.get(event_id)
        if event is None:
            raise EventNotFoundError(event_id)
        return event

    async def _commit(self, mutate: Callable[[], list[Event]]) -> ReconcileReport:
        """Apply *mutate* to the store, save the result, then reconcile.

        If the save fails the store is put back as it was, the triggers are
        reconciled against that state and ``PersistenceError`` is raised.
        """
        previous = self.store.events
        events = mutate()
        try:
            await self.storage.save(events)
        except OSError as exc:
            logger.exception("Failed to save events; change rolled back")
            self.store.load(previous)
            await self.reconcile()
            raise PersistenceError(str(exc)) from exc
        return await self.reconcile()

    def _forget_snoozes(self, event_id: str, alarm_id: str | None = None) -> None:
        matching = TriggerFilter(event_id=event_id, alarm_id=alarm_id)
        for correlation in [c for c in self._snooze_counts if matching.matches(c)]:
            del self._snooze_counts[correlation]

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def create_event(
        self,
        name: str,
        alarms: list[AlarmSpec],
        description: str = "",
        sound_ref: str | None = None,
    ) -> tuple[Event, ReconcileReport]:
        event = store_ops.create_event(
            name,
            description,
            sound_ref or self.settings.default_sound,
            [_clean_spec(spec) for spec in alarms],
        )
        report = await self._commit(lambda: self.store.add(event))
        logger.info(
            "Created event %r with %d alarm(s)", event.name, len(event.alarms)
        )
        return event, report

    async def update_event(
        self,
        event_id: str,
        name: str | None = None,
        description: str | None = None,
        sound_ref: str | None = None,
    ) -> tuple[Event, ReconcileReport]:
        event = store_ops.update_event(
            self.get_event(event_id), name, description, sound_ref
        )
        report = await self._commit(lambda: self.store.replace(event))
        return event, report

    async def add_alarm(
        self, event_id: str, day: str, time: str, description: str = ""
    ) -> tuple[Event, AlarmInstance, ReconcileReport]:
        event, alarm = store_ops.add_alarm_instance(
            self.get_event(event_id), parse_day(day), normalize_time(time), description
        )
        report = await self._commit(lambda: self.store.replace(event))
        return event, alarm, report

    async def add_alarm_days(
        self,
        event_id: str,
        selection: DaySelection,
        time: str,
        description: str = "",
        custom_days: list[str] | None = None,
    ) -> tuple[Event, list[AlarmInstance], ReconcileReport]:
        days = days_for_selection(selection, custom_days)
        if not days:
            raise ValidationError("Select at least one day for the alarm")
        event, alarms = store_ops.add_alarm_days(
            self.get_event(event_id), days, normalize_time(time), description
        )
        report = await self._commit(lambda: self.store.replace(event))
        return event, alarms, report

    async def update_alarm(
        self,
        event_id: str,
        alarm_id: str,
        day: str | None = None,
        time: str | None = None,
        description: str | None = None,
    ) -> tuple[Event, ReconcileReport]:
        event = store_ops.update_alarm_instance(
            self.get_event(event_id),
            alarm_id,
            parse_day(day) if day is not None else None,
            normalize_time(time) if time is not None else None,
            description,
        )
        report = await self._commit(lambda: self.store.replace(event))
        return event, report

    async def remove_alarm(
        self, event_id: str, alarm_id: str
    ) -> tuple[Event, ReconcileReport]:
        event = store_ops.remove_alarm_instance(self.get_event(event_id), alarm_id)
        report = await self._commit(lambda: self.store.replace(event))
        self._forget_snoozes(event_id, alarm_id)
        return event, report

    async def set_event_enabled(
        self, event_id: str, enabled: bool
    ) -> tuple[Event, ReconcileReport]:
        event = store_ops.set_event_enabled(self.get_event(event_id), enabled)
        report = await self._commit(lambda: self.store.replace(event))
        return event, report

    async def set_alarm_enabled(
        self, event_id: str, alarm_id: str, enabled: bool
    ) -> tuple[Event, ReconcileReport]:
        event = store_ops.set_alarm_enabled(
            self.get_event(event_id), alarm_id, enabled
        )
        report = await self._commit(lambda: self.store.replace(event))
        return event, report

    async def delete_event(self, event_id: str) -> ReconcileReport:
        """Cancel every trigger of the event, then remove it.

        A failed cancel does not keep the event alive; the leftover triggers
        are picked up as orphans by the next reconciliation pass.
        """
        event = self.get_event(event_id)
        async with self._lock:
            report = await self.reconciler.cancel_event(event)
        follow_up = await self._commit(lambda: self.store.delete_event(event_id))
        report.outcomes.extend(follow_up.outcomes)
        report.arm_calls += follow_up.arm_calls
        report.cancel_calls += follow_up.cancel_calls
        self._forget_snoozes(event_id)
        logger.info("Deleted event %r", event.name)
        return report

    # ------------------------------------------------------------------
    # Firing, snooze, dismiss
    # ------------------------------------------------------------------

    async def handle_trigger_fired(
        self, correlation: CorrelationId, kind: TriggerKind = TriggerKind.WEEKLY
    ) -> FiredAlarm | None:
        """Map a fired trigger back to its event and alarm for display.

        A weekly firing starts a new ring, so the snooze count starts over.
        """
        if kind == TriggerKind.WEEKLY:
            self._snooze_counts.pop(correlation, None)
        found = self.store.find_alarm(correlation.event_id, correlation.alarm_id)
        if found is None:
            logger.warning("Trigger fired for unknown alarm %s", correlation)
            return None
        event, alarm = found
        self.bus.publish(
            AlarmFired(
                event_id=event.id, alarm_id=alarm.id, fired_at=self._clock()
            )
        )
        return FiredAlarm(
            event_id=event.id,
            alarm_id=alarm.id,
            name=event.name,
            description=alarm.description or event.description,
            sound_ref=event.sound_ref,
            day=alarm.day,
            time=alarm.time,
            snooze_count=self._snooze_counts.get(correlation, 0),
        )

    async def snooze(
        self, correlation: CorrelationId, minutes: int | None = None
    ) -> datetime:
        """Arm a one-shot trigger a few minutes from now for a ringing alarm.

        Raises ``EventNotFoundError`` for an unknown alarm, ``ValidationError``
        once the snooze limit is reached and ``SchedulingError`` when the
        platform refuses the trigger.
        """
        found = self.store.find_alarm(correlation.event_id, correlation.alarm_id)
        if found is None:
            raise EventNotFoundError(correlation.event_id)
        event, alarm = found

        count = self._snooze_counts.get(correlation, 0)
        if count >= self.settings.max_snooze_count:
            raise ValidationError(
                f"Alarm already snoozed {count} times; dismiss it instead"
            )

        fire_at = self._clock() + timedelta(
            minutes=minutes or self.settings.snooze_minutes
        )
        try:
            body = f"Snoozed - {notification_body(event, alarm)}"
        except InvalidAlarmError:
            body = f"Snoozed - {alarm.description or event.description}"
        try:
            await self.notifier.arm_one_shot_trigger(
                correlation,
                fire_at=fire_at,
                title=event.name,
                body=body,
                sound_ref=event.sound_ref,
            )
        except SchedulingError as exc:
            logger.error("Failed to snooze alarm %s: %s", alarm.id, exc)
            self.bus.publish(
                SchedulingFailed(event_id=event.id, alarm_id=alarm.id, error=str(exc))
            )
            raise
        self._snooze_counts[correlation] = count + 1
        self.bus.publish(
            AlarmSnoozed(
                event_id=event.id,
                alarm_id=alarm.id,
                fire_at=fire_at,
                snooze_count=count + 1,
            )
        )
        return fire_at

    async def dismiss(self, correlation: CorrelationId) -> None:
        """Stop a ringing alarm; the weekly trigger stays armed."""
        self._snooze_counts.pop(correlation, None)
        self.bus.publish(
            AlarmDismissed(
                event_id=correlation.event_id, alarm_id=correlation.alarm_id
            )
        )

    # ------------------------------------------------------------------
    # Read models
    # ------------------------------------------------------------------

    def next_fire_times(self, event_id: str) -> list[NextFireTime]:
        """Next fire instant of each armed instance; malformed ones carry an error."""
        event = self.get_event(event_id)
        now = self._clock()
        result: list[NextFireTime] = []
        for alarm in event.alarms:
            if not event.is_armed(alarm):
                continue
            try:
                fire_at = next_fire_time(
                    alarm.day, alarm.time, now, self.settings.look_ahead_minutes
                )
            except InvalidAlarmError as exc:
                result.append(
                    NextFireTime(
                        alarm_id=alarm.id,
                        day=alarm.day,
                        time=alarm.time,
                        error=str(exc),
                    )
                )
                continue
            result.append(
                NextFireTime(
                    alarm_id=alarm.id, day=alarm.day, time=alarm.time, fire_at=fire_at
                )
            )
        return sorted(result, key=lambda n: (n.fire_at is None, n.fire_at or now))

    def summary(self, event_id: str) -> EventSummary:
        """Enabled alarms grouped by time, the way the event list shows them."""
        event = self.get_event(event_id)
        enabled = [a for a in event.alarms if a.enabled]
        groups: dict[str, TimeGroup] = {}
        active_days: list[str] = []
        for alarm in enabled:
            group = groups.setdefault(
                alarm.time,
                TimeGroup(time=alarm.time, days=[], description=alarm.description),
            )
            group.days.append(alarm.day)
            if alarm.day not in active_days:
                active_days.append(alarm.day)
        return EventSummary(
            event_id=event.id,
            name=event.name,
            enabled=event.enabled,
            total_alarms=len(event.alarms),
            enabled_alarms=len(enabled),
            active_days=active_days,
            times=sorted(groups.values(), key=lambda g: g.time),
        )
