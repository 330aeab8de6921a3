"""Service that keeps the armed notification triggers in line with the events."""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from collections.abc import Awaitable
from datetime import datetime

from alarmclock.domain.bus import EventBus
from alarmclock.domain.clock import (
    format_time,
    parse_day,
    parse_time,
    platform_weekday,
)
from alarmclock.domain.errors import InvalidAlarmError, SchedulingError
from alarmclock.domain.events import (
    AlarmSkipped,
    SchedulingFailed,
    TriggerArmed,
    TriggersCancelled,
)
from alarmclock.domain.models import (
    AlarmAction,
    AlarmInstance,
    AlarmOutcome,
    ArmedTrigger,
    CorrelationId,
    DesiredTrigger,
    Event,
    ReconcileReport,
    TriggerFilter,
    TriggerKind,
)
from alarmclock.services.next_fire import (
    DEFAULT_LOOK_AHEAD_MINUTES,
    local_now,
    next_fire_time,
)
from alarmclock.services.notifier import NotificationScheduler

logger = logging.getLogger(__name__)

DEFAULT_BODY = "Alarm time!"


def notification_body(event: Event, alarm: AlarmInstance) -> str:
    text = alarm.description or event.description or DEFAULT_BODY
    return f"{parse_day(alarm.day)} - {text}"


def build_desired_trigger(
    event: Event,
    alarm: AlarmInstance,
    now: datetime,
    look_ahead_minutes: int = DEFAULT_LOOK_AHEAD_MINUTES,
) -> DesiredTrigger:
    """Raises ``InvalidDayError`` / ``InvalidTimeError`` for a malformed instance."""
    fire_at = next_fire_time(alarm.day, alarm.time, now, look_ahead_minutes)
    hour, minute = parse_time(alarm.time)
    return DesiredTrigger(
        correlation=CorrelationId(event_id=event.id, alarm_id=alarm.id),
        weekday=platform_weekday(alarm.day),
        hour=hour,
        minute=minute,
        title=event.name,
        body=notification_body(event, alarm),
        sound_ref=event.sound_ref,
        fire_at=fire_at,
    )


class Reconciler:
    """Diffs the desired trigger set against what the platform has armed.

    Each pass is recomputed from scratch: list the armed triggers, derive the
    desired ones from the events, then issue only the cancel/arm calls needed
    to close the gap. Running a pass twice without changes issues nothing the
    second time.
    """

    def __init__(
        self,
        notifier: NotificationScheduler,
        bus: EventBus | None = None,
        look_ahead_minutes: int = DEFAULT_LOOK_AHEAD_MINUTES,
    ) -> None:
        self.notifier = notifier
        self.bus = bus or EventBus()
        self.look_ahead_minutes = look_ahead_minutes

    def desired_triggers(
        self, events: list[Event], now: datetime
    ) -> tuple[dict[CorrelationId, DesiredTrigger], list[AlarmOutcome]]:
        """Desired triggers keyed by correlation id, plus skipped-instance outcomes."""
        desired: dict[CorrelationId, DesiredTrigger] = {}
        skipped: list[AlarmOutcome] = []
        for event in events:
            for alarm in event.alarms:
                if not event.is_armed(alarm):
                    continue
                try:
                    trigger = build_desired_trigger(
                        event, alarm, now, self.look_ahead_minutes
                    )
                except InvalidAlarmError as exc:
                    logger.warning(
                        "Skipping alarm %s of event %r: %s", alarm.id, event.name, exc
                    )
                    skipped.append(
                        AlarmOutcome(
                            event_id=event.id,
                            alarm_id=alarm.id,
                            action=AlarmAction.SKIPPED,
                            error=str(exc),
                        )
                    )
                    self.bus.publish(
                        AlarmSkipped(
                            event_id=event.id, alarm_id=alarm.id, reason=str(exc)
                        )
                    )
                    continue
                desired[trigger.correlation] = trigger
        return desired, skipped

    async def reconcile(
        self, events: list[Event], now: datetime | None = None
    ) -> ReconcileReport:
        now = now or local_now()
        desired, skipped = self.desired_triggers(events, now)
        report = ReconcileReport(outcomes=list(skipped))

        try:
            armed = await self.notifier.list_triggers()
        except SchedulingError as exc:
            logger.error("Could not list armed triggers: %s", exc)
            for correlation in desired:
                report.outcomes.append(
                    self._failed(correlation.event_id, correlation.alarm_id, exc)
                )
            return report

        armed_by_alarm: dict[CorrelationId, list[ArmedTrigger]] = defaultdict(list)
        for trigger in armed:
            armed_by_alarm[trigger.correlation].append(trigger)

        known_events = {e.id: e for e in events}
        desired_events = {c.event_id for c in desired}
        jobs: list[Awaitable[list[AlarmOutcome]]] = []

        # Stale triggers are grouped per event: a deleted or fully disabled
        # event costs a single cancel call.
        stale: dict[str, list[str]] = defaultdict(list)
        for correlation in armed_by_alarm:
            if correlation not in desired:
                stale[correlation.event_id].append(correlation.alarm_id)

        for event_id, alarm_ids in stale.items():
            event = known_events.get(event_id)
            if event is None:
                jobs.append(
                    self._cancel(report, event_id, None, alarm_ids, "event deleted")
                )
            elif event_id not in desired_events:
                reason = "event disabled" if not event.enabled else "no active alarms"
                jobs.append(self._cancel(report, event_id, None, alarm_ids, reason))
            else:
                for alarm_id in alarm_ids:
                    if event.get_alarm(alarm_id) is None:
                        reason = "alarm removed"
                    else:
                        reason = "alarm disabled"
                    jobs.append(
                        self._cancel(report, event_id, alarm_id, [alarm_id], reason)
                    )

        for correlation, trigger in desired.items():
            weekly = [
                t
                for t in armed_by_alarm.get(correlation, [])
                if t.kind == TriggerKind.WEEKLY
            ]
            if not weekly:
                jobs.append(self._arm(report, trigger, reschedule=False))
            elif len(weekly) == 1 and trigger.same_schedule(weekly[0]):
                report.outcomes.append(
                    AlarmOutcome(
                        event_id=correlation.event_id,
                        alarm_id=correlation.alarm_id,
                        action=AlarmAction.UNCHANGED,
                        fire_at=trigger.fire_at,
                    )
                )
            else:
                jobs.append(self._arm(report, trigger, reschedule=True))

        for outcomes in await asyncio.gather(*jobs):
            report.outcomes.extend(outcomes)

        if report.arm_calls or report.cancel_calls:
            logger.info(
                "Reconciled %d events: %d arm call(s), %d cancel call(s), "
                "%d failure(s)",
                len(events),
                report.arm_calls,
                report.cancel_calls,
                len(report.failures),
            )
        return report

    async def cancel_event(
        self, event: Event, reason: str = "event deleted"
    ) -> ReconcileReport:
        """Cancel every trigger of *event* with one batched call."""
        report = ReconcileReport()
        alarm_ids = [a.id for a in event.alarms]
        report.outcomes.extend(
            await self._cancel(report, event.id, None, alarm_ids, reason)
        )
        return report

    # ------------------------------------------------------------------
    # Collaborator calls
    # ------------------------------------------------------------------

    async def _cancel(
        self,
        report: ReconcileReport,
        event_id: str,
        alarm_id: str | None,
        alarm_ids: list[str],
        reason: str,
    ) -> list[AlarmOutcome]:
        report.cancel_calls += 1
        try:
            await self.notifier.cancel_triggers(
                TriggerFilter(event_id=event_id, alarm_id=alarm_id)
            )
        except SchedulingError as exc:
            logger.error("Failed to cancel triggers for event %s: %s", event_id, exc)
            return [self._failed(event_id, aid, exc) for aid in alarm_ids]

        logger.debug(
            "Cancelled triggers for event %s alarm %s (%s)", event_id, alarm_id, reason
        )
        self.bus.publish(
            TriggersCancelled(event_id=event_id, alarm_id=alarm_id, reason=reason)
        )
        return [
            AlarmOutcome(event_id=event_id, alarm_id=aid, action=AlarmAction.CANCELLED)
            for aid in alarm_ids
        ]

    async def _arm(
        self, report: ReconcileReport, trigger: DesiredTrigger, reschedule: bool
    ) -> list[AlarmOutcome]:
        correlation = trigger.correlation
        if reschedule:
            # Triggers cannot be moved in place: cancel, then arm again.
            report.cancel_calls += 1
            try:
                await self.notifier.cancel_triggers(
                    TriggerFilter(
                        event_id=correlation.event_id, alarm_id=correlation.alarm_id
                    )
                )
            except SchedulingError as exc:
                logger.error(
                    "Failed to cancel old trigger for alarm %s: %s",
                    correlation.alarm_id,
                    exc,
                )
                return [self._failed(correlation.event_id, correlation.alarm_id, exc)]

        report.arm_calls += 1
        try:
            await self.notifier.arm_weekly_trigger(
                correlation,
                weekday=trigger.weekday,
                hour=trigger.hour,
                minute=trigger.minute,
                title=trigger.title,
                body=trigger.body,
                sound_ref=trigger.sound_ref,
                fire_at=trigger.fire_at,
            )
        except SchedulingError as exc:
            logger.error(
                "Failed to arm alarm %s (%s): %s",
                correlation.alarm_id,
                trigger.title,
                exc,
            )
            return [self._failed(correlation.event_id, correlation.alarm_id, exc)]

        logger.info(
            "Armed %r weekday=%d at %s, next fire %s",
            trigger.title,
            trigger.weekday,
            format_time(trigger.hour, trigger.minute),
            trigger.fire_at.isoformat(),
        )
        self.bus.publish(
            TriggerArmed(
                event_id=correlation.event_id,
                alarm_id=correlation.alarm_id,
                fire_at=trigger.fire_at,
                rescheduled=reschedule,
            )
        )
        return [
            AlarmOutcome(
                event_id=correlation.event_id,
                alarm_id=correlation.alarm_id,
                action=AlarmAction.RESCHEDULED if reschedule else AlarmAction.ARMED,
                fire_at=trigger.fire_at,
            )
        ]

    def _failed(
        self, event_id: str, alarm_id: str | None, exc: Exception
    ) -> AlarmOutcome:
        self.bus.publish(
            SchedulingFailed(event_id=event_id, alarm_id=alarm_id, error=str(exc))
        )
        return AlarmOutcome(
            event_id=event_id,
            alarm_id=alarm_id,
            action=AlarmAction.FAILED,
            error=str(exc),
        )
