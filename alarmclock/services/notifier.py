"""Notification collaborator: the platform that actually raises alarms.

The core only needs to arm weekly (and one-shot snooze) triggers, cancel
them by correlation id, and list what is currently armed.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from datetime import datetime

from alarmclock.domain.errors import SchedulingError
from alarmclock.domain.models import (
    ArmedTrigger,
    CorrelationId,
    TriggerFilter,
    TriggerKind,
)

logger = logging.getLogger(__name__)

FiredCallback = Callable[[CorrelationId, TriggerKind], Awaitable[object]]


class NotificationScheduler(ABC):
    """Interface for the device notification scheduler."""

    @abstractmethod
    async def arm_weekly_trigger(
        self,
        correlation: CorrelationId,
        weekday: int,
        hour: int,
        minute: int,
        title: str,
        body: str,
        sound_ref: str,
        fire_at: datetime | None = None,
    ) -> str:
        """Arm a trigger repeating every week on *weekday* (1=Sunday) at hour:minute.

        Returns the trigger handle; raises ``SchedulingError`` on refusal.
        """

    @abstractmethod
    async def arm_one_shot_trigger(
        self,
        correlation: CorrelationId,
        fire_at: datetime,
        title: str,
        body: str,
        sound_ref: str,
    ) -> str:
        """Arm a trigger that fires once at *fire_at*."""

    @abstractmethod
    async def cancel_triggers(self, matching: TriggerFilter) -> None:
        """Cancel every trigger matching the filter. No match is not an error."""

    @abstractmethod
    async def list_triggers(self) -> list[ArmedTrigger]:
        """Every trigger currently armed."""


class InMemoryNotificationScheduler(NotificationScheduler):
    """Dict-backed scheduler used by the HTTP app and the tests.

    ``permission_granted = False`` makes every arm call fail, and
    ``deny_alarm_ids`` fails arms for specific alarm instances only.
    """

    def __init__(self) -> None:
        self._triggers: dict[str, ArmedTrigger] = {}
        self._on_fired: FiredCallback | None = None
        self.permission_granted = True
        self.deny_alarm_ids: set[str] = set()
        self.arm_calls: list[CorrelationId] = []
        self.cancel_calls: list[TriggerFilter] = []

    def on_trigger_fired(self, callback: FiredCallback) -> None:
        self._on_fired = callback

    def _check_permission(self, correlation: CorrelationId) -> None:
        if not self.permission_granted:
            raise SchedulingError("Notification permission denied")
        if correlation.alarm_id in self.deny_alarm_ids:
            raise SchedulingError(
                f"Platform refused trigger for alarm {correlation.alarm_id}"
            )

    async def arm_weekly_trigger(
        self,
        correlation: CorrelationId,
        weekday: int,
        hour: int,
        minute: int,
        title: str,
        body: str,
        sound_ref: str,
        fire_at: datetime | None = None,
    ) -> str:
        self.arm_calls.append(correlation)
        self._check_permission(correlation)
        trigger = ArmedTrigger(
            correlation=correlation,
            kind=TriggerKind.WEEKLY,
            weekday=weekday,
            hour=hour,
            minute=minute,
            title=title,
            body=body,
            sound_ref=sound_ref,
            fire_at=fire_at,
        )
        self._triggers[trigger.handle] = trigger
        logger.debug("Armed weekly trigger %s for %s", trigger.handle, correlation)
        return trigger.handle

    async def arm_one_shot_trigger(
        self,
        correlation: CorrelationId,
        fire_at: datetime,
        title: str,
        body: str,
        sound_ref: str,
    ) -> str:
        self.arm_calls.append(correlation)
        self._check_permission(correlation)
        trigger = ArmedTrigger(
            correlation=correlation,
            kind=TriggerKind.SNOOZE,
            title=title,
            body=body,
            sound_ref=sound_ref,
            fire_at=fire_at,
        )
        self._triggers[trigger.handle] = trigger
        return trigger.handle

    async def cancel_triggers(self, matching: TriggerFilter) -> None:
        self.cancel_calls.append(matching)
        for handle in [
            h for h, t in self._triggers.items() if matching.matches(t.correlation)
        ]:
            del self._triggers[handle]

    async def list_triggers(self) -> list[ArmedTrigger]:
        return [t.model_copy() for t in self._triggers.values()]

    async def fire(self, handle: str) -> object:
        """Simulate the platform raising the trigger *handle*.

        One-shot triggers are consumed; weekly ones stay armed.
        """
        trigger = self._triggers.get(handle)
        if trigger is None:
            raise KeyError(handle)
        if trigger.kind == TriggerKind.SNOOZE:
            del self._triggers[handle]
        if self._on_fired is None:
            return None
        return await self._on_fired(trigger.correlation, trigger.kind)

    def reset_calls(self) -> None:
        self.arm_calls.clear()
        self.cancel_calls.clear()
