"""Tests for the schedule service: store + storage + reconciliation together."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from alarmclock.config import Settings
from alarmclock.domain.bus import EventBus
from alarmclock.domain.errors import (
    DuplicateAlarmError,
    EventNotFoundError,
    InvalidDayError,
    InvalidTimeError,
    PersistenceError,
    SchedulingError,
    ValidationError,
)
from alarmclock.domain.handlers import HandlerRegistry
from alarmclock.domain.models import (
    AlarmAction,
    AlarmInstance,
    AlarmSpec,
    CorrelationId,
    DaySelection,
    Event,
    TimelineEntryType,
    TriggerFilter,
    TriggerKind,
)
from alarmclock.repos.memory import TimelineRepository
from alarmclock.repos.storage import InMemoryEventStorage
from alarmclock.services.notifier import InMemoryNotificationScheduler
from alarmclock.services.schedule_service import ScheduleService

TZ = timezone(timedelta(hours=1))
NOW = datetime(2026, 10, 19, 12, 0, tzinfo=TZ)  # Monday noon


class Env:
    def __init__(self, events: list[Event] | None = None) -> None:
        self.storage = InMemoryEventStorage(events)
        self.notifier = InMemoryNotificationScheduler()
        self.timeline_repo = TimelineRepository()
        bus = EventBus()
        HandlerRegistry(bus=bus, timeline_repo=self.timeline_repo)
        self.service = ScheduleService(
            storage=self.storage,
            notifier=self.notifier,
            settings=Settings(look_ahead_minutes=5, snooze_minutes=9),
            bus=bus,
            clock=lambda: NOW,
        )
        self.notifier.on_trigger_fired(self.service.handle_trigger_fired)

    def armed(self):
        return asyncio.run(self.notifier.list_triggers())


@pytest.fixture()
def env():
    return Env()


_GYM_ALARMS = [
    AlarmSpec(day="Monday", time="06:00", description="Leg day"),
    AlarmSpec(day="wednesday", time="6:00"),
    AlarmSpec(day="Friday", time="07:00"),
]


def _create(env: Env, alarms=None, **kwargs):
    return asyncio.run(
        env.service.create_event("GYM", alarms or _GYM_ALARMS, **kwargs)
    )


# ---------------------------------------------------------------------------
# Create
# ---------------------------------------------------------------------------


def test_create_saves_then_arms(env):
    event, report = _create(env, description="Workout")

    assert env.storage.save_count == 1
    assert asyncio.run(env.storage.load()) == [event]
    assert report.arm_calls == 3
    assert len(env.armed()) == 3
    # Day and time are stored in canonical form.
    assert (event.alarms[1].day, event.alarms[1].time) == ("Wednesday", "06:00")


def test_create_uses_default_sound(env):
    event, _ = _create(env)
    assert event.sound_ref == "default"
    assert {t.sound_ref for t in env.armed()} == {"default"}


@pytest.mark.parametrize(
    "alarms, error",
    [
        ([AlarmSpec(day="Funday", time="06:00")], InvalidDayError),
        ([AlarmSpec(day="Monday", time="24:00")], InvalidTimeError),
        (
            [
                AlarmSpec(day="Monday", time="06:00"),
                AlarmSpec(day="Monday", time="6:00"),
            ],
            DuplicateAlarmError,
        ),
    ],
)
def test_invalid_create_has_no_side_effects(env, alarms, error):
    with pytest.raises(error):
        _create(env, alarms=alarms)

    assert env.service.events == []
    assert env.storage.save_count == 0
    assert env.notifier.arm_calls == []


def test_blank_name_is_rejected(env):
    with pytest.raises(ValidationError):
        asyncio.run(env.service.create_event("  ", _GYM_ALARMS))


# ---------------------------------------------------------------------------
# Alarm edits
# ---------------------------------------------------------------------------


def test_add_alarm_arms_only_the_new_instance(env):
    event, _ = _create(env)
    env.notifier.reset_calls()

    updated, alarm, report = asyncio.run(
        env.service.add_alarm(event.id, "saturday", "9:30", "Long run")
    )

    assert (alarm.day, alarm.time) == ("Saturday", "09:30")
    assert env.notifier.arm_calls == [
        CorrelationId(event_id=event.id, alarm_id=alarm.id)
    ]
    assert report.cancel_calls == 0
    assert len(updated.alarms) == 4


def test_duplicate_alarm_is_rejected_without_side_effects(env):
    event, _ = _create(env)
    saves = env.storage.save_count

    with pytest.raises(DuplicateAlarmError):
        asyncio.run(env.service.add_alarm(event.id, "Monday", "06:00"))

    assert env.storage.save_count == saves
    assert len(env.service.get_event(event.id).alarms) == 3


def test_add_alarm_days_from_preset(env):
    event, _ = _create(env, alarms=[AlarmSpec(day="Monday", time="06:00")])

    updated, alarms, report = asyncio.run(
        env.service.add_alarm_days(event.id, DaySelection.WEEKENDS, "08:00")
    )

    assert [a.day for a in alarms] == ["Saturday", "Sunday"]
    assert report.arm_calls == 2
    assert len(env.armed()) == 3


def test_empty_custom_selection_is_rejected(env):
    event, _ = _create(env)
    with pytest.raises(ValidationError):
        asyncio.run(
            env.service.add_alarm_days(event.id, DaySelection.CUSTOM, "08:00")
        )


def test_update_alarm_reschedules_trigger(env):
    event, _ = _create(env)
    alarm_id = event.alarms[2].id

    _, report = asyncio.run(env.service.update_alarm(event.id, alarm_id, time="7:30"))

    outcome = next(o for o in report.outcomes if o.alarm_id == alarm_id)
    assert outcome.action == AlarmAction.RESCHEDULED
    trigger = next(t for t in env.armed() if t.correlation.alarm_id == alarm_id)
    assert (trigger.hour, trigger.minute) == (7, 30)


def test_remove_alarm_cancels_its_trigger(env):
    event, _ = _create(env)
    alarm_id = event.alarms[0].id

    updated, report = asyncio.run(env.service.remove_alarm(event.id, alarm_id))

    assert updated.get_alarm(alarm_id) is None
    assert report.cancel_calls == 1
    assert len(env.armed()) == 2


def test_toggle_event_off_and_on(env):
    event, _ = _create(env)
    env.notifier.reset_calls()

    asyncio.run(env.service.set_event_enabled(event.id, False))
    assert env.armed() == []
    assert env.notifier.cancel_calls == [TriggerFilter(event_id=event.id)]

    _, report = asyncio.run(env.service.set_event_enabled(event.id, True))
    assert report.arm_calls == 3
    assert len(env.armed()) == 3


def test_unknown_event_raises(env):
    with pytest.raises(EventNotFoundError):
        asyncio.run(env.service.set_event_enabled("missing", False))


# ---------------------------------------------------------------------------
# Delete
# ---------------------------------------------------------------------------


def test_delete_event_uses_a_single_cancel(env):
    event, _ = _create(env)
    asyncio.run(env.service.set_alarm_enabled(event.id, event.alarms[2].id, False))
    assert len(env.armed()) == 2
    env.notifier.reset_calls()

    report = asyncio.run(env.service.delete_event(event.id))

    assert report.cancel_calls == 1
    assert report.arm_calls == 0
    assert env.notifier.cancel_calls == [TriggerFilter(event_id=event.id)]
    assert env.armed() == []
    assert env.service.events == []
    assert asyncio.run(env.storage.load()) == []


def test_delete_keeps_other_events_armed(env):
    gym, _ = _create(env)
    swim, _ = asyncio.run(
        env.service.create_event("SWIM", [AlarmSpec(day="Tuesday", time="07:00")])
    )

    asyncio.run(env.service.delete_event(gym.id))

    assert [t.correlation.event_id for t in env.armed()] == [swim.id]


# ---------------------------------------------------------------------------
# Startup and failures
# ---------------------------------------------------------------------------


def test_start_loads_and_arms_persisted_events():
    event = Event(
        name="GYM",
        alarms=[
            AlarmInstance(day="Monday", time="06:00"),
            AlarmInstance(day="Funday", time="06:00"),
        ],
    )
    env = Env([event])

    report = asyncio.run(env.service.start())

    assert env.service.events == [event]
    assert report.arm_calls == 1
    assert len(report.skipped) == 1
    assert env.timeline_repo.list_failures(event.id)[0].type == (
        TimelineEntryType.SKIPPED
    )


def test_scheduling_failure_does_not_fail_the_mutation(env):
    env.notifier.permission_granted = False

    event, report = _create(env)

    assert env.service.get_event(event.id) == event
    assert len(report.failures) == 3
    assert len(env.timeline_repo.list_failures(event.id)) == 3

    env.notifier.permission_granted = True
    report = asyncio.run(env.service.reconcile())
    assert report.arm_calls == 3
    assert len(env.armed()) == 3


# ---------------------------------------------------------------------------
# Firing, snooze, dismiss
# ---------------------------------------------------------------------------


def _weekly_handle(env: Env, alarm_id: str) -> str:
    return next(
        t.handle
        for t in env.armed()
        if t.correlation.alarm_id == alarm_id and t.kind == TriggerKind.WEEKLY
    )


def test_fired_trigger_maps_back_to_alarm(env):
    event, _ = _create(env, description="Workout")
    alarm = event.alarms[1]

    fired = asyncio.run(env.notifier.fire(_weekly_handle(env, alarm.id)))

    assert fired.name == "GYM"
    assert fired.description == "Workout"
    assert (fired.day, fired.time) == ("Wednesday", "06:00")
    # Weekly triggers stay armed after firing.
    assert len(env.armed()) == 3
    entries = env.timeline_repo.list_for_event(event.id)
    assert any(e.type == TimelineEntryType.FIRED for e in entries)


def test_fired_trigger_for_unknown_alarm_returns_none(env):
    correlation = CorrelationId(event_id="gone", alarm_id="gone")
    assert asyncio.run(env.service.handle_trigger_fired(correlation)) is None


def test_snooze_arms_one_shot_trigger(env):
    event, _ = _create(env)
    correlation = CorrelationId(event_id=event.id, alarm_id=event.alarms[0].id)

    fire_at = asyncio.run(env.service.snooze(correlation))

    assert fire_at == NOW + timedelta(minutes=9)
    snoozes = [t for t in env.armed() if t.kind == TriggerKind.SNOOZE]
    assert len(snoozes) == 1
    assert snoozes[0].body == "Snoozed - Monday - Leg day"

    # Firing the snooze consumes it and reports the count.
    fired = asyncio.run(env.notifier.fire(snoozes[0].handle))
    assert fired.snooze_count == 1
    assert not any(t.kind == TriggerKind.SNOOZE for t in env.armed())


def test_snooze_limit(env):
    event, _ = _create(env)
    correlation = CorrelationId(event_id=event.id, alarm_id=event.alarms[0].id)
    for _ in range(3):
        asyncio.run(env.service.snooze(correlation, minutes=1))

    with pytest.raises(ValidationError):
        asyncio.run(env.service.snooze(correlation))

    asyncio.run(env.service.dismiss(correlation))
    asyncio.run(env.service.snooze(correlation))
    types = [e.type for e in env.timeline_repo.list_for_event(event.id)]
    assert TimelineEntryType.DISMISSED in types


def test_snooze_refused_by_platform(env):
    event, _ = _create(env)
    env.notifier.permission_granted = False
    correlation = CorrelationId(event_id=event.id, alarm_id=event.alarms[0].id)

    with pytest.raises(SchedulingError):
        asyncio.run(env.service.snooze(correlation))
    assert env.timeline_repo.list_failures(event.id)[-1].type == (
        TimelineEntryType.FAILED
    )


def test_snooze_unknown_alarm(env):
    with pytest.raises(EventNotFoundError):
        asyncio.run(env.service.snooze(CorrelationId(event_id="x", alarm_id="y")))


# ---------------------------------------------------------------------------
# Read models
# ---------------------------------------------------------------------------


def test_next_fire_times_are_sorted(env):
    event, _ = _create(env)

    times = env.service.next_fire_times(event.id)

    assert [t.day for t in times] == ["Wednesday", "Friday", "Monday"]
    assert times[0].fire_at == datetime(2026, 10, 21, 6, 0, tzinfo=TZ)
    assert times[-1].fire_at == datetime(2026, 10, 26, 6, 0, tzinfo=TZ)


def test_summary_groups_enabled_alarms_by_time(env):
    event, _ = _create(env)
    asyncio.run(env.service.set_alarm_enabled(event.id, event.alarms[2].id, False))

    summary = env.service.summary(event.id)

    assert summary.total_alarms == 3
    assert summary.enabled_alarms == 2
    assert summary.active_days == ["Monday", "Wednesday"]
    assert [(g.time, g.days) for g in summary.times] == [
        ("06:00", ["Monday", "Wednesday"])
    ]


# ---------------------------------------------------------------------------
# Snooze bookkeeping
# ---------------------------------------------------------------------------


def test_weekly_firing_starts_a_fresh_snooze_count(env):
    event, _ = _create(env)
    alarm_id = event.alarms[0].id
    correlation = CorrelationId(event_id=event.id, alarm_id=alarm_id)
    weekly = _weekly_handle(env, alarm_id)

    asyncio.run(env.notifier.fire(weekly))
    for _ in range(3):
        asyncio.run(env.service.snooze(correlation, minutes=1))

    # The alarm rang out without a dismiss; a week later it fires again.
    fired = asyncio.run(env.notifier.fire(weekly))

    assert fired.snooze_count == 0
    asyncio.run(env.service.snooze(correlation))


def test_snooze_counts_are_dropped_with_their_alarms(env):
    event, _ = _create(env)
    first = CorrelationId(event_id=event.id, alarm_id=event.alarms[0].id)
    second = CorrelationId(event_id=event.id, alarm_id=event.alarms[1].id)
    asyncio.run(env.service.snooze(first))
    asyncio.run(env.service.snooze(second))

    asyncio.run(env.service.remove_alarm(event.id, first.alarm_id))
    assert first not in env.service._snooze_counts
    assert second in env.service._snooze_counts

    asyncio.run(env.service.delete_event(event.id))
    assert env.service._snooze_counts == {}


# ---------------------------------------------------------------------------
# Persistence failures
# ---------------------------------------------------------------------------


class FailingStorage(InMemoryEventStorage):
    def __init__(self, events: list[Event] | None = None) -> None:
        super().__init__(events)
        self.fail = False

    async def save(self, events: list[Event]) -> None:
        if self.fail:
            raise OSError("No space left on device")
        await super().save(events)


def _failing_env() -> Env:
    env = Env()
    env.storage = FailingStorage()
    env.service.storage = env.storage
    return env


def test_failed_save_rolls_back_create():
    env = _failing_env()
    env.storage.fail = True

    with pytest.raises(PersistenceError):
        _create(env)

    assert env.service.events == []
    assert env.armed() == []


def test_failed_save_keeps_deleted_event_armed():
    env = _failing_env()
    event, _ = _create(env)
    env.storage.fail = True

    with pytest.raises(PersistenceError):
        asyncio.run(env.service.delete_event(event.id))

    assert env.service.get_event(event.id) == event
    assert asyncio.run(env.storage.load()) == [event]
    assert len(env.armed()) == 3
