"""Event/alarm store: pure transformations on events plus the in-memory list.

Nothing here performs I/O. Every function returns new ``Event`` values and
leaves its arguments untouched; persistence and scheduling happen in
``ScheduleService``.
"""

from __future__ import annotations

from alarmclock.domain.clock import slot_key
from alarmclock.domain.errors import DuplicateAlarmError, ValidationError
from alarmclock.domain.models import AlarmInstance, AlarmSpec, Event


def _check_unique(alarms: list[AlarmInstance]) -> None:
    seen: set[tuple[str, str]] = set()
    for alarm in alarms:
        key = slot_key(alarm.day, alarm.time)
        if key in seen:
            raise DuplicateAlarmError(alarm.day, alarm.time)
        seen.add(key)


def create_event(
    name: str,
    description: str,
    sound_ref: str,
    alarms: list[AlarmSpec],
) -> Event:
    """Build a new Event with fresh ids for itself and every alarm instance.

    Raises ``ValidationError`` if *name* is blank or *alarms* is empty, and
    ``DuplicateAlarmError`` if two specs share a (day, time) slot.
    """
    if not name or not name.strip():
        raise ValidationError("Event name must not be empty")
    if not alarms:
        raise ValidationError("An event needs at least one alarm")

    instances = [
        AlarmInstance(
            day=spec.day,
            time=spec.time,
            description=(spec.description or "").strip(),
        )
        for spec in alarms
    ]
    _check_unique(instances)
    return Event(
        name=name.strip(),
        description=(description or "").strip(),
        sound_ref=sound_ref,
        alarms=instances,
    )


def add_alarm_instance(
    event: Event, day: str, time: str, description: str = ""
) -> tuple[Event, AlarmInstance]:
    """Append a new instance; returns the updated event and the new instance."""
    key = slot_key(day, time)
    if any(slot_key(a.day, a.time) == key for a in event.alarms):
        raise DuplicateAlarmError(day, time)

    alarm = AlarmInstance(day=day, time=time, description=(description or "").strip())
    updated = event.model_copy(update={"alarms": [*event.alarms, alarm]}, deep=True)
    return updated, alarm


def add_alarm_days(
    event: Event, days: list[str], time: str, description: str = ""
) -> tuple[Event, list[AlarmInstance]]:
    """Add one instance per day, all at the same time.

    All-or-nothing: if any day clashes with an existing slot nothing is added.
    """
    if not days:
        raise ValidationError("Select at least one day for the alarm")
    added: list[AlarmInstance] = []
    updated = event
    for day in days:
        updated, alarm = add_alarm_instance(updated, day, time, description)
        added.append(alarm)
    return updated, added


def remove_alarm_instance(event: Event, alarm_id: str) -> Event:
    """Remove an instance by id. Unknown ids are ignored."""
    return event.model_copy(
        update={"alarms": [a for a in event.alarms if a.id != alarm_id]}, deep=True
    )


def update_alarm_instance(
    event: Event,
    alarm_id: str,
    day: str | None = None,
    time: str | None = None,
    description: str | None = None,
) -> Event:
    """Change an instance's slot or description, keeping its id."""
    alarms: list[AlarmInstance] = []
    for alarm in event.alarms:
        if alarm.id == alarm_id:
            changes: dict = {}
            if day is not None:
                changes["day"] = day
            if time is not None:
                changes["time"] = time
            if description is not None:
                changes["description"] = description.strip()
            alarm = alarm.model_copy(update=changes)
        alarms.append(alarm)
    _check_unique(alarms)
    return event.model_copy(update={"alarms": alarms}, deep=True)


def update_event(
    event: Event,
    name: str | None = None,
    description: str | None = None,
    sound_ref: str | None = None,
) -> Event:
    changes: dict = {}
    if name is not None:
        if not name.strip():
            raise ValidationError("Event name must not be empty")
        changes["name"] = name.strip()
    if description is not None:
        changes["description"] = description.strip()
    if sound_ref is not None:
        changes["sound_ref"] = sound_ref
    return event.model_copy(update=changes, deep=True)


def set_event_enabled(event: Event, enabled: bool) -> Event:
    return event.model_copy(update={"enabled": enabled}, deep=True)


def set_alarm_enabled(event: Event, alarm_id: str, enabled: bool) -> Event:
    alarms = [
        a.model_copy(update={"enabled": enabled}) if a.id == alarm_id else a
        for a in event.alarms
    ]
    return event.model_copy(update={"alarms": alarms}, deep=True)


class EventStore:
    """Authoritative, ordered list of events.

    Mutations return the new full list so callers can hand the same value to
    the persistence layer.
    """

    def __init__(self, events: list[Event] | None = None) -> None:
        self._events: list[Event] = list(events or [])

    @property
    def events(self) -> list[Event]:
        return list(self._events)

    def get(self, event_id: str) -> Event | None:
        for event in self._events:
            if event.id == event_id:
                return event
        return None

    def find_alarm(
        self, event_id: str, alarm_id: str
    ) -> tuple[Event, AlarmInstance] | None:
        event = self.get(event_id)
        if event is None:
            return None
        alarm = event.get_alarm(alarm_id)
        if alarm is None:
            return None
        return event, alarm

    def load(self, events: list[Event]) -> list[Event]:
        self._events = list(events)
        return self.events

    def add(self, event: Event) -> list[Event]:
        self._events = [*self._events, event]
        return self.events

    def replace(self, event: Event) -> list[Event]:
        """Swap in a new version of an existing event, keeping its position."""
        self._events = [event if e.id == event.id else e for e in self._events]
        return self.events

    def delete_event(self, event_id: str) -> list[Event]:
        self._events = [e for e in self._events if e.id != event_id]
        return self.events
