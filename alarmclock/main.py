"""FastAPI entry point for the weekly alarm service."""

from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException

from alarmclock.config import configure_logging, get_settings
from alarmclock.domain.bus import EventBus
from alarmclock.domain.errors import (
    AlarmClockError,
    DuplicateAlarmError,
    EventNotFoundError,
    PersistenceError,
    SchedulingError,
)
from alarmclock.domain.handlers import HandlerRegistry
from alarmclock.domain.models import (
    AddAlarmRequest,
    CorrelationId,
    CreateEventRequest,
    DaySelection,
    EnabledRequest,
    Event,
    EventMutationResponse,
    EventSummary,
    FiredAlarm,
    NextFireTime,
    ReconcileReport,
    SnoozeRequest,
    TimelineEntry,
    TriggerKind,
    UpdateAlarmRequest,
    UpdateEventRequest,
)
from alarmclock.repos.memory import TimelineRepository
from alarmclock.repos.storage import JsonFileEventStorage
from alarmclock.services.notifier import InMemoryNotificationScheduler
from alarmclock.services.parser import parse_alarm_time
from alarmclock.services.schedule_service import ScheduleService

settings = get_settings()
configure_logging(settings.log_level)

# ── Singletons (created at import time for simplicity) ────────────────
event_bus = EventBus()
timeline_repo = TimelineRepository()
notifier = InMemoryNotificationScheduler()
schedule_service = ScheduleService(
    storage=JsonFileEventStorage(settings.storage_path),
    notifier=notifier,
    settings=settings,
    bus=event_bus,
)
notifier.on_trigger_fired(schedule_service.handle_trigger_fired)

handler_registry = HandlerRegistry(bus=event_bus, timeline_repo=timeline_repo)


@asynccontextmanager
async def lifespan(_: FastAPI):
    await schedule_service.start()
    yield


app = FastAPI(title="Weekly Alarm Service", lifespan=lifespan)


def _http_error(exc: AlarmClockError) -> HTTPException:
    if isinstance(exc, EventNotFoundError):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, DuplicateAlarmError):
        return HTTPException(status_code=409, detail=str(exc))
    if isinstance(exc, (SchedulingError, PersistenceError)):
        return HTTPException(status_code=503, detail=str(exc))
    return HTTPException(status_code=422, detail=str(exc))


# ── Routes ────────────────────────────────────────────────────────────


@app.post("/events", response_model=EventMutationResponse, status_code=201)
async def create_event(body: CreateEventRequest) -> EventMutationResponse:
    """Create an event with its initial alarms and arm them."""
    try:
        alarms = [
            spec.model_copy(update={"time": parse_alarm_time(spec.time)})
            for spec in body.alarms
        ]
        event, report = await schedule_service.create_event(
            name=body.name,
            alarms=alarms,
            description=body.description,
            sound_ref=body.sound_ref,
        )
    except AlarmClockError as exc:
        raise _http_error(exc) from exc
    return EventMutationResponse(
        event=event, alarm_ids=[a.id for a in event.alarms], report=report
    )


@app.get("/events", response_model=list[Event])
async def list_events() -> list[Event]:
    return schedule_service.events


@app.get("/events/{event_id}", response_model=Event)
async def get_event(event_id: str) -> Event:
    try:
        return schedule_service.get_event(event_id)
    except AlarmClockError as exc:
        raise _http_error(exc) from exc


@app.patch("/events/{event_id}", response_model=EventMutationResponse)
async def update_event(
    event_id: str, body: UpdateEventRequest
) -> EventMutationResponse:
    """Rename an event or change its description or sound."""
    try:
        event, report = await schedule_service.update_event(
            event_id,
            name=body.name,
            description=body.description,
            sound_ref=body.sound_ref,
        )
    except AlarmClockError as exc:
        raise _http_error(exc) from exc
    return EventMutationResponse(event=event, report=report)


@app.delete("/events/{event_id}", response_model=ReconcileReport)
async def delete_event(event_id: str) -> ReconcileReport:
    """Cancel all of the event's triggers and delete it."""
    try:
        return await schedule_service.delete_event(event_id)
    except AlarmClockError as exc:
        raise _http_error(exc) from exc


@app.post("/events/{event_id}/enabled", response_model=EventMutationResponse)
async def set_event_enabled(
    event_id: str, body: EnabledRequest
) -> EventMutationResponse:
    try:
        event, report = await schedule_service.set_event_enabled(
            event_id, body.enabled
        )
    except AlarmClockError as exc:
        raise _http_error(exc) from exc
    return EventMutationResponse(event=event, report=report)


@app.post(
    "/events/{event_id}/alarms", response_model=EventMutationResponse, status_code=201
)
async def add_alarm(event_id: str, body: AddAlarmRequest) -> EventMutationResponse:
    """Add one alarm (``day``) or one per day of a preset (``selection``)."""
    if (body.day is None) == (body.selection is None):
        raise HTTPException(
            status_code=422, detail="Provide exactly one of 'day' or 'selection'"
        )
    if body.days and body.selection != DaySelection.CUSTOM:
        raise HTTPException(
            status_code=422, detail="'days' is only allowed with the custom selection"
        )
    try:
        time = parse_alarm_time(body.time)
        if body.day is not None:
            event, alarm, report = await schedule_service.add_alarm(
                event_id, body.day, time, body.description
            )
            alarm_ids = [alarm.id]
        else:
            event, alarms, report = await schedule_service.add_alarm_days(
                event_id, body.selection, time, body.description, body.days
            )
            alarm_ids = [a.id for a in alarms]
    except AlarmClockError as exc:
        raise _http_error(exc) from exc
    return EventMutationResponse(event=event, alarm_ids=alarm_ids, report=report)


@app.patch("/events/{event_id}/alarms/{alarm_id}", response_model=EventMutationResponse)
async def update_alarm(
    event_id: str, alarm_id: str, body: UpdateAlarmRequest
) -> EventMutationResponse:
    """Move an alarm to another day/time; its trigger is cancelled and re-armed."""
    try:
        time = parse_alarm_time(body.time) if body.time is not None else None
        event, report = await schedule_service.update_alarm(
            event_id, alarm_id, day=body.day, time=time, description=body.description
        )
    except AlarmClockError as exc:
        raise _http_error(exc) from exc
    return EventMutationResponse(event=event, alarm_ids=[alarm_id], report=report)


@app.delete(
    "/events/{event_id}/alarms/{alarm_id}", response_model=EventMutationResponse
)
async def remove_alarm(event_id: str, alarm_id: str) -> EventMutationResponse:
    try:
        event, report = await schedule_service.remove_alarm(event_id, alarm_id)
    except AlarmClockError as exc:
        raise _http_error(exc) from exc
    return EventMutationResponse(event=event, report=report)


@app.post(
    "/events/{event_id}/alarms/{alarm_id}/enabled",
    response_model=EventMutationResponse,
)
async def set_alarm_enabled(
    event_id: str, alarm_id: str, body: EnabledRequest
) -> EventMutationResponse:
    try:
        event, report = await schedule_service.set_alarm_enabled(
            event_id, alarm_id, body.enabled
        )
    except AlarmClockError as exc:
        raise _http_error(exc) from exc
    return EventMutationResponse(event=event, alarm_ids=[alarm_id], report=report)


@app.get("/events/{event_id}/next-fire-times", response_model=list[NextFireTime])
async def next_fire_times(event_id: str) -> list[NextFireTime]:
    try:
        return schedule_service.next_fire_times(event_id)
    except AlarmClockError as exc:
        raise _http_error(exc) from exc


@app.get("/events/{event_id}/summary", response_model=EventSummary)
async def event_summary(event_id: str) -> EventSummary:
    try:
        return schedule_service.summary(event_id)
    except AlarmClockError as exc:
        raise _http_error(exc) from exc


@app.get("/events/{event_id}/timeline", response_model=list[TimelineEntry])
async def event_timeline(event_id: str) -> list[TimelineEntry]:
    """Arm/cancel/failure history of an event, including alarms that will not fire."""
    return timeline_repo.list_for_event(event_id)


@app.post("/reconcile", response_model=ReconcileReport)
async def reconcile() -> ReconcileReport:
    """Re-run reconciliation, e.g. after notification permission was granted."""
    return await schedule_service.reconcile()


@app.post("/triggers/fired", response_model=FiredAlarm)
async def trigger_fired(
    correlation: CorrelationId, kind: TriggerKind = TriggerKind.WEEKLY
) -> FiredAlarm:
    """Called by the device when a trigger goes off."""
    fired = await schedule_service.handle_trigger_fired(correlation, kind)
    if fired is None:
        raise HTTPException(status_code=404, detail="Alarm not found")
    return fired


@app.post("/triggers/snooze")
async def snooze(body: SnoozeRequest) -> dict:
    correlation = CorrelationId(event_id=body.event_id, alarm_id=body.alarm_id)
    try:
        fire_at = await schedule_service.snooze(correlation, body.minutes)
    except AlarmClockError as exc:
        raise _http_error(exc) from exc
    return {"status": "snoozed", "fire_at": fire_at.isoformat()}


@app.post("/triggers/dismiss")
async def dismiss(correlation: CorrelationId) -> dict:
    await schedule_service.dismiss(correlation)
    return {"status": "dismissed"}
