"""Persistence collaborator for the event list."""

from __future__ import annotations

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from pathlib import Path

from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from alarmclock.domain.models import Event

logger = logging.getLogger(__name__)

STORAGE_KEY = "eventAlarms"

_EVENT_LIST = TypeAdapter(list[Event])


class EventStorage(ABC):
    """Loads and saves the full event list; both calls are atomic."""

    @abstractmethod
    async def load(self) -> list[Event]: ...

    @abstractmethod
    async def save(self, events: list[Event]) -> None: ...


class InMemoryEventStorage(EventStorage):
    def __init__(self, events: list[Event] | None = None) -> None:
        self._events: list[Event] = [e.model_copy(deep=True) for e in events or []]
        self.save_count = 0

    async def load(self) -> list[Event]:
        return [e.model_copy(deep=True) for e in self._events]

    async def save(self, events: list[Event]) -> None:
        self._events = [e.model_copy(deep=True) for e in events]
        self.save_count += 1


class JsonFileEventStorage(EventStorage):
    """Stores events as JSON under the ``eventAlarms`` key of a file.

    Writes go to a sibling ``.tmp`` file which is then renamed over the
    target, so readers never observe a partial write.
    """

    def __init__(self, path: Path | str) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def _read(self) -> object:
        return json.loads(self._path.read_text(encoding="utf-8"))

    def _write(self, payload: dict) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_suffix(".tmp")
        tmp_path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        tmp_path.replace(self._path)

    async def load(self) -> list[Event]:
        if not self._path.exists():
            return []
        try:
            payload = await asyncio.to_thread(self._read)
        except (OSError, json.JSONDecodeError):
            logger.exception("Failed to read %s; starting with no events", self._path)
            return []
        raw_events = payload.get(STORAGE_KEY, []) if isinstance(payload, dict) else []
        try:
            return _EVENT_LIST.validate_python(raw_events)
        except PydanticValidationError:
            logger.exception("Stored events in %s are malformed; ignoring", self._path)
            return []

    async def save(self, events: list[Event]) -> None:
        payload = {STORAGE_KEY: _EVENT_LIST.dump_python(events, mode="json")}
        await asyncio.to_thread(self._write, payload)
        logger.debug("Saved %d events to %s", len(events), self._path)
