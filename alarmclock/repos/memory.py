"""In-memory repositories."""

from __future__ import annotations

from alarmclock.domain.models import TimelineEntry, TimelineEntryType


class TimelineRepository:
    """List-backed store for TimelineEntry instances."""

    def __init__(self) -> None:
        self._entries: list[TimelineEntry] = []

    def add(self, entry: TimelineEntry) -> None:
        self._entries.append(entry)

    def list_for_event(self, event_id: str) -> list[TimelineEntry]:
        return sorted(
            [e for e in self._entries if e.event_id == event_id],
            key=lambda e: e.timestamp,
        )

    def list_failures(self, event_id: str | None = None) -> list[TimelineEntry]:
        """Skipped and failed entries, i.e. alarms that will not fire."""
        return [
            e
            for e in self._entries
            if e.type in (TimelineEntryType.FAILED, TimelineEntryType.SKIPPED)
            and (event_id is None or e.event_id == event_id)
        ]

    def clear(self) -> None:
        self._entries.clear()
