"""Read-only access to logged symptom entries and activity events.

The analysis core never writes tracking data; it only asks for entries
whose *effective* timestamp (backdated time if set, else creation time)
falls inside a range.

Two implementations:
    InMemoryEntryStore  - list-backed, used in tests and demo mode
    PostgresEntryStore  - asyncpg queries against the app's tables
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Awaitable, Callable, Iterable, Protocol

import asyncpg

from src.insights.base import FlowLevel
from src.models.tracking import ActivityEvent, PhysiologicalSnapshot, SymptomEntry, SymptomType
from src.services import database

logger = logging.getLogger("murmur.db.entries")


class EntryStore(Protocol):
    async def fetch_symptom_entries(self, start: datetime, end: datetime) -> list[SymptomEntry]:
        """Entries with ``start <= effective_at <= end``, oldest first."""
        ...

    async def fetch_activity_events(self, start: datetime, end: datetime) -> list[ActivityEvent]:
        """Events with ``start <= effective_at <= end``, oldest first."""
        ...


# ---------------------------------------------------------------------------
# In-memory
# ---------------------------------------------------------------------------


class InMemoryEntryStore:
    """Entry store over plain lists."""

    def __init__(
        self,
        entries: Iterable[SymptomEntry] = (),
        events: Iterable[ActivityEvent] = (),
    ) -> None:
        self.entries: list[SymptomEntry] = list(entries)
        self.events: list[ActivityEvent] = list(events)

    def add_entry(self, entry: SymptomEntry) -> None:
        self.entries.append(entry)

    def add_event(self, event: ActivityEvent) -> None:
        self.events.append(event)

    async def fetch_symptom_entries(self, start: datetime, end: datetime) -> list[SymptomEntry]:
        selected = [e for e in self.entries if start <= e.effective_at <= end]
        return sorted(selected, key=lambda e: e.effective_at)

    async def fetch_activity_events(self, start: datetime, end: datetime) -> list[ActivityEvent]:
        selected = [e for e in self.events if start <= e.effective_at <= end]
        return sorted(selected, key=lambda e: e.effective_at)


# ---------------------------------------------------------------------------
# Postgres
# ---------------------------------------------------------------------------

_ENTRIES_QUERY = """
    SELECT e.id, e.severity, e.created_at, e.backdated_at, e.note,
           e.hk_hrv, e.hk_resting_hr, e.hk_sleep_hours, e.hk_workout_minutes,
           e.hk_cycle_day, e.hk_flow_level,
           t.id AS symptom_type_id, t.name AS symptom_type_name,
           t.color AS symptom_type_color, t.category AS symptom_type_category,
           t.is_starred AS symptom_type_is_starred
    FROM symptom_entries e
    JOIN symptom_types t ON t.id = e.symptom_type_id
    WHERE COALESCE(e.backdated_at, e.created_at) BETWEEN $1 AND $2
    ORDER BY COALESCE(e.backdated_at, e.created_at)
"""

_EVENTS_QUERY = """
    SELECT id, name, created_at, backdated_at, note,
           physical_exertion, cognitive_exertion, emotional_load, duration_minutes
    FROM activity_events
    WHERE COALESCE(backdated_at, created_at) BETWEEN $1 AND $2
    ORDER BY COALESCE(backdated_at, created_at)
"""

_FLOW_LABELS = {level.label: level for level in FlowLevel}


def row_to_entry(row: Any) -> SymptomEntry:
    """Build a SymptomEntry from a joined entry/type row."""
    flow_raw = row["hk_flow_level"]
    snapshot = PhysiologicalSnapshot(
        hrv=row["hk_hrv"],
        resting_hr=row["hk_resting_hr"],
        sleep_hours=row["hk_sleep_hours"],
        workout_minutes=row["hk_workout_minutes"],
        cycle_day=row["hk_cycle_day"],
        flow_level=_FLOW_LABELS.get(flow_raw) if flow_raw else None,
    )
    return SymptomEntry(
        id=row["id"],
        symptom_type=SymptomType(
            id=row["symptom_type_id"],
            name=row["symptom_type_name"],
            color=row["symptom_type_color"],
            category=row["symptom_type_category"],
            is_starred=row["symptom_type_is_starred"],
        ),
        severity=row["severity"],
        created_at=row["created_at"],
        backdated_at=row["backdated_at"],
        note=row["note"],
        snapshot=None if snapshot.is_empty else snapshot,
    )


def row_to_event(row: Any) -> ActivityEvent:
    return ActivityEvent.model_validate(dict(row))


class PostgresEntryStore:
    """Entry store backed by the app database.

    Args:
        fetch: Row fetcher, ``database.fetch`` unless overridden in tests.
    """

    def __init__(
        self,
        fetch: Callable[..., Awaitable[list[Any]]] = database.fetch,
    ) -> None:
        self._fetch = fetch

    async def fetch_symptom_entries(self, start: datetime, end: datetime) -> list[SymptomEntry]:
        try:
            rows = await self._fetch(_ENTRIES_QUERY, start, end)
        except asyncpg.PostgresError:
            logger.exception("Failed to fetch symptom entries")
            raise
        return [row_to_entry(r) for r in rows]

    async def fetch_activity_events(self, start: datetime, end: datetime) -> list[ActivityEvent]:
        try:
            rows = await self._fetch(_EVENTS_QUERY, start, end)
        except asyncpg.PostgresError:
            logger.exception("Failed to fetch activity events")
            raise
        return [row_to_event(r) for r in rows]
