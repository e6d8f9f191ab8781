"""Tests for the entry stores and the database pool guards."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from uuid import UUID

import asyncpg
import pytest

from src.config import Settings
from src.insights.base import FlowLevel
from src.models.tracking import ActivityEvent, SymptomEntry, SymptomType
from src.services import database
from src.services.entry_store import InMemoryEntryStore, PostgresEntryStore, row_to_entry

NOW = datetime(2026, 2, 23, 12, 0, tzinfo=timezone.utc)
NAUSEA = SymptomType(id=UUID("44444444-4444-4444-4444-444444444444"), name="Nausea")


def _entry(hours_ago: float, backdated_hours_ago: float | None = None) -> SymptomEntry:
    return SymptomEntry(
        symptom_type=NAUSEA,
        severity=3,
        created_at=NOW - timedelta(hours=hours_ago),
        backdated_at=(
            NOW - timedelta(hours=backdated_hours_ago) if backdated_hours_ago is not None else None
        ),
    )


def _entry_row(**overrides) -> dict:
    row = {
        "id": UUID("55555555-5555-5555-5555-555555555555"),
        "severity": 4,
        "created_at": NOW,
        "backdated_at": None,
        "note": "after lunch",
        "hk_hrv": 38.5,
        "hk_resting_hr": None,
        "hk_sleep_hours": 6.25,
        "hk_workout_minutes": None,
        "hk_cycle_day": 12,
        "hk_flow_level": "light",
        "symptom_type_id": NAUSEA.id,
        "symptom_type_name": "Nausea",
        "symptom_type_color": "#88aa00",
        "symptom_type_category": "Digestive",
        "symptom_type_is_starred": True,
    }
    row.update(overrides)
    return row


class TestInMemoryEntryStore:
    @pytest.mark.asyncio
    async def test_filters_on_effective_time(self) -> None:
        inside = _entry(2)
        backdated_out = _entry(1, backdated_hours_ago=72)
        backdated_in = _entry(100, backdated_hours_ago=5)
        store = InMemoryEntryStore([inside, backdated_out, backdated_in])
        entries = await store.fetch_symptom_entries(NOW - timedelta(days=1), NOW)
        assert entries == [backdated_in, inside]

    @pytest.mark.asyncio
    async def test_range_is_inclusive(self) -> None:
        edge = _entry(24)
        store = InMemoryEntryStore([edge])
        assert await store.fetch_symptom_entries(NOW - timedelta(hours=24), NOW) == [edge]

    @pytest.mark.asyncio
    async def test_events(self) -> None:
        store = InMemoryEntryStore()
        walk = ActivityEvent(name="Walk", created_at=NOW - timedelta(hours=3))
        store.add_event(walk)
        store.add_event(ActivityEvent(name="Shower", created_at=NOW - timedelta(days=3)))
        assert await store.fetch_activity_events(NOW - timedelta(days=1), NOW) == [walk]


class TestPostgresEntryStore:
    def test_row_to_entry(self) -> None:
        entry = row_to_entry(_entry_row())
        assert entry.severity == 4
        assert entry.symptom_type.category == "Digestive"
        assert entry.symptom_type.is_starred
        assert entry.snapshot is not None
        assert entry.snapshot.hrv == 38.5
        assert entry.snapshot.cycle_day == 12
        assert entry.snapshot.flow_level is FlowLevel.LIGHT

    def test_empty_snapshot_dropped(self) -> None:
        entry = row_to_entry(
            _entry_row(hk_hrv=None, hk_sleep_hours=None, hk_cycle_day=None, hk_flow_level=None)
        )
        assert entry.snapshot is None

    @pytest.mark.asyncio
    async def test_queries_with_range(self) -> None:
        calls: list[tuple] = []

        async def fake_fetch(query: str, *args):
            calls.append((query, args))
            if "activity_events" in query:
                return [
                    {
                        "id": UUID("66666666-6666-6666-6666-666666666666"),
                        "name": "Walk",
                        "created_at": NOW,
                        "backdated_at": None,
                        "note": None,
                        "physical_exertion": 3,
                        "cognitive_exertion": None,
                        "emotional_load": None,
                        "duration_minutes": 20,
                    }
                ]
            return [_entry_row()]

        store = PostgresEntryStore(fetch=fake_fetch)
        start = NOW - timedelta(days=7)
        entries = await store.fetch_symptom_entries(start, NOW)
        events = await store.fetch_activity_events(start, NOW)

        assert [e.symptom_type.name for e in entries] == ["Nausea"]
        assert events[0].physical_exertion == 3
        assert [args for _, args in calls] == [(start, NOW), (start, NOW)]

    @pytest.mark.asyncio
    async def test_database_errors_propagate(self) -> None:
        async def failing_fetch(query: str, *args):
            raise asyncpg.PostgresError("relation does not exist")

        store = PostgresEntryStore(fetch=failing_fetch)
        with pytest.raises(asyncpg.PostgresError):
            await store.fetch_symptom_entries(NOW - timedelta(days=1), NOW)


class TestDatabasePool:
    def test_pool_not_initialised(self) -> None:
        with pytest.raises(RuntimeError, match="init_pool"):
            database.get_pool()

    @pytest.mark.asyncio
    async def test_init_requires_url(self) -> None:
        with pytest.raises(RuntimeError, match="database_url"):
            await database.init_pool(Settings(database_url=None))

    @pytest.mark.asyncio
    async def test_close_without_pool_is_noop(self) -> None:
        await database.close_pool()
