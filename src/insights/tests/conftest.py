"""Shared fixtures and builders for insights engine tests."""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from uuid import UUID

import pytest

from src.insights.adapters.fake import FakeHealthDataSource
from src.insights.cache import MetricCache
from src.insights.config_loader import InsightsConfig, load_insights_config
from src.insights.historical import HistoricalMetricResolver
from src.insights.query_service import HealthQueryService
from src.models.tracking import (
    POSITIVE_WELLBEING_CATEGORY,
    ActivityEvent,
    PhysiologicalSnapshot,
    SymptomEntry,
    SymptomType,
)

# Canonical test dates: TEST_DATE is "today", NOW is midday
TEST_DATE = date(2026, 2, 23)
UTC = timezone.utc
NOW = datetime(2026, 2, 23, 12, 0, tzinfo=UTC)
# Fixed offset "local" zone for day-boundary tests
LOCAL_TZ = timezone(timedelta(hours=-5), "EST")

FATIGUE = SymptomType(
    id=UUID("11111111-1111-1111-1111-111111111111"),
    name="Fatigue",
    category="Energy",
)
HEADACHE = SymptomType(
    id=UUID("22222222-2222-2222-2222-222222222222"),
    name="Headache",
    category="Pain",
)
CALM = SymptomType(
    id=UUID("33333333-3333-3333-3333-333333333333"),
    name="Calm",
    category=POSITIVE_WELLBEING_CATEGORY,
)


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------


def make_entry(
    symptom: SymptomType,
    severity: int,
    at: datetime,
    backdated_at: datetime | None = None,
    snapshot: PhysiologicalSnapshot | None = None,
) -> SymptomEntry:
    return SymptomEntry(
        symptom_type=symptom,
        severity=severity,
        created_at=at,
        backdated_at=backdated_at,
        snapshot=snapshot,
    )


def make_event(name: str, at: datetime) -> ActivityEvent:
    return ActivityEvent(name=name, created_at=at)


def days_ago(days: float, hour: int = 12) -> datetime:
    """A timestamp ``days`` before TEST_DATE at ``hour`` UTC."""
    base = datetime(TEST_DATE.year, TEST_DATE.month, TEST_DATE.day, hour, tzinfo=UTC)
    return base - timedelta(days=days)


class FixedClock:
    """Callable clock that tests can move forward."""

    def __init__(self, now: datetime = NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def insights_config() -> InsightsConfig:
    """Load the bundled insights config for tests."""
    return load_insights_config()


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def fake_source() -> FakeHealthDataSource:
    return FakeHealthDataSource()


@pytest.fixture
def queries(fake_source: FakeHealthDataSource) -> HealthQueryService:
    return HealthQueryService(fake_source, timeout_seconds=0.5)


@pytest.fixture
def cache(clock: FixedClock) -> MetricCache:
    return MetricCache(tz=UTC, clock=clock)


@pytest.fixture
def resolver(
    queries: HealthQueryService, cache: MetricCache, insights_config: InsightsConfig
) -> HistoricalMetricResolver:
    return HistoricalMetricResolver(queries, cache, insights_config)
