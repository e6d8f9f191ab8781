"""Deterministic in-memory health data source.

Used by the test suite and for demo-data seeding.  Samples are added
explicitly (``add_quantity``, ``add_sleep``...) or generated with
``seed_days()``; failures and latency can be injected per query kind so the
timeout and error paths of the engine are exercisable without a device.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import date, datetime, time, timedelta, timezone, tzinfo

from src.insights.base import (
    HEART_RATE_UNIT,
    HRV_UNIT,
    CategorySample,
    CategoryType,
    HealthDataError,
    HealthDataSource,
    QuantitySample,
    QuantityType,
    SleepStage,
    SortOrder,
    Statistics,
    StatisticsOption,
    WorkoutSample,
    apply_sort_and_limit,
    compute_statistics,
    in_range,
)
from src.insights.seeding import DayType, FallbackDataGenerator

logger = logging.getLogger("murmur.insights.adapters.fake")

QUERY_QUANTITY = "quantity"
QUERY_CATEGORY = "category"
QUERY_WORKOUTS = "workouts"
QUERY_STATISTICS = "statistics"


class FakeHealthDataSource(HealthDataSource):
    """In-memory HealthDataSource with failure and latency injection.

    Args:
        available:  Value reported by ``is_available``.
        delay:      Seconds every query sleeps before answering.
    """

    SOURCE_ID = "fake"
    DISPLAY_NAME = "Demo data"

    def __init__(self, available: bool = True, delay: float = 0.0) -> None:
        self.available = available
        self.delay = delay
        self.authorized: set[str] = set()
        self.quantities: list[QuantitySample] = []
        self.categories: list[CategorySample] = []
        self.workouts: list[WorkoutSample] = []
        self.failures: dict[str, HealthDataError] = {}
        self.query_log: list[str] = []

    # ------------------------------------------------------------------
    # Population helpers
    # ------------------------------------------------------------------

    def add_quantity(
        self,
        kind: QuantityType,
        value: float,
        at: datetime,
        unit: str | None = None,
    ) -> QuantitySample:
        default_unit = HRV_UNIT if kind is QuantityType.HRV else HEART_RATE_UNIT
        sample = QuantitySample(kind=kind, value=value, unit=unit or default_unit, start=at, end=at)
        self.quantities.append(sample)
        return sample

    def add_sleep(
        self,
        start: datetime,
        end: datetime,
        stage: SleepStage = SleepStage.ASLEEP_CORE,
    ) -> CategorySample:
        sample = CategorySample(CategoryType.SLEEP_ANALYSIS, int(stage), start, end)
        self.categories.append(sample)
        return sample

    def add_flow(self, start: datetime, end: datetime, value: int) -> CategorySample:
        sample = CategorySample(CategoryType.MENSTRUAL_FLOW, value, start, end)
        self.categories.append(sample)
        return sample

    def add_workout(
        self, start: datetime, minutes: float, activity_type: str = "walking"
    ) -> WorkoutSample:
        workout = WorkoutSample(
            activity_type=activity_type,
            start=start,
            end=start + timedelta(minutes=minutes),
            duration_seconds=minutes * 60,
        )
        self.workouts.append(workout)
        return workout

    def fail(self, query: str, error: HealthDataError) -> None:
        """Make every subsequent ``query`` kind raise ``error``."""
        self.failures[query] = error

    def seed_days(
        self,
        start: date,
        days: int,
        tz: tzinfo = timezone.utc,
        day_types: dict[date, DayType] | None = None,
        generator: FallbackDataGenerator | None = None,
    ) -> None:
        """Populate ``days`` consecutive days of plausible demo data.

        Each day gets one morning HRV and resting HR reading, a night of
        sleep ending that morning, and (when non-zero) an afternoon workout.
        """
        generator = generator or FallbackDataGenerator()
        day_types = day_types or {}
        for i in range(days):
            day = start + timedelta(days=i)
            day_type = day_types.get(day, DayType.NORMAL)
            morning = datetime.combine(day, time(7, 0), tzinfo=tz)

            self.add_quantity(QuantityType.HRV, round(generator.hrv(day, day_type), 1), morning)
            self.add_quantity(
                QuantityType.RESTING_HEART_RATE,
                round(generator.resting_hr(day, day_type)),
                morning,
            )
            sleep_hours = generator.sleep_hours(day, day_type)
            self.add_sleep(morning - timedelta(hours=sleep_hours), morning)
            minutes = round(generator.workout_minutes(day, day_type))
            if minutes > 0:
                self.add_workout(datetime.combine(day, time(17, 0), tzinfo=tz), minutes)
        logger.info("Seeded %d day(s) of demo health data from %s", days, start)

    # ------------------------------------------------------------------
    # HealthDataSource
    # ------------------------------------------------------------------

    @property
    def is_available(self) -> bool:
        return self.available

    async def _enter(self, query: str) -> None:
        self.query_log.append(query)
        if self.delay:
            await asyncio.sleep(self.delay)
        if query in self.failures:
            raise self.failures[query]

    async def request_authorization(self, to_share: set[str], to_read: set[str]) -> bool:
        self.authorized |= set(to_read)
        return True

    async def fetch_quantity_samples(
        self,
        kind: QuantityType,
        start: datetime,
        end: datetime,
        limit: int | None = None,
        sort: SortOrder | None = None,
    ) -> list[QuantitySample]:
        await self._enter(QUERY_QUANTITY)
        matches = [
            s for s in self.quantities
            if s.kind is kind and in_range(s.start, s.end, start, end)
        ]
        return apply_sort_and_limit(matches, sort, limit)

    async def fetch_category_samples(
        self,
        kind: CategoryType,
        start: datetime,
        end: datetime,
        limit: int | None = None,
        sort: SortOrder | None = None,
    ) -> list[CategorySample]:
        await self._enter(QUERY_CATEGORY)
        matches = [
            s for s in self.categories
            if s.kind is kind and in_range(s.start, s.end, start, end)
        ]
        return apply_sort_and_limit(matches, sort, limit)

    async def fetch_workouts(
        self,
        start: datetime,
        end: datetime,
        limit: int | None = None,
        sort: SortOrder | None = None,
    ) -> list[WorkoutSample]:
        await self._enter(QUERY_WORKOUTS)
        matches = [w for w in self.workouts if in_range(w.start, w.end, start, end)]
        return apply_sort_and_limit(matches, sort, limit)

    async def fetch_statistics(
        self,
        kind: QuantityType,
        start: datetime,
        end: datetime,
        options: StatisticsOption,
    ) -> Statistics | None:
        await self._enter(QUERY_STATISTICS)
        samples = [
            s for s in self.quantities
            if s.kind is kind and start <= s.start < end
        ]
        return compute_statistics(kind, start, end, samples, options)

