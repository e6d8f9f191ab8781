"""Resolve per-day health metrics for any date.

The resolver is cache-first: a day's value is looked up in the MetricCache
and only on a miss is the provider queried for that day's local bounds.
Only real values for days before today are cached; today is still filling
in, and "no data" is re-queried next time because a late-syncing wearable
may still deliver it.

Reductions per metric:
    hrv / resting_hr   most recent sample in the day (newest end first)
    sleep              asleep-stage time overlapping [midnight - 12 h, next midnight),
                       each sample clipped to that window
    workout            total workout minutes in the day
    cycle_day          days since the most recent flow sample (45-day search)
    flow_level         highest flow severity recorded on the day

Zero sleep or workout totals are "no data" (None), never 0.

Error policy:
    ProviderUnavailableError  seeded fallback value if a generator is set, else None
    AuthorizationDeniedError  None
    QueryTimeoutError         propagated to the caller
    other HealthDataError     logged, None
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta, tzinfo
from typing import Awaitable, Callable

from src.insights.base import (
    HEART_RATE_UNIT,
    HRV_UNIT,
    NEWEST_FIRST,
    AuthorizationDeniedError,
    CategoryType,
    FlowLevel,
    HealthDataError,
    HealthMetric,
    MenstrualFlow,
    ProviderUnavailableError,
    QuantityType,
    QueryTimeoutError,
    SortOrder,
)
from src.insights.cache import MetricCache, MetricValue
from src.insights.config_loader import InsightsConfig, get_insights_config
from src.insights.dates import day_bounds, local_day
from src.insights.query_service import HealthQueryService
from src.insights.seeding import FallbackDataGenerator

logger = logging.getLogger("murmur.insights.historical")

_NEWEST_START_FIRST = SortOrder(key="start", ascending=False)


@dataclass
class DailyMetrics:
    """All resolved metrics for one calendar day (None = no data)."""

    day: date
    hrv: float | None = None
    resting_hr: float | None = None
    sleep_hours: float | None = None
    workout_minutes: float | None = None
    cycle_day: int | None = None
    flow_level: FlowLevel | None = None

    def get(self, metric: HealthMetric) -> MetricValue | None:
        return getattr(self, _DAILY_FIELDS[metric])

    def set(self, metric: HealthMetric, value: MetricValue | None) -> None:
        setattr(self, _DAILY_FIELDS[metric], value)


_DAILY_FIELDS = {
    HealthMetric.HRV: "hrv",
    HealthMetric.RESTING_HR: "resting_hr",
    HealthMetric.SLEEP: "sleep_hours",
    HealthMetric.WORKOUT: "workout_minutes",
    HealthMetric.CYCLE_DAY: "cycle_day",
    HealthMetric.FLOW_LEVEL: "flow_level",
}


class HistoricalMetricResolver:
    """Cache-first per-date metric lookups.

    Args:
        queries:  Timeout-guarded provider access.
        cache:    Day-keyed metric cache (its time zone defines day bounds).
        config:   Engine configuration.
        fallback: Optional seeded generator used when the provider is unavailable.
        clock:    Returns the current time; defaults to the cache's clock.
    """

    def __init__(
        self,
        queries: HealthQueryService,
        cache: MetricCache,
        config: InsightsConfig | None = None,
        fallback: FallbackDataGenerator | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.queries = queries
        self.cache = cache
        self._clock = clock or cache.now
        self.config = config or get_insights_config()
        self.fallback = fallback
        self._unavailable_logged = False
        self._reducers: dict[HealthMetric, Callable[[date], Awaitable[MetricValue | None]]] = {
            HealthMetric.HRV: self._query_hrv,
            HealthMetric.RESTING_HR: self._query_resting_hr,
            HealthMetric.SLEEP: self._query_sleep_hours,
            HealthMetric.WORKOUT: self._query_workout_minutes,
            HealthMetric.CYCLE_DAY: self._query_cycle_day,
            HealthMetric.FLOW_LEVEL: self._query_flow_level,
        }

    @property
    def tz(self) -> tzinfo:
        return self.cache.tz

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def value_for_date(self, metric: HealthMetric, day: date) -> MetricValue | None:
        """Return ``metric`` for ``day`` from the cache or the provider.

        Raises:
            QueryTimeoutError: If the provider query times out.
        """
        day = local_day(day, self.tz)
        cached = await self.cache.get(metric, day)
        if cached is not None:
            return cached

        if not self.queries.is_available:
            return self._fallback_value(metric, day)

        try:
            value = await self._reducers[metric](day)
        except QueryTimeoutError:
            raise
        except ProviderUnavailableError:
            return self._fallback_value(metric, day)
        except AuthorizationDeniedError:
            logger.debug("No read access for %s, treating %s as no data", metric.value, day)
            return None
        except HealthDataError as exc:
            logger.warning("Failed to resolve %s for %s: %s", metric.value, day, exc)
            return None

        if value is not None and day < local_day(self._clock(), self.tz):
            await self.cache.set(metric, day, value)
        return value

    async def hrv_for_date(self, day: date) -> float | None:
        return await self.value_for_date(HealthMetric.HRV, day)

    async def resting_hr_for_date(self, day: date) -> float | None:
        return await self.value_for_date(HealthMetric.RESTING_HR, day)

    async def sleep_hours_for_date(self, day: date) -> float | None:
        return await self.value_for_date(HealthMetric.SLEEP, day)

    async def workout_minutes_for_date(self, day: date) -> float | None:
        return await self.value_for_date(HealthMetric.WORKOUT, day)

    async def cycle_day_for_date(self, day: date) -> int | None:
        return await self.value_for_date(HealthMetric.CYCLE_DAY, day)

    async def flow_level_for_date(self, day: date) -> FlowLevel | None:
        return await self.value_for_date(HealthMetric.FLOW_LEVEL, day)

    async def metrics_for_date(self, day: date) -> DailyMetrics:
        """Resolve all six metrics for ``day`` concurrently.

        Raises:
            QueryTimeoutError: If any provider query times out.
        """
        metrics = list(_DAILY_FIELDS)
        values = await asyncio.gather(*(self.value_for_date(m, day) for m in metrics))
        resolved = DailyMetrics(day=local_day(day, self.tz))
        for metric, value in zip(metrics, values):
            resolved.set(metric, value)
        return resolved

    # ------------------------------------------------------------------
    # Fallback
    # ------------------------------------------------------------------

    def _fallback_value(self, metric: HealthMetric, day: date) -> MetricValue | None:
        if not self._unavailable_logged:
            logger.info(
                "Health data source unavailable; %s",
                "using seeded fallback values" if self.fallback else "returning no data",
            )
            self._unavailable_logged = True
        if self.fallback is None:
            return None
        if metric is HealthMetric.HRV:
            return self.fallback.hrv(day)
        if metric is HealthMetric.RESTING_HR:
            return self.fallback.resting_hr(day)
        if metric is HealthMetric.SLEEP:
            return self.fallback.sleep_hours(day)
        if metric is HealthMetric.WORKOUT:
            return self.fallback.workout_minutes(day)
        return None

    # ------------------------------------------------------------------
    # Per-metric reductions
    # ------------------------------------------------------------------

    async def _latest_quantity(self, kind: QuantityType, unit: str, day: date) -> float | None:
        start, end = day_bounds(day, self.tz)
        samples = await self.queries.fetch_quantity_samples(
            kind, start, end, limit=1, sort=NEWEST_FIRST
        )
        if not samples:
            return None
        return samples[0].value_in(unit)

    async def _query_hrv(self, day: date) -> float | None:
        return await self._latest_quantity(QuantityType.HRV, HRV_UNIT, day)

    async def _query_resting_hr(self, day: date) -> float | None:
        return await self._latest_quantity(QuantityType.RESTING_HEART_RATE, HEART_RATE_UNIT, day)

    async def _query_sleep_hours(self, day: date) -> float | None:
        start, end = day_bounds(day, self.tz)
        search_start = start - timedelta(hours=self.config.sleep.historical_lookback_hours)
        samples = await self.queries.fetch_sleep_samples(search_start, end)
        seconds = sum(
            (min(s.end, end) - max(s.start, search_start)).total_seconds()
            for s in samples
            if s.end > s.start
        )
        if seconds <= 0:
            return None
        return seconds / 3600

    async def _query_workout_minutes(self, day: date) -> float | None:
        start, end = day_bounds(day, self.tz)
        workouts = await self.queries.fetch_workouts(start, end)
        minutes = sum(w.duration_seconds for w in workouts) / 60
        if minutes <= 0:
            return None
        return minutes

    async def _query_cycle_day(self, day: date) -> int | None:
        search_start, _ = day_bounds(day - timedelta(days=self.config.cycle_lookback_days), self.tz)
        _, search_end = day_bounds(day, self.tz)
        samples = await self.queries.fetch_category_samples(
            CategoryType.MENSTRUAL_FLOW, search_start, search_end, sort=_NEWEST_START_FIRST
        )
        for sample in samples:
            if sample.flow in (MenstrualFlow.NONE, MenstrualFlow.UNSPECIFIED):
                continue
            flow_day = local_day(sample.start, self.tz)
            if flow_day > day:
                continue
            return (day - flow_day).days + 1
        return None

    async def _query_flow_level(self, day: date) -> FlowLevel | None:
        start, end = day_bounds(day, self.tz)
        samples = await self.queries.fetch_category_samples(
            CategoryType.MENSTRUAL_FLOW, start, end
        )
        if not samples:
            return None
        return max(FlowLevel.from_flow(s.flow) for s in samples)
