"""Latest-value lookups used when a new symptom entry is logged.

Each metric keeps its most recent value in the MetricCache's freshness
slot.  A lookup re-queries the provider only when ``should_refresh`` says
the value is older than that metric's cache duration (HRV 30 min, resting
HR 60 min, sleep/workout/cycle 6 h), so logging several entries in a row
costs one round of provider queries.

``snapshot()`` bundles every metric into the PhysiologicalSnapshot stored
on the entry.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable

from src.insights.base import (
    HEART_RATE_UNIT,
    HRV_UNIT,
    NEWEST_FIRST,
    AuthorizationDeniedError,
    FlowLevel,
    HealthDataError,
    HealthMetric,
    ProviderUnavailableError,
    QuantityType,
    QueryTimeoutError,
)
from src.insights.cache import MetricCache, MetricValue
from src.insights.config_loader import InsightsConfig, get_insights_config
from src.insights.dates import local_day
from src.insights.historical import HistoricalMetricResolver
from src.insights.query_service import HealthQueryService
from src.insights.sleep_sessions import SleepSessionReconstructor, SleepSummary
from src.models.tracking import PhysiologicalSnapshot

logger = logging.getLogger("murmur.insights.recent")


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class RecentMetricsService:
    """Freshness-aware "current value" lookups for each metric.

    Args:
        queries:       Timeout-guarded provider access.
        cache:         Shared metric cache (freshness slots live here).
        resolver:      Used for today's cycle day and flow level.
        reconstructor: Used for last night's sleep.
        config:        Engine configuration.
        clock:         Returns the current time; injectable for tests.
    """

    def __init__(
        self,
        queries: HealthQueryService,
        cache: MetricCache,
        resolver: HistoricalMetricResolver,
        reconstructor: SleepSessionReconstructor | None = None,
        config: InsightsConfig | None = None,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self.queries = queries
        self.cache = cache
        self.resolver = resolver
        self.config = config or get_insights_config()
        self.reconstructor = reconstructor or SleepSessionReconstructor(self.config.sleep, cache.tz)
        self._clock = clock
        self.last_sleep: SleepSummary | None = None

    async def _latest(
        self,
        metric: HealthMetric,
        fetch: Callable[[datetime], Awaitable[MetricValue | None]],
        force: bool,
    ) -> MetricValue | None:
        if not await self.cache.should_refresh(metric, self.config.cache_duration(metric), force):
            return await self.cache.latest(metric)

        now = self._clock()
        try:
            value = await fetch(now)
        except QueryTimeoutError:
            raise
        except (ProviderUnavailableError, AuthorizationDeniedError) as exc:
            logger.debug("Latest %s unavailable: %s", metric.value, exc)
            value = None
        except HealthDataError as exc:
            logger.warning("Failed to fetch latest %s: %s", metric.value, exc)
            return await self.cache.latest(metric)

        await self.cache.record_fetch(metric, value, at=now)
        return value

    # ------------------------------------------------------------------
    # Fetchers
    # ------------------------------------------------------------------

    async def _most_recent_quantity(
        self, kind: QuantityType, unit: str, limit: int, now: datetime
    ) -> float | None:
        start = now - timedelta(hours=self.config.recent.quantity_lookback_hours)
        samples = await self.queries.fetch_quantity_samples(
            kind, start, now, limit=limit, sort=NEWEST_FIRST
        )
        return samples[0].value_in(unit) if samples else None

    async def _fetch_hrv(self, now: datetime) -> float | None:
        return await self._most_recent_quantity(
            QuantityType.HRV, HRV_UNIT, self.config.recent.hrv_sample_limit, now
        )

    async def _fetch_resting_hr(self, now: datetime) -> float | None:
        return await self._most_recent_quantity(
            QuantityType.RESTING_HEART_RATE,
            HEART_RATE_UNIT,
            self.config.recent.resting_hr_sample_limit,
            now,
        )

    async def _fetch_sleep(self, now: datetime) -> float | None:
        summary = await self.reconstructor.fetch_tonight(self.queries, now)
        self.last_sleep = summary
        return summary.total_hours if summary else None

    async def _fetch_workout(self, now: datetime) -> float | None:
        start = now - timedelta(hours=self.config.recent.workout_lookback_hours)
        workouts = await self.queries.fetch_workouts(start, now)
        minutes = sum(w.duration_seconds for w in workouts) / 60
        return minutes if minutes > 0 else None

    async def _cycle_values(self, force: bool) -> tuple[int | None, FlowLevel | None]:
        """Cycle day and flow level share one fetch and one freshness slot."""
        if not await self.cache.should_refresh(
            HealthMetric.CYCLE_DAY, self.config.cache_duration(HealthMetric.CYCLE_DAY), force
        ):
            return (
                await self.cache.latest(HealthMetric.CYCLE_DAY),
                await self.cache.latest(HealthMetric.FLOW_LEVEL),
            )

        now = self._clock()
        today = local_day(now, self.cache.tz)
        cycle_day, flow_level = await asyncio.gather(
            self.resolver.cycle_day_for_date(today),
            self.resolver.flow_level_for_date(today),
        )
        await self.cache.record_fetch(HealthMetric.CYCLE_DAY, cycle_day, at=now)
        await self.cache.record_fetch(HealthMetric.FLOW_LEVEL, flow_level, at=now)
        return cycle_day, flow_level

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def latest_hrv(self, force: bool = False) -> float | None:
        return await self._latest(HealthMetric.HRV, self._fetch_hrv, force)

    async def latest_resting_hr(self, force: bool = False) -> float | None:
        return await self._latest(HealthMetric.RESTING_HR, self._fetch_resting_hr, force)

    async def latest_sleep_hours(self, force: bool = False) -> float | None:
        return await self._latest(HealthMetric.SLEEP, self._fetch_sleep, force)

    async def latest_workout_minutes(self, force: bool = False) -> float | None:
        return await self._latest(HealthMetric.WORKOUT, self._fetch_workout, force)

    async def latest_cycle_day(self, force: bool = False) -> int | None:
        cycle_day, _ = await self._cycle_values(force)
        return cycle_day

    async def latest_flow_level(self, force: bool = False) -> FlowLevel | None:
        _, flow_level = await self._cycle_values(force)
        return flow_level

    async def snapshot(self, force: bool = False) -> PhysiologicalSnapshot:
        """Capture every metric for a new entry.

        A metric whose query times out is left empty; the entry is still
        logged with whatever could be resolved.
        """
        lookups = (
            ("hrv", self.latest_hrv(force)),
            ("resting_hr", self.latest_resting_hr(force)),
            ("sleep_hours", self.latest_sleep_hours(force)),
            ("workout_minutes", self.latest_workout_minutes(force)),
            ("cycle", self._cycle_values(force)),
        )
        results = await asyncio.gather(*(c for _, c in lookups), return_exceptions=True)

        values: dict[str, MetricValue | None] = {"cycle_day": None, "flow_level": None}
        for (name, _), result in zip(lookups, results):
            if isinstance(result, QueryTimeoutError):
                logger.warning("Snapshot %s skipped: %s", name, result)
                if name != "cycle":
                    values[name] = None
            elif isinstance(result, BaseException):
                raise result
            elif name == "cycle":
                values["cycle_day"], values["flow_level"] = result
            else:
                values[name] = result
        return PhysiologicalSnapshot(**values)
