"""Per-day memoised store for derived health metrics.

Two independent pieces of state live here:

* **Day values**: one value per ``(metric, day key)``.  Historical days are
  immutable, so entries never expire; ``clear()`` is the only way to drop
  them.
* **Freshness**: when each metric's latest value was last fetched, plus
  that value.  ``should_refresh`` compares the fetch time with a
  per-metric cache duration.  Cycle day and flow level come from the same
  query and share one freshness slot.

Values are held in parallel typed maps (floats, cycle-day ints, FlowLevel)
and ``set`` rejects a value of the wrong type for its metric.  All access is
serialized through a single ``asyncio.Lock``; a write is one key-set, so the
last writer wins.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone, tzinfo
from typing import Callable, Union

from src.insights.base import FlowLevel, HealthMetric
from src.insights.dates import day_key

logger = logging.getLogger("murmur.insights.cache")

MetricValue = Union[float, int, FlowLevel]

NUMERIC_METRICS = frozenset(
    {HealthMetric.HRV, HealthMetric.RESTING_HR, HealthMetric.SLEEP, HealthMetric.WORKOUT}
)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _freshness_key(metric: HealthMetric) -> HealthMetric:
    if metric is HealthMetric.FLOW_LEVEL:
        return HealthMetric.CYCLE_DAY
    return metric


def check_value_type(metric: HealthMetric, value: MetricValue) -> None:
    """Raise TypeError if ``value`` is not the type stored for ``metric``."""
    if metric is HealthMetric.FLOW_LEVEL:
        ok = isinstance(value, FlowLevel)
    elif metric is HealthMetric.CYCLE_DAY:
        ok = isinstance(value, int) and not isinstance(value, (bool, FlowLevel))
    else:
        ok = isinstance(value, (int, float)) and not isinstance(value, (bool, FlowLevel))
    if not ok:
        raise TypeError(
            f"Cannot store {type(value).__name__} value {value!r} for metric {metric.value}"
        )


@dataclass(frozen=True)
class LatestValue:
    """Most recent fetch of a metric's "current" value (may be no data)."""

    value: MetricValue | None
    fetched_at: datetime


class MetricCache:
    """Day-keyed metric cache with freshness tracking.

    Args:
        tz:    Time zone used to derive day keys from timestamps.
        clock: Returns the current time; injectable for tests.
    """

    def __init__(
        self,
        tz: tzinfo = timezone.utc,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self.tz = tz
        self._clock = clock
        self._lock = asyncio.Lock()
        self._numeric: dict[HealthMetric, dict[str, float]] = {m: {} for m in NUMERIC_METRICS}
        self._cycle_days: dict[str, int] = {}
        self._flow_levels: dict[str, FlowLevel] = {}
        self._latest: dict[HealthMetric, LatestValue] = {}

    def key_for(self, day: date | datetime) -> str:
        return day_key(day, self.tz)

    def now(self) -> datetime:
        return self._clock()

    # ------------------------------------------------------------------
    # Day values
    # ------------------------------------------------------------------

    async def get(self, metric: HealthMetric, day: date | datetime) -> MetricValue | None:
        key = self.key_for(day)
        async with self._lock:
            if metric is HealthMetric.CYCLE_DAY:
                return self._cycle_days.get(key)
            if metric is HealthMetric.FLOW_LEVEL:
                return self._flow_levels.get(key)
            return self._numeric[metric].get(key)

    async def set(self, metric: HealthMetric, day: date | datetime, value: MetricValue) -> None:
        check_value_type(metric, value)
        key = self.key_for(day)
        async with self._lock:
            if metric is HealthMetric.CYCLE_DAY:
                self._cycle_days[key] = int(value)
            elif metric is HealthMetric.FLOW_LEVEL:
                self._flow_levels[key] = FlowLevel(value)
            else:
                self._numeric[metric][key] = float(value)
        logger.debug("Cached %s for %s = %r", metric.value, key, value)

    # ------------------------------------------------------------------
    # Freshness
    # ------------------------------------------------------------------

    async def last_fetch(self, metric: HealthMetric) -> datetime | None:
        async with self._lock:
            latest = self._latest.get(_freshness_key(metric))
        return latest.fetched_at if latest else None

    async def latest(self, metric: HealthMetric) -> MetricValue | None:
        """The value recorded by the last ``record_fetch`` for ``metric``."""
        async with self._lock:
            if metric is HealthMetric.FLOW_LEVEL:
                latest = self._latest.get(HealthMetric.FLOW_LEVEL)
            else:
                latest = self._latest.get(_freshness_key(metric))
        return latest.value if latest else None

    async def record_fetch(
        self,
        metric: HealthMetric,
        value: MetricValue | None,
        at: datetime | None = None,
    ) -> None:
        """Remember the latest value of ``metric`` and when it was fetched.

        ``value`` may be None, which records "fetched, no data" so the
        freshness window still applies.
        """
        if value is not None:
            check_value_type(metric, value)
        fetched_at = at or self._clock()
        async with self._lock:
            self._latest[metric] = LatestValue(value=value, fetched_at=fetched_at)
            shared = _freshness_key(metric)
            if shared is not metric:
                # Flow level rides on the cycle-day fetch timestamp
                previous = self._latest.get(shared)
                self._latest[shared] = LatestValue(
                    value=previous.value if previous else None, fetched_at=fetched_at
                )

    async def should_refresh(
        self,
        metric: HealthMetric,
        cache_duration: timedelta,
        force: bool = False,
    ) -> bool:
        """Decide whether the latest value of ``metric`` must be re-fetched.

        Args:
            metric:         Metric kind.
            cache_duration: How long a fetch stays fresh.
            force:          Always refresh when set.

        Returns:
            True when forced, when the metric was never fetched, or when at
            least ``cache_duration`` has elapsed since the last fetch.
        """
        if force:
            return True
        last = await self.last_fetch(metric)
        if last is None:
            return True
        return self._clock() - last >= cache_duration

    # ------------------------------------------------------------------
    # Invalidation
    # ------------------------------------------------------------------

    async def clear(self) -> None:
        async with self._lock:
            for values in self._numeric.values():
                values.clear()
            self._cycle_days.clear()
            self._flow_levels.clear()
            self._latest.clear()
        logger.info("Metric cache cleared")

    @property
    def entry_count(self) -> int:
        return (
            sum(len(v) for v in self._numeric.values())
            + len(self._cycle_days)
            + len(self._flow_levels)
        )
