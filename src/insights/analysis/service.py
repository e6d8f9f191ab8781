"""Async orchestration around the pure analysis engine.

The service fetches a read-only snapshot of entries (and events) from the
entry store, resolves per-day health metrics for physiological analysis,
and runs each engine function on a worker thread so the event loop stays
responsive.

Health-metric failures never abort a pass: a metric-day whose provider
query times out is left out of its bucket and the report is flagged
``degraded``.  Entry store failures propagate.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import date, datetime, timedelta, timezone, tzinfo
from typing import Callable

from src.insights.analysis import engine
from src.insights.analysis.models import (
    ActivityCorrelation,
    AnalysisReport,
    DayIntensity,
    PhysiologicalCorrelation,
    SymptomTrend,
    TimePattern,
)
from src.insights.base import QueryTimeoutError
from src.insights.baselines import BaselineStore
from src.insights.config_loader import InsightsConfig, get_insights_config
from src.insights.dates import day_bounds, local_day, to_local
from src.insights.historical import DailyMetrics, HistoricalMetricResolver
from src.models.tracking import SymptomEntry
from src.services.entry_store import EntryStore

logger = logging.getLogger("murmur.insights.analysis.service")


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class AnalysisService:
    """Runs the analysis engine over stored entries and resolved metrics.

    Args:
        store:     Read-only entry store.
        resolver:  Historical metric resolver (its cache time zone is used
                   for every day-based computation).
        baselines: Optional baseline store; means are attached to
                   physiological rows.
        config:    Engine configuration.
        clock:     Returns the current time; injectable for tests.
    """

    def __init__(
        self,
        store: EntryStore,
        resolver: HistoricalMetricResolver,
        baselines: BaselineStore | None = None,
        config: InsightsConfig | None = None,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self.store = store
        self.resolver = resolver
        self.baselines = baselines
        self.config = config or get_insights_config()
        self._clock = clock

    @property
    def tz(self) -> tzinfo:
        return self.resolver.tz

    def _check_days(self, days: int) -> None:
        if not 1 <= days <= self.config.analysis.max_days:
            raise ValueError(
                f"days must be between 1 and {self.config.analysis.max_days}, got {days}"
            )

    async def _entries(self, now: datetime, days: int) -> list[SymptomEntry]:
        return await self.store.fetch_symptom_entries(now - timedelta(days=days), now)

    # ------------------------------------------------------------------
    # Individual analyses
    # ------------------------------------------------------------------

    async def symptom_trends(self, days: int | None = None) -> list[SymptomTrend]:
        days = self.config.analysis.default_days if days is None else days
        self._check_days(days)
        now = self._clock()
        entries = await self._entries(now, days)
        return await asyncio.to_thread(
            engine.analyse_symptom_trends, entries, now, days, self.config, self.tz
        )

    async def activity_correlations(self, days: int | None = None) -> list[ActivityCorrelation]:
        days = self.config.analysis.default_days if days is None else days
        self._check_days(days)
        now = self._clock()
        # Events reach back one activity window so early entries can follow them
        lookback = timedelta(days=days, hours=self.config.activity.hours_window)
        entries, events = await asyncio.gather(
            self._entries(now, days),
            self.store.fetch_activity_events(now - lookback, now),
        )
        return await asyncio.to_thread(
            engine.analyse_activity_correlations, entries, events, now, days, self.config, self.tz
        )

    async def time_patterns(self, days: int | None = None) -> list[TimePattern]:
        days = self.config.analysis.default_days if days is None else days
        self._check_days(days)
        now = self._clock()
        entries = await self._entries(now, days)
        return await asyncio.to_thread(
            engine.analyse_time_patterns, entries, now, days, self.config, self.tz
        )

    async def physiological_correlations(
        self, days: int | None = None
    ) -> list[PhysiologicalCorrelation]:
        correlations, _ = await self._physiological(days)
        return correlations

    async def day_intensities(self, start: date, end: date) -> list[DayIntensity]:
        """Calendar heat-map cells for every day in ``[start, end]``."""
        if end < start:
            raise ValueError("end must not be before start")
        range_start, _ = day_bounds(start, self.tz)
        _, range_end = day_bounds(end, self.tz)
        entries = await self.store.fetch_symptom_entries(range_start, range_end)
        return await asyncio.to_thread(engine.analyse_day_intensities, entries, start, end, self.tz)

    async def run(self, days: int | None = None) -> AnalysisReport:
        """All four analyses for one window, computed concurrently."""
        days = self.config.analysis.default_days if days is None else days
        self._check_days(days)
        trends, correlations, patterns, (physiological, degraded) = await asyncio.gather(
            self.symptom_trends(days),
            self.activity_correlations(days),
            self.time_patterns(days),
            self._physiological(days),
        )
        return AnalysisReport(
            days=days,
            generated_at=self._clock(),
            trends=trends,
            activity_correlations=correlations,
            time_patterns=patterns,
            physiological_correlations=physiological,
            degraded=degraded,
        )

    # ------------------------------------------------------------------
    # Physiological
    # ------------------------------------------------------------------

    async def _physiological(
        self, days: int | None
    ) -> tuple[list[PhysiologicalCorrelation], bool]:
        days = self.config.analysis.default_days if days is None else days
        self._check_days(days)
        now = self._clock()
        entries = await self._entries(now, days)
        if not entries:
            return [], False

        entry_days = sorted({local_day(e.effective_at, self.tz) for e in entries})
        daily, degraded = await self.resolve_daily_metrics(entry_days)
        baselines = self.baselines.means() if self.baselines else None
        correlations = await asyncio.to_thread(
            engine.analyse_physiological_correlations,
            entries,
            daily,
            to_local(now, self.tz),
            days,
            self.config,
            self.tz,
            baselines,
        )
        return correlations, degraded

    async def resolve_daily_metrics(
        self, days: list[date]
    ) -> tuple[dict[date, DailyMetrics], bool]:
        """Resolve the configured metrics for each day with bounded concurrency.

        Returns:
            ``(metrics by day, degraded)`` where ``degraded`` is True if any
            provider query timed out.
        """
        semaphore = asyncio.Semaphore(self.config.physiological.max_concurrent_days)
        metrics = self.config.physiological.metrics
        degraded = False

        async def resolve(day: date) -> DailyMetrics:
            nonlocal degraded
            resolved = DailyMetrics(day=day)
            async with semaphore:
                for metric in metrics:
                    try:
                        value = await self.resolver.value_for_date(metric, day)
                    except QueryTimeoutError as exc:
                        logger.warning("Skipping %s for %s: %s", metric.value, day, exc)
                        degraded = True
                        continue
                    resolved.set(metric, value)
            return resolved

        results = await asyncio.gather(*(resolve(d) for d in days))
        return {r.day: r for r in results}, degraded
