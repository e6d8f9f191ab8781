"""Murmur insights: application wiring and lifecycle.

Builds the engine components from Settings and the insights config and
manages their startup / shutdown:

    async with lifespan() as ctx:
        report = await ctx.analysis.run(days=30)
        snapshot = await ctx.recent.snapshot()
"""

from __future__ import annotations

import logging
import sys
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import AsyncGenerator
from zoneinfo import ZoneInfo

from src.config import Settings, get_settings
from src.insights.adapters import get_source
from src.insights.analysis.service import AnalysisService
from src.insights.base import HealthDataSource
from src.insights.baselines import BaselineCalculator, BaselineStore
from src.insights.cache import MetricCache
from src.insights.config_loader import InsightsConfig, get_insights_config, load_insights_config
from src.insights.historical import HistoricalMetricResolver
from src.insights.query_service import HealthQueryService
from src.insights.recent import RecentMetricsService
from src.insights.seeding import FallbackDataGenerator
from src.insights.sleep_sessions import SleepSessionReconstructor
from src.services.database import close_pool, init_pool
from src.services.entry_store import EntryStore, InMemoryEntryStore, PostgresEntryStore

logger = logging.getLogger("murmur")


# ---------- Logging ----------


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)-8s %(name)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stdout,
    )


# ---------- Wiring ----------


@dataclass
class MurmurContext:
    """Every long-lived engine component, built once per process."""

    settings: Settings
    config: InsightsConfig
    source: HealthDataSource
    queries: HealthQueryService
    cache: MetricCache
    reconstructor: SleepSessionReconstructor
    baselines: BaselineStore
    baseline_calculator: BaselineCalculator
    resolver: HistoricalMetricResolver
    recent: RecentMetricsService
    store: EntryStore
    analysis: AnalysisService


def build_source(settings: Settings) -> HealthDataSource:
    source_cls = get_source(settings.health_source)
    if settings.health_source == "apple_health_export":
        if not settings.apple_health_export_path:
            raise ValueError("apple_health_export_path is required for the Apple Health source")
        return source_cls(settings.apple_health_export_path)
    return source_cls()


def build_context(
    settings: Settings | None = None,
    config: InsightsConfig | None = None,
    source: HealthDataSource | None = None,
    store: EntryStore | None = None,
) -> MurmurContext:
    """Construct the component graph without performing any I/O."""
    settings = settings or get_settings()
    if config is None:
        config = (
            load_insights_config(Path(settings.insights_config_path))
            if settings.insights_config_path
            else get_insights_config()
        )
    tz = ZoneInfo(settings.timezone)
    source = source or build_source(settings)
    queries = HealthQueryService(source, timeout_seconds=settings.health_query_timeout_seconds)
    cache = MetricCache(tz=tz)
    reconstructor = SleepSessionReconstructor(config.sleep, tz)
    baselines = BaselineStore(
        path=Path(settings.baseline_store_path) if settings.baseline_store_path else None,
        config=config.baselines,
    )
    resolver = HistoricalMetricResolver(
        queries,
        cache,
        config,
        fallback=FallbackDataGenerator() if settings.use_fallback_data else None,
    )
    if store is None:
        store = PostgresEntryStore() if settings.database_url else InMemoryEntryStore()

    return MurmurContext(
        settings=settings,
        config=config,
        source=source,
        queries=queries,
        cache=cache,
        reconstructor=reconstructor,
        baselines=baselines,
        baseline_calculator=BaselineCalculator(queries, baselines, config.baselines),
        resolver=resolver,
        recent=RecentMetricsService(queries, cache, resolver, reconstructor, config),
        store=store,
        analysis=AnalysisService(store, resolver, baselines, config),
    )


# ---------- Lifespan ----------


@asynccontextmanager
async def lifespan(
    settings: Settings | None = None,
    **overrides,
) -> AsyncGenerator[MurmurContext, None]:
    """Startup / shutdown hooks around a fully built context."""
    settings = settings or get_settings()
    configure_logging(settings)
    ctx = build_context(settings, **overrides)
    logger.info(
        "Starting Murmur insights v%s [%s] with source %r",
        settings.app_version,
        settings.environment,
        ctx.source.SOURCE_ID,
    )
    pool_started = False
    try:
        if settings.database_url and isinstance(ctx.store, PostgresEntryStore):
            await init_pool(settings)
            pool_started = True

        await ctx.baselines.load()
        if ctx.queries.is_available:
            await ctx.baseline_calculator.update_baselines()

        try:
            yield ctx
        finally:
            await ctx.baselines.save()
    finally:
        if pool_started:
            await close_pool()
        logger.info("Murmur insights shut down")
