"""Timeout-guarded access to a HealthDataSource.

Every provider query made by the cache, resolver, reconstructor and
baseline calculator goes through ``HealthQueryService`` so that a slow
provider fails with ``QueryTimeoutError`` instead of hanging an analysis
pass or quietly looking like "no data".

On timeout ``asyncio.wait_for`` cancels the provider coroutine; sources that
cannot be cancelled simply finish in the background and their result is
discarded.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Awaitable, TypeVar

from src.insights.base import (
    CategorySample,
    CategoryType,
    HealthDataSource,
    ProviderUnavailableError,
    QuantitySample,
    QuantityType,
    QueryTimeoutError,
    SortOrder,
    Statistics,
    StatisticsOption,
    WorkoutSample,
)

logger = logging.getLogger("murmur.insights.query")

T = TypeVar("T")

DEFAULT_TIMEOUT_SECONDS = 10.0


class HealthQueryService:
    """Wraps a HealthDataSource with per-query timeouts.

    Args:
        source:          The provider to query.
        timeout_seconds: Upper bound for each individual query.
    """

    def __init__(
        self,
        source: HealthDataSource,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        if timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be > 0")
        self.source = source
        self.timeout_seconds = timeout_seconds

    @property
    def is_available(self) -> bool:
        return self.source.is_available

    async def _run(self, operation: str, coro: Awaitable[T]) -> T:
        if not self.source.is_available:
            # Close the never-awaited coroutine before bailing out
            close = getattr(coro, "close", None)
            if close is not None:
                close()
            raise ProviderUnavailableError(
                f"{self.source.DISPLAY_NAME or self.source.SOURCE_ID} is not available"
            )
        try:
            return await asyncio.wait_for(coro, timeout=self.timeout_seconds)
        except asyncio.TimeoutError as exc:
            logger.warning("%s timed out after %.1fs", operation, self.timeout_seconds)
            raise QueryTimeoutError(operation, self.timeout_seconds) from exc

    async def request_authorization(self, to_share: set[str], to_read: set[str]) -> bool:
        return await self._run(
            "request_authorization", self.source.request_authorization(to_share, to_read)
        )

    async def fetch_quantity_samples(
        self,
        kind: QuantityType,
        start: datetime,
        end: datetime,
        limit: int | None = None,
        sort: SortOrder | None = None,
    ) -> list[QuantitySample]:
        return await self._run(
            f"fetch_quantity_samples({kind.value})",
            self.source.fetch_quantity_samples(kind, start, end, limit=limit, sort=sort),
        )

    async def fetch_category_samples(
        self,
        kind: CategoryType,
        start: datetime,
        end: datetime,
        limit: int | None = None,
        sort: SortOrder | None = None,
    ) -> list[CategorySample]:
        return await self._run(
            f"fetch_category_samples({kind.value})",
            self.source.fetch_category_samples(kind, start, end, limit=limit, sort=sort),
        )

    async def fetch_sleep_samples(
        self, start: datetime, end: datetime, sort: SortOrder | None = None
    ) -> list[CategorySample]:
        """Sleep-analysis samples restricted to asleep stages."""
        samples = await self.fetch_category_samples(
            CategoryType.SLEEP_ANALYSIS, start, end, sort=sort
        )
        return [s for s in samples if s.sleep_stage.is_asleep]

    async def fetch_workouts(
        self,
        start: datetime,
        end: datetime,
        limit: int | None = None,
        sort: SortOrder | None = None,
    ) -> list[WorkoutSample]:
        return await self._run(
            "fetch_workouts",
            self.source.fetch_workouts(start, end, limit=limit, sort=sort),
        )

    async def fetch_statistics(
        self,
        kind: QuantityType,
        start: datetime,
        end: datetime,
        options: StatisticsOption,
    ) -> Statistics | None:
        return await self._run(
            f"fetch_statistics({kind.value})",
            self.source.fetch_statistics(kind, start, end, options),
        )
