"""Rolling 30-day HRV and resting heart rate baselines.

A baseline is the personal reference point a new reading is compared
against ("your HRV is above your usual").  Baselines are recomputed
wholesale from the trailing window; they are never merged incrementally.

Lifecycle::

    store = BaselineStore(path=Path("baselines.json"))
    await store.load()                      # persisted baselines, if any
    calculator = BaselineCalculator(queries, store)
    await calculator.update_baselines()     # HRV and resting HR concurrently
    store.get(HealthMetric.HRV)             # query
"""

from __future__ import annotations

import asyncio
import json
import logging
import statistics
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Sequence

from src.insights.base import (
    HEART_RATE_UNIT,
    HRV_UNIT,
    NEWEST_FIRST,
    HealthMetric,
    QuantityType,
)
from src.insights.config_loader import BaselineConfig
from src.insights.query_service import HealthQueryService

logger = logging.getLogger("murmur.insights.baselines")

BASELINE_METRICS: dict[HealthMetric, tuple[QuantityType, str]] = {
    HealthMetric.HRV: (QuantityType.HRV, HRV_UNIT),
    HealthMetric.RESTING_HR: (QuantityType.RESTING_HEART_RATE, HEART_RATE_UNIT),
}

# Used until a baseline is calibrated: (better_than, worse_than)
_HRV_FALLBACK = (50.0, 30.0)
_RESTING_HR_FALLBACK = (55.0, 75.0)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Baseline:
    """Summary statistics of one metric over the trailing window.

    Attributes:
        mean:               Mean of all samples in the window.
        standard_deviation: Population standard deviation.
        sample_count:       Number of samples the baseline was built from.
        last_updated:       When the baseline was computed.
    """

    mean: float
    standard_deviation: float
    sample_count: int
    last_updated: datetime

    @classmethod
    def from_values(cls, values: Sequence[float], at: datetime) -> "Baseline":
        if not values:
            raise ValueError("Cannot build a baseline from zero samples")
        return cls(
            mean=statistics.fmean(values),
            standard_deviation=statistics.pstdev(values),
            sample_count=len(values),
            last_updated=at,
        )

    def is_calibrated(self, min_samples: int = 10) -> bool:
        return self.sample_count >= min_samples

    def threshold(self, deviations: float) -> float:
        """``mean + deviations * standard_deviation``."""
        return self.mean + deviations * self.standard_deviation

    def to_json(self) -> dict:
        return {
            "mean": self.mean,
            "standard_deviation": self.standard_deviation,
            "sample_count": self.sample_count,
            "last_updated": self.last_updated.isoformat(),
        }

    @classmethod
    def from_json(cls, data: dict) -> "Baseline":
        return cls(
            mean=float(data["mean"]),
            standard_deviation=float(data["standard_deviation"]),
            sample_count=int(data["sample_count"]),
            last_updated=datetime.fromisoformat(data["last_updated"]),
        )


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


class BaselineStore:
    """Holds the current baselines, optionally persisted as a JSON file.

    Replacement of a metric's baseline is a single assignment under the
    store's lock, so readers only ever see a complete old or new baseline.

    Args:
        path:   JSON file used by ``load()`` / ``save()``; None keeps the
                store purely in memory.
        config: Calibration and evaluation settings.
    """

    def __init__(self, path: Path | None = None, config: BaselineConfig | None = None) -> None:
        self.path = path
        self.config = config or BaselineConfig()
        self._baselines: dict[HealthMetric, Baseline] = {}
        self._lock = asyncio.Lock()

    async def load(self) -> None:
        """Read persisted baselines.  Missing or corrupt files leave the store empty."""
        if self.path is None or not self.path.exists():
            return
        try:
            raw = await asyncio.to_thread(self.path.read_text, encoding="utf-8")
            data = json.loads(raw)
            loaded = {HealthMetric(k): Baseline.from_json(v) for k, v in data.items()}
        except (OSError, ValueError, KeyError, TypeError) as exc:
            logger.warning("Ignoring unreadable baseline file %s: %s", self.path, exc)
            return
        async with self._lock:
            self._baselines = loaded
        logger.info("Loaded %d baseline(s) from %s", len(loaded), self.path)

    async def save(self) -> None:
        if self.path is None:
            return
        async with self._lock:
            payload = {m.value: b.to_json() for m, b in self._baselines.items()}
        await asyncio.to_thread(
            self.path.write_text, json.dumps(payload, indent=2), encoding="utf-8"
        )
        logger.debug("Saved baselines to %s", self.path)

    async def replace(self, metric: HealthMetric, baseline: Baseline) -> None:
        async with self._lock:
            self._baselines[metric] = baseline

    def get(self, metric: HealthMetric) -> Baseline | None:
        return self._baselines.get(metric)

    def means(self) -> dict[HealthMetric, float]:
        return {m: b.mean for m, b in self._baselines.items()}

    # ------------------------------------------------------------------
    # Evaluation
    # ------------------------------------------------------------------

    def _calibrated(self, metric: HealthMetric) -> Baseline | None:
        baseline = self.get(metric)
        if baseline and baseline.is_calibrated(self.config.calibration_min_samples):
            return baseline
        return None

    def evaluate_hrv(self, value: float) -> int:
        """Compare an HRV reading with the baseline.

        Returns:
            1 when better than usual (higher), -1 when worse, 0 otherwise.
        """
        baseline = self._calibrated(HealthMetric.HRV)
        if baseline is None:
            better, worse = _HRV_FALLBACK
            return 1 if value > better else -1 if value < worse else 0
        d = self.config.evaluation_deviations
        if value > baseline.threshold(d):
            return 1
        if value < baseline.threshold(-d):
            return -1
        return 0

    def evaluate_resting_hr(self, value: float) -> int:
        """Compare a resting heart rate reading with the baseline.

        Lower is better, so a reading below the band returns 1.
        """
        baseline = self._calibrated(HealthMetric.RESTING_HR)
        if baseline is None:
            better, worse = _RESTING_HR_FALLBACK
            return 1 if value < better else -1 if value > worse else 0
        d = self.config.evaluation_deviations
        if value < baseline.threshold(-d):
            return 1
        if value > baseline.threshold(d):
            return -1
        return 0


# ---------------------------------------------------------------------------
# Calculator
# ---------------------------------------------------------------------------


class BaselineCalculator:
    """Recomputes HRV and resting HR baselines from the trailing window.

    Args:
        queries: Timeout-guarded provider access.
        store:   Where baselines are kept.
        config:  Window length.
        clock:   Returns the current time; injectable for tests.
    """

    def __init__(
        self,
        queries: HealthQueryService,
        store: BaselineStore,
        config: BaselineConfig | None = None,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self.queries = queries
        self.store = store
        self.config = config or store.config
        self._clock = clock

    async def _update_metric(self, metric: HealthMetric, now: datetime) -> bool:
        kind, unit = BASELINE_METRICS[metric]
        start = now - timedelta(days=self.config.window_days)
        samples = await self.queries.fetch_quantity_samples(kind, start, now, sort=NEWEST_FIRST)
        values = [s.value_in(unit) for s in samples]
        if not values:
            logger.info("No %s samples in the last %d days, keeping previous baseline",
                        metric.value, self.config.window_days)
            return False
        baseline = Baseline.from_values(values, at=now)
        await self.store.replace(metric, baseline)
        logger.info(
            "%s baseline updated: mean=%.1f sd=%.1f n=%d",
            metric.value, baseline.mean, baseline.standard_deviation, baseline.sample_count,
        )
        return True

    async def update_baselines(self, now: datetime | None = None) -> dict[HealthMetric, bool]:
        """Recompute both baselines concurrently.

        A failure for one metric is logged and leaves that baseline stale;
        it never cancels or blocks the other metric.

        Returns:
            Mapping of metric to whether its baseline was replaced.
        """
        now = now or self._clock()
        metrics = list(BASELINE_METRICS)
        results = await asyncio.gather(
            *(self._update_metric(m, now) for m in metrics),
            return_exceptions=True,
        )

        outcome: dict[HealthMetric, bool] = {}
        for metric, result in zip(metrics, results):
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                logger.warning("Baseline update for %s failed: %s", metric.value, result)
                outcome[metric] = False
            else:
                outcome[metric] = result

        if any(outcome.values()):
            await self.store.save()
        return outcome
