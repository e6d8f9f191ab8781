"""Base classes and health-sample models for the Murmur insights engine.

Every health data provider must subclass HealthDataSource and return the
sample types defined here.  These are the only shapes the query service,
cache, resolver and baseline calculator ever see, so a real platform
adapter and the deterministic fake are interchangeable.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from enum import Enum, Flag, IntEnum, auto
from statistics import fmean

logger = logging.getLogger("murmur.insights")


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class HealthDataError(Exception):
    """Base class for failures reported by a health data source."""


class ProviderUnavailableError(HealthDataError):
    """The health data source is not present on this device/platform.

    Treated as permanent for the session.
    """


class AuthorizationDeniedError(HealthDataError):
    """Read access was denied or is still pending."""


class QueryTimeoutError(HealthDataError):
    """A provider query did not complete within the configured timeout.

    Distinct from an empty result: the caller decides whether to retry,
    fall back, or show a degraded view.
    """

    def __init__(self, operation: str, timeout: float) -> None:
        super().__init__(f"{operation} timed out after {timeout:.1f}s")
        self.operation = operation
        self.timeout = timeout


# ---------------------------------------------------------------------------
# Metric and sample kinds
# ---------------------------------------------------------------------------


class HealthMetric(str, Enum):
    """Derived per-day metrics resolved for analysis."""

    HRV = "hrv"
    RESTING_HR = "resting_hr"
    SLEEP = "sleep"
    WORKOUT = "workout"
    CYCLE_DAY = "cycle_day"
    FLOW_LEVEL = "flow_level"


class QuantityType(str, Enum):
    HRV = "hrv_sdnn"
    RESTING_HEART_RATE = "resting_heart_rate"


class CategoryType(str, Enum):
    SLEEP_ANALYSIS = "sleep_analysis"
    MENSTRUAL_FLOW = "menstrual_flow"


class SleepStage(IntEnum):
    """Raw sleep-analysis category values."""

    IN_BED = 0
    ASLEEP_UNSPECIFIED = 1
    AWAKE = 2
    ASLEEP_CORE = 3
    ASLEEP_DEEP = 4
    ASLEEP_REM = 5

    @property
    def is_asleep(self) -> bool:
        return self in ASLEEP_STAGES

    @classmethod
    def from_raw(cls, value: int) -> "SleepStage":
        """Map a provider value, treating unknown values as unspecified sleep."""
        try:
            return cls(value)
        except ValueError:
            logger.debug("Unknown sleep stage value %r, treating as unspecified", value)
            return cls.ASLEEP_UNSPECIFIED


ASLEEP_STAGES = frozenset(
    {
        SleepStage.ASLEEP_UNSPECIFIED,
        SleepStage.ASLEEP_CORE,
        SleepStage.ASLEEP_DEEP,
        SleepStage.ASLEEP_REM,
    }
)


class MenstrualFlow(IntEnum):
    """Raw menstrual-flow category values."""

    UNSPECIFIED = 1
    LIGHT = 2
    MEDIUM = 3
    HEAVY = 4
    NONE = 5

    @classmethod
    def from_raw(cls, value: int) -> "MenstrualFlow":
        try:
            return cls(value)
        except ValueError:
            logger.debug("Unknown menstrual flow value %r, treating as unspecified", value)
            return cls.UNSPECIFIED


class FlowLevel(IntEnum):
    """Ordered flow severity exposed to analysis and presentation."""

    NONE = 0
    SPOTTING = 1
    LIGHT = 2
    MEDIUM = 3
    HEAVY = 4

    @classmethod
    def from_flow(cls, flow: MenstrualFlow) -> "FlowLevel":
        return _FLOW_LEVELS[flow]

    @property
    def label(self) -> str:
        return self.name.lower()


_FLOW_LEVELS: dict[MenstrualFlow, FlowLevel] = {
    MenstrualFlow.NONE: FlowLevel.NONE,
    MenstrualFlow.UNSPECIFIED: FlowLevel.SPOTTING,
    MenstrualFlow.LIGHT: FlowLevel.LIGHT,
    MenstrualFlow.MEDIUM: FlowLevel.MEDIUM,
    MenstrualFlow.HEAVY: FlowLevel.HEAVY,
}


class StatisticsOption(Flag):
    AVERAGE = auto()
    MINIMUM = auto()
    MAXIMUM = auto()
    SUM = auto()


# ---------------------------------------------------------------------------
# Units
# ---------------------------------------------------------------------------

# unit → (canonical unit, multiplier into canonical)
_UNIT_CONVERSIONS: dict[str, tuple[str, float]] = {
    "ms": ("ms", 1.0),
    "s": ("ms", 1000.0),
    "count/min": ("count/min", 1.0),
    "count/s": ("count/min", 60.0),
}

# Units each metric is expressed in before caching
HRV_UNIT = "ms"
HEART_RATE_UNIT = "count/min"


def convert_unit(value: float, from_unit: str, to_unit: str) -> float:
    """Convert between the supported quantity units.

    Raises:
        ValueError: If either unit is unknown or the units measure different things.
    """
    if from_unit == to_unit:
        return value
    try:
        from_canonical, from_factor = _UNIT_CONVERSIONS[from_unit]
        to_canonical, to_factor = _UNIT_CONVERSIONS[to_unit]
    except KeyError as exc:
        raise ValueError(f"Unsupported unit {exc.args[0]!r}") from exc
    if from_canonical != to_canonical:
        raise ValueError(f"Cannot convert {from_unit!r} to {to_unit!r}")
    return value * from_factor / to_factor


# ---------------------------------------------------------------------------
# Samples
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class QuantitySample:
    """A numeric sample such as one HRV or resting heart rate reading.

    Attributes:
        kind:  Quantity type.
        value: Numeric value in ``unit``.
        unit:  Unit string (``ms``, ``s``, ``count/min``, ``count/s``).
        start: Sample start timestamp.
        end:   Sample end timestamp.
    """

    kind: QuantityType
    value: float
    unit: str
    start: datetime
    end: datetime

    def value_in(self, unit: str) -> float:
        return convert_unit(self.value, self.unit, unit)


@dataclass(frozen=True)
class CategorySample:
    """An interval sample carrying a raw category value (sleep stage, flow)."""

    kind: CategoryType
    value: int
    start: datetime
    end: datetime

    @property
    def duration_seconds(self) -> float:
        return (self.end - self.start).total_seconds()

    @property
    def sleep_stage(self) -> SleepStage:
        return SleepStage.from_raw(self.value)

    @property
    def flow(self) -> MenstrualFlow:
        return MenstrualFlow.from_raw(self.value)


@dataclass(frozen=True)
class WorkoutSample:
    activity_type: str
    start: datetime
    end: datetime
    duration_seconds: float


@dataclass(frozen=True)
class Statistics:
    """Aggregate statistics over a quantity type and time range.

    Only the fields requested through ``StatisticsOption`` are populated.
    """

    kind: QuantityType
    start: datetime
    end: datetime
    count: int
    average: float | None = None
    minimum: float | None = None
    maximum: float | None = None
    total: float | None = None


@dataclass(frozen=True)
class SortOrder:
    """Sort applied by the provider before ``limit`` is taken."""

    key: str = "start"  # start | end
    ascending: bool = True

    def __post_init__(self) -> None:
        if self.key not in ("start", "end"):
            raise ValueError(f"Unsupported sort key {self.key!r}")


NEWEST_FIRST = SortOrder(key="end", ascending=False)
OLDEST_FIRST = SortOrder(key="start", ascending=True)


def apply_sort_and_limit(samples: list, sort: SortOrder | None, limit: int | None) -> list:
    """Sort sample dataclasses by start/end and truncate to ``limit``."""
    if sort is not None:
        samples = sorted(
            samples, key=lambda s: getattr(s, sort.key), reverse=not sort.ascending
        )
    if limit is not None:
        samples = samples[:limit]
    return samples


def in_range(start: datetime, end: datetime, range_start: datetime, range_end: datetime) -> bool:
    """True when a sample interval overlaps ``[range_start, range_end)``.

    Instantaneous samples (start == end) match when they fall inside the range.
    """
    if start == end:
        return range_start <= start < range_end
    return start < range_end and end > range_start


def compute_statistics(
    kind: QuantityType,
    start: datetime,
    end: datetime,
    samples: list[QuantitySample],
    options: StatisticsOption,
) -> Statistics | None:
    """Aggregate samples into a Statistics record in the metric's canonical unit."""
    if not samples:
        return None
    unit = HRV_UNIT if kind is QuantityType.HRV else HEART_RATE_UNIT
    values = [s.value_in(unit) for s in samples]
    return Statistics(
        kind=kind,
        start=start,
        end=end,
        count=len(values),
        average=fmean(values) if StatisticsOption.AVERAGE in options else None,
        minimum=min(values) if StatisticsOption.MINIMUM in options else None,
        maximum=max(values) if StatisticsOption.MAXIMUM in options else None,
        total=sum(values) if StatisticsOption.SUM in options else None,
    )


# ---------------------------------------------------------------------------
# Abstract data source
# ---------------------------------------------------------------------------


class HealthDataSource(ABC):
    """Abstract base class for all health data providers.

    Subclasses must implement every abstract method.  All queries are
    coroutines and may raise any ``HealthDataError``.

    Class attributes:
        SOURCE_ID:    Registry slug (e.g. 'apple_health_export', 'fake').
        DISPLAY_NAME: Human-readable name.
    """

    SOURCE_ID: str = ""
    DISPLAY_NAME: str = ""

    @property
    @abstractmethod
    def is_available(self) -> bool:
        """Whether the provider exists on this device/platform."""

    @abstractmethod
    async def request_authorization(
        self, to_share: set[str], to_read: set[str]
    ) -> bool:
        """Ask for read/write access to the given data types.

        Args:
            to_share: Types the app wants to write.
            to_read:  Types the app wants to read.

        Returns:
            True if the request completed (not necessarily granted).
        """

    @abstractmethod
    async def fetch_quantity_samples(
        self,
        kind: QuantityType,
        start: datetime,
        end: datetime,
        limit: int | None = None,
        sort: SortOrder | None = None,
    ) -> list[QuantitySample]:
        """Return quantity samples overlapping ``[start, end)``."""

    @abstractmethod
    async def fetch_category_samples(
        self,
        kind: CategoryType,
        start: datetime,
        end: datetime,
        limit: int | None = None,
        sort: SortOrder | None = None,
    ) -> list[CategorySample]:
        """Return category samples overlapping ``[start, end)``."""

    @abstractmethod
    async def fetch_workouts(
        self,
        start: datetime,
        end: datetime,
        limit: int | None = None,
        sort: SortOrder | None = None,
    ) -> list[WorkoutSample]:
        """Return workouts overlapping ``[start, end)``."""

    @abstractmethod
    async def fetch_statistics(
        self,
        kind: QuantityType,
        start: datetime,
        end: datetime,
        options: StatisticsOption,
    ) -> Statistics | None:
        """Return aggregate statistics, or None when there are no samples."""

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} source={self.SOURCE_ID!r}>"
