"""Result records produced by the analysis engine.

All records are frozen and recomputed on every query; nothing here is
persisted.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum

from src.insights.base import HealthMetric


class TrendDirection(str, Enum):
    """Direction of a symptom over the window, from the user's point of view.

    INCREASING means getting better and DECREASING means getting worse,
    whatever the symptom's framing.
    """

    INCREASING = "increasing"
    STABLE = "stable"
    DECREASING = "decreasing"


class CorrelationType(str, Enum):
    POSITIVE = "positive"  # activity is followed by worse symptoms
    NEGATIVE = "negative"  # activity is followed by better symptoms
    NEUTRAL = "neutral"


@dataclass(frozen=True)
class SymptomTrend:
    """Occurrence count, average severity and direction for one symptom.

    Attributes:
        symptom_name:      Symptom type name.
        is_positive:       Whether higher severity is better for this symptom.
        occurrences:       Entries in the window.
        average_severity:  Raw mean severity over the window.
        trend:             Direction comparing the window's two halves.
        period_comparison: ``"first → second"`` half averages, when both exist.
        first_half_average:  Mean severity before the midpoint (None if empty).
        second_half_average: Mean severity after the midpoint (None if empty).
    """

    symptom_name: str
    is_positive: bool
    occurrences: int
    average_severity: float
    trend: TrendDirection
    period_comparison: str | None = None
    first_half_average: float | None = None
    second_half_average: float | None = None


@dataclass(frozen=True)
class ActivityCorrelation:
    """Severity of a symptom after an activity compared with other times.

    ``correlation_strength`` is the normalised mean difference, signed so
    that a positive value always means "worse after the activity".
    """

    activity_name: str
    symptom_name: str
    correlation_type: CorrelationType
    correlation_strength: float
    average_severity_after: float
    average_severity_without: float
    occurrences_after: int
    occurrences_without: int
    hours_window: float


@dataclass(frozen=True)
class TimePattern:
    """When a symptom tends to be logged.

    Attributes:
        symptom_name:  Symptom type name.
        occurrences:   Entries in the window.
        peak_hour:     Hour of day (0–23) with the most entries.
        peak_day:      Day of week (1–7, Sunday = 1) when one day clearly
                       dominates, else None.
        hour_counts:   Entries per hour, index = hour.
        day_counts:    Entries per weekday, index 0 = Sunday.
    """

    symptom_name: str
    occurrences: int
    peak_hour: int
    peak_day: int | None
    hour_counts: tuple[int, ...] = field(default=())
    day_counts: tuple[int, ...] = field(default=())

    @property
    def peak_day_name(self) -> str | None:
        if self.peak_day is None:
            return None
        return WEEKDAY_NAMES[self.peak_day - 1]


WEEKDAY_NAMES = (
    "Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday",
)


@dataclass(frozen=True)
class PhysiologicalCorrelation:
    """A health metric compared between high- and low-severity days.

    ``correlation_strength`` lies in [-1, 1]; a positive value means the
    metric runs higher on days the symptom is worse.

    Attributes:
        metric:               Health metric compared.
        symptom_name:         Symptom type name.
        correlation_strength: Normalised mean difference.
        percent_difference:   ``round(abs(strength) * 100)``, as shown to the user.
        average_high:         Metric mean over high-severity days.
        average_low:          Metric mean over low-severity days.
        high_days:            Days contributing to ``average_high``.
        low_days:             Days contributing to ``average_low``.
        baseline_mean:        30-day baseline of the metric, when known.
        description:          Human-readable summary.
    """

    metric: HealthMetric
    symptom_name: str
    correlation_strength: float
    percent_difference: int
    average_high: float
    average_low: float
    high_days: int
    low_days: int
    baseline_mean: float | None = None
    description: str = ""


@dataclass(frozen=True)
class DayIntensity:
    """Calendar heat-map cell.

    ``average_severity`` is normalised so higher is always worse (positive
    symptoms contribute ``6 - severity``); ``raw_average_severity`` is the
    plain mean of logged severities.
    """

    day: date
    average_severity: float
    raw_average_severity: float
    entry_count: int

    @property
    def has_data(self) -> bool:
        return self.entry_count > 0


@dataclass(frozen=True)
class AnalysisReport:
    """All four analyses for one window.

    ``degraded`` is set when some health metrics could not be resolved
    (provider timeouts) and the physiological results are partial.
    """

    days: int
    generated_at: datetime
    trends: list[SymptomTrend] = field(default_factory=list)
    activity_correlations: list[ActivityCorrelation] = field(default_factory=list)
    time_patterns: list[TimePattern] = field(default_factory=list)
    physiological_correlations: list[PhysiologicalCorrelation] = field(default_factory=list)
    degraded: bool = False
