"""Symptom analysis engine.

Pure functions over an immutable snapshot of symptom entries (plus activity
events and resolved daily health metrics where relevant).  Nothing here
does I/O, so the analysis service can run these on a worker thread.

Every function takes ``now`` and a window length in ``days`` and only
considers entries whose effective timestamp lies in ``[now - days, now]``.
No entries in the window means an empty result list, never an error.

Framing: for positive-wellbeing symptoms a higher severity is better, so
every comparison that says "worse" flips sign for them.

Trend
    The window is split at ``now - days // 2``.  ``diff = second_avg -
    first_avg``; for a negative symptom ``diff > 0.5`` is DECREASING (getting
    worse) and ``diff < -0.5`` is INCREASING (getting better); positive
    symptoms swap the two.  A half with no entries gives STABLE.

Activity correlation
    An entry is "after" an activity when it is logged within ``(0, 24h]``
    of any event with that activity name.  Both partitions need at least
    two entries.  ``strength = (after - without) / max(after, without, 1)``
    (negated for positive symptoms); above 0.3 is POSITIVE (worsens),
    below -0.3 NEGATIVE (helps), otherwise NEUTRAL.

Time patterns
    Symptoms with at least five entries.  Peak hour is the busiest hour,
    ties going to the earliest.  Peak day is reported only when one weekday
    has strictly more entries than every other day and holds at least 25%
    of the symptom's entries.

Physiological correlation
    Days are scored by the symptom's mean severity that day: high days
    have a mean of at least 4, low days at most 2.  For each metric the
    day's value comes from the resolved daily metrics, falling back to the
    mean of that day's entry snapshots; days without a value are left out.
    ``strength = (avg_high - avg_low) / max(avg_high, avg_low, 1)``, negated
    for positive symptoms and clamped to [-1, 1].  The user-visible
    percentage is ``round(abs(strength) * 100)``.  An empty bucket yields no
    row, and rows with ``abs(strength) <= 0.15`` are dropped.
"""

from __future__ import annotations

import logging
from bisect import bisect_left
from collections import defaultdict
from datetime import date, datetime, timedelta, timezone, tzinfo
from statistics import fmean
from typing import Iterable, Mapping

from src.insights.analysis.models import (
    ActivityCorrelation,
    CorrelationType,
    DayIntensity,
    PhysiologicalCorrelation,
    SymptomTrend,
    TimePattern,
    TrendDirection,
)
from src.insights.base import HealthMetric
from src.insights.config_loader import InsightsConfig, get_insights_config
from src.insights.dates import days_in_range, local_day, to_local, weekday_number
from src.insights.historical import DailyMetrics
from src.models.tracking import ActivityEvent, PhysiologicalSnapshot, SymptomEntry, SymptomType

logger = logging.getLogger("murmur.insights.analysis.engine")

METRIC_LABELS: dict[HealthMetric, str] = {
    HealthMetric.HRV: "HRV",
    HealthMetric.RESTING_HR: "Resting heart rate",
    HealthMetric.SLEEP: "Sleep",
    HealthMetric.WORKOUT: "Exercise minutes",
    HealthMetric.CYCLE_DAY: "Cycle day",
    HealthMetric.FLOW_LEVEL: "Flow level",
}

_SNAPSHOT_FIELDS: dict[HealthMetric, str] = {
    HealthMetric.HRV: "hrv",
    HealthMetric.RESTING_HR: "resting_hr",
    HealthMetric.SLEEP: "sleep_hours",
    HealthMetric.WORKOUT: "workout_minutes",
    HealthMetric.CYCLE_DAY: "cycle_day",
    HealthMetric.FLOW_LEVEL: "flow_level",
}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _normalised_difference(a: float, b: float) -> float:
    return (a - b) / max(a, b, 1.0)


def window_start(now: datetime, days: int) -> datetime:
    if days < 1:
        raise ValueError(f"Analysis window must be at least 1 day, got {days}")
    return now - timedelta(days=days)


def entries_in_window(
    entries: Iterable[SymptomEntry], now: datetime, days: int, tz: tzinfo
) -> list[tuple[datetime, SymptomEntry]]:
    """``(local effective timestamp, entry)`` pairs inside the window, oldest first."""
    now_local = to_local(now, tz)
    start = window_start(now_local, days)
    selected = []
    for entry in entries:
        ts = to_local(entry.effective_at, tz)
        if start <= ts <= now_local:
            selected.append((ts, entry))
    selected.sort(key=lambda pair: pair[0])
    return selected


def _group_by_symptom(
    pairs: Iterable[tuple[datetime, SymptomEntry]],
) -> dict[object, tuple[SymptomType, list[tuple[datetime, SymptomEntry]]]]:
    groups: dict[object, tuple[SymptomType, list[tuple[datetime, SymptomEntry]]]] = {}
    for ts, entry in pairs:
        key = entry.symptom_type.id
        if key not in groups:
            groups[key] = (entry.symptom_type, [])
        groups[key][1].append((ts, entry))
    return groups


# ---------------------------------------------------------------------------
# Trends
# ---------------------------------------------------------------------------


def _classify_trend(diff: float, threshold: float, is_positive: bool) -> TrendDirection:
    if diff > threshold:
        return TrendDirection.INCREASING if is_positive else TrendDirection.DECREASING
    if diff < -threshold:
        return TrendDirection.DECREASING if is_positive else TrendDirection.INCREASING
    return TrendDirection.STABLE


def analyse_symptom_trends(
    entries: Iterable[SymptomEntry],
    now: datetime,
    days: int,
    config: InsightsConfig | None = None,
    tz: tzinfo = timezone.utc,
) -> list[SymptomTrend]:
    """Occurrences, average severity and trend per symptom type.

    Returns:
        One SymptomTrend per symptom with entries in the window, most
        frequent first.
    """
    config = config or get_insights_config()
    pairs = entries_in_window(entries, now, days, tz)
    midpoint = to_local(now, tz) - timedelta(days=days // 2)
    threshold = config.trends.change_threshold

    results: list[SymptomTrend] = []
    for symptom, group in _group_by_symptom(pairs).values():
        severities = [e.severity for _, e in group]
        first = [e.severity for ts, e in group if ts < midpoint]
        second = [e.severity for ts, e in group if ts >= midpoint]

        first_avg = fmean(first) if first else None
        second_avg = fmean(second) if second else None
        if first_avg is not None and second_avg is not None:
            trend = _classify_trend(second_avg - first_avg, threshold, symptom.is_positive)
            comparison = f"{first_avg:.1f} → {second_avg:.1f}"
        else:
            trend = TrendDirection.STABLE
            comparison = None

        results.append(
            SymptomTrend(
                symptom_name=symptom.name,
                is_positive=symptom.is_positive,
                occurrences=len(severities),
                average_severity=fmean(severities),
                trend=trend,
                period_comparison=comparison,
                first_half_average=first_avg,
                second_half_average=second_avg,
            )
        )

    results.sort(key=lambda t: (-t.occurrences, t.symptom_name))
    return results


# ---------------------------------------------------------------------------
# Activity correlations
# ---------------------------------------------------------------------------


def _classify_correlation(strength: float, threshold: float) -> CorrelationType:
    if strength > threshold:
        return CorrelationType.POSITIVE
    if strength < -threshold:
        return CorrelationType.NEGATIVE
    return CorrelationType.NEUTRAL


def _follows_event(ts: datetime, event_times: list[datetime], window: timedelta) -> bool:
    # First event at or after ts - window; it must also be strictly before ts
    idx = bisect_left(event_times, ts - window)
    return idx < len(event_times) and event_times[idx] < ts


def analyse_activity_correlations(
    entries: Iterable[SymptomEntry],
    events: Iterable[ActivityEvent],
    now: datetime,
    days: int,
    config: InsightsConfig | None = None,
    tz: tzinfo = timezone.utc,
) -> list[ActivityCorrelation]:
    """Compare symptom severity after each activity with severity at other times.

    ``events`` may reach back before the window so entries early in the
    window can still be attributed to an activity the day before.

    Returns:
        Correlations for every sufficiently sampled (activity, symptom)
        pair, strongest first.
    """
    config = config or get_insights_config()
    settings = config.activity
    window = timedelta(hours=settings.hours_window)
    pairs = entries_in_window(entries, now, days, tz)
    if not pairs:
        return []

    activities: dict[str, list[datetime]] = defaultdict(list)
    for event in events:
        activities[event.name].append(to_local(event.effective_at, tz))

    symptom_groups = _group_by_symptom(pairs)
    results: list[ActivityCorrelation] = []

    for activity_name, times in activities.items():
        times.sort()
        for symptom, group in symptom_groups.values():
            after: list[int] = []
            without: list[int] = []
            for ts, entry in group:
                (after if _follows_event(ts, times, window) else without).append(entry.severity)

            if (
                len(after) < settings.min_samples_per_partition
                or len(without) < settings.min_samples_per_partition
            ):
                continue

            avg_after = fmean(after)
            avg_without = fmean(without)
            strength = _normalised_difference(avg_after, avg_without)
            if symptom.is_positive:
                strength = -strength

            results.append(
                ActivityCorrelation(
                    activity_name=activity_name,
                    symptom_name=symptom.name,
                    correlation_type=_classify_correlation(strength, settings.strength_threshold),
                    correlation_strength=strength,
                    average_severity_after=avg_after,
                    average_severity_without=avg_without,
                    occurrences_after=len(after),
                    occurrences_without=len(without),
                    hours_window=settings.hours_window,
                )
            )

    results.sort(
        key=lambda c: (-abs(c.correlation_strength), c.activity_name, c.symptom_name)
    )
    return results


# ---------------------------------------------------------------------------
# Time patterns
# ---------------------------------------------------------------------------


def _dominant_day(day_counts: list[int], total: int, min_share: float) -> int | None:
    best = max(day_counts)
    if best == 0 or day_counts.count(best) > 1:
        return None
    if best / total < min_share:
        return None
    return day_counts.index(best) + 1


def analyse_time_patterns(
    entries: Iterable[SymptomEntry],
    now: datetime,
    days: int,
    config: InsightsConfig | None = None,
    tz: tzinfo = timezone.utc,
) -> list[TimePattern]:
    """Hour-of-day and day-of-week distribution per symptom type."""
    config = config or get_insights_config()
    settings = config.time_patterns
    pairs = entries_in_window(entries, now, days, tz)

    results: list[TimePattern] = []
    for symptom, group in _group_by_symptom(pairs).values():
        if len(group) < settings.min_occurrences:
            continue
        hour_counts = [0] * 24
        day_counts = [0] * 7
        for ts, _ in group:
            hour_counts[ts.hour] += 1
            day_counts[weekday_number(ts, tz) - 1] += 1

        results.append(
            TimePattern(
                symptom_name=symptom.name,
                occurrences=len(group),
                peak_hour=hour_counts.index(max(hour_counts)),
                peak_day=_dominant_day(day_counts, len(group), settings.peak_day_min_share),
                hour_counts=tuple(hour_counts),
                day_counts=tuple(day_counts),
            )
        )

    results.sort(key=lambda p: p.symptom_name)
    return results


# ---------------------------------------------------------------------------
# Physiological correlations
# ---------------------------------------------------------------------------


def _snapshot_value(snapshot: PhysiologicalSnapshot | None, metric: HealthMetric) -> float | None:
    if snapshot is None:
        return None
    value = getattr(snapshot, _SNAPSHOT_FIELDS[metric])
    return None if value is None else float(value)


def _snapshot_means(
    pairs: Iterable[tuple[datetime, SymptomEntry]],
    metrics: Iterable[HealthMetric],
) -> dict[date, dict[HealthMetric, float]]:
    collected: dict[date, dict[HealthMetric, list[float]]] = defaultdict(lambda: defaultdict(list))
    metrics = list(metrics)
    for ts, entry in pairs:
        for metric in metrics:
            value = _snapshot_value(entry.snapshot, metric)
            if value is not None:
                collected[ts.date()][metric].append(value)
    return {
        day: {metric: fmean(values) for metric, values in by_metric.items()}
        for day, by_metric in collected.items()
    }


def describe_physiological(metric: HealthMetric, symptom_name: str, strength: float) -> str:
    """User-facing sentence, e.g. ``"HRV 23% lower on days Fatigue is worse"``."""
    direction = "higher" if strength > 0 else "lower"
    return (
        f"{METRIC_LABELS[metric]} {round(abs(strength) * 100)}% {direction} "
        f"on days {symptom_name} is worse"
    )


def analyse_physiological_correlations(
    entries: Iterable[SymptomEntry],
    daily_metrics: Mapping[date, DailyMetrics],
    now: datetime,
    days: int,
    config: InsightsConfig | None = None,
    tz: tzinfo = timezone.utc,
    baselines: Mapping[HealthMetric, float] | None = None,
) -> list[PhysiologicalCorrelation]:
    """Compare each health metric between high- and low-severity days.

    Args:
        entries:       Symptom entries (filtered to the window here).
        daily_metrics: Resolved metrics keyed by local date; missing days
                       or missing values fall back to entry snapshots.
        now:           End of the window.
        days:          Window length.
        config:        Engine configuration.
        tz:            Local time zone.
        baselines:     Optional 30-day baseline means attached to rows.

    Returns:
        Rows for every (metric, symptom) pair with data on both sides and a
        strength above the reporting threshold, strongest first.
    """
    config = config or get_insights_config()
    settings = config.physiological
    baselines = baselines or {}
    pairs = entries_in_window(entries, now, days, tz)
    if not pairs:
        return []

    snapshot_means = _snapshot_means(pairs, settings.metrics)

    def value_for(day: date, metric: HealthMetric) -> float | None:
        resolved = daily_metrics.get(day)
        if resolved is not None:
            value = resolved.get(metric)
            if value is not None:
                return float(value)
        return snapshot_means.get(day, {}).get(metric)

    results: list[PhysiologicalCorrelation] = []
    for symptom, group in _group_by_symptom(pairs).values():
        by_day: dict[date, list[int]] = defaultdict(list)
        for ts, entry in group:
            by_day[ts.date()].append(entry.severity)

        high_days = [d for d, sev in by_day.items() if fmean(sev) >= settings.high_severity_min]
        low_days = [d for d, sev in by_day.items() if fmean(sev) <= settings.low_severity_max]
        if not high_days or not low_days:
            continue

        for metric in settings.metrics:
            high_values = [v for v in (value_for(d, metric) for d in high_days) if v is not None]
            low_values = [v for v in (value_for(d, metric) for d in low_days) if v is not None]
            if not high_values or not low_values:
                continue

            avg_high = fmean(high_values)
            avg_low = fmean(low_values)
            strength = _normalised_difference(avg_high, avg_low)
            if symptom.is_positive:
                strength = -strength
            strength = max(-1.0, min(1.0, strength))
            if abs(strength) <= settings.min_strength:
                continue

            results.append(
                PhysiologicalCorrelation(
                    metric=metric,
                    symptom_name=symptom.name,
                    correlation_strength=strength,
                    percent_difference=round(abs(strength) * 100),
                    average_high=avg_high,
                    average_low=avg_low,
                    high_days=len(high_values),
                    low_days=len(low_values),
                    baseline_mean=baselines.get(metric),
                    description=describe_physiological(metric, symptom.name, strength),
                )
            )

    results.sort(
        key=lambda c: (-abs(c.correlation_strength), c.symptom_name, c.metric.value)
    )
    return results


# ---------------------------------------------------------------------------
# Calendar intensities
# ---------------------------------------------------------------------------


def analyse_day_intensities(
    entries: Iterable[SymptomEntry],
    start: date,
    end: date,
    tz: tzinfo = timezone.utc,
) -> list[DayIntensity]:
    """One heat-map cell per day in ``[start, end]``, including empty days."""
    raw: dict[date, list[int]] = defaultdict(list)
    normalised: dict[date, list[int]] = defaultdict(list)
    for entry in entries:
        day = local_day(entry.effective_at, tz)
        if start <= day <= end:
            raw[day].append(entry.severity)
            normalised[day].append(
                6 - entry.severity if entry.symptom_type.is_positive else entry.severity
            )

    return [
        DayIntensity(
            day=day,
            average_severity=fmean(normalised[day]) if raw.get(day) else 0.0,
            raw_average_severity=fmean(raw[day]) if raw.get(day) else 0.0,
            entry_count=len(raw.get(day, ())),
        )
        for day in days_in_range(start, end)
    ]
