"""Load, validate, and hot-reload the Murmur insights engine configuration.

The config lives in ``insights_config.yaml`` alongside this module.  At
startup it is loaded once and cached.  Call ``reload_insights_config()`` to
re-read from disk after editing the file, no restart required.

Usage::

    from src.insights.config_loader import get_insights_config

    config = get_insights_config()
    threshold = config.trends.change_threshold          # 0.5
    ttl = config.cache_duration(HealthMetric.HRV)       # timedelta(minutes=30)
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path
from typing import Any

import yaml

from src.insights.base import HealthMetric

logger = logging.getLogger("murmur.insights.config")

# Path to the YAML file sitting next to this module
_CONFIG_PATH = Path(__file__).parent / "insights_config.yaml"


# ---------------------------------------------------------------------------
# Typed config sections
# ---------------------------------------------------------------------------


@dataclass
class AnalysisWindowConfig:
    """Supported analysis windows in days."""

    default_days: int = 30
    max_days: int = 365
    presets: list[int] = field(default_factory=lambda: [7, 30, 90])


@dataclass
class TrendConfig:
    change_threshold: float = 0.5


@dataclass
class ActivityCorrelationConfig:
    """Before/after activity comparison settings."""

    hours_window: float = 24.0
    strength_threshold: float = 0.3
    min_samples_per_partition: int = 2


@dataclass
class TimePatternConfig:
    """Hour-of-day / day-of-week bucketing settings.

    ``peak_day_min_share`` is the fraction of a symptom's entries the busiest
    weekday must hold (on top of being a unique maximum) to be reported.
    """

    min_occurrences: int = 5
    peak_day_min_share: float = 0.25


@dataclass
class PhysiologicalConfig:
    """High/low severity day split and metric selection."""

    high_severity_min: float = 4.0
    low_severity_max: float = 2.0
    min_strength: float = 0.15
    metrics: list[HealthMetric] = field(
        default_factory=lambda: [
            HealthMetric.HRV,
            HealthMetric.RESTING_HR,
            HealthMetric.SLEEP,
            HealthMetric.WORKOUT,
        ]
    )
    max_concurrent_days: int = 8


@dataclass
class SleepSessionConfig:
    """Sleep session stitching settings."""

    session_gap_minutes: int = 60
    night_window_hours: int = 8
    sleep_window_start_hour: int = 18  # sessions starting at or after this hour
    sleep_window_end_hour: int = 14    # ... or before this hour count as night sleep
    historical_lookback_hours: int = 12
    recent_lookback_hours: int = 24

    @property
    def session_gap(self) -> timedelta:
        return timedelta(minutes=self.session_gap_minutes)

    @property
    def night_window(self) -> timedelta:
        return timedelta(hours=self.night_window_hours)


@dataclass
class BaselineConfig:
    window_days: int = 30
    calibration_min_samples: int = 10
    evaluation_deviations: float = 0.5


@dataclass
class RecentMetricsConfig:
    quantity_lookback_hours: int = 72
    workout_lookback_hours: int = 24
    hrv_sample_limit: int = 50
    resting_hr_sample_limit: int = 10


@dataclass
class InsightsConfig:
    """Complete, validated insights engine configuration.

    This is the single in-memory representation of insights_config.yaml.
    The cache, resolver, reconstructor, baseline calculator and analysis
    engine all read their constants from this object.

    Attributes:
        version:          Config schema version string.
        analysis:         Supported analysis windows.
        trends:           Trend classification threshold.
        activity:         Activity correlation settings.
        time_patterns:    Time-pattern settings.
        physiological:    Physiological correlation settings.
        sleep:            Sleep session reconstruction settings.
        baselines:        Rolling baseline settings.
        cache_durations:  Freshness window per metric.
        recent:           Lookbacks and limits for latest-value lookups.
        cycle_lookback_days: How far back to search for a period start.
    """

    version: str = "1.0"
    analysis: AnalysisWindowConfig = field(default_factory=AnalysisWindowConfig)
    trends: TrendConfig = field(default_factory=TrendConfig)
    activity: ActivityCorrelationConfig = field(default_factory=ActivityCorrelationConfig)
    time_patterns: TimePatternConfig = field(default_factory=TimePatternConfig)
    physiological: PhysiologicalConfig = field(default_factory=PhysiologicalConfig)
    sleep: SleepSessionConfig = field(default_factory=SleepSessionConfig)
    baselines: BaselineConfig = field(default_factory=BaselineConfig)
    cache_durations: dict[HealthMetric, timedelta] = field(default_factory=dict)
    recent: RecentMetricsConfig = field(default_factory=RecentMetricsConfig)
    cycle_lookback_days: int = 45
    _raw: dict = field(default_factory=dict, repr=False)

    def cache_duration(self, metric: HealthMetric) -> timedelta:
        """Return how long a metric's latest value stays fresh.

        Falls back to six hours for metrics without an explicit entry.

        Args:
            metric: Metric kind.

        Returns:
            Freshness window.
        """
        return self.cache_durations.get(metric, timedelta(hours=6))


# ---------------------------------------------------------------------------
# Loader / validation
# ---------------------------------------------------------------------------


class ConfigValidationError(ValueError):
    """Raised when insights_config.yaml fails validation."""


def _load_yaml(path: Path) -> dict:
    """Read and parse a YAML file.

    Args:
        path: Path to the YAML file.

    Returns:
        Parsed dict.

    Raises:
        FileNotFoundError: If the file does not exist.
        ConfigValidationError: If the YAML is malformed.
    """
    if not path.exists():
        raise FileNotFoundError(f"Insights config not found: {path}")

    with path.open("r", encoding="utf-8") as fh:
        try:
            return yaml.safe_load(fh) or {}
        except yaml.YAMLError as exc:
            raise ConfigValidationError(f"YAML parse error in {path}: {exc}") from exc


def _validate_and_build(raw: dict) -> InsightsConfig:
    """Validate the raw YAML dict and construct an InsightsConfig.

    Missing sections fall back to defaults; wrong types and out-of-range
    values are collected and reported together.

    Args:
        raw: Parsed YAML dict.

    Returns:
        Validated InsightsConfig instance.

    Raises:
        ConfigValidationError: If any value is invalid.
    """
    errors: list[str] = []

    def _section(name: str) -> dict:
        value = raw.get(name) or {}
        if not isinstance(value, dict):
            errors.append(f"'{name}' must be a mapping")
            return {}
        return value

    def _number(d: dict, key: str, section: str, default: Any, cast: type = float) -> Any:
        if key not in d:
            return default
        try:
            return cast(d[key])
        except (TypeError, ValueError):
            errors.append(f"{section}.{key} must be a number, got {d[key]!r}")
            return default

    def _positive(value: float, name: str) -> None:
        if value <= 0:
            errors.append(f"{name} = {value} must be > 0")

    version = str(raw.get("version", "1.0"))

    # ── Analysis windows ──
    an_raw = _section("analysis")
    presets_raw = an_raw.get("presets", [7, 30, 90])
    presets: list[int] = []
    for p in presets_raw or []:
        try:
            presets.append(int(p))
        except (TypeError, ValueError):
            errors.append(f"analysis.presets entries must be integers, got {p!r}")
    analysis = AnalysisWindowConfig(
        default_days=_number(an_raw, "default_days", "analysis", 30, int),
        max_days=_number(an_raw, "max_days", "analysis", 365, int),
        presets=presets,
    )
    for p in presets:
        if not (1 <= p <= analysis.max_days):
            errors.append(f"analysis.presets value {p} is out of range [1, {analysis.max_days}]")

    # ── Trends ──
    tr_raw = _section("trends")
    trends = TrendConfig(
        change_threshold=_number(tr_raw, "change_threshold", "trends", 0.5),
    )
    _positive(trends.change_threshold, "trends.change_threshold")

    # ── Activity correlation ──
    ac_raw = _section("activity_correlation")
    activity = ActivityCorrelationConfig(
        hours_window=_number(ac_raw, "hours_window", "activity_correlation", 24.0),
        strength_threshold=_number(ac_raw, "strength_threshold", "activity_correlation", 0.3),
        min_samples_per_partition=_number(
            ac_raw, "min_samples_per_partition", "activity_correlation", 2, int
        ),
    )
    _positive(activity.hours_window, "activity_correlation.hours_window")
    if not (0.0 < activity.strength_threshold < 1.0):
        errors.append(
            f"activity_correlation.strength_threshold = {activity.strength_threshold} "
            "is out of range (0.0, 1.0)"
        )
    if activity.min_samples_per_partition < 1:
        errors.append("activity_correlation.min_samples_per_partition must be >= 1")

    # ── Time patterns ──
    tp_raw = _section("time_patterns")
    time_patterns = TimePatternConfig(
        min_occurrences=_number(tp_raw, "min_occurrences", "time_patterns", 5, int),
        peak_day_min_share=_number(tp_raw, "peak_day_min_share", "time_patterns", 0.25),
    )
    if not (0.0 <= time_patterns.peak_day_min_share <= 1.0):
        errors.append(
            f"time_patterns.peak_day_min_share = {time_patterns.peak_day_min_share} "
            "is out of range [0.0, 1.0]"
        )

    # ── Physiological ──
    ph_raw = _section("physiological")
    metrics: list[HealthMetric] = []
    for name in ph_raw.get("metrics", ["hrv", "resting_hr", "sleep", "workout"]) or []:
        try:
            metrics.append(HealthMetric(name))
        except ValueError:
            errors.append(f"physiological.metrics contains unknown metric {name!r}")
    physiological = PhysiologicalConfig(
        high_severity_min=_number(ph_raw, "high_severity_min", "physiological", 4.0),
        low_severity_max=_number(ph_raw, "low_severity_max", "physiological", 2.0),
        min_strength=_number(ph_raw, "min_strength", "physiological", 0.15),
        metrics=metrics,
        max_concurrent_days=_number(ph_raw, "max_concurrent_days", "physiological", 8, int),
    )
    if physiological.low_severity_max >= physiological.high_severity_min:
        errors.append(
            "physiological.low_severity_max must be below physiological.high_severity_min"
        )
    _positive(physiological.max_concurrent_days, "physiological.max_concurrent_days")

    # ── Sleep sessions ──
    sl_raw = _section("sleep_sessions")
    sleep = SleepSessionConfig(
        session_gap_minutes=_number(sl_raw, "session_gap_minutes", "sleep_sessions", 60, int),
        night_window_hours=_number(sl_raw, "night_window_hours", "sleep_sessions", 8, int),
        sleep_window_start_hour=_number(
            sl_raw, "sleep_window_start_hour", "sleep_sessions", 18, int
        ),
        sleep_window_end_hour=_number(sl_raw, "sleep_window_end_hour", "sleep_sessions", 14, int),
        historical_lookback_hours=_number(
            sl_raw, "historical_lookback_hours", "sleep_sessions", 12, int
        ),
        recent_lookback_hours=_number(sl_raw, "recent_lookback_hours", "sleep_sessions", 24, int),
    )
    for key in ("sleep_window_start_hour", "sleep_window_end_hour"):
        hour = getattr(sleep, key)
        if not (0 <= hour <= 23):
            errors.append(f"sleep_sessions.{key} = {hour} is out of range [0, 23]")

    # ── Baselines ──
    bl_raw = _section("baselines")
    baselines = BaselineConfig(
        window_days=_number(bl_raw, "window_days", "baselines", 30, int),
        calibration_min_samples=_number(bl_raw, "calibration_min_samples", "baselines", 10, int),
        evaluation_deviations=_number(bl_raw, "evaluation_deviations", "baselines", 0.5),
    )
    _positive(baselines.window_days, "baselines.window_days")

    # ── Cache durations ──
    cd_raw = _section("cache_durations_minutes")
    cache_durations: dict[HealthMetric, timedelta] = {}
    for key, minutes in cd_raw.items():
        try:
            metric = HealthMetric(key)
        except ValueError:
            errors.append(f"cache_durations_minutes contains unknown metric {key!r}")
            continue
        try:
            cache_durations[metric] = timedelta(minutes=float(minutes))
        except (TypeError, ValueError):
            errors.append(f"cache_durations_minutes.{key} must be a number, got {minutes!r}")

    # ── Recent metrics ──
    rm_raw = _section("recent_metrics")
    recent = RecentMetricsConfig(
        quantity_lookback_hours=_number(
            rm_raw, "quantity_lookback_hours", "recent_metrics", 72, int
        ),
        workout_lookback_hours=_number(rm_raw, "workout_lookback_hours", "recent_metrics", 24, int),
        hrv_sample_limit=_number(rm_raw, "hrv_sample_limit", "recent_metrics", 50, int),
        resting_hr_sample_limit=_number(
            rm_raw, "resting_hr_sample_limit", "recent_metrics", 10, int
        ),
    )

    # ── Cycle ──
    cy_raw = _section("cycle")
    cycle_lookback_days = _number(cy_raw, "lookback_days", "cycle", 45, int)
    _positive(cycle_lookback_days, "cycle.lookback_days")

    if errors:
        raise ConfigValidationError(
            f"insights_config.yaml has {len(errors)} validation error(s):\n"
            + "\n".join(f"  • {e}" for e in errors)
        )

    return InsightsConfig(
        version=version,
        analysis=analysis,
        trends=trends,
        activity=activity,
        time_patterns=time_patterns,
        physiological=physiological,
        sleep=sleep,
        baselines=baselines,
        cache_durations=cache_durations,
        recent=recent,
        cycle_lookback_days=cycle_lookback_days,
        _raw=raw,
    )


def load_insights_config(path: Path | None = None) -> InsightsConfig:
    """Load and validate the insights config from disk.

    Args:
        path: Override path to YAML. Uses the bundled insights_config.yaml by default.

    Returns:
        Validated InsightsConfig instance.
    """
    target = path or _CONFIG_PATH
    raw = _load_yaml(target)
    config = _validate_and_build(raw)
    logger.info("Loaded insights config v%s from %s", config.version, target)
    return config


# ---------------------------------------------------------------------------
# Global singleton with hot-reload support
# ---------------------------------------------------------------------------

_config: InsightsConfig | None = None
_config_lock = threading.Lock()


def get_insights_config() -> InsightsConfig:
    """Return the global InsightsConfig singleton, loading it on first call.

    Thread-safe.  Use ``reload_insights_config()`` to refresh after YAML changes.
    """
    global _config
    if _config is None:
        with _config_lock:
            if _config is None:  # double-checked locking
                _config = load_insights_config()
    return _config


def reload_insights_config(path: Path | None = None) -> InsightsConfig:
    """Reload the insights config from disk and replace the global singleton.

    If validation fails, the old config is retained and the error is re-raised.

    Args:
        path: Override path to YAML. Defaults to bundled insights_config.yaml.

    Returns:
        The newly loaded InsightsConfig.

    Raises:
        ConfigValidationError: If the new config is invalid.
    """
    global _config
    new_config = load_insights_config(path)
    with _config_lock:
        _config = new_config
    logger.info("Insights config reloaded (v%s)", new_config.version)
    return new_config
