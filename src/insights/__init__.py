"""Murmur Insights Engine.

This package correlates logged symptom severities with activities and
wearable-derived health metrics (HRV, resting heart rate, sleep, workouts,
menstrual cycle data).

Subpackages:
    adapters/ - Health data sources (Apple Health export, deterministic fake)
    analysis/ - Trend, activity, time-pattern and physiological analysis

Core modules:
    base           - HealthDataSource ABC, sample models, error taxonomy
    config_loader  - Load/validate/hot-reload insights_config.yaml
    query_service  - Timeout-guarded provider access
    cache          - Per-day metric cache with freshness tracking
    sleep_sessions - Sleep session reconstruction
    baselines      - Rolling 30-day HRV / resting HR baselines
    historical     - Cache-first per-date metric resolver
    recent         - Latest-value lookups for new entries
    seeding        - Deterministic fallback and demo data
"""

from src.insights.base import (
    AuthorizationDeniedError,
    FlowLevel,
    HealthDataError,
    HealthDataSource,
    HealthMetric,
    ProviderUnavailableError,
    QueryTimeoutError,
)
from src.insights.config_loader import InsightsConfig, get_insights_config

__all__ = [
    "HealthDataSource",
    "HealthMetric",
    "FlowLevel",
    "HealthDataError",
    "ProviderUnavailableError",
    "AuthorizationDeniedError",
    "QueryTimeoutError",
    "InsightsConfig",
    "get_insights_config",
]
