"""Symptom analysis: trends, activity correlations, time patterns and
physiological correlations.

Modules:
    models  - Frozen result records
    engine  - Pure analysis functions over an entry snapshot
    service - Async orchestration (entry store, metric resolution, worker threads)
"""

from src.insights.analysis.models import (
    ActivityCorrelation,
    AnalysisReport,
    CorrelationType,
    DayIntensity,
    PhysiologicalCorrelation,
    SymptomTrend,
    TimePattern,
    TrendDirection,
)

__all__ = [
    "ActivityCorrelation",
    "AnalysisReport",
    "CorrelationType",
    "DayIntensity",
    "PhysiologicalCorrelation",
    "SymptomTrend",
    "TimePattern",
    "TrendDirection",
]
