"""Tests for the pure symptom analysis functions."""

from __future__ import annotations

from datetime import timedelta

import pytest

from src.insights.analysis.engine import (
    _follows_event,
    analyse_activity_correlations,
    analyse_day_intensities,
    analyse_physiological_correlations,
    analyse_symptom_trends,
    analyse_time_patterns,
    describe_physiological,
    entries_in_window,
    window_start,
)
from src.insights.analysis.models import CorrelationType, TrendDirection
from src.insights.base import HealthMetric
from src.insights.config_loader import InsightsConfig
from src.insights.historical import DailyMetrics
from src.insights.tests.conftest import (
    CALM,
    FATIGUE,
    HEADACHE,
    LOCAL_TZ,
    NOW,
    TEST_DATE,
    UTC,
    days_ago,
    make_entry,
    make_event,
)
from src.models.tracking import PhysiologicalSnapshot


class TestWindow:
    def test_window_must_be_positive(self) -> None:
        with pytest.raises(ValueError):
            window_start(NOW, 0)

    def test_backdated_time_decides_membership(self) -> None:
        recent = make_entry(FATIGUE, 3, days_ago(1))
        moved_out = make_entry(FATIGUE, 3, days_ago(1), backdated_at=days_ago(40))
        moved_in = make_entry(FATIGUE, 3, days_ago(60), backdated_at=days_ago(2))
        selected = entries_in_window([recent, moved_out, moved_in], NOW, 30, UTC)
        assert [e for _, e in selected] == [moved_in, recent]

    def test_future_entries_excluded(self) -> None:
        future = make_entry(FATIGUE, 3, NOW + timedelta(hours=1))
        assert entries_in_window([future], NOW, 7, UTC) == []


class TestEmptyInput:
    def test_every_analysis_returns_empty(self, insights_config: InsightsConfig) -> None:
        assert analyse_symptom_trends([], NOW, 30, insights_config) == []
        assert analyse_activity_correlations([], [], NOW, 30, insights_config) == []
        assert analyse_time_patterns([], NOW, 30, insights_config) == []
        assert analyse_physiological_correlations([], {}, NOW, 30, insights_config) == []


class TestSymptomTrends:
    def test_rising_negative_symptom_is_getting_worse(self, insights_config: InsightsConfig) -> None:
        entries = [make_entry(FATIGUE, 2, days_ago(d)) for d in range(16, 21)]
        entries += [make_entry(FATIGUE, 4, days_ago(d)) for d in range(1, 6)]
        [trend] = analyse_symptom_trends(entries, NOW, 30, insights_config)
        assert trend.trend is TrendDirection.DECREASING
        assert trend.occurrences == 10
        assert trend.average_severity == pytest.approx(3.0)
        assert trend.first_half_average == pytest.approx(2.0)
        assert trend.second_half_average == pytest.approx(4.0)
        assert trend.period_comparison == "2.0 → 4.0"

    def test_falling_negative_symptom_is_improving(self, insights_config: InsightsConfig) -> None:
        entries = [make_entry(HEADACHE, 5, days_ago(d)) for d in range(16, 21)]
        entries += [make_entry(HEADACHE, 3, days_ago(d)) for d in range(1, 6)]
        [trend] = analyse_symptom_trends(entries, NOW, 30, insights_config)
        assert trend.trend is TrendDirection.INCREASING

    def test_rising_positive_symptom_is_improving(self, insights_config: InsightsConfig) -> None:
        entries = [make_entry(CALM, 2, days_ago(d)) for d in range(16, 21)]
        entries += [make_entry(CALM, 4, days_ago(d)) for d in range(1, 6)]
        [trend] = analyse_symptom_trends(entries, NOW, 30, insights_config)
        assert trend.is_positive
        assert trend.trend is TrendDirection.INCREASING

    def test_small_change_is_stable(self, insights_config: InsightsConfig) -> None:
        entries = [make_entry(FATIGUE, 3, days_ago(d)) for d in range(16, 26)]
        entries += [make_entry(FATIGUE, 3, days_ago(d)) for d in range(1, 10)]
        entries.append(make_entry(FATIGUE, 4, days_ago(10)))
        [trend] = analyse_symptom_trends(entries, NOW, 30, insights_config)
        assert trend.second_half_average == pytest.approx(3.1)
        assert trend.trend is TrendDirection.STABLE

    def test_one_empty_half_is_stable(self, insights_config: InsightsConfig) -> None:
        entries = [make_entry(FATIGUE, 5, days_ago(d)) for d in range(1, 4)]
        [trend] = analyse_symptom_trends(entries, NOW, 30, insights_config)
        assert trend.trend is TrendDirection.STABLE
        assert trend.first_half_average is None
        assert trend.period_comparison is None

    def test_sorted_by_occurrences(self, insights_config: InsightsConfig) -> None:
        entries = [make_entry(HEADACHE, 3, days_ago(1))]
        entries += [make_entry(FATIGUE, 3, days_ago(d)) for d in range(1, 4)]
        trends = analyse_symptom_trends(entries, NOW, 7, insights_config)
        assert [t.symptom_name for t in trends] == ["Fatigue", "Headache"]


class TestActivityCorrelations:
    def _walk_dataset(self, symptom=FATIGUE, after: int = 4, without: int = 2):
        events = [make_event("Walk", days_ago(d, hour=10)) for d in range(1, 11)]
        entries = [make_entry(symptom, after, days_ago(d, hour=14)) for d in range(1, 11)]
        entries += [make_entry(symptom, without, days_ago(d, hour=14)) for d in range(15, 25)]
        return entries, events

    def test_worse_after_activity_is_positive(self, insights_config: InsightsConfig) -> None:
        entries, events = self._walk_dataset()
        [corr] = analyse_activity_correlations(entries, events, NOW, 30, insights_config)
        assert corr.activity_name == "Walk"
        assert corr.correlation_type is CorrelationType.POSITIVE
        assert corr.average_severity_after == pytest.approx(4.0)
        assert corr.average_severity_without == pytest.approx(2.0)
        assert corr.correlation_strength == pytest.approx(0.5)
        assert (corr.occurrences_after, corr.occurrences_without) == (10, 10)
        assert corr.hours_window == 24

    def test_better_after_activity_is_negative(self, insights_config: InsightsConfig) -> None:
        entries, events = self._walk_dataset(after=2, without=4)
        [corr] = analyse_activity_correlations(entries, events, NOW, 30, insights_config)
        assert corr.correlation_type is CorrelationType.NEGATIVE

    def test_positive_symptom_sign_flipped(self, insights_config: InsightsConfig) -> None:
        entries, events = self._walk_dataset(symptom=CALM, after=4, without=2)
        [corr] = analyse_activity_correlations(entries, events, NOW, 30, insights_config)
        assert corr.correlation_strength == pytest.approx(-0.5)
        assert corr.correlation_type is CorrelationType.NEGATIVE

    def test_small_difference_is_neutral(self, insights_config: InsightsConfig) -> None:
        entries, events = self._walk_dataset(after=3, without=3)
        [corr] = analyse_activity_correlations(entries, events, NOW, 30, insights_config)
        assert corr.correlation_type is CorrelationType.NEUTRAL

    def test_under_sampled_pair_dropped(self, insights_config: InsightsConfig) -> None:
        events = [make_event("Walk", days_ago(3, hour=10))]
        entries = [make_entry(FATIGUE, 5, days_ago(3, hour=12))]
        entries += [make_entry(FATIGUE, 2, days_ago(d)) for d in range(10, 15)]
        assert analyse_activity_correlations(entries, events, NOW, 30, insights_config) == []

    def test_events_before_window_still_attribute(self, insights_config: InsightsConfig) -> None:
        # Events fall just before the 7-day window, entries just inside it
        events = [make_event("Swim", days_ago(7, hour=2)), make_event("Swim", days_ago(7, hour=3))]
        entries = [make_entry(FATIGUE, 5, days_ago(7, hour=13)) for _ in range(2)]
        entries += [make_entry(FATIGUE, 1, days_ago(d)) for d in (2, 3)]
        [corr] = analyse_activity_correlations(entries, events, NOW, 7, insights_config)
        assert corr.occurrences_after == 2


class TestFollowsEvent:
    def test_half_open_window(self) -> None:
        event = days_ago(2)
        window = timedelta(hours=24)
        assert not _follows_event(event, [event], window)
        assert _follows_event(event + timedelta(minutes=1), [event], window)
        assert _follows_event(event + timedelta(hours=24), [event], window)
        assert not _follows_event(event + timedelta(hours=24, seconds=1), [event], window)

    def test_no_events(self) -> None:
        assert not _follows_event(NOW, [], timedelta(hours=24))


class TestTimePatterns:
    def test_peak_hour_and_dominant_day(self, insights_config: InsightsConfig) -> None:
        # TEST_DATE is a Monday
        mondays = [make_entry(HEADACHE, 3, days_ago(d, hour=9)) for d in (0, 7, 14, 21)]
        others = [make_entry(HEADACHE, 3, days_ago(d, hour=20)) for d in (1, 2)]
        [pattern] = analyse_time_patterns(mondays + others, NOW, 30, insights_config)
        assert pattern.occurrences == 6
        assert pattern.peak_hour == 9
        assert pattern.peak_day == 2
        assert pattern.peak_day_name == "Monday"
        assert sum(pattern.hour_counts) == 6
        assert pattern.day_counts[0] == 1  # Sunday

    def test_even_spread_has_no_peak_day(self, insights_config: InsightsConfig) -> None:
        entries = [make_entry(HEADACHE, 3, days_ago(d, hour=8)) for d in range(1, 8)]
        [pattern] = analyse_time_patterns(entries, NOW, 30, insights_config)
        assert pattern.peak_day is None
        assert pattern.peak_day_name is None

    def test_hour_ties_go_to_earliest(self, insights_config: InsightsConfig) -> None:
        entries = [make_entry(FATIGUE, 3, days_ago(d, hour=20)) for d in (1, 2, 3)]
        entries += [make_entry(FATIGUE, 3, days_ago(d, hour=7)) for d in (4, 5, 6)]
        [pattern] = analyse_time_patterns(entries, NOW, 30, insights_config)
        assert pattern.peak_hour == 7

    def test_too_few_entries(self, insights_config: InsightsConfig) -> None:
        entries = [make_entry(FATIGUE, 3, days_ago(d)) for d in range(1, 5)]
        assert analyse_time_patterns(entries, NOW, 30, insights_config) == []

    def test_hours_use_local_time(self, insights_config: InsightsConfig) -> None:
        entries = [make_entry(FATIGUE, 3, days_ago(d, hour=14)) for d in range(1, 6)]
        [pattern] = analyse_time_patterns(entries, NOW, 30, insights_config, tz=LOCAL_TZ)
        assert pattern.peak_hour == 9


class TestPhysiologicalCorrelations:
    def _split_days(self, symptom=FATIGUE):
        high = [make_entry(symptom, 5, days_ago(d)) for d in (1, 2, 3)]
        low = [make_entry(symptom, 1, days_ago(d)) for d in (4, 5, 6)]
        return high, low

    def test_lower_hrv_on_bad_days(self, insights_config: InsightsConfig) -> None:
        high, low = self._split_days()
        daily = {
            (TEST_DATE - timedelta(days=d)): DailyMetrics(
                day=TEST_DATE - timedelta(days=d), hrv=30.0 if d <= 3 else 50.0
            )
            for d in range(1, 7)
        }
        [row] = analyse_physiological_correlations(
            high + low, daily, NOW, 30, insights_config, baselines={HealthMetric.HRV: 42.0}
        )
        assert row.metric is HealthMetric.HRV
        assert row.correlation_strength == pytest.approx(-0.4)
        assert row.percent_difference == 40
        assert row.average_high == pytest.approx(30.0)
        assert row.average_low == pytest.approx(50.0)
        assert (row.high_days, row.low_days) == (3, 3)
        assert row.baseline_mean == 42.0
        assert row.description == "HRV 40% lower on days Fatigue is worse"

    def test_snapshot_fallback(self, insights_config: InsightsConfig) -> None:
        high = [
            make_entry(FATIGUE, 5, days_ago(d), snapshot=PhysiologicalSnapshot(sleep_hours=6.0))
            for d in (1, 2)
        ]
        low = [
            make_entry(FATIGUE, 1, days_ago(d), snapshot=PhysiologicalSnapshot(sleep_hours=8.0))
            for d in (3, 4)
        ]
        [row] = analyse_physiological_correlations(high + low, {}, NOW, 30, insights_config)
        assert row.metric is HealthMetric.SLEEP
        assert row.percent_difference == 25
        assert row.baseline_mean is None

    def test_weak_difference_dropped(self, insights_config: InsightsConfig) -> None:
        high, low = self._split_days()
        daily = {
            (TEST_DATE - timedelta(days=d)): DailyMetrics(
                day=TEST_DATE - timedelta(days=d), hrv=45.0 if d <= 3 else 50.0
            )
            for d in range(1, 7)
        }
        assert analyse_physiological_correlations(high + low, daily, NOW, 30, insights_config) == []

    def test_positive_symptom_sign_flipped(self, insights_config: InsightsConfig) -> None:
        high, low = self._split_days(symptom=CALM)
        daily = {
            (TEST_DATE - timedelta(days=d)): DailyMetrics(
                day=TEST_DATE - timedelta(days=d), resting_hr=80.0 if d <= 3 else 60.0
            )
            for d in range(1, 7)
        }
        [row] = analyse_physiological_correlations(high + low, daily, NOW, 30, insights_config)
        assert row.metric is HealthMetric.RESTING_HR
        assert row.correlation_strength == pytest.approx(-0.25)

    def test_needs_both_buckets(self, insights_config: InsightsConfig) -> None:
        high, _ = self._split_days()
        middling = [make_entry(FATIGUE, 3, days_ago(d)) for d in (4, 5)]
        daily = {
            (TEST_DATE - timedelta(days=d)): DailyMetrics(day=TEST_DATE - timedelta(days=d), hrv=30.0)
            for d in range(1, 6)
        }
        assert analyse_physiological_correlations(high + middling, daily, NOW, 30, insights_config) == []

    def test_day_scored_by_mean_severity(self, insights_config: InsightsConfig) -> None:
        # Severities 5 and 3 on one day average 4, which is a high day
        entries = [
            make_entry(FATIGUE, 5, days_ago(1, hour=8)),
            make_entry(FATIGUE, 3, days_ago(1, hour=18)),
            make_entry(FATIGUE, 2, days_ago(2)),
        ]
        daily = {
            TEST_DATE - timedelta(days=1): DailyMetrics(day=TEST_DATE - timedelta(days=1), workout_minutes=10.0),
            TEST_DATE - timedelta(days=2): DailyMetrics(day=TEST_DATE - timedelta(days=2), workout_minutes=40.0),
        }
        [row] = analyse_physiological_correlations(entries, daily, NOW, 30, insights_config)
        assert row.metric is HealthMetric.WORKOUT
        assert row.percent_difference == 75

    def test_describe(self) -> None:
        assert (
            describe_physiological(HealthMetric.SLEEP, "Headache", 0.2)
            == "Sleep 20% higher on days Headache is worse"
        )


class TestDayIntensities:
    def test_cells_for_every_day(self) -> None:
        entries = [
            make_entry(FATIGUE, 4, days_ago(1, hour=9)),
            make_entry(CALM, 5, days_ago(1, hour=15)),
            make_entry(HEADACHE, 2, days_ago(3)),
        ]
        cells = analyse_day_intensities(
            entries, TEST_DATE - timedelta(days=3), TEST_DATE - timedelta(days=1)
        )
        assert [c.day for c in cells] == [TEST_DATE - timedelta(days=d) for d in (3, 2, 1)]
        third, empty, last = cells
        assert third.average_severity == pytest.approx(2.0)
        assert not empty.has_data
        assert empty.average_severity == 0.0
        # Calm 5 counts as 1 towards the normalised average
        assert last.average_severity == pytest.approx(2.5)
        assert last.raw_average_severity == pytest.approx(4.5)
        assert last.entry_count == 2

    def test_local_day_assignment(self) -> None:
        late = make_entry(FATIGUE, 4, days_ago(0, hour=2))
        cells = analyse_day_intensities(
            [late], TEST_DATE - timedelta(days=1), TEST_DATE, tz=LOCAL_TZ
        )
        assert [c.entry_count for c in cells] == [1, 0]
