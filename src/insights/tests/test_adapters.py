"""Tests for the health data source adapters and the query service."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from src.insights.adapters import SOURCE_REGISTRY, get_source
from src.insights.adapters.apple_health import AppleHealthExportSource, parse_export_date
from src.insights.adapters.fake import FakeHealthDataSource
from src.insights.base import (
    NEWEST_FIRST,
    OLDEST_FIRST,
    CategoryType,
    FlowLevel,
    HealthDataError,
    MenstrualFlow,
    ProviderUnavailableError,
    QuantityType,
    QueryTimeoutError,
    SleepStage,
    StatisticsOption,
    convert_unit,
)
from src.insights.query_service import HealthQueryService
from src.insights.tests.conftest import NOW, UTC

_PST = timezone(timedelta(hours=-8))

EXPORT_XML = b"""<?xml version="1.0" encoding="UTF-8"?>
<HealthData locale="en_US">
  <Record type="HKQuantityTypeIdentifierHeartRateVariabilitySDNN" unit="ms" value="41.5"
          startDate="2026-02-22 07:01:00 -0800" endDate="2026-02-22 07:02:00 -0800"/>
  <Record type="HKQuantityTypeIdentifierHeartRateVariabilitySDNN" unit="ms" value="47.25"
          startDate="2026-02-23 07:03:00 -0800" endDate="2026-02-23 07:04:00 -0800"/>
  <Record type="HKQuantityTypeIdentifierRestingHeartRate" unit="count/min" value="61"
          startDate="2026-02-23 06:00:00 -0800" endDate="2026-02-23 06:00:00 -0800"/>
  <Record type="HKQuantityTypeIdentifierStepCount" unit="count" value="1200"
          startDate="2026-02-23 09:00:00 -0800" endDate="2026-02-23 10:00:00 -0800"/>
  <Record type="HKCategoryTypeIdentifierSleepAnalysis"
          value="HKCategoryValueSleepAnalysisAsleepCore"
          startDate="2026-02-22 23:10:00 -0800" endDate="2026-02-23 02:00:00 -0800"/>
  <Record type="HKCategoryTypeIdentifierSleepAnalysis"
          value="HKCategoryValueSleepAnalysisAwake"
          startDate="2026-02-23 02:00:00 -0800" endDate="2026-02-23 02:10:00 -0800"/>
  <Record type="HKCategoryTypeIdentifierSleepAnalysis"
          value="HKCategoryValueSleepAnalysisSomethingNew"
          startDate="2026-02-23 02:10:00 -0800" endDate="2026-02-23 06:30:00 -0800"/>
  <Record type="HKCategoryTypeIdentifierMenstrualFlow"
          value="HKCategoryValueVaginalBleedingHeavy"
          startDate="2026-02-23 08:00:00 -0800" endDate="2026-02-23 08:00:00 -0800"/>
  <Record type="HKQuantityTypeIdentifierRestingHeartRate" unit="count/min" value="n/a"
          startDate="2026-02-23 06:00:00 -0800" endDate="2026-02-23 06:00:00 -0800"/>
  <Workout workoutActivityType="HKWorkoutActivityTypeYoga" duration="0.5" durationUnit="hr"
           startDate="2026-02-23 17:00:00 -0800" endDate="2026-02-23 17:30:00 -0800"/>
</HealthData>
"""


@pytest.fixture
def export_source(tmp_path: Path) -> AppleHealthExportSource:
    path = tmp_path / "export.xml"
    path.write_bytes(EXPORT_XML)
    return AppleHealthExportSource(path)


def _day(day: int) -> tuple[datetime, datetime]:
    start = datetime(2026, 2, day, tzinfo=_PST)
    return start, start + timedelta(days=1)


class TestRegistry:
    def test_known_sources(self) -> None:
        assert get_source("fake") is FakeHealthDataSource
        assert get_source("apple_health_export") is AppleHealthExportSource
        assert set(SOURCE_REGISTRY) == {"fake", "apple_health_export"}

    def test_unknown_source(self) -> None:
        with pytest.raises(KeyError, match="garmin"):
            get_source("garmin")


class TestUnits:
    def test_conversions(self) -> None:
        assert convert_unit(0.05, "s", "ms") == pytest.approx(50.0)
        assert convert_unit(1.1, "count/s", "count/min") == pytest.approx(66.0)
        assert convert_unit(42.0, "ms", "ms") == 42.0

    def test_incompatible_units(self) -> None:
        with pytest.raises(ValueError):
            convert_unit(1.0, "ms", "count/min")
        with pytest.raises(ValueError):
            convert_unit(1.0, "furlong", "ms")

    def test_unknown_category_values(self) -> None:
        assert SleepStage.from_raw(42) is SleepStage.ASLEEP_UNSPECIFIED
        assert MenstrualFlow.from_raw(9) is MenstrualFlow.UNSPECIFIED
        assert FlowLevel.from_flow(MenstrualFlow.NONE) is FlowLevel.NONE
        assert FlowLevel.HEAVY.label == "heavy"


class TestAppleHealthExport:
    def test_parse_export_date(self) -> None:
        parsed = parse_export_date("2026-02-22 23:10:00 -0800")
        assert parsed == datetime(2026, 2, 23, 7, 10, tzinfo=UTC)

    @pytest.mark.asyncio
    async def test_quantity_samples(self, export_source: AppleHealthExportSource) -> None:
        start, end = _day(23)
        samples = await export_source.fetch_quantity_samples(QuantityType.HRV, start, end)
        assert [s.value for s in samples] == [47.25]
        assert samples[0].unit == "ms"

    @pytest.mark.asyncio
    async def test_invalid_values_skipped(self, export_source: AppleHealthExportSource) -> None:
        start, end = _day(23)
        samples = await export_source.fetch_quantity_samples(
            QuantityType.RESTING_HEART_RATE, start, end
        )
        assert [s.value for s in samples] == [61.0]

    @pytest.mark.asyncio
    async def test_sleep_stages_mapped(self, export_source: AppleHealthExportSource) -> None:
        start, end = _day(22)
        samples = await export_source.fetch_category_samples(
            CategoryType.SLEEP_ANALYSIS, start, end + timedelta(hours=12), sort=OLDEST_FIRST
        )
        assert [s.sleep_stage for s in samples] == [
            SleepStage.ASLEEP_CORE,
            SleepStage.AWAKE,
            SleepStage.ASLEEP_UNSPECIFIED,
        ]

    @pytest.mark.asyncio
    async def test_new_bleeding_identifiers(self, export_source: AppleHealthExportSource) -> None:
        start, end = _day(23)
        samples = await export_source.fetch_category_samples(
            CategoryType.MENSTRUAL_FLOW, start, end
        )
        assert [s.flow for s in samples] == [MenstrualFlow.HEAVY]

    @pytest.mark.asyncio
    async def test_workouts(self, export_source: AppleHealthExportSource) -> None:
        start, end = _day(23)
        workouts = await export_source.fetch_workouts(start, end)
        assert len(workouts) == 1
        assert workouts[0].activity_type == "yoga"
        assert workouts[0].duration_seconds == pytest.approx(1800.0)

    @pytest.mark.asyncio
    async def test_statistics(self, export_source: AppleHealthExportSource) -> None:
        start, _ = _day(22)
        _, end = _day(23)
        stats = await export_source.fetch_statistics(
            QuantityType.HRV, start, end, StatisticsOption.AVERAGE | StatisticsOption.MAXIMUM
        )
        assert stats is not None
        assert stats.count == 2
        assert stats.average == pytest.approx(44.375)
        assert stats.maximum == pytest.approx(47.25)
        assert stats.minimum is None

    def test_missing_file_is_unavailable(self, tmp_path: Path) -> None:
        assert not AppleHealthExportSource(tmp_path / "nope.xml").is_available

    def test_malformed_xml(self, tmp_path: Path) -> None:
        source = AppleHealthExportSource(tmp_path / "export.xml")
        with pytest.raises(HealthDataError):
            source.parse_xml_export(b"<HealthData><Record")


class TestFakeSource:
    @pytest.mark.asyncio
    async def test_sort_and_limit(self) -> None:
        source = FakeHealthDataSource()
        for hours in (5, 1, 3):
            source.add_quantity(QuantityType.HRV, float(hours), NOW - timedelta(hours=hours))
        newest = await source.fetch_quantity_samples(
            QuantityType.HRV, NOW - timedelta(days=1), NOW, limit=2, sort=NEWEST_FIRST
        )
        assert [s.value for s in newest] == [1.0, 3.0]

    @pytest.mark.asyncio
    async def test_range_is_half_open(self) -> None:
        source = FakeHealthDataSource()
        source.add_quantity(QuantityType.HRV, 40.0, NOW)
        assert await source.fetch_quantity_samples(
            QuantityType.HRV, NOW - timedelta(hours=1), NOW
        ) == []
        assert len(
            await source.fetch_quantity_samples(QuantityType.HRV, NOW, NOW + timedelta(hours=1))
        ) == 1

    @pytest.mark.asyncio
    async def test_statistics_empty(self) -> None:
        source = FakeHealthDataSource()
        stats = await source.fetch_statistics(
            QuantityType.HRV, NOW - timedelta(days=1), NOW, StatisticsOption.AVERAGE
        )
        assert stats is None

    @pytest.mark.asyncio
    async def test_request_authorization(self) -> None:
        source = FakeHealthDataSource()
        assert await source.request_authorization(set(), {"hrv_sdnn"}) is True
        assert source.authorized == {"hrv_sdnn"}


class TestQueryService:
    @pytest.mark.asyncio
    async def test_timeout_raises_distinct_error(self) -> None:
        queries = HealthQueryService(FakeHealthDataSource(delay=0.5), timeout_seconds=0.05)
        with pytest.raises(QueryTimeoutError) as exc_info:
            await queries.fetch_workouts(NOW - timedelta(days=1), NOW)
        assert exc_info.value.timeout == 0.05
        assert "fetch_workouts" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_unavailable_source(self) -> None:
        queries = HealthQueryService(FakeHealthDataSource(available=False))
        with pytest.raises(ProviderUnavailableError):
            await queries.fetch_quantity_samples(QuantityType.HRV, NOW - timedelta(days=1), NOW)

    @pytest.mark.asyncio
    async def test_sleep_samples_are_asleep_only(self) -> None:
        source = FakeHealthDataSource()
        source.add_sleep(NOW - timedelta(hours=9), NOW - timedelta(hours=8), SleepStage.IN_BED)
        source.add_sleep(NOW - timedelta(hours=8), NOW - timedelta(hours=2), SleepStage.ASLEEP_REM)
        samples = await HealthQueryService(source).fetch_sleep_samples(
            NOW - timedelta(days=1), NOW
        )
        assert [s.sleep_stage for s in samples] == [SleepStage.ASLEEP_REM]

    def test_timeout_must_be_positive(self) -> None:
        with pytest.raises(ValueError):
            HealthQueryService(FakeHealthDataSource(), timeout_seconds=0)
