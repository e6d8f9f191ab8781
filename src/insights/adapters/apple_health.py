"""Apple Health export adapter for Murmur.

Apple Health has no server-side API, so outside the device the data comes
from the user's ``export.xml`` (Health app → Export All Health Data).  The
file is parsed once, lazily on the first query, and every query is answered
from the parsed samples.

Only the record types the insights engine reads are kept: HRV (SDNN),
resting heart rate, sleep analysis, menstrual flow and workouts.  Category
values the engine does not know are mapped to "unspecified" rather than
dropped or raised.

There is no permission flow for an exported file; ``request_authorization``
always succeeds.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from pathlib import Path
from xml.etree import ElementTree as ET

from src.insights.base import (
    CategorySample,
    CategoryType,
    HealthDataError,
    HealthDataSource,
    MenstrualFlow,
    QuantitySample,
    QuantityType,
    SleepStage,
    SortOrder,
    Statistics,
    StatisticsOption,
    WorkoutSample,
    apply_sort_and_limit,
    compute_statistics,
    in_range,
)

logger = logging.getLogger("murmur.insights.adapters.apple_health")

# HK type identifier → sample kind
_HK_HRV = "HKQuantityTypeIdentifierHeartRateVariabilitySDNN"
_HK_RESTING_HR = "HKQuantityTypeIdentifierRestingHeartRate"
_HK_SLEEP_ANALYSIS = "HKCategoryTypeIdentifierSleepAnalysis"
_HK_MENSTRUAL_FLOW = "HKCategoryTypeIdentifierMenstrualFlow"

_QUANTITY_TYPES: dict[str, QuantityType] = {
    _HK_HRV: QuantityType.HRV,
    _HK_RESTING_HR: QuantityType.RESTING_HEART_RATE,
}

_SLEEP_VALUES: dict[str, SleepStage] = {
    "HKCategoryValueSleepAnalysisInBed": SleepStage.IN_BED,
    "HKCategoryValueSleepAnalysisAsleepUnspecified": SleepStage.ASLEEP_UNSPECIFIED,
    "HKCategoryValueSleepAnalysisAsleep": SleepStage.ASLEEP_UNSPECIFIED,
    "HKCategoryValueSleepAnalysisAwake": SleepStage.AWAKE,
    "HKCategoryValueSleepAnalysisAsleepCore": SleepStage.ASLEEP_CORE,
    "HKCategoryValueSleepAnalysisAsleepDeep": SleepStage.ASLEEP_DEEP,
    "HKCategoryValueSleepAnalysisAsleepREM": SleepStage.ASLEEP_REM,
}

_FLOW_VALUES: dict[str, MenstrualFlow] = {
    "HKCategoryValueMenstrualFlowUnspecified": MenstrualFlow.UNSPECIFIED,
    "HKCategoryValueMenstrualFlowLight": MenstrualFlow.LIGHT,
    "HKCategoryValueMenstrualFlowMedium": MenstrualFlow.MEDIUM,
    "HKCategoryValueMenstrualFlowHeavy": MenstrualFlow.HEAVY,
    "HKCategoryValueMenstrualFlowNone": MenstrualFlow.NONE,
    # Newer exports use the vaginal-bleeding identifiers
    "HKCategoryValueVaginalBleedingUnspecified": MenstrualFlow.UNSPECIFIED,
    "HKCategoryValueVaginalBleedingLight": MenstrualFlow.LIGHT,
    "HKCategoryValueVaginalBleedingMedium": MenstrualFlow.MEDIUM,
    "HKCategoryValueVaginalBleedingHeavy": MenstrualFlow.HEAVY,
    "HKCategoryValueVaginalBleedingNone": MenstrualFlow.NONE,
}

_EXPORT_DATE_FORMAT = "%Y-%m-%d %H:%M:%S %z"

# duration unit → seconds
_DURATION_UNITS = {"s": 1.0, "min": 60.0, "hr": 3600.0}


def parse_export_date(value: str) -> datetime:
    """Parse an export timestamp such as ``2026-02-22 23:10:00 -0800``."""
    return datetime.strptime(value.strip(), _EXPORT_DATE_FORMAT)


class AppleHealthExportSource(HealthDataSource):
    """HealthDataSource backed by an Apple Health ``export.xml`` file.

    Args:
        path: Location of the export file.
    """

    SOURCE_ID = "apple_health_export"
    DISPLAY_NAME = "Apple Health export"

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)
        self._quantities: list[QuantitySample] = []
        self._categories: list[CategorySample] = []
        self._workouts: list[WorkoutSample] = []
        self._loaded = False
        self._load_lock = asyncio.Lock()

    @property
    def is_available(self) -> bool:
        return self.path.is_file()

    async def request_authorization(self, to_share: set[str], to_read: set[str]) -> bool:
        logger.debug("Apple Health export: no authorization needed for a file import")
        return True

    # ------------------------------------------------------------------
    # Parsing
    # ------------------------------------------------------------------

    async def _ensure_loaded(self) -> None:
        if self._loaded:
            return
        async with self._load_lock:
            if self._loaded:
                return
            xml_bytes = await asyncio.to_thread(self.path.read_bytes)
            self.parse_xml_export(xml_bytes)
            self._loaded = True

    def parse_xml_export(self, xml_bytes: bytes) -> None:
        """Parse a full Apple Health XML export into in-memory samples.

        Args:
            xml_bytes: Contents of Apple Health's export.xml file.

        Raises:
            HealthDataError: If the XML cannot be parsed.
        """
        try:
            root = ET.fromstring(xml_bytes)
        except ET.ParseError as exc:
            logger.error("Apple Health XML parse error: %s", exc)
            raise HealthDataError(f"Invalid Apple Health XML: {exc}") from exc

        quantities: list[QuantitySample] = []
        categories: list[CategorySample] = []
        skipped = 0

        for record in root.iter("Record"):
            rec_type = record.get("type", "")
            if rec_type not in _QUANTITY_TYPES and rec_type not in (
                _HK_SLEEP_ANALYSIS,
                _HK_MENSTRUAL_FLOW,
            ):
                continue
            try:
                start = parse_export_date(record.get("startDate", ""))
                end = parse_export_date(record.get("endDate", "") or record.get("startDate", ""))
            except ValueError:
                skipped += 1
                continue
            value = record.get("value", "")

            if rec_type in _QUANTITY_TYPES:
                try:
                    numeric = float(value)
                except ValueError:
                    skipped += 1
                    continue
                quantities.append(
                    QuantitySample(
                        kind=_QUANTITY_TYPES[rec_type],
                        value=numeric,
                        unit=record.get("unit", ""),
                        start=start,
                        end=end,
                    )
                )
            elif rec_type == _HK_SLEEP_ANALYSIS:
                stage = _SLEEP_VALUES.get(value, SleepStage.ASLEEP_UNSPECIFIED)
                categories.append(
                    CategorySample(CategoryType.SLEEP_ANALYSIS, int(stage), start, end)
                )
            else:
                flow = _FLOW_VALUES.get(value, MenstrualFlow.UNSPECIFIED)
                categories.append(
                    CategorySample(CategoryType.MENSTRUAL_FLOW, int(flow), start, end)
                )

        workouts: list[WorkoutSample] = []
        for workout in root.iter("Workout"):
            try:
                start = parse_export_date(workout.get("startDate", ""))
                end = parse_export_date(workout.get("endDate", ""))
            except ValueError:
                skipped += 1
                continue
            factor = _DURATION_UNITS.get(workout.get("durationUnit", "min"), 60.0)
            try:
                duration = float(workout.get("duration", "")) * factor
            except ValueError:
                duration = (end - start).total_seconds()
            workouts.append(
                WorkoutSample(
                    activity_type=workout.get("workoutActivityType", "")
                    .removeprefix("HKWorkoutActivityType")
                    .lower(),
                    start=start,
                    end=end,
                    duration_seconds=duration,
                )
            )

        self._quantities = quantities
        self._categories = categories
        self._workouts = workouts
        logger.info(
            "Parsed Apple Health export: %d quantity, %d category, %d workout samples (%d skipped)",
            len(quantities), len(categories), len(workouts), skipped,
        )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def fetch_quantity_samples(
        self,
        kind: QuantityType,
        start: datetime,
        end: datetime,
        limit: int | None = None,
        sort: SortOrder | None = None,
    ) -> list[QuantitySample]:
        await self._ensure_loaded()
        matches = [
            s for s in self._quantities
            if s.kind is kind and in_range(s.start, s.end, start, end)
        ]
        return apply_sort_and_limit(matches, sort, limit)

    async def fetch_category_samples(
        self,
        kind: CategoryType,
        start: datetime,
        end: datetime,
        limit: int | None = None,
        sort: SortOrder | None = None,
    ) -> list[CategorySample]:
        await self._ensure_loaded()
        matches = [
            s for s in self._categories
            if s.kind is kind and in_range(s.start, s.end, start, end)
        ]
        return apply_sort_and_limit(matches, sort, limit)

    async def fetch_workouts(
        self,
        start: datetime,
        end: datetime,
        limit: int | None = None,
        sort: SortOrder | None = None,
    ) -> list[WorkoutSample]:
        await self._ensure_loaded()
        matches = [w for w in self._workouts if in_range(w.start, w.end, start, end)]
        return apply_sort_and_limit(matches, sort, limit)

    async def fetch_statistics(
        self,
        kind: QuantityType,
        start: datetime,
        end: datetime,
        options: StatisticsOption,
    ) -> Statistics | None:
        await self._ensure_loaded()
        samples = [
            s for s in self._quantities
            if s.kind is kind and start <= s.start < end
        ]
        return compute_statistics(kind, start, end, samples, options)
