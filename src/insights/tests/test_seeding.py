"""Tests for the deterministic fallback data generator."""

from __future__ import annotations

from datetime import date, timedelta

from src.insights.adapters.fake import FakeHealthDataSource
from src.insights.base import QuantityType
from src.insights.seeding import DayType, FallbackDataGenerator, SeededRandom
from src.insights.tests.conftest import TEST_DATE


class TestSeededRandom:
    def test_same_seed_same_sequence(self) -> None:
        a = SeededRandom(42)
        b = SeededRandom(42)
        assert [a.next() for _ in range(5)] == [b.next() for _ in range(5)]

    def test_values_in_unit_interval(self) -> None:
        rng = SeededRandom(7)
        assert all(0.0 <= rng.next() < 1.0 for _ in range(200))

    def test_around_stays_in_spread(self) -> None:
        rng = SeededRandom(99)
        assert all(35.0 <= rng.around(40.0, 5.0) <= 45.0 for _ in range(100))


class TestFallbackDataGenerator:
    def test_reproducible_per_day(self) -> None:
        gen = FallbackDataGenerator()
        assert gen.hrv(TEST_DATE) == FallbackDataGenerator().hrv(TEST_DATE)
        assert gen.sleep_hours(TEST_DATE) == gen.sleep_hours(TEST_DATE)

    def test_days_differ(self) -> None:
        gen = FallbackDataGenerator()
        values = {gen.hrv(TEST_DATE - timedelta(days=i)) for i in range(10)}
        assert len(values) > 1

    def test_seed_combines_ordinal_and_day_type(self) -> None:
        gen = FallbackDataGenerator()
        day = date(2026, 1, 1)
        assert gen.seed_for(day, DayType.PEM) == day.toordinal() * 1000
        assert gen.seed_for(day, DayType.NORMAL) == day.toordinal() * 1000 + 500

    def test_crash_days_look_worse(self) -> None:
        gen = FallbackDataGenerator()
        for i in range(14):
            day = TEST_DATE - timedelta(days=i)
            assert gen.hrv(day, DayType.PEM) <= 27.0
            assert gen.hrv(day, DayType.BETTER) >= 47.0
            assert gen.resting_hr(day, DayType.FLARE) >= 74.0
            assert gen.workout_minutes(day, DayType.PEM) < 10.0

    def test_plausible_ranges(self) -> None:
        gen = FallbackDataGenerator()
        for i in range(30):
            day = TEST_DATE - timedelta(days=i)
            assert 30.0 <= gen.hrv(day) <= 46.0
            assert 61.0 <= gen.resting_hr(day) <= 69.0
            assert 6.5 <= gen.sleep_hours(day) <= 8.5
            assert 15.0 <= gen.workout_minutes(day) <= 35.0


class TestSeedDays:
    def test_populates_fake_source(self) -> None:
        source = FakeHealthDataSource()
        source.seed_days(TEST_DATE - timedelta(days=6), days=7)
        hrv = [s for s in source.quantities if s.kind is QuantityType.HRV]
        assert len(hrv) == 7
        assert len(source.categories) == 7
        assert all(w.duration_seconds > 0 for w in source.workouts)

    def test_day_type_shapes_seeded_values(self) -> None:
        generator = FallbackDataGenerator()
        source = FakeHealthDataSource()
        source.seed_days(TEST_DATE, days=1, day_types={TEST_DATE: DayType.PEM}, generator=generator)
        hrv = next(s for s in source.quantities if s.kind is QuantityType.HRV)
        assert hrv.value == round(generator.hrv(TEST_DATE, DayType.PEM), 1)
