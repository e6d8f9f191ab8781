"""Deterministic fallback and demo health data.

When no health data source is available (simulators, CI, demo accounts) the
resolver can substitute plausible values generated from a seeded linear
congruential generator.  The same date and day type always yield the same
numbers, so screenshots and tests are reproducible.
"""

from __future__ import annotations

from datetime import date
from enum import Enum

_MASK_64 = (1 << 64) - 1


class SeededRandom:
    """64-bit LCG producing floats in [0, 1)."""

    def __init__(self, seed: int) -> None:
        self.state = seed & _MASK_64

    def next(self) -> float:
        self.state = (self.state * 1664525 + 1013904223) & _MASK_64
        return (self.state % 1_000_000) / 1_000_000

    def uniform(self, low: float, high: float) -> float:
        return low + (high - low) * self.next()

    def around(self, centre: float, spread: float) -> float:
        """Value in ``centre ± spread``."""
        return self.uniform(centre - spread, centre + spread)


class DayType(str, Enum):
    """Character of a day, which shapes the generated metrics."""

    PEM = "pem"              # post-exertional malaise crash
    FLARE = "flare"
    MENSTRUAL = "menstrual"
    REST = "rest"
    BETTER = "better"
    NORMAL = "normal"

    @property
    def seed_offset(self) -> int:
        return _SEED_OFFSETS[self]

    @property
    def is_crash(self) -> bool:
        return self in (DayType.PEM, DayType.FLARE)


_SEED_OFFSETS = {
    DayType.PEM: 0,
    DayType.FLARE: 100,
    DayType.MENSTRUAL: 200,
    DayType.REST: 300,
    DayType.BETTER: 400,
    DayType.NORMAL: 500,
}


class FallbackDataGenerator:
    """Generates per-day HRV, resting HR, sleep and workout values.

    Each metric draws from its own stream (seed, seed+1, seed+2, seed+3) so
    adding a metric never shifts another metric's values.
    """

    def seed_for(self, day: date, day_type: DayType) -> int:
        return day.toordinal() * 1000 + day_type.seed_offset

    def hrv(self, day: date, day_type: DayType = DayType.NORMAL) -> float:
        rng = SeededRandom(self.seed_for(day, day_type))
        if day_type.is_crash:
            return rng.around(22.0, 5.0)
        if day_type is DayType.BETTER:
            return rng.around(55.0, 8.0)
        return rng.around(38.0, 8.0)

    def resting_hr(self, day: date, day_type: DayType = DayType.NORMAL) -> float:
        rng = SeededRandom(self.seed_for(day, day_type) + 1)
        if day_type.is_crash:
            return rng.around(78.0, 4.0)
        if day_type is DayType.BETTER:
            return rng.around(58.0, 4.0)
        return rng.around(65.0, 4.0)

    def sleep_hours(self, day: date, day_type: DayType = DayType.NORMAL) -> float:
        rng = SeededRandom(self.seed_for(day, day_type) + 2)
        if day_type.is_crash:
            return rng.around(5.5, 1.5)
        if day_type in (DayType.MENSTRUAL, DayType.REST):
            return rng.around(6.5, 1.0)
        if day_type is DayType.BETTER:
            return rng.around(8.0, 0.5)
        return rng.around(7.5, 1.0)

    def workout_minutes(self, day: date, day_type: DayType = DayType.NORMAL) -> float:
        rng = SeededRandom(self.seed_for(day, day_type) + 3)
        if day_type.is_crash:
            return rng.uniform(0.0, 10.0)
        if day_type in (DayType.MENSTRUAL, DayType.REST):
            return rng.uniform(5.0, 20.0)
        if day_type is DayType.BETTER:
            return rng.uniform(25.0, 50.0)
        return rng.uniform(15.0, 35.0)
