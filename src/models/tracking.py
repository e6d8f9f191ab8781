"""Pydantic models for symptom tracking: symptom types, symptom entries,
activity events and the physiological snapshot captured at logging time."""

from __future__ import annotations

import uuid
from datetime import datetime

from pydantic import Field

from src.insights.base import FlowLevel
from src.models.base import FrozenRecord, utc_now

POSITIVE_WELLBEING_CATEGORY = "Positive wellbeing"


class SymptomType(FrozenRecord):
    """A user-defined or built-in symptom.

    Positive-wellbeing types (energy, calm, ...) are framed so that a higher
    severity is better; every other category treats higher as worse.
    """

    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    name: str = Field(min_length=1)
    color: str | None = None
    category: str = "Other"
    is_starred: bool = False

    @property
    def is_positive(self) -> bool:
        return self.category == POSITIVE_WELLBEING_CATEGORY


class PhysiologicalSnapshot(FrozenRecord):
    """Health metrics captured when an entry was logged."""

    hrv: float | None = Field(default=None, ge=0)
    resting_hr: float | None = Field(default=None, ge=0)
    sleep_hours: float | None = Field(default=None, ge=0)
    workout_minutes: float | None = Field(default=None, ge=0)
    cycle_day: int | None = Field(default=None, ge=1)
    flow_level: FlowLevel | None = None

    @property
    def is_empty(self) -> bool:
        return all(
            v is None
            for v in (
                self.hrv,
                self.resting_hr,
                self.sleep_hours,
                self.workout_minutes,
                self.cycle_day,
                self.flow_level,
            )
        )


class SymptomEntry(FrozenRecord):
    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    symptom_type: SymptomType
    severity: int = Field(ge=1, le=5)
    created_at: datetime = Field(default_factory=utc_now)
    backdated_at: datetime | None = None
    note: str | None = None
    snapshot: PhysiologicalSnapshot | None = None

    @property
    def effective_at(self) -> datetime:
        """Backdated time if present, else creation time."""
        return self.backdated_at or self.created_at


class ActivityEvent(FrozenRecord):
    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    name: str = Field(min_length=1)
    created_at: datetime = Field(default_factory=utc_now)
    backdated_at: datetime | None = None
    note: str | None = None
    physical_exertion: int | None = Field(default=None, ge=1, le=5)
    cognitive_exertion: int | None = Field(default=None, ge=1, le=5)
    emotional_load: int | None = Field(default=None, ge=1, le=5)
    duration_minutes: int | None = Field(default=None, ge=0)

    @property
    def effective_at(self) -> datetime:
        return self.backdated_at or self.created_at
