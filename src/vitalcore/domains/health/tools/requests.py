"""Request models for the wellness tools: JSON reading payloads -> HealthReadings."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, List

from pydantic import BaseModel, Field, ValidationError, field_validator

from vitalcore.domains.health.domain_logic.models import (
    BloodPressureReading,
    GlucoseReading,
    HealthReadings,
    HeightReading,
    PulseReading,
    SleepReading,
    WeightReading,
)


class ReadingPayloadError(ValueError):
    """Raised when a readings payload fails validation."""


class _TimestampedEntry(BaseModel):
    timestamp: datetime

    @field_validator("timestamp")
    @classmethod
    def _assume_utc(cls, value: datetime) -> datetime:
        # Naive timestamps are taken as UTC so they compare with aware ones
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value


class BloodPressureEntry(_TimestampedEntry):
    systolic: int = Field(gt=0, lt=400)
    diastolic: int = Field(gt=0, lt=300)


class PulseEntry(_TimestampedEntry):
    bpm: int = Field(gt=0, lt=400)


class GlucoseEntry(_TimestampedEntry):
    mg_dl: float = Field(gt=0)


class SleepEntry(_TimestampedEntry):
    hours: float = Field(ge=0, le=24)


class WeightEntry(_TimestampedEntry):
    kg: float = Field(gt=0)


class HeightEntry(_TimestampedEntry):
    cm: float = Field(ge=0)


class ReadingsRequest(BaseModel):
    blood_pressure: List[BloodPressureEntry] = Field(default_factory=list)
    pulse: List[PulseEntry] = Field(default_factory=list)
    glucose: List[GlucoseEntry] = Field(default_factory=list)
    sleep: List[SleepEntry] = Field(default_factory=list)
    weight: List[WeightEntry] = Field(default_factory=list)
    height: List[HeightEntry] = Field(default_factory=list)

    model_config = {"extra": "forbid"}

    def to_readings(self) -> HealthReadings:
        """Convert to domain readings, each collection in time order."""
        def ordered(entries):
            return sorted(entries, key=lambda e: e.timestamp)

        return HealthReadings(
            blood_pressure=[
                BloodPressureReading(e.systolic, e.diastolic, e.timestamp)
                for e in ordered(self.blood_pressure)
            ],
            pulse=[PulseReading(e.bpm, e.timestamp) for e in ordered(self.pulse)],
            glucose=[GlucoseReading(e.mg_dl, e.timestamp) for e in ordered(self.glucose)],
            sleep=[SleepReading(e.hours, e.timestamp) for e in ordered(self.sleep)],
            weight=[WeightReading(e.kg, e.timestamp) for e in ordered(self.weight)],
            height=[HeightReading(e.cm, e.timestamp) for e in ordered(self.height)],
        )


def parse_readings(payload: dict[str, Any] | None) -> HealthReadings:
    """Validate a readings payload.

    Raises:
        ReadingPayloadError: With a readable summary of every invalid field.
    """
    try:
        request = ReadingsRequest.model_validate(payload or {})
    except ValidationError as exc:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in exc.errors()
        )
        raise ReadingPayloadError(f"Invalid readings payload: {problems}") from exc
    return request.to_readings()
