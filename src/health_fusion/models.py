"""Core data model: raw source readings and the fused health/environment record."""

import math
import uuid
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator


class HealthSampleKind(str, Enum):
    """Metric kinds queried from the health data store."""

    STEP_COUNT = "step_count"
    HEART_RATE = "heart_rate"
    BLOOD_PRESSURE_SYSTOLIC = "blood_pressure_systolic"
    BLOOD_PRESSURE_DIASTOLIC = "blood_pressure_diastolic"
    BODY_TEMPERATURE = "body_temperature"
    RESPIRATORY_RATE = "respiratory_rate"
    OXYGEN_SATURATION = "oxygen_saturation"
    SLEEP_ANALYSIS = "sleep_analysis"
    WORKOUT = "workout"


class HealthSample(BaseModel):
    """A single typed sample returned by the health data store.

    Sleep samples carry ``value`` 1.0 for asleep intervals and 0.0 for
    in-bed-awake intervals. Workout samples carry active energy in kcal
    and the workout type in ``label``.
    """

    kind: HealthSampleKind = Field(description="Metric kind")
    value: float = Field(description="Sample quantity")
    start: datetime = Field(description="Sample start time")
    end: datetime | None = Field(default=None, description="Sample end time")
    unit: str | None = Field(default=None, description="Unit of measurement")
    source: str | None = Field(default=None, description="Device or app that recorded it")
    label: str | None = Field(default=None, description="Free-form label, e.g. workout type")

    @field_validator("start", "end")
    @classmethod
    def assume_utc(cls, v: datetime | None) -> datetime | None:
        """Treat naive timestamps from exports as UTC."""
        if v is not None and v.tzinfo is None:
            return v.replace(tzinfo=UTC)
        return v

    @property
    def duration_minutes(self) -> float:
        if self.end is None:
            return 0.0
        return max((self.end - self.start).total_seconds() / 60.0, 0.0)


class EnvironmentalReading(BaseModel):
    """Environmental conditions at a coordinate."""

    air_quality: float = Field(description="Air quality index")
    humidity: float = Field(default=0.0, description="Relative humidity (%)")
    temperature: float = Field(default=0.0, description="Ambient temperature (C)")
    uv_index: float = Field(default=0.0, description="UV index")
    noise_level: float = Field(default=0.0, description="Ambient noise (dB)")
    description: str = Field(default="", description="Human readable conditions")


class LocationFix(BaseModel):
    """Most recent location fix from the location source."""

    latitude: float
    longitude: float
    accuracy: float = Field(default=0.0, description="Horizontal accuracy in meters")
    altitude: float | None = Field(default=None)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @field_validator("latitude")
    @classmethod
    def validate_latitude(cls, v: float) -> float:
        if not -90.0 <= v <= 90.0:
            raise ValueError(f"Latitude must be between -90 and 90, got {v}")
        return v

    @field_validator("longitude")
    @classmethod
    def validate_longitude(cls, v: float) -> float:
        if not -180.0 <= v <= 180.0:
            raise ValueError(f"Longitude must be between -180 and 180, got {v}")
        return v


@dataclass(frozen=True)
class HealthReadings:
    """Health store samples for one fusion cycle, grouped by kind."""

    start: datetime
    end: datetime
    samples: dict[HealthSampleKind, list[HealthSample]] = field(default_factory=dict)

    def of(self, kind: HealthSampleKind) -> list[HealthSample]:
        return self.samples.get(kind, [])

    @property
    def point_count(self) -> int:
        return sum(len(s) for s in self.samples.values())


@dataclass(frozen=True)
class BloodPressure:
    systolic: float
    diastolic: float


DEFAULT_BLOOD_PRESSURE = BloodPressure(systolic=120.0, diastolic=80.0)


@dataclass(frozen=True)
class SleepSummary:
    duration_hours: float = 0.0
    quality: float = 0.0


@dataclass(frozen=True)
class ExerciseSummary:
    duration_minutes: float = 0.0
    intensity: float = 0.0
    type: str = "none"


@dataclass(frozen=True)
class GeoLocation:
    latitude: float
    longitude: float
    accuracy: float
    timestamp: str


class PrivacyLevel(str, Enum):
    """How much individual detail may leave a component."""

    INDIVIDUAL = "individual"
    AGGREGATED = "aggregated"
    MINIMAL = "minimal"


class ActivityLevel(str, Enum):
    """Daily activity bucket derived from step count."""

    SEDENTARY = "Sedentary"
    LIGHTLY_ACTIVE = "Lightly Active"
    MODERATELY_ACTIVE = "Moderately Active"
    VERY_ACTIVE = "Very Active"


def activity_level_for_steps(steps: int) -> ActivityLevel:
    """Bucket a step count: <5000, 5000-7499, 7500-9999, 10000+."""
    if steps < 5000:
        return ActivityLevel.SEDENTARY
    if steps < 7500:
        return ActivityLevel.LIGHTLY_ACTIVE
    if steps < 10000:
        return ActivityLevel.MODERATELY_ACTIVE
    return ActivityLevel.VERY_ACTIVE


_AIR_QUALITY_BUCKETS: tuple[tuple[float, str], ...] = (
    (50, "Good"),
    (100, "Moderate"),
    (150, "Unhealthy for Sensitive Groups"),
    (200, "Unhealthy"),
    (300, "Very Unhealthy"),
)


def air_quality_description(aqi: float) -> str:
    """EPA-style description for an air quality index value."""
    if aqi >= 0:
        for upper, label in _AIR_QUALITY_BUCKETS:
            if aqi < upper:
                return label
    return "Hazardous"


def environmental_impact_description(impact: float) -> str:
    """Describe an environmental impact score on the 0-100 scale."""
    if 0 <= impact < 33:
        return "Low Impact"
    if 33 <= impact < 66:
        return "Medium Impact"
    return "High Impact"


def clamp_score(score: float) -> float:
    """Clamp a score to [0, 100]; NaN counts as 0."""
    if math.isnan(score):
        return 0.0
    return min(max(score, 0.0), 100.0)


@dataclass(frozen=True)
class HealthEnvironmentRecord:
    """One fused, scored snapshot of health and environment readings.

    Scores are clamped to [0, 100] on construction. Descriptions and the
    activity level are derived on access and never stored.
    """

    timestamp: datetime
    steps: int
    heart_rate: float
    blood_pressure: BloodPressure
    body_temperature: float
    respiratory_rate: float
    oxygen_saturation: float
    sleep: SleepSummary
    exercise: ExerciseSummary
    air_quality_index: float
    humidity: float
    uv_index: float
    noise_level: float
    location: GeoLocation
    cardio_health_score: float = 0.0
    respiratory_health_score: float = 0.0
    physical_activity_score: float = 0.0
    environmental_impact_score: float = 0.0
    point_count: int = 0
    id: str = field(default_factory=lambda: uuid.uuid4().hex)

    def __post_init__(self) -> None:
        for name in (
            "cardio_health_score",
            "respiratory_health_score",
            "physical_activity_score",
            "environmental_impact_score",
        ):
            object.__setattr__(self, name, clamp_score(getattr(self, name)))

    @property
    def activity_level(self) -> ActivityLevel:
        return activity_level_for_steps(self.steps)

    @property
    def air_quality_description(self) -> str:
        return air_quality_description(self.air_quality_index)

    @property
    def environmental_impact_description(self) -> str:
        return environmental_impact_description(self.environmental_impact_score)

    @property
    def scores(self) -> dict[str, float]:
        return {
            "cardio": self.cardio_health_score,
            "respiratory": self.respiratory_health_score,
            "activity": self.physical_activity_score,
            "environmental_impact": self.environmental_impact_score,
        }

    def to_dict(self) -> dict[str, Any]:
        """Serialize to plain JSON-compatible types."""
        data = asdict(self)
        data["timestamp"] = self.timestamp.isoformat()
        data["activity_level"] = self.activity_level.value
        data["air_quality_description"] = self.air_quality_description
        data["environmental_impact_description"] = self.environmental_impact_description
        return data

    def to_summary_text(self) -> str:
        """Format the record as plain text for AI prompts."""
        bp = self.blood_pressure
        lines = [
            "ACTIVITY:",
            f"  Steps: {self.steps:,} ({self.activity_level.value})",
            f"  Exercise: {self.exercise.duration_minutes:.0f} min ({self.exercise.type})",
            "\nHEART:",
            f"  Heart rate: {self.heart_rate:.0f} bpm",
            f"  Blood pressure: {bp.systolic:.0f}/{bp.diastolic:.0f} mmHg",
            "\nRESPIRATORY:",
            f"  Respiratory rate: {self.respiratory_rate:.1f} breaths/min",
            f"  Oxygen saturation: {self.oxygen_saturation:.1f}%",
            f"  Body temperature: {self.body_temperature:.1f} C",
            "\nSLEEP:",
            f"  Duration: {self.sleep.duration_hours:.1f} hours",
            f"  Quality: {self.sleep.quality:.0f}%",
            "\nENVIRONMENT:",
            f"  Air quality index: {self.air_quality_index:.0f} ({self.air_quality_description})",
            f"  Humidity: {self.humidity:.0f}%",
            f"  UV index: {self.uv_index:.1f}",
            f"  Noise: {self.noise_level:.0f} dB",
            "\nSCORES:",
        ]
        for name, value in self.scores.items():
            lines.append(f"  {name}: {value:.0f}/100")
        return "\n".join(lines)
