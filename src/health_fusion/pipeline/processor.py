"""Transform, combine, score and validate one cycle of source readings."""

import math
import time
from dataclasses import dataclass, field
from datetime import UTC, datetime

import structlog

from ..metrics import PROCESSING_DURATION, MetricName, MetricsSink
from ..models import (
    DEFAULT_BLOOD_PRESSURE,
    BloodPressure,
    EnvironmentalReading,
    ExerciseSummary,
    GeoLocation,
    HealthEnvironmentRecord,
    HealthReadings,
    HealthSample,
    HealthSampleKind,
    LocationFix,
    SleepSummary,
)
from .errors import ProcessingFailedError, ValidationFailedError

logger = structlog.get_logger(__name__)

# Exercise intensity: minutes per unit of intensity, capped at 10
_INTENSITY_MINUTES_PER_UNIT = 6.0


@dataclass
class HealthMetrics:
    """Health readings reduced to one value per metric."""

    steps: int = 0
    heart_rate: float = 0.0
    blood_pressure: BloodPressure = DEFAULT_BLOOD_PRESSURE
    temperature: float = 0.0
    respiratory_rate: float = 0.0
    oxygen_saturation: float = 0.0
    sleep: SleepSummary = field(default_factory=SleepSummary)
    exercise: ExerciseSummary = field(default_factory=ExerciseSummary)


@dataclass
class EnvironmentalMetrics:
    air_quality: float = 0.0
    humidity: float = 0.0
    temperature: float = 0.0
    uv_index: float = 0.0
    noise_level: float = 0.0
    description: str = ""


def _latest(samples: list[HealthSample]) -> HealthSample | None:
    if not samples:
        return None
    return max(samples, key=lambda s: s.start)


def _band_penalty(value: float, low: float, high: float) -> float:
    """Distance of value outside [low, high]; 0 inside the band."""
    return max(0.0, low - value, value - high)


def _weighted(components: list[tuple[float, float]]) -> float:
    """Weighted mean of (score, weight) pairs; 0 if nothing contributes."""
    total_weight = sum(w for _, w in components)
    if total_weight == 0:
        return 0.0
    return sum(s * w for s, w in components) / total_weight


def _ratio(value: float, full: float) -> float:
    return min(max(value / full, 0.0), 1.0)


def cardio_score(heart_rate: float, blood_pressure: BloodPressure) -> float:
    """100 inside resting bands, minus a linear penalty per unit outside.

    Heart rate band is 60-100 bpm (2.5 points per bpm), systolic 90-120
    and diastolic 60-80 mmHg (2 points per mmHg). A missing heart rate
    leaves only blood pressure to score.
    """
    components: list[tuple[float, float]] = []
    if heart_rate > 0:
        components.append((100 - 2.5 * _band_penalty(heart_rate, 60, 100), 0.6))
    bp_penalty = _band_penalty(blood_pressure.systolic, 90, 120) + _band_penalty(
        blood_pressure.diastolic, 60, 80
    )
    components.append((100 - 2.0 * bp_penalty, 0.4))
    return _weighted(components)


def respiratory_score(respiratory_rate: float, oxygen_saturation: float) -> float:
    """Respiratory rate band 12-20 (8 points per breath) and SpO2 floor 95% (10 points per %)."""
    components: list[tuple[float, float]] = []
    if respiratory_rate > 0:
        components.append((100 - 8.0 * _band_penalty(respiratory_rate, 12, 20), 0.5))
    if oxygen_saturation > 0:
        components.append((100 - 10.0 * _band_penalty(oxygen_saturation, 95, 100), 0.5))
    return _weighted(components)


def activity_score(steps: int, exercise: ExerciseSummary) -> float:
    """70 points for reaching 10,000 steps plus 30 for 30 exercise minutes."""
    return 70 * _ratio(steps, 10_000) + 30 * _ratio(exercise.duration_minutes, 30)


def environmental_impact_score(air_quality: float, noise_level: float, uv_index: float) -> float:
    """Higher means a more harmful environment.

    AQI saturates at 300 (weight 0.5), noise over a 40-90 dB range (0.3),
    UV at 11 (0.2).
    """
    return (
        50 * _ratio(air_quality, 300)
        + 30 * _ratio(noise_level - 40, 50)
        + 20 * _ratio(uv_index, 11)
    )


class DataProcessor:
    """Turns raw readings into a scored, clamped record."""

    def __init__(self, metrics: MetricsSink | None = None) -> None:
        self._metrics = metrics

    def process(
        self,
        readings: HealthReadings,
        environment: EnvironmentalReading,
        location: LocationFix,
        timestamp: datetime | None = None,
    ) -> HealthEnvironmentRecord:
        """Run transform, combine and score for one cycle.

        Raises:
            ProcessingFailedError: If any step fails. The failure is also
                recorded on the metrics sink.
        """
        started = time.perf_counter()
        try:
            health = self.transform_health(readings)
            env = self.transform_environment(environment)
            record = self.combine(health, env, location, readings.point_count, timestamp)
        except Exception as e:
            if self._metrics:
                self._metrics.record(MetricName.HEALTH_DATA_ERROR, 1, metadata={"error": str(e)})
            logger.error("processing_failed", error=str(e))
            raise ProcessingFailedError(str(e)) from e

        duration = time.perf_counter() - started
        PROCESSING_DURATION.observe(duration)
        if self._metrics:
            self._metrics.record_network_latency(duration, "data_processing")
        return record

    def transform_health(self, readings: HealthReadings) -> HealthMetrics:
        steps = int(sum(s.value for s in readings.of(HealthSampleKind.STEP_COUNT)))

        heart = readings.of(HealthSampleKind.HEART_RATE)
        heart_rate = sum(s.value for s in heart) / len(heart) if heart else 0.0

        systolic = _latest(readings.of(HealthSampleKind.BLOOD_PRESSURE_SYSTOLIC))
        diastolic = _latest(readings.of(HealthSampleKind.BLOOD_PRESSURE_DIASTOLIC))
        if systolic and diastolic:
            blood_pressure = BloodPressure(systolic=systolic.value, diastolic=diastolic.value)
        else:
            blood_pressure = DEFAULT_BLOOD_PRESSURE

        temperature = _latest(readings.of(HealthSampleKind.BODY_TEMPERATURE))
        respiratory = _latest(readings.of(HealthSampleKind.RESPIRATORY_RATE))
        oxygen = _latest(readings.of(HealthSampleKind.OXYGEN_SATURATION))

        return HealthMetrics(
            steps=steps,
            heart_rate=heart_rate,
            blood_pressure=blood_pressure,
            temperature=self._celsius(temperature) if temperature else 0.0,
            respiratory_rate=respiratory.value if respiratory else 0.0,
            oxygen_saturation=self._percent(oxygen.value) if oxygen else 0.0,
            sleep=self._summarize_sleep(readings.of(HealthSampleKind.SLEEP_ANALYSIS)),
            exercise=self._summarize_workouts(readings.of(HealthSampleKind.WORKOUT)),
        )

    def transform_environment(self, reading: EnvironmentalReading) -> EnvironmentalMetrics:
        return EnvironmentalMetrics(
            air_quality=reading.air_quality,
            humidity=reading.humidity,
            temperature=reading.temperature,
            uv_index=reading.uv_index,
            noise_level=reading.noise_level,
            description=reading.description,
        )

    def combine(
        self,
        health: HealthMetrics,
        env: EnvironmentalMetrics,
        location: LocationFix,
        point_count: int = 0,
        timestamp: datetime | None = None,
    ) -> HealthEnvironmentRecord:
        """Merge both metric sets and attach scores."""
        return HealthEnvironmentRecord(
            timestamp=timestamp or datetime.now(UTC),
            steps=health.steps,
            heart_rate=health.heart_rate,
            blood_pressure=health.blood_pressure,
            body_temperature=health.temperature,
            respiratory_rate=health.respiratory_rate,
            oxygen_saturation=health.oxygen_saturation,
            sleep=health.sleep,
            exercise=health.exercise,
            air_quality_index=env.air_quality,
            humidity=env.humidity,
            uv_index=env.uv_index,
            noise_level=env.noise_level,
            location=GeoLocation(
                latitude=location.latitude,
                longitude=location.longitude,
                accuracy=location.accuracy,
                timestamp=location.timestamp.isoformat(),
            ),
            cardio_health_score=cardio_score(health.heart_rate, health.blood_pressure),
            respiratory_health_score=respiratory_score(
                health.respiratory_rate, health.oxygen_saturation
            ),
            physical_activity_score=activity_score(health.steps, health.exercise),
            environmental_impact_score=environmental_impact_score(
                env.air_quality, env.noise_level, env.uv_index
            ),
            point_count=point_count,
        )

    @staticmethod
    def validate(record: HealthEnvironmentRecord) -> HealthEnvironmentRecord:
        """Check mandatory fields are present and finite.

        Raises:
            ValidationFailedError: Naming the first offending field.
        """
        if record.timestamp is None:
            raise ValidationFailedError("timestamp is missing")
        if not -90 <= record.location.latitude <= 90:
            raise ValidationFailedError(f"latitude out of range: {record.location.latitude}")
        if not -180 <= record.location.longitude <= 180:
            raise ValidationFailedError(f"longitude out of range: {record.location.longitude}")
        if record.steps < 0:
            raise ValidationFailedError(f"negative step count: {record.steps}")
        for name in ("heart_rate", "respiratory_rate", "oxygen_saturation", "air_quality_index"):
            value = getattr(record, name)
            if not math.isfinite(value):
                raise ValidationFailedError(f"{name} is not finite")
        return record

    @staticmethod
    def _celsius(sample: HealthSample) -> float:
        if sample.unit and sample.unit.lower() in ("degf", "f", "fahrenheit"):
            return (sample.value - 32) * 5 / 9
        return sample.value

    @staticmethod
    def _percent(value: float) -> float:
        return value * 100 if value <= 1 else value

    @staticmethod
    def _summarize_sleep(samples: list[HealthSample]) -> SleepSummary:
        in_bed = sum(s.duration_minutes for s in samples)
        asleep = sum(s.duration_minutes for s in samples if s.value >= 1)
        if in_bed == 0:
            return SleepSummary()
        return SleepSummary(duration_hours=asleep / 60.0, quality=asleep / in_bed * 100)

    @staticmethod
    def _summarize_workouts(samples: list[HealthSample]) -> ExerciseSummary:
        if not samples:
            return ExerciseSummary()
        minutes = sum(s.duration_minutes for s in samples)
        longest = max(samples, key=lambda s: s.duration_minutes)
        return ExerciseSummary(
            duration_minutes=minutes,
            intensity=min(minutes / _INTENSITY_MINUTES_PER_UNIT, 10.0),
            type=longest.label or "workout",
        )
