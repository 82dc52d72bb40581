"""Pytest configuration and fixtures."""

from datetime import UTC, datetime, timedelta
from pathlib import Path
import sys

import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_PATH = PROJECT_ROOT / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))

from health_fusion.config import Settings  # noqa: E402
from health_fusion.models import (  # noqa: E402
    BloodPressure,
    ExerciseSummary,
    GeoLocation,
    HealthEnvironmentRecord,
    SleepSummary,
)

BASE_TIME = datetime(2024, 1, 15, 12, 0, tzinfo=UTC)


def build_record(**overrides) -> HealthEnvironmentRecord:
    """A healthy, moderately active record; override any field."""
    fields = {
        "timestamp": BASE_TIME,
        "steps": 8000,
        "heart_rate": 72.0,
        "blood_pressure": BloodPressure(systolic=118.0, diastolic=76.0),
        "body_temperature": 36.7,
        "respiratory_rate": 15.0,
        "oxygen_saturation": 98.0,
        "sleep": SleepSummary(duration_hours=7.5, quality=90.0),
        "exercise": ExerciseSummary(duration_minutes=35.0, intensity=5.8, type="running"),
        "air_quality_index": 42.0,
        "humidity": 55.0,
        "uv_index": 3.0,
        "noise_level": 45.0,
        "location": GeoLocation(
            latitude=52.52, longitude=13.405, accuracy=5.0, timestamp=BASE_TIME.isoformat()
        ),
        "cardio_health_score": 100.0,
        "respiratory_health_score": 100.0,
        "physical_activity_score": 91.0,
        "environmental_impact_score": 14.0,
    }
    fields.update(overrides)
    return HealthEnvironmentRecord(**fields)


@pytest.fixture
def make_record():
    """Factory fixture for fused records."""
    return build_record


@pytest.fixture
def daily_records():
    """A week of records with steadily rising steps, one per day."""
    return [
        build_record(
            timestamp=BASE_TIME + timedelta(days=day),
            steps=5000 + day * 1000,
            physical_activity_score=40.0 + day * 5,
        )
        for day in range(7)
    ]


@pytest.fixture
def settings():
    """Default settings with AI disabled and nothing remote configured."""
    return Settings()


@pytest.fixture
def ai_settings():
    """Settings with AI and the OpenAI provider enabled."""
    base = Settings()
    return base.model_copy(
        update={
            "ai": base.ai.model_copy(update={"enabled": True, "timeout_seconds": 5.0}),
            "openai": base.openai.model_copy(update={"enabled": True}),
        }
    )


@pytest.fixture
def sample_export():
    """Raw samples as exported to a JSON file."""
    start = BASE_TIME - timedelta(hours=10)
    return {
        "samples": [
            {
                "kind": "step_count",
                "value": 4000,
                "start": (start + timedelta(hours=1)).isoformat(),
                "source": "iPhone",
            },
            {
                "kind": "step_count",
                "value": 6000,
                "start": (start + timedelta(hours=5)).isoformat(),
                "source": "iPhone",
            },
            {
                "kind": "heart_rate",
                "value": 70,
                "start": (start + timedelta(hours=2)).isoformat(),
                "unit": "count/min",
            },
            {
                "kind": "heart_rate",
                "value": 80,
                "start": (start + timedelta(hours=3)).isoformat(),
                "unit": "count/min",
            },
            {
                "kind": "blood_pressure_systolic",
                "value": 125,
                "start": (start + timedelta(hours=4)).isoformat(),
            },
            {
                "kind": "blood_pressure_diastolic",
                "value": 82,
                "start": (start + timedelta(hours=4)).isoformat(),
            },
            {
                "kind": "oxygen_saturation",
                "value": 0.97,
                "start": (start + timedelta(hours=4)).isoformat(),
            },
            {
                "kind": "sleep_analysis",
                "value": 1,
                "start": start.isoformat(),
                "end": (start + timedelta(hours=6)).isoformat(),
            },
            {
                "kind": "sleep_analysis",
                "value": 0,
                "start": (start + timedelta(hours=6)).isoformat(),
                "end": (start + timedelta(hours=8)).isoformat(),
            },
            {
                "kind": "workout",
                "value": 320,
                "start": (start + timedelta(hours=7)).isoformat(),
                "end": (start + timedelta(hours=7, minutes=45)).isoformat(),
                "label": "running",
            },
        ]
    }
