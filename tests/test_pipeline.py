"""Tests for the fusion pipeline and its sources."""

import gc
import json
import math

import httpx
import pytest

from conftest import BASE_TIME
from health_fusion.config import EnvironmentSettings, PipelineSettings
from health_fusion.metrics import MetricName, MetricsSink
from health_fusion.models import EnvironmentalReading, HealthSample, HealthSampleKind
from health_fusion.pipeline import (
    DataSourceUnavailableError,
    HealthDataPipeline,
    HTTPEnvironmentalSource,
    InstanceDeallocatedError,
    JSONFileHealthSource,
    StaticLocationSource,
)
from health_fusion.pipeline.validation import SampleSchemaValidator


class FakeEnvironment:
    """Environmental source returning a fixed reading or failing."""

    def __init__(self, reading=None, error=None, fail_on_calls=()):
        self.reading = reading or EnvironmentalReading(
            air_quality=42, humidity=50, temperature=20, uv_index=2, noise_level=45
        )
        self.error = error
        self.fail_on_calls = set(fail_on_calls)
        self.calls = []

    async def fetch_environmental(self, latitude, longitude):
        self.calls.append((latitude, longitude))
        if self.error is not None or len(self.calls) in self.fail_on_calls:
            raise self.error or RuntimeError("sensor offline")
        return self.reading


@pytest.fixture
def export_file(tmp_path, sample_export):
    path = tmp_path / "export.json"
    path.write_text(json.dumps(sample_export), encoding="utf-8")
    return path


def _pipeline(export_file, environment, location=None, metrics=None):
    return HealthDataPipeline(
        JSONFileHealthSource(export_file),
        environment,
        location or StaticLocationSource(52.52, 13.405, accuracy=10.0),
        metrics=metrics,
        settings=PipelineSettings(cycle_interval_seconds=0),
        clock=lambda: BASE_TIME,
    )


async def test_cycle_joins_all_sources(export_file):
    environment = FakeEnvironment()
    metrics = MetricsSink()
    pipeline = _pipeline(export_file, environment, metrics=metrics)

    record = await pipeline.collect_once()

    assert record is not None
    assert record.timestamp == BASE_TIME
    assert record.steps == 10000
    assert record.heart_rate == pytest.approx(75.0)
    assert record.oxygen_saturation == pytest.approx(97.0)
    assert record.sleep.duration_hours == pytest.approx(6.0)
    assert record.exercise.type == "running"
    assert record.air_quality_index == 42
    assert record.location.latitude == 52.52
    assert record.point_count == 10
    assert environment.calls == [(52.52, 13.405)]
    assert pipeline.records_emitted == 1

    names = {m.name for m in metrics.flush()}
    assert MetricName.HEALTH_DATA_PROCESSED in names
    assert MetricName.LOCATION_UPDATED in names
    assert MetricName.ENVIRONMENTAL_DATA_FETCHED in names


async def test_environmental_failure_yields_no_record(export_file):
    """No partial record is produced when one source fails."""
    metrics = MetricsSink()
    pipeline = _pipeline(export_file, FakeEnvironment(error=RuntimeError("down")), metrics=metrics)

    assert await pipeline.collect_once() is None
    assert pipeline.records_emitted == 0

    errors = [m for m in metrics.flush() if m.name == MetricName.HEALTH_DATA_ERROR]
    assert errors[0].metadata["source"] == "environmental"


async def test_location_denied_skips_environment(export_file):
    environment = FakeEnvironment()
    location = StaticLocationSource(52.52, 13.405, denied=True)
    pipeline = _pipeline(export_file, environment, location=location)

    assert await pipeline.collect_once() is None
    assert environment.calls == []


async def test_unreadable_health_file_skips_cycle(tmp_path):
    pipeline = _pipeline(tmp_path / "missing.json", FakeEnvironment())

    assert await pipeline.collect_once() is None


async def test_stream_skips_failed_cycles(export_file):
    """A failed cycle produces nothing but the stream carries on."""
    environment = FakeEnvironment(fail_on_calls={2})
    pipeline = _pipeline(export_file, environment)

    records = [record async for record in pipeline.collect(max_cycles=3, interval=0)]

    assert len(records) == 2
    assert len(environment.calls) == 3
    assert len({r.id for r in records}) == 2


async def test_each_collect_returns_fresh_stream(export_file):
    pipeline = _pipeline(export_file, FakeEnvironment())

    first = [r async for r in pipeline.collect(max_cycles=1, interval=0)]
    second = [r async for r in pipeline.collect(max_cycles=1, interval=0)]

    assert len(first) == 1
    assert len(second) == 1
    assert pipeline.records_emitted == 2


async def test_released_pipeline_ends_stream(export_file):
    pipeline = _pipeline(export_file, FakeEnvironment())
    stream = pipeline.collect(max_cycles=5, interval=0)
    assert await stream.__anext__() is not None

    del pipeline
    gc.collect()

    with pytest.raises(InstanceDeallocatedError):
        await stream.__anext__()
    with pytest.raises(StopAsyncIteration):
        await stream.__anext__()


async def test_json_source_skips_bad_entries(tmp_path):
    path = tmp_path / "export.json"
    path.write_text(
        json.dumps(
            [
                {"kind": "step_count", "value": 100, "start": BASE_TIME.isoformat()},
                {"kind": "not_a_kind", "value": 1, "start": BASE_TIME.isoformat()},
                {"kind": "heart_rate", "start": BASE_TIME.isoformat()},
            ]
        ),
        encoding="utf-8",
    )
    source = JSONFileHealthSource(path, respect_window=False)

    steps = await source.fetch_samples(HealthSampleKind.STEP_COUNT, BASE_TIME, BASE_TIME)
    heart = await source.fetch_samples(HealthSampleKind.HEART_RATE, BASE_TIME, BASE_TIME)

    assert [s.value for s in steps] == [100]
    assert heart == []


async def test_json_source_missing_file(tmp_path):
    source = JSONFileHealthSource(tmp_path / "nope.json")

    with pytest.raises(DataSourceUnavailableError, match="health source unavailable"):
        await source.fetch_samples(HealthSampleKind.STEP_COUNT, BASE_TIME, BASE_TIME)


def test_validator_drops_non_finite_and_inverted_samples():
    validator = SampleSchemaValidator()
    good = HealthSample(kind=HealthSampleKind.HEART_RATE, value=70, start=BASE_TIME)
    infinite = HealthSample(kind=HealthSampleKind.HEART_RATE, value=math.inf, start=BASE_TIME)
    inverted = HealthSample(
        kind=HealthSampleKind.SLEEP_ANALYSIS,
        value=1,
        start=BASE_TIME,
        end=BASE_TIME.replace(hour=1),
    )

    valid, failures = validator.validate([good, infinite, inverted])

    assert valid == [good]
    assert len(failures) == 2
    assert failures[1].error == "sample ends before it starts"


async def test_http_environmental_source_parses_reading():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(
            200,
            json={
                "air_quality": 87,
                "humidity": 61,
                "temperature": 18.5,
                "uv_index": 4,
                "noise_level": 58,
                "description": "Partly cloudy",
            },
        )

    settings = EnvironmentSettings(base_url="http://env.test/environment", api_key="secret")
    source = HTTPEnvironmentalSource(
        settings, client=httpx.AsyncClient(transport=httpx.MockTransport(handler))
    )

    reading = await source.fetch_environmental(52.52, 13.405)
    await source.close()

    assert reading.air_quality == 87
    assert reading.description == "Partly cloudy"
    assert seen[0].url.params["lat"] == "52.52"
    assert seen[0].url.params["lon"] == "13.405"
    assert seen[0].headers["X-API-Key"] == "secret"


async def test_http_environmental_source_retries_transport_errors():
    attempts = []

    def handler(request: httpx.Request) -> httpx.Response:
        attempts.append(request)
        if len(attempts) == 1:
            raise httpx.ConnectError("refused", request=request)
        return httpx.Response(200, json={"air_quality": 30})

    settings = EnvironmentSettings(
        base_url="http://env.test/environment", max_retries=2, retry_delay_seconds=0.01
    )
    source = HTTPEnvironmentalSource(
        settings, client=httpx.AsyncClient(transport=httpx.MockTransport(handler))
    )

    reading = await source.fetch_environmental(0.0, 0.0)

    assert reading.air_quality == 30
    assert len(attempts) == 2


async def test_http_environmental_source_rejects_error_status():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503, json={"error": "maintenance"})

    settings = EnvironmentSettings(base_url="http://env.test/environment", max_retries=3)
    source = HTTPEnvironmentalSource(
        settings, client=httpx.AsyncClient(transport=httpx.MockTransport(handler))
    )

    with pytest.raises(DataSourceUnavailableError, match="environmental"):
        await source.fetch_environmental(0.0, 0.0)
