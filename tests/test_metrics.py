"""Tests for the buffered telemetry sink."""

from health_fusion.config import MetricsSettings
from health_fusion.metrics import Metric, MetricName, MetricsSink, MetricType


def test_flush_aggregates_by_name():
    """Flushing averages values per name and merges metadata, later entries winning."""
    sink = MetricsSink(MetricsSettings(buffer_limit=100))
    sink.record(MetricName.HEALTH_DATA_PROCESSED, 10, metadata={"record_id": "a"})
    sink.record(MetricName.HEALTH_DATA_PROCESSED, 20, metadata={"record_id": "b"})
    sink.record_network_latency(0.5, "environment")

    aggregated = {m.name: m for m in sink.flush()}

    processed = aggregated[MetricName.HEALTH_DATA_PROCESSED]
    assert processed.value == 15
    assert processed.metadata == {"record_id": "b"}
    assert processed.type == MetricType.COUNT

    latency = aggregated[MetricName.NETWORK_LATENCY]
    assert latency.type == MetricType.HISTOGRAM
    assert latency.metadata == {"endpoint": "environment", "unit": "seconds"}

    assert sink.flush() == []


def test_buffer_limit_triggers_inline_flush():
    sink = MetricsSink(MetricsSettings(buffer_limit=3))

    for _ in range(3):
        sink.record(MetricName.LOCATION_UPDATED, 1)

    stats = sink.get_stats()
    assert stats["buffered"] == 0
    assert stats["total_recorded"] == 3
    assert stats["total_flushed"] == 3


def test_aggregate_keeps_first_type():
    metrics = [
        Metric(name=MetricName.PERFORMANCE_METRIC, type=MetricType.GAUGE, value=1.0),
        Metric(name=MetricName.PERFORMANCE_METRIC, type=MetricType.SUMMARY, value=3.0),
    ]

    (aggregated,) = MetricsSink.aggregate(metrics)

    assert aggregated.type == MetricType.GAUGE
    assert aggregated.value == 2.0


def test_helpers_tag_context():
    sink = MetricsSink()
    sink.record_performance_metric("render_ms", 12.5, {"view": "chart"})
    sink.record_data_points(42, "personal_health")
    used = sink.record_memory_usage()

    aggregated = {m.name: m for m in sink.flush()}

    assert aggregated[MetricName.PERFORMANCE_METRIC].metadata == {
        "view": "chart",
        "performance_context": "render_ms",
    }
    assert aggregated[MetricName.DATA_POINTS_RENDERED].value == 42
    assert aggregated[MetricName.MEMORY_USAGE].value == used
    assert used > 0


async def test_start_and_stop_drain_buffer():
    sink = MetricsSink(MetricsSettings(flush_interval_seconds=60))
    await sink.start()
    sink.record(MetricName.ENVIRONMENTAL_DATA_FETCHED, 1)

    await sink.stop()

    assert sink.get_stats()["buffered"] == 0
