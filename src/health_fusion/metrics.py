"""Prometheus metrics definitions and the buffered telemetry sink."""

import asyncio
import resource
import sys
import threading
import time
from collections import defaultdict
from dataclasses import dataclass, field
from enum import Enum

import structlog
from prometheus_client import Counter, Gauge, Histogram, Info

from .config import MetricsSettings
from .types import Metadata

logger = structlog.get_logger(__name__)

# -- Service info --
SERVICE_INFO = Info("health_fusion", "Health fusion service info")

# -- Pipeline --
RECORDS_EMITTED = Counter(
    "health_fusion_records_emitted_total",
    "Total fused records emitted by the pipeline",
)
PIPELINE_ERRORS = Counter(
    "health_fusion_pipeline_errors_total",
    "Total pipeline errors",
    ["error_type"],
)
SOURCE_FAILURES = Counter(
    "health_fusion_source_failures_total",
    "Total source fetch failures that skipped a cycle",
    ["source"],
)
PROCESSING_DURATION = Histogram(
    "health_fusion_processing_duration_seconds",
    "Time spent transforming and scoring one cycle",
    buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0),
)

# -- Usage --
USAGE_OPERATIONS = Counter(
    "health_fusion_usage_operations_total",
    "Total tracked usage operations",
    ["category", "status"],
)
USAGE_SYNC = Counter(
    "health_fusion_usage_sync_total",
    "Total remote usage sync attempts",
    ["status"],
)

# -- AI --
AI_REQUESTS = Counter(
    "health_fusion_ai_requests_total",
    "Total insight requests",
    ["operation", "provider", "source", "status"],
)
AI_LATENCY = Histogram(
    "health_fusion_ai_latency_seconds",
    "AI provider request latency",
    ["provider"],
    buckets=(0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0),
)

# -- Circuit breakers --
CIRCUIT_BREAKER_STATE = Gauge(
    "health_fusion_circuit_breaker_state",
    "Circuit breaker state (0=closed, 1=open, 2=half_open)",
    ["name"],
)
CIRCUIT_BREAKER_TRIPS = Gauge(
    "health_fusion_circuit_breaker_trips_total",
    "Total circuit breaker trips",
    ["name"],
)

# -- Telemetry sink --
SINK_EVENTS = Counter(
    "health_fusion_sink_events_total",
    "Total events recorded on the telemetry sink",
    ["name", "type"],
)
SINK_GAUGE = Gauge(
    "health_fusion_sink_gauge",
    "Last gauge value recorded on the telemetry sink",
    ["name"],
)
SINK_OBSERVATIONS = Histogram(
    "health_fusion_sink_observations",
    "Histogram values recorded on the telemetry sink",
    ["name"],
)
SINK_FLUSHES = Counter(
    "health_fusion_sink_flushes_total",
    "Total telemetry buffer flushes",
)
MEMORY_USAGE_MB = Gauge(
    "health_fusion_memory_usage_mb",
    "Resident memory of the process in MB",
)


class MetricName(str, Enum):
    """Names of events recorded on the telemetry sink."""

    HEALTH_DATA_PROCESSED = "health_data_processed"
    HEALTH_DATA_ERROR = "health_data_error"
    DATA_POINTS_RENDERED = "data_points_rendered"
    LOCATION_UPDATED = "location_updated"
    ENVIRONMENTAL_DATA_FETCHED = "environmental_data_fetched"
    PERFORMANCE_METRIC = "performance_metric"
    MEMORY_USAGE = "memory_usage"
    NETWORK_LATENCY = "network_latency"


class MetricType(str, Enum):
    """How a recorded value should be interpreted."""

    COUNT = "count"
    GAUGE = "gauge"
    HISTOGRAM = "histogram"
    SUMMARY = "summary"


@dataclass(frozen=True)
class Metric:
    """A single buffered telemetry event."""

    name: MetricName
    type: MetricType
    value: float
    metadata: Metadata = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)


def resident_memory_mb() -> float:
    """Peak resident set size of this process in MB."""
    usage = resource.getrusage(resource.RUSAGE_SELF).ru_maxrss
    # macOS reports bytes, Linux reports kilobytes
    if sys.platform == "darwin":
        return usage / 1024.0 / 1024.0
    return usage / 1024.0


class MetricsSink:
    """Buffers telemetry events, mirrors them into Prometheus, flushes periodically.

    Events are appended under a lock so producers on any thread or task
    can record. Once the buffer reaches ``buffer_limit`` it is flushed
    inline; otherwise the periodic flush task drains it.
    """

    def __init__(self, settings: MetricsSettings | None = None) -> None:
        self._settings = settings or MetricsSettings()
        self._buffer: list[Metric] = []
        self._lock = threading.Lock()
        self._flush_task: asyncio.Task | None = None
        self._memory_task: asyncio.Task | None = None
        self._total_recorded = 0
        self._total_flushed = 0

    def record(
        self,
        name: MetricName,
        value: float,
        type: MetricType = MetricType.COUNT,
        metadata: Metadata | None = None,
    ) -> None:
        """Record one telemetry event."""
        metric = Metric(name=name, type=type, value=float(value), metadata=dict(metadata or {}))
        self._export(metric)

        with self._lock:
            self._buffer.append(metric)
            self._total_recorded += 1
            should_flush = len(self._buffer) >= self._settings.buffer_limit

        if should_flush:
            self.flush()

    def record_performance_metric(
        self, name: str, value: float, context: Metadata | None = None
    ) -> None:
        """Record a named performance gauge."""
        metadata = dict(context or {})
        metadata["performance_context"] = name
        self.record(MetricName.PERFORMANCE_METRIC, value, MetricType.GAUGE, metadata)

    def record_network_latency(self, duration: float, endpoint: str) -> None:
        """Record request latency in seconds for an endpoint."""
        self.record(
            MetricName.NETWORK_LATENCY,
            duration,
            MetricType.HISTOGRAM,
            {"endpoint": endpoint, "unit": "seconds"},
        )

    def record_data_points(self, count: int, context: str) -> None:
        """Record how many data points a consumer rendered."""
        self.record(
            MetricName.DATA_POINTS_RENDERED,
            count,
            MetricType.GAUGE,
            {"context": context},
        )

    def record_memory_usage(self) -> float:
        """Sample resident memory and record it as a gauge."""
        used_mb = resident_memory_mb()
        MEMORY_USAGE_MB.set(used_mb)
        self.record(MetricName.MEMORY_USAGE, used_mb, MetricType.GAUGE, {"unit": "MB"})
        return used_mb

    def flush(self) -> list[Metric]:
        """Drain the buffer and log one aggregate per metric name.

        Returns:
            Aggregated metrics: average value per name, metadata merged with
            later entries winning, type taken from the first entry.
        """
        with self._lock:
            if not self._buffer:
                return []
            metrics = self._buffer
            self._buffer = []
            self._total_flushed += len(metrics)

        aggregated = self.aggregate(metrics)
        for metric in aggregated:
            logger.info(
                "metric_flushed",
                metric=metric.name.value,
                type=metric.type.value,
                value=round(metric.value, 4),
                metadata=metric.metadata,
            )
        SINK_FLUSHES.inc()
        return aggregated

    @staticmethod
    def aggregate(metrics: list[Metric]) -> list[Metric]:
        """Group metrics by name into averaged aggregates."""
        grouped: dict[MetricName, list[Metric]] = defaultdict(list)
        for metric in metrics:
            grouped[metric.name].append(metric)

        aggregated: list[Metric] = []
        for name, group in grouped.items():
            combined: Metadata = {}
            for metric in group:
                combined.update(metric.metadata)
            aggregated.append(
                Metric(
                    name=name,
                    type=group[0].type,
                    value=sum(m.value for m in group) / len(group),
                    metadata=combined,
                )
            )
        return aggregated

    def _export(self, metric: Metric) -> None:
        """Mirror an event into the Prometheus registry."""
        name = metric.name.value
        SINK_EVENTS.labels(name=name, type=metric.type.value).inc()
        if metric.type == MetricType.GAUGE:
            SINK_GAUGE.labels(name=name).set(metric.value)
        elif metric.type in (MetricType.HISTOGRAM, MetricType.SUMMARY):
            SINK_OBSERVATIONS.labels(name=name).observe(metric.value)

    async def start(self) -> None:
        """Start periodic flush and memory sampling tasks."""
        if self._flush_task is None:
            self._flush_task = asyncio.create_task(self._periodic_flush())
        if self._memory_task is None:
            self._memory_task = asyncio.create_task(self._memory_monitor())
        logger.info(
            "metrics_sink_started",
            flush_interval=self._settings.flush_interval_seconds,
            memory_interval=self._settings.memory_sample_interval_seconds,
        )

    async def stop(self) -> None:
        """Stop background tasks and flush whatever is buffered."""
        for task in (self._flush_task, self._memory_task):
            if task:
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._flush_task = None
        self._memory_task = None
        self.flush()
        logger.info("metrics_sink_stopped", **self.get_stats())

    async def _periodic_flush(self) -> None:
        while True:
            try:
                await asyncio.sleep(self._settings.flush_interval_seconds)
                self.flush()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("metrics_flush_error", error=str(e))

    async def _memory_monitor(self) -> None:
        while True:
            try:
                await asyncio.sleep(self._settings.memory_sample_interval_seconds)
                self.record_memory_usage()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("memory_sample_error", error=str(e))

    def get_stats(self) -> dict[str, int]:
        """Get sink statistics."""
        with self._lock:
            buffered = len(self._buffer)
        return {
            "buffered": buffered,
            "total_recorded": self._total_recorded,
            "total_flushed": self._total_flushed,
        }
