"""Fusion pipeline: concurrent source fetch, join, process and validate."""

import asyncio
import weakref
from collections.abc import Callable
from datetime import UTC, datetime, timedelta

import structlog
from opentelemetry import trace

from ..config import PipelineSettings
from ..metrics import (
    PIPELINE_ERRORS,
    RECORDS_EMITTED,
    SOURCE_FAILURES,
    MetricName,
    MetricsSink,
)
from ..models import EnvironmentalReading, HealthEnvironmentRecord, LocationFix
from .errors import (
    DataSourceUnavailableError,
    InstanceDeallocatedError,
    ProcessingFailedError,
    ValidationFailedError,
)
from .processor import DataProcessor
from .sources import (
    EnvironmentalDataSource,
    HealthDataSource,
    HealthStoreReader,
    LocationSource,
)
from .validation import SampleSchemaValidator

logger = structlog.get_logger(__name__)
tracer = trace.get_tracer(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class HealthDataPipeline:
    """Joins health, location and environmental sources into scored records.

    Each cycle fetches the health bundle while the location fix and the
    environmental reading that depends on it are fetched alongside. A
    cycle only yields a record when every source delivered.
    """

    def __init__(
        self,
        health_source: HealthDataSource,
        environmental_source: EnvironmentalDataSource,
        location_source: LocationSource,
        processor: DataProcessor | None = None,
        metrics: MetricsSink | None = None,
        settings: PipelineSettings | None = None,
        validator: SampleSchemaValidator | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._reader = HealthStoreReader(health_source, validator)
        self._environmental = environmental_source
        self._location = location_source
        self._metrics = metrics
        self._processor = processor or DataProcessor(metrics)
        self._settings = settings or PipelineSettings()
        self._clock = clock
        self._cycles_run = 0
        self._records_emitted = 0

    @property
    def records_emitted(self) -> int:
        return self._records_emitted

    def collect(
        self,
        max_cycles: int | None = None,
        interval: float | None = None,
    ) -> "CollectionStream":
        """Return a fresh lazy stream of records.

        Args:
            max_cycles: Stop after this many cycles. Defaults to the
                configured value; 0 or None means unbounded.
            interval: Seconds to wait between cycles.
        """
        if max_cycles is None:
            max_cycles = self._settings.max_cycles or None
        if interval is None:
            interval = self._settings.cycle_interval_seconds
        return CollectionStream(self, max_cycles=max_cycles, interval=interval)

    async def collect_once(self) -> HealthEnvironmentRecord | None:
        """Run exactly one cycle; None if a source failed or validation dropped it."""
        return await self._run_cycle()

    async def _run_cycle(self) -> HealthEnvironmentRecord | None:
        self._cycles_run += 1
        cycle = self._cycles_run
        with tracer.start_as_current_span("pipeline.cycle") as span:
            span.set_attribute("pipeline.cycle", cycle)

            end = self._clock()
            start = end - timedelta(hours=self._settings.lookback_hours)
            results = await asyncio.gather(
                self._reader.read(start, end),
                self._locate_environment(),
                return_exceptions=True,
            )

            failures = [r for r in results if isinstance(r, BaseException)]
            if failures:
                for failure in failures:
                    self._record_source_failure(cycle, failure)
                span.set_attribute("pipeline.skipped", True)
                return None

            readings, (location, environment) = results
            try:
                record = self._processor.process(readings, environment, location, end)
                self._processor.validate(record)
            except ValidationFailedError as e:
                PIPELINE_ERRORS.labels(error_type="validation").inc()
                logger.warning("record_dropped", cycle=cycle, reason=str(e))
                return None
            except ProcessingFailedError as e:
                PIPELINE_ERRORS.labels(error_type="processing").inc()
                logger.warning("cycle_processing_failed", cycle=cycle, error=str(e))
                return None

            span.set_attribute("pipeline.points", record.point_count)

        self._records_emitted += 1
        RECORDS_EMITTED.inc()
        if self._metrics:
            self._metrics.record(
                MetricName.HEALTH_DATA_PROCESSED,
                record.point_count,
                metadata={
                    "latitude": str(record.location.latitude),
                    "longitude": str(record.location.longitude),
                    "record_id": record.id,
                },
            )
        logger.info(
            "record_emitted",
            cycle=cycle,
            record_id=record.id,
            steps=record.steps,
            activity_level=record.activity_level.value,
            air_quality=record.air_quality_description,
        )
        return record

    async def _locate_environment(self) -> tuple[LocationFix, EnvironmentalReading]:
        try:
            fix = await self._location.latest_fix()
        except DataSourceUnavailableError:
            raise
        except Exception as e:
            raise DataSourceUnavailableError("location", str(e)) from e
        if self._metrics:
            self._metrics.record(
                MetricName.LOCATION_UPDATED,
                1,
                metadata={"accuracy": str(fix.accuracy)},
            )

        try:
            environment = await self._environmental.fetch_environmental(
                fix.latitude, fix.longitude
            )
        except DataSourceUnavailableError:
            raise
        except Exception as e:
            raise DataSourceUnavailableError("environmental", str(e)) from e
        if self._metrics:
            self._metrics.record(MetricName.ENVIRONMENTAL_DATA_FETCHED, 1)
        return fix, environment

    def _record_source_failure(self, cycle: int, failure: BaseException) -> None:
        if isinstance(failure, asyncio.CancelledError):
            raise failure
        source = failure.source if isinstance(failure, DataSourceUnavailableError) else "unknown"
        SOURCE_FAILURES.labels(source=source).inc()
        PIPELINE_ERRORS.labels(error_type="source_unavailable").inc()
        if self._metrics:
            self._metrics.record(
                MetricName.HEALTH_DATA_ERROR,
                1,
                metadata={"source": source, "error": str(failure)},
            )
        logger.warning("cycle_skipped", cycle=cycle, source=source, error=str(failure))


class CollectionStream:
    """Async iterator over pipeline records.

    Holds only a weak reference to its pipeline. Requesting an element
    after the pipeline was released raises InstanceDeallocatedError and
    ends the stream.
    """

    def __init__(
        self,
        pipeline: HealthDataPipeline,
        max_cycles: int | None = None,
        interval: float = 0.0,
    ) -> None:
        self._pipeline_ref = weakref.ref(pipeline)
        self._max_cycles = max_cycles
        self._interval = interval
        self._cycles = 0
        self._finished = False

    def __aiter__(self) -> "CollectionStream":
        return self

    async def __anext__(self) -> HealthEnvironmentRecord:
        while not self._finished:
            if self._max_cycles is not None and self._cycles >= self._max_cycles:
                self._finished = True
                break

            if self._cycles > 0 and self._interval > 0:
                await asyncio.sleep(self._interval)

            pipeline = self._pipeline_ref()
            if pipeline is None:
                self._finished = True
                PIPELINE_ERRORS.labels(error_type="instance_deallocated").inc()
                raise InstanceDeallocatedError()

            self._cycles += 1
            record = await pipeline._run_cycle()
            del pipeline
            if record is not None:
                return record

        raise StopAsyncIteration
