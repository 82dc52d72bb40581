"""Data sources feeding the fusion pipeline."""

import asyncio
import json
from datetime import datetime
from pathlib import Path
from typing import Any, Protocol

import httpx
import structlog
from pydantic import ValidationError
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from ..config import EnvironmentSettings
from ..models import (
    EnvironmentalReading,
    HealthReadings,
    HealthSample,
    HealthSampleKind,
    LocationFix,
)
from ..tracing import trace_headers
from .errors import DataSourceUnavailableError, LocationDeniedError
from .validation import SampleSchemaValidator

logger = structlog.get_logger(__name__)


class HealthDataSource(Protocol):
    """Typed sample queries against a health data store."""

    async def fetch_samples(
        self, kind: HealthSampleKind, start: datetime, end: datetime
    ) -> list[HealthSample]: ...


class EnvironmentalDataSource(Protocol):
    """Environmental conditions keyed by coordinate."""

    async def fetch_environmental(
        self, latitude: float, longitude: float
    ) -> EnvironmentalReading: ...


class LocationSource(Protocol):
    """Latest location fix; raises LocationDeniedError when access is denied."""

    async def latest_fix(self) -> LocationFix: ...


class HealthStoreReader:
    """Query every sample kind concurrently and bundle the results.

    A failed query fails the whole bundle so the cycle is skipped rather
    than scored from partial data.
    """

    def __init__(
        self,
        source: HealthDataSource,
        validator: SampleSchemaValidator | None = None,
    ) -> None:
        self._source = source
        self._validator = validator or SampleSchemaValidator()

    async def read(self, start: datetime, end: datetime) -> HealthReadings:
        kinds = list(HealthSampleKind)
        try:
            results = await asyncio.gather(
                *(self._source.fetch_samples(kind, start, end) for kind in kinds)
            )
        except DataSourceUnavailableError:
            raise
        except Exception as e:
            raise DataSourceUnavailableError("health", str(e)) from e

        samples: dict[HealthSampleKind, list[HealthSample]] = {}
        dropped = 0
        for kind, batch in zip(kinds, results, strict=True):
            valid, failures = self._validator.validate(batch)
            dropped += len(failures)
            if valid:
                samples[kind] = valid

        if dropped:
            logger.warning("health_samples_dropped", count=dropped)

        return HealthReadings(start=start, end=end, samples=samples)


class JSONFileHealthSource:
    """Replay samples from an exported JSON file.

    The file holds either a list of sample objects or ``{"samples": [...]}``.
    Entries that do not parse are skipped with a warning.
    """

    def __init__(self, path: Path | str, respect_window: bool = True) -> None:
        self._path = Path(path)
        self._respect_window = respect_window
        self._samples: list[HealthSample] | None = None
        self._lock = asyncio.Lock()

    async def _load(self) -> list[HealthSample]:
        async with self._lock:
            if self._samples is None:
                self._samples = await asyncio.to_thread(self._read_file)
            return self._samples

    def _read_file(self) -> list[HealthSample]:
        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise DataSourceUnavailableError("health", f"cannot read {self._path}: {e}") from e

        items: list[Any] = raw.get("samples", []) if isinstance(raw, dict) else raw
        samples: list[HealthSample] = []
        skipped = 0
        for item in items:
            try:
                samples.append(HealthSample.model_validate(item))
            except ValidationError:
                skipped += 1
        if skipped:
            logger.warning("sample_file_entries_skipped", path=str(self._path), count=skipped)
        logger.info("sample_file_loaded", path=str(self._path), samples=len(samples))
        return samples

    async def fetch_samples(
        self, kind: HealthSampleKind, start: datetime, end: datetime
    ) -> list[HealthSample]:
        samples = await self._load()
        return [
            s
            for s in samples
            if s.kind == kind and (not self._respect_window or start <= s.start <= end)
        ]


class HTTPEnvironmentalSource:
    """Fetch environmental readings from an HTTP endpoint.

    Transport errors are retried with exponential backoff; a non-2xx
    response or an unparseable body fails immediately.
    """

    def __init__(
        self,
        settings: EnvironmentSettings,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._settings = settings
        self._client = client or httpx.AsyncClient(timeout=settings.timeout_seconds)

    async def fetch_environmental(
        self, latitude: float, longitude: float
    ) -> EnvironmentalReading:
        headers = {"Accept": "application/json", **trace_headers()}
        if self._settings.api_key:
            headers["X-API-Key"] = self._settings.api_key

        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self._settings.max_retries),
                wait=wait_exponential(
                    multiplier=self._settings.retry_delay_seconds,
                    min=self._settings.retry_delay_seconds,
                    max=10,
                ),
                retry=retry_if_exception_type(httpx.TransportError),
                reraise=True,
            ):
                with attempt:
                    response = await self._client.get(
                        self._settings.base_url,
                        params={"lat": latitude, "lon": longitude},
                        headers=headers,
                    )
            response.raise_for_status()
            return EnvironmentalReading.model_validate(response.json())
        except (httpx.HTTPError, ValidationError, ValueError) as e:
            raise DataSourceUnavailableError("environmental", str(e)) from e

    async def close(self) -> None:
        await self._client.aclose()


class StaticLocationSource:
    """Location source pinned to a fixed coordinate."""

    def __init__(
        self,
        latitude: float,
        longitude: float,
        accuracy: float = 0.0,
        denied: bool = False,
    ) -> None:
        self._fix = LocationFix(latitude=latitude, longitude=longitude, accuracy=accuracy)
        self._denied = denied

    async def latest_fix(self) -> LocationFix:
        if self._denied:
            raise LocationDeniedError()
        return self._fix.model_copy(update={"timestamp": datetime.now(self._fix.timestamp.tzinfo)})
