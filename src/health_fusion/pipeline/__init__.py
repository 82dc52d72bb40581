"""Data fusion pipeline."""

from .errors import (
    DataSourceUnavailableError,
    InstanceDeallocatedError,
    LocationDeniedError,
    PipelineError,
    ProcessingFailedError,
    ValidationFailedError,
)
from .pipeline import CollectionStream, HealthDataPipeline
from .processor import DataProcessor
from .sources import (
    HealthStoreReader,
    HTTPEnvironmentalSource,
    JSONFileHealthSource,
    StaticLocationSource,
)

__all__ = [
    "CollectionStream",
    "DataProcessor",
    "DataSourceUnavailableError",
    "HealthDataPipeline",
    "HealthStoreReader",
    "HTTPEnvironmentalSource",
    "InstanceDeallocatedError",
    "JSONFileHealthSource",
    "LocationDeniedError",
    "PipelineError",
    "ProcessingFailedError",
    "StaticLocationSource",
    "ValidationFailedError",
]
