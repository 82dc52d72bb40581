"""Pipeline exception hierarchy."""


class PipelineError(Exception):
    """Base class for data pipeline failures."""


class ValidationFailedError(PipelineError):
    """A fused record failed validation and was dropped."""


class InstanceDeallocatedError(PipelineError):
    """The pipeline backing a collection stream no longer exists."""

    def __init__(self) -> None:
        super().__init__("Pipeline was released while its stream was still being consumed")


class ProcessingFailedError(PipelineError):
    """Transforming or scoring a cycle's readings failed."""


class DataSourceUnavailableError(PipelineError):
    """A source could not deliver data for this cycle."""

    def __init__(self, source: str, reason: str) -> None:
        super().__init__(f"{source} source unavailable: {reason}")
        self.source = source
        self.reason = reason


class LocationDeniedError(DataSourceUnavailableError):
    """Location access was denied by the user or platform."""

    def __init__(self, reason: str = "location access denied") -> None:
        super().__init__("location", reason)
