"""AI adapter errors."""


class AIError(Exception):
    """Base class for AI insight failures."""


class NoServiceEnabledError(AIError):
    """AI is enabled but no provider is."""

    def __init__(self) -> None:
        super().__init__("AI insights are enabled but no provider is enabled")


class InvalidResponseError(AIError):
    """The provider answered with something that could not be parsed."""


class ProviderRequestError(AIError):
    """The provider call failed.

    ``retryable`` marks transport, rate-limit, timeout and 5xx failures,
    which count against the circuit breaker. Client errors do not.
    """

    def __init__(
        self,
        provider: str,
        message: str,
        status_code: int | None = None,
        retryable: bool = True,
    ) -> None:
        super().__init__(f"{provider}: {message}")
        self.provider = provider
        self.status_code = status_code
        self.retryable = retryable
