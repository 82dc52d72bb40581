"""Circuit breaker guarding AI providers and remote usage sync."""

import threading
import time
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import TypeVar

import structlog

from .metrics import CIRCUIT_BREAKER_STATE, CIRCUIT_BREAKER_TRIPS
from .types import CircuitStats

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class CircuitState(Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


# Gauge encoding for CIRCUIT_BREAKER_STATE
_GAUGE = {CircuitState.CLOSED: 0, CircuitState.OPEN: 1, CircuitState.HALF_OPEN: 2}


class CircuitOpenError(Exception):
    """A call was refused because the breaker is open."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Circuit breaker '{name}' is open")
        self.breaker_name = name


class CircuitBreaker:
    """Fail fast once a collaborator keeps failing.

    ``failure_threshold`` consecutive failures open the breaker. Once
    ``recovery_timeout`` seconds have passed since it opened, the next
    caller sees HALF_OPEN and acts as a probe: a success closes the
    breaker, a failure opens it again straight away. Safe to share
    between threads.
    """

    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        recovery_timeout: float = 30.0,
    ) -> None:
        self._name = name
        self._threshold = failure_threshold
        self._recovery_timeout = recovery_timeout
        self._lock = threading.RLock()
        self._state = CircuitState.CLOSED
        self._consecutive_failures = 0
        self._opened_at = 0.0
        self._trips = 0
        CIRCUIT_BREAKER_STATE.labels(name=name).set(_GAUGE[self._state])
        CIRCUIT_BREAKER_TRIPS.labels(name=name).set(0)

    @property
    def name(self) -> str:
        return self._name

    @property
    def state(self) -> CircuitState:
        with self._lock:
            if (
                self._state is CircuitState.OPEN
                and time.monotonic() - self._opened_at >= self._recovery_timeout
            ):
                self._move_to(CircuitState.HALF_OPEN)
            return self._state

    @property
    def is_closed(self) -> bool:
        return self.state is CircuitState.CLOSED

    @property
    def is_open(self) -> bool:
        return self.state is CircuitState.OPEN

    def record_success(self) -> None:
        with self._lock:
            self._consecutive_failures = 0
            if self._state is not CircuitState.CLOSED:
                self._move_to(CircuitState.CLOSED)

    def record_failure(self) -> None:
        with self._lock:
            self._consecutive_failures += 1
            probe_failed = self.state is CircuitState.HALF_OPEN
            if probe_failed or (
                self._state is CircuitState.CLOSED
                and self._consecutive_failures >= self._threshold
            ):
                self._opened_at = time.monotonic()
                self._move_to(CircuitState.OPEN)
            elif self._state is CircuitState.OPEN:
                self._opened_at = time.monotonic()

    async def call(self, operation: Callable[[], Awaitable[T]]) -> T:
        """Await ``operation()`` and record its outcome.

        Raises:
            CircuitOpenError: The breaker is open; ``operation`` is never called.
        """
        if self.is_open:
            raise CircuitOpenError(self._name)
        try:
            result = await operation()
        except Exception:
            self.record_failure()
            raise
        self.record_success()
        return result

    def _move_to(self, state: CircuitState) -> None:
        previous, self._state = self._state, state
        if state is CircuitState.OPEN:
            self._trips += 1
            CIRCUIT_BREAKER_TRIPS.labels(name=self._name).set(self._trips)
            logger.warning(
                "circuit_opened",
                name=self._name,
                previous=previous.value,
                failures=self._consecutive_failures,
                trips=self._trips,
            )
        else:
            logger.info("circuit_state_changed", name=self._name, state=state.value)
        CIRCUIT_BREAKER_STATE.labels(name=self._name).set(_GAUGE[state])

    def get_stats(self) -> CircuitStats:
        with self._lock:
            return {
                "name": self._name,
                "state": self._state.value,
                "failure_count": self._consecutive_failures,
                "failure_threshold": self._threshold,
                "recovery_timeout": self._recovery_timeout,
                "total_trips": self._trips,
            }
