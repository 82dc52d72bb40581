"""Best-effort replication of usage to a remote store."""

from collections.abc import Mapping
from datetime import datetime

import httpx
import structlog
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from ..circuit_breaker import CircuitBreaker
from ..tracing import trace_headers
from .models import UsageRecord, UsageSyncError

logger = structlog.get_logger(__name__)


class RemoteUsageSync:
    """Push usage records and per-window totals to a remote HTTP store.

    Every request goes through a circuit breaker so a dead remote stops
    being called until the recovery timeout passes.
    """

    def __init__(
        self,
        base_url: str,
        token: str | None = None,
        timeout: float = 10.0,
        breaker: CircuitBreaker | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        headers = {"Content-Type": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._client = client or httpx.AsyncClient(
            base_url=base_url, headers=headers, timeout=timeout
        )
        self._breaker = breaker or CircuitBreaker(
            "usage_sync", failure_threshold=5, recovery_timeout=300.0
        )

    @property
    def breaker(self) -> CircuitBreaker:
        return self._breaker

    async def push(self, record: UsageRecord) -> None:
        """Replicate one record. Not retried.

        Raises:
            UsageSyncError: On a transport error or non-2xx response.
            CircuitOpenError: If the breaker is open.
        """
        await self._breaker.call(lambda: self._post("/records", record.to_dict()))

    async def sync_usage_totals(
        self,
        counts: Mapping[str, int],
        window_start: datetime,
        tier: str,
        attempts: int = 3,
    ) -> None:
        """Push per-operation totals for the current quota window, retrying transient errors."""
        payload = {
            "tier": tier,
            "window_start": window_start.isoformat(),
            "counts": dict(counts),
            "total": sum(counts.values()),
        }
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(attempts),
            wait=wait_exponential(multiplier=1, min=1, max=30),
            retry=retry_if_exception_type(UsageSyncError),
            reraise=True,
        ):
            with attempt:
                await self._breaker.call(lambda: self._post("/totals", payload))
        logger.info("usage_totals_synced", tier=tier, total=payload["total"])

    async def _post(self, path: str, payload: dict) -> None:
        try:
            response = await self._client.post(path, json=payload, headers=trace_headers())
        except httpx.HTTPError as e:
            raise UsageSyncError(f"{path}: {e}") from e
        if not response.is_success:
            raise UsageSyncError(f"{path}: HTTP {response.status_code}")

    async def close(self) -> None:
        await self._client.aclose()
