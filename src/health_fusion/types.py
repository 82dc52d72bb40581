"""Shared type aliases and typed dictionaries."""

from __future__ import annotations

from typing import TypeAlias, TypedDict

JSONValue: TypeAlias = (
    str | int | float | bool | None | list["JSONValue"] | dict[str, "JSONValue"]
)
JSONObject: TypeAlias = dict[str, JSONValue]
Metadata: TypeAlias = dict[str, str]


class CircuitStats(TypedDict):
    """Circuit breaker statistics payload."""

    name: str
    state: str
    failure_count: int
    failure_threshold: int
    recovery_timeout: float
    total_trips: int


class ServiceStatus(TypedDict, total=False):
    """Service health check payload."""

    service: str
    tier: str
    records_emitted: int
    analytics_used: int
    analytics_limit: int
    pending_syncs: int
    ai_provider: str | None
    circuits: dict[str, CircuitStats]


TraceContextCarrier: TypeAlias = dict[str, str]
