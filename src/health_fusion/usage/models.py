"""Usage records, statistics and errors."""

import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from ..types import Metadata


class UsageCategory(str, Enum):
    VISUALIZATION = "visualization"
    ANALYTICS = "analytics"
    ML_OPERATIONS = "ml_operations"
    DATA_EXPORT = "data_export"
    API_CALLS = "api_calls"


@dataclass(frozen=True)
class UsageRecord:
    """One counted operation. Never updated after creation."""

    category: UsageCategory
    operation: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))
    metadata: Metadata = field(default_factory=dict)
    id: str = field(default_factory=lambda: uuid.uuid4().hex)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "category": self.category.value,
            "operation": self.operation,
            "timestamp": self.timestamp.isoformat(),
            "metadata": dict(self.metadata),
        }


@dataclass
class UsageStats:
    total_operations: int = 0
    unique_operations: int = 0
    timespan_seconds: float = 0.0
    operations_per_hour: float = 0.0
    category_distribution: dict[str, float] = field(default_factory=dict)

    @classmethod
    def from_records(cls, records: list[UsageRecord]) -> "UsageStats":
        """Aggregate records.

        Operations per hour is the count over the first-to-last span. A
        zero span (one record, or all at the same instant) reports the
        count itself.
        """
        if not records:
            return cls()

        timestamps = [r.timestamp for r in records]
        timespan = (max(timestamps) - min(timestamps)).total_seconds()
        total = len(records)
        per_hour = total / (timespan / 3600) if timespan > 0 else float(total)

        distribution: dict[str, float] = {}
        for record in records:
            key = record.category.value
            distribution[key] = distribution.get(key, 0) + 1
        distribution = {k: v / total for k, v in distribution.items()}

        return cls(
            total_operations=total,
            unique_operations=len({r.operation for r in records}),
            timespan_seconds=timespan,
            operations_per_hour=per_hour,
            category_distribution=distribution,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_operations": self.total_operations,
            "unique_operations": self.unique_operations,
            "timespan_seconds": round(self.timespan_seconds, 3),
            "operations_per_hour": round(self.operations_per_hour, 3),
            "category_distribution": self.category_distribution,
        }


class UsageError(Exception):
    """Base class for usage tracking failures."""


class QuotaExceededError(UsageError):
    def __init__(self, tier: str, used: int, limit: int) -> None:
        super().__init__(f"Analytics quota exceeded for tier '{tier}': {used}/{limit}")
        self.tier = tier
        self.used = used
        self.limit = limit


class UsageSyncError(UsageError):
    """Remote usage replication failed."""
