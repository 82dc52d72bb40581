"""Usage tracking and quota enforcement."""

from .models import (
    QuotaExceededError,
    UsageCategory,
    UsageError,
    UsageRecord,
    UsageStats,
    UsageSyncError,
)
from .store import UsageStore
from .sync import RemoteUsageSync
from .tracker import UsageTracker, should_sync

__all__ = [
    "QuotaExceededError",
    "RemoteUsageSync",
    "UsageCategory",
    "UsageError",
    "UsageRecord",
    "UsageStats",
    "UsageStore",
    "UsageSyncError",
    "UsageTracker",
    "should_sync",
]
