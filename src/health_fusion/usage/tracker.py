"""Quota-checked usage tracking with durable storage and remote replication."""

import asyncio
from collections.abc import Callable
from datetime import UTC, datetime, timedelta

import structlog

from ..metrics import USAGE_OPERATIONS, USAGE_SYNC
from ..subscription.manager import SubscriptionManager
from ..subscription.tiers import SubscriptionTier
from ..types import Metadata
from .models import QuotaExceededError, UsageCategory, UsageRecord, UsageStats
from .store import UsageStore
from .sync import RemoteUsageSync

logger = structlog.get_logger(__name__)


def should_sync(tier: SubscriptionTier, category: UsageCategory) -> bool:
    """Remote replication policy per tier."""
    if tier == SubscriptionTier.FREE:
        return False
    if tier == SubscriptionTier.PERSONAL:
        return category != UsageCategory.VISUALIZATION
    return True


def _utcnow() -> datetime:
    return datetime.now(UTC)


class UsageTracker:
    """Counts billable operations against the tier's analytics quota.

    Quota check, local write and counter increment happen under one
    asyncio lock so concurrent callers cannot both pass a check for the
    last unit of quota. Remote replication runs in background tasks after
    the lock is released; its failure never rolls back the local write.
    """

    def __init__(
        self,
        subscription: SubscriptionManager,
        store: UsageStore,
        remote_sync: RemoteUsageSync | None = None,
        sync_interval_seconds: float = 3600.0,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._subscription = subscription
        self._store = store
        self._remote = remote_sync
        self._sync_interval = sync_interval_seconds
        self._clock = clock
        self._lock = asyncio.Lock()
        self._pending: set[asyncio.Task] = set()
        self._sync_task: asyncio.Task | None = None
        self._total_tracked = 0
        self._total_rejected = 0
        self._replication_failures = 0

    @property
    def pending_syncs(self) -> int:
        return len(self._pending)

    async def track_usage(
        self,
        category: UsageCategory,
        operation: str,
        metadata: Metadata | None = None,
    ) -> UsageRecord:
        """Check quota, persist and count one operation.

        Raises:
            QuotaExceededError: The window's count reached the tier limit.
                Nothing is written or counted.
        """
        async with self._lock:
            if not self._subscription.check_analytics_quota():
                self._total_rejected += 1
                USAGE_OPERATIONS.labels(category=category.value, status="quota_exceeded").inc()
                definition = self._subscription.definition()
                used = self._subscription.analytics_usage()
                logger.warning(
                    "usage_quota_exceeded",
                    tier=definition.tier.value,
                    category=category.value,
                    operation=operation,
                    used=used,
                    limit=definition.analytics_limit,
                )
                raise QuotaExceededError(definition.tier.value, used, definition.analytics_limit)

            record = UsageRecord(
                category=category,
                operation=operation,
                timestamp=self._clock(),
                metadata=dict(metadata or {}),
            )
            await self._store.append(record)
            self._subscription.record_analytics_usage(operation)
            self._total_tracked += 1
            USAGE_OPERATIONS.labels(category=category.value, status="recorded").inc()

            if self._remote is not None and should_sync(self._subscription.current_tier, category):
                task = asyncio.create_task(self._replicate(record))
                self._pending.add(task)
                task.add_done_callback(self._pending.discard)

        return record

    async def _replicate(self, record: UsageRecord) -> None:
        if self._remote is None:
            return
        try:
            await self._remote.push(record)
        except Exception as e:
            self._replication_failures += 1
            USAGE_SYNC.labels(status="failed").inc()
            logger.warning(
                "usage_replication_failed",
                record_id=record.id,
                category=record.category.value,
                error=str(e),
            )
            return
        USAGE_SYNC.labels(status="success").inc()

    async def get_usage_stats(
        self,
        category: UsageCategory | None = None,
        timeframe: timedelta = timedelta(days=1),
    ) -> UsageStats:
        """Aggregate locally stored records over the trailing timeframe."""
        since = self._clock() - timeframe
        records = await self._store.query(category, since)
        return UsageStats.from_records(records)

    async def restore(self) -> int:
        """Seed the quota counter from the store and purge expired records.

        Returns:
            Operations already counted in the current window.
        """
        retention = self._subscription.definition().limits.retention_days
        if retention is not None:
            await self._store.purge_before(self._clock() - timedelta(days=retention))

        counts = await self._store.counts_by_operation(self._subscription.window_start())
        self._subscription.seed_analytics_usage(counts)
        return sum(counts.values())

    async def sync_totals(self) -> bool:
        """Push this window's per-operation totals. Returns False on failure or no remote."""
        if self._remote is None or self._subscription.current_tier == SubscriptionTier.FREE:
            return False
        try:
            await self._remote.sync_usage_totals(
                self._subscription.usage_by_operation(),
                self._subscription.window_start(),
                self._subscription.current_tier.value,
            )
        except Exception as e:
            USAGE_SYNC.labels(status="totals_failed").inc()
            logger.warning("usage_totals_sync_failed", error=str(e))
            return False
        USAGE_SYNC.labels(status="totals_success").inc()
        return True

    async def drain(self) -> None:
        """Wait for in-flight replication tasks."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def start(self) -> None:
        """Start the periodic totals sync."""
        if self._sync_task is None and self._remote is not None:
            self._sync_task = asyncio.create_task(self._periodic_sync())
            logger.info("usage_sync_started", interval=self._sync_interval)

    async def stop(self) -> None:
        if self._sync_task:
            self._sync_task.cancel()
            try:
                await self._sync_task
            except asyncio.CancelledError:
                pass
            self._sync_task = None
        await self.drain()
        logger.info("usage_tracker_stopped", **self.get_stats())

    async def _periodic_sync(self) -> None:
        while True:
            try:
                await asyncio.sleep(self._sync_interval)
                await self.sync_totals()
            except asyncio.CancelledError:
                break

    def get_stats(self) -> dict[str, int]:
        return {
            "tracked": self._total_tracked,
            "rejected": self._total_rejected,
            "replication_failures": self._replication_failures,
            "pending_syncs": self.pending_syncs,
        }
