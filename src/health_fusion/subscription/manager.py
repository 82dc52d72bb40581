"""Subscription manager: feature access, analytics quota and entitlement checks."""

import threading
from collections import defaultdict
from collections.abc import Callable, Mapping
from dataclasses import replace
from datetime import UTC, datetime, timedelta

import structlog

from ..visualization import (
    InteractionLevel,
    RenderingPreference,
    VisualizationContext,
    VisualizationDataType,
    Visualizer,
    create_visualizer,
)
from .errors import (
    PaymentError,
    PaymentProductNotFoundError,
    ProductNotFoundError,
    PurchaseFailedError,
    SubscriptionValidationError,
)
from .payments import PaymentBackend, Receipt
from .tiers import TIER_TABLE, Feature, MLCapabilities, SubscriptionTier, TierDefinition

logger = structlog.get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class SubscriptionManager:
    """Answers access and quota questions for the user's current tier.

    ``can_access`` and ``check_analytics_quota`` never touch the network.
    The current tier only changes through ``validate_subscription``, which
    asks the payment collaborators for the active entitlement.

    Analytics usage is counted per operation inside a fixed window aligned
    to multiples of ``window_hours`` since the epoch (UTC midnight for the
    default 24 hours). Counts reset when a new window begins.
    """

    def __init__(
        self,
        payments: PaymentBackend,
        tier_table: Mapping[SubscriptionTier, TierDefinition] = TIER_TABLE,
        window_hours: int = 24,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._payments = payments
        self._tier_table = tier_table
        self._window = timedelta(hours=window_hours)
        self._clock = clock
        self._tier = SubscriptionTier.FREE
        self._lock = threading.Lock()
        self._usage: dict[str, int] = defaultdict(int)
        self._window_start = self.window_start()

    @property
    def current_tier(self) -> SubscriptionTier:
        return self._tier

    def definition(self) -> TierDefinition:
        return self._tier_table[self._tier]

    def features(self) -> frozenset[Feature]:
        return self.definition().features

    def can_access(self, feature: Feature) -> bool:
        return feature in self.definition().features

    def ml_capabilities(self) -> MLCapabilities:
        return self.definition().ml

    # -- Analytics quota --

    def window_start(self, at: datetime | None = None) -> datetime:
        """Start of the quota window containing ``at`` (default now)."""
        now = at or self._clock()
        seconds = self._window.total_seconds()
        start = (now.timestamp() // seconds) * seconds
        return datetime.fromtimestamp(start, UTC)

    def _roll_window(self) -> None:
        current = self.window_start()
        if current != self._window_start:
            if self._usage:
                logger.info(
                    "analytics_window_reset",
                    previous_total=sum(self._usage.values()),
                    window_start=current.isoformat(),
                )
            self._usage = defaultdict(int)
            self._window_start = current

    def check_analytics_quota(self) -> bool:
        """True iff this window's count is strictly below the tier limit."""
        with self._lock:
            self._roll_window()
            used = sum(self._usage.values())
        return used < self.definition().analytics_limit

    def record_analytics_usage(self, operation: str) -> None:
        with self._lock:
            self._roll_window()
            self._usage[operation] += 1

    def analytics_usage(self) -> int:
        with self._lock:
            self._roll_window()
            return sum(self._usage.values())

    def usage_by_operation(self) -> dict[str, int]:
        with self._lock:
            self._roll_window()
            return dict(self._usage)

    def seed_analytics_usage(self, counts: Mapping[str, int]) -> None:
        """Replace this window's counts, e.g. from durable storage at startup."""
        with self._lock:
            self._window_start = self.window_start()
            self._usage = defaultdict(int, counts)
        logger.info("analytics_usage_seeded", total=sum(counts.values()))

    def remaining_analytics(self) -> int:
        return max(self.definition().analytics_limit - self.analytics_usage(), 0)

    # -- Entitlements --

    async def subscribe(self, tier: SubscriptionTier) -> None:
        """Purchase a tier, then confirm it against the collaborator.

        Raises:
            ProductNotFoundError: The collaborator has no product for the tier.
            PurchaseFailedError: The purchase was cancelled, pending or failed.
            SubscriptionValidationError: The entitlement did not confirm the tier.
        """
        try:
            await self._payments.purchase(tier)
        except PaymentProductNotFoundError as e:
            raise ProductNotFoundError(tier) from e
        except PaymentError as e:
            logger.warning("purchase_failed", tier=tier.value, error=str(e))
            raise PurchaseFailedError(tier, str(e)) from e

        confirmed = await self.validate_subscription()
        if confirmed != tier:
            raise SubscriptionValidationError(
                f"Entitlement reports '{confirmed.value}' after purchasing '{tier.value}'"
            )

    async def validate_subscription(self) -> SubscriptionTier:
        """Refresh the current tier from the payment collaborator.

        No entitlement, an inactive one, or any failure resets the tier to
        free. Never raises.
        """
        try:
            receipt: Receipt | None = await self._payments.current_entitlement()
        except Exception as e:
            logger.warning("subscription_validation_failed", error=str(e))
            tier = SubscriptionTier.FREE
        else:
            active = receipt is not None and receipt.is_active
            tier = receipt.tier if active and receipt is not None else SubscriptionTier.FREE

        if tier != self._tier:
            logger.info("subscription_tier_changed", previous=self._tier.value, current=tier.value)
        self._tier = tier
        return tier

    # -- Visualization --

    def limit_visualization_context(self, context: VisualizationContext) -> VisualizationContext:
        """Clamp interaction and rendering options to what the tier allows."""
        if self._tier == SubscriptionTier.FREE:
            return replace(
                context,
                interaction_level=InteractionLevel.BASIC,
                rendering_preference=RenderingPreference.PERFORMANCE
                | RenderingPreference.MOBILE_OPTIMIZED,
            )
        if self._tier in (SubscriptionTier.PERSONAL, SubscriptionTier.PROFESSIONAL):
            return replace(context, interaction_level=InteractionLevel.ADVANCED)
        return context

    def visualization_for(
        self, data_type: VisualizationDataType, context: VisualizationContext
    ) -> tuple[Visualizer, VisualizationContext]:
        limited = self.limit_visualization_context(context)
        return create_visualizer(data_type, limited), limited
