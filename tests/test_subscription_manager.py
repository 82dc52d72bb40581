"""Tests for feature access, analytics quota and entitlement validation."""

from datetime import UTC, datetime, timedelta

import pytest

from health_fusion.subscription import (
    TIER_TABLE,
    Feature,
    ProductNotFoundError,
    PurchaseFailedError,
    Receipt,
    SubscriptionManager,
    SubscriptionTier,
    SubscriptionValidationError,
)
from health_fusion.subscription.errors import (
    PaymentCancelledError,
    PaymentProductNotFoundError,
)
from health_fusion.visualization import (
    InteractionLevel,
    RenderingPreference,
    VisualizationContext,
    VisualizationDataType,
)


class FakePayments:
    """Payment collaborator with a scriptable entitlement."""

    def __init__(self, tier=None, active=True, error=None, purchase_error=None):
        self.receipt = self._receipt(tier, active) if tier else None
        self.error = error
        self.purchase_error = purchase_error
        self.grant_on_purchase = True

    @staticmethod
    def _receipt(tier, active=True):
        return Receipt(tier.product_id, tier, active, "fake")

    async def purchase(self, tier):
        if self.purchase_error is not None:
            raise self.purchase_error
        if self.grant_on_purchase:
            self.receipt = self._receipt(tier)
        return self._receipt(tier)

    async def current_entitlement(self):
        if self.error is not None:
            raise self.error
        return self.receipt


class Clock:
    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now


async def _manager_for(tier, **kwargs):
    manager = SubscriptionManager(FakePayments(tier), **kwargs)
    await manager.validate_subscription()
    return manager


def test_new_manager_starts_on_free():
    manager = SubscriptionManager(FakePayments())

    assert manager.current_tier == SubscriptionTier.FREE
    assert manager.can_access(Feature.BASIC_HEALTH)
    assert not manager.can_access(Feature.CUSTOM_INSIGHTS)


@pytest.mark.parametrize("tier", list(SubscriptionTier))
async def test_can_access_matches_tier_table(tier):
    manager = await _manager_for(tier)

    assert manager.current_tier == tier
    for feature in Feature:
        assert manager.can_access(feature) == (feature in TIER_TABLE[tier].features)


async def test_validation_failures_reset_to_free():
    payments = FakePayments(SubscriptionTier.PROFESSIONAL)
    manager = SubscriptionManager(payments)
    assert await manager.validate_subscription() == SubscriptionTier.PROFESSIONAL

    payments.error = RuntimeError("store unreachable")
    assert await manager.validate_subscription() == SubscriptionTier.FREE

    payments.error = None
    payments.receipt = FakePayments._receipt(SubscriptionTier.PROFESSIONAL, active=False)
    assert await manager.validate_subscription() == SubscriptionTier.FREE


async def test_expired_receipt_counts_as_free():
    expired = Receipt(
        "com.ibiome.personal",
        SubscriptionTier.PERSONAL,
        True,
        "fake",
        expires_at=datetime.now(UTC) - timedelta(minutes=1),
    )
    payments = FakePayments()
    payments.receipt = expired

    manager = SubscriptionManager(payments)

    assert await manager.validate_subscription() == SubscriptionTier.FREE


async def test_subscribe_confirms_entitlement():
    manager = SubscriptionManager(FakePayments())

    await manager.subscribe(SubscriptionTier.PERSONAL)

    assert manager.current_tier == SubscriptionTier.PERSONAL
    assert manager.can_access(Feature.CUSTOM_INSIGHTS)


async def test_subscribe_error_mapping():
    manager = SubscriptionManager(
        FakePayments(purchase_error=PaymentProductNotFoundError("com.ibiome.research.monthly"))
    )
    with pytest.raises(ProductNotFoundError, match="research"):
        await manager.subscribe(SubscriptionTier.RESEARCH)

    manager = SubscriptionManager(FakePayments(purchase_error=PaymentCancelledError("declined")))
    with pytest.raises(PurchaseFailedError, match="declined"):
        await manager.subscribe(SubscriptionTier.PERSONAL)
    assert manager.current_tier == SubscriptionTier.FREE


async def test_subscribe_without_entitlement_fails_validation():
    payments = FakePayments()
    payments.grant_on_purchase = False
    manager = SubscriptionManager(payments)

    with pytest.raises(SubscriptionValidationError, match="free"):
        await manager.subscribe(SubscriptionTier.PROFESSIONAL)


def test_free_quota_allows_exactly_the_limit():
    """1000 operations pass on the free tier; the check then fails."""
    manager = SubscriptionManager(FakePayments())

    for _ in range(999):
        manager.record_analytics_usage("trends")
    assert manager.check_analytics_quota()
    assert manager.remaining_analytics() == 1

    manager.record_analytics_usage("trends")
    assert not manager.check_analytics_quota()
    assert manager.remaining_analytics() == 0
    assert manager.usage_by_operation() == {"trends": 1000}


def test_quota_window_resets_at_boundary():
    clock = Clock(datetime(2024, 1, 15, 23, 59, tzinfo=UTC))
    manager = SubscriptionManager(FakePayments(), clock=clock)

    for _ in range(1000):
        manager.record_analytics_usage("predictions")
    assert not manager.check_analytics_quota()
    assert manager.window_start() == datetime(2024, 1, 15, tzinfo=UTC)

    clock.now = datetime(2024, 1, 16, 0, 1, tzinfo=UTC)

    assert manager.check_analytics_quota()
    assert manager.analytics_usage() == 0
    assert manager.window_start() == datetime(2024, 1, 16, tzinfo=UTC)


def test_shorter_windows_align_to_epoch():
    clock = Clock(datetime(2024, 1, 15, 7, 30, tzinfo=UTC))
    manager = SubscriptionManager(FakePayments(), window_hours=6, clock=clock)

    assert manager.window_start() == datetime(2024, 1, 15, 6, tzinfo=UTC)


def test_seed_replaces_current_counts():
    manager = SubscriptionManager(FakePayments())
    manager.record_analytics_usage("trends")

    manager.seed_analytics_usage({"render_generic": 4, "ai_trends": 2})

    assert manager.analytics_usage() == 6
    assert manager.usage_by_operation()["render_generic"] == 4


async def test_visualization_context_is_clamped_per_tier():
    context = VisualizationContext(
        interaction_level=InteractionLevel.FULL_CONTROL,
        rendering_preference=RenderingPreference.QUALITY,
    )

    free = SubscriptionManager(FakePayments())
    limited = free.limit_visualization_context(context)
    assert limited.interaction_level == InteractionLevel.BASIC
    assert limited.should_optimize_for_mobile
    assert not limited.rendering_preference & RenderingPreference.QUALITY

    personal = await _manager_for(SubscriptionTier.PERSONAL)
    assert personal.limit_visualization_context(context).interaction_level == (
        InteractionLevel.ADVANCED
    )

    research = await _manager_for(SubscriptionTier.RESEARCH)
    assert research.limit_visualization_context(context) == context

    visualizer, clamped = free.visualization_for(VisualizationDataType.PERSONAL_HEALTH, context)
    assert visualizer.name == "personal_health"
    assert clamped.interaction_level == InteractionLevel.BASIC
