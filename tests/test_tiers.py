"""Tests for the static tier table."""

import pytest

from health_fusion.subscription import TIER_TABLE, AccessLevel, Feature, SubscriptionTier, elevate
from health_fusion.subscription.tiers import BillingInterval, PaymentChannel, Plan

EXPECTED_FEATURES = {
    SubscriptionTier.FREE: {
        Feature.BASIC_HEALTH,
        Feature.BASIC_VISUALIZATION,
        Feature.STANDARD_ANALYTICS,
    },
    SubscriptionTier.PERSONAL: {
        Feature.BASIC_HEALTH,
        Feature.ADVANCED_VISUALIZATION,
        Feature.PERSONAL_ANALYTICS,
        Feature.CUSTOM_INSIGHTS,
        Feature.EXPORT_DATA,
        Feature.PRIORITY_SUPPORT,
    },
}


@pytest.mark.parametrize("tier", list(SubscriptionTier))
def test_every_tier_is_defined(tier):
    definition = TIER_TABLE[tier]

    assert definition.tier == tier
    assert definition.analytics_limit > 0
    assert BillingInterval.MONTHLY in definition.plans


@pytest.mark.parametrize("tier", [SubscriptionTier.FREE, SubscriptionTier.PERSONAL])
def test_lower_tier_features(tier):
    assert set(TIER_TABLE[tier].features) == EXPECTED_FEATURES[tier]


def test_higher_tiers_are_supersets():
    personal = TIER_TABLE[SubscriptionTier.PERSONAL].features
    professional = TIER_TABLE[SubscriptionTier.PROFESSIONAL].features
    research = TIER_TABLE[SubscriptionTier.RESEARCH].features

    assert personal < professional < research
    assert Feature.AI_POWERED_INSIGHTS in professional
    assert Feature.ML_PIPELINES in research
    assert TIER_TABLE[SubscriptionTier.ENTERPRISE].features == frozenset(Feature)


def test_personal_lacks_standard_analytics():
    assert not TIER_TABLE[SubscriptionTier.PERSONAL].allows(Feature.STANDARD_ANALYTICS)
    assert TIER_TABLE[SubscriptionTier.FREE].allows(Feature.STANDARD_ANALYTICS)


def test_analytics_limits_increase_with_tier():
    limits = [TIER_TABLE[tier].analytics_limit for tier in SubscriptionTier]

    assert limits == [1_000, 10_000, 100_000, 500_000, 1_000_000]


def test_payment_channels():
    assert TIER_TABLE[SubscriptionTier.PERSONAL].channel == PaymentChannel.APP_STORE
    assert TIER_TABLE[SubscriptionTier.PROFESSIONAL].channel == PaymentChannel.APP_STORE
    assert TIER_TABLE[SubscriptionTier.RESEARCH].channel == PaymentChannel.HOSTED_CHECKOUT
    assert TIER_TABLE[SubscriptionTier.ENTERPRISE].channel == PaymentChannel.HOSTED_CHECKOUT


def test_free_tier_limits():
    limits = TIER_TABLE[SubscriptionTier.FREE].limits

    assert limits.storage_gb == 1
    assert limits.api_calls_per_day == 100
    assert limits.retention_days == 30
    assert TIER_TABLE[SubscriptionTier.ENTERPRISE].limits.retention_days is None


def test_plan_pricing():
    yearly = TIER_TABLE[SubscriptionTier.PERSONAL].plans[BillingInterval.YEARLY]
    assert yearly.savings_percent == 17
    assert yearly.price_per_month == pytest.approx(149.99 / 12)

    enterprise = TIER_TABLE[SubscriptionTier.ENTERPRISE].plans[BillingInterval.MONTHLY]
    assert enterprise.customizable
    assert enterprise.price_range == (499.99, 4999.99)
    assert enterprise.price == 499.99

    assert Plan.ranged(1, 2, BillingInterval.QUARTERLY).price_per_month == pytest.approx(1 / 3)


def test_table_is_read_only():
    with pytest.raises(TypeError):
        TIER_TABLE[SubscriptionTier.FREE] = TIER_TABLE[SubscriptionTier.ENTERPRISE]


def test_product_ids_round_trip():
    assert SubscriptionTier.RESEARCH.product_id == "com.ibiome.research"
    assert SubscriptionTier.from_product_id("com.ibiome.professional.yearly") == (
        SubscriptionTier.PROFESSIONAL
    )

    with pytest.raises(ValueError, match="Unknown product identifier"):
        SubscriptionTier.from_product_id("com.other.personal")
    with pytest.raises(ValueError):
        SubscriptionTier.from_product_id("com.ibiome.platinum")


def test_feature_requires_subscription():
    assert not Feature.BASIC_HEALTH.requires_subscription
    assert Feature.CUSTOM_INSIGHTS.requires_subscription


@pytest.mark.parametrize(
    ("current", "requested", "expected"),
    [
        (AccessLevel.BASIC, AccessLevel.ENHANCED, AccessLevel.ENHANCED),
        (AccessLevel.ENHANCED, AccessLevel.BASIC, AccessLevel.ENHANCED),
        (AccessLevel.STANDARD, AccessLevel.STANDARD, AccessLevel.STANDARD),
        (AccessLevel.NONE, AccessLevel.ENTERPRISE, AccessLevel.ENTERPRISE),
    ],
)
def test_access_levels_only_move_up(current, requested, expected):
    assert elevate(current, requested) == expected
