"""Static subscription tier table.

The table is read-only configuration: a user's *current* tier changes at
runtime through entitlement validation, the table itself never does.
"""

from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum, IntEnum
from types import MappingProxyType

PRODUCT_PREFIX = "com.ibiome"


class SubscriptionTier(str, Enum):
    FREE = "free"
    PERSONAL = "personal"
    PROFESSIONAL = "professional"
    RESEARCH = "research"
    ENTERPRISE = "enterprise"

    @property
    def product_id(self) -> str:
        return f"{PRODUCT_PREFIX}.{self.value}"

    @classmethod
    def from_product_id(cls, product_id: str) -> "SubscriptionTier":
        """Resolve ``com.ibiome.<tier>`` or ``com.ibiome.<tier>.<interval>``.

        Raises:
            ValueError: If the identifier names no known tier.
        """
        parts = product_id.split(".")
        if product_id.startswith(f"{PRODUCT_PREFIX}.") and len(parts) >= 3:
            try:
                return cls(parts[2])
            except ValueError:
                pass
        raise ValueError(f"Unknown product identifier: {product_id}")


class Feature(str, Enum):
    """Capability tags granted by tiers."""

    BASIC_HEALTH = "Basic Health Tracking"
    BASIC_VISUALIZATION = "Basic Visualizations"
    STANDARD_ANALYTICS = "Standard Analytics"

    ADVANCED_VISUALIZATION = "Advanced Visualizations"
    PERSONAL_ANALYTICS = "Personal Analytics"
    CUSTOM_INSIGHTS = "Custom Insights"
    EXPORT_DATA = "Data Export"
    PRIORITY_SUPPORT = "Priority Support"

    AI_POWERED_INSIGHTS = "AI-Powered Insights"
    CUSTOM_DASHBOARDS = "Custom Dashboards"
    ADVANCED_ANALYTICS = "Advanced Analytics"
    API_ACCESS = "API Access"

    RESEARCH_ANALYTICS = "Research Analytics"
    BATCH_PROCESSING = "Batch Processing"
    ML_PIPELINES = "ML Pipelines"
    RESEARCH_API = "Research API"
    DEDICATED_SUPPORT = "Dedicated Support"

    INSURANCE_ANALYTICS = "Insurance Analytics"
    URBAN_PLANNING = "Urban Planning"
    CORPORATE_WELLNESS = "Corporate Wellness"
    REAL_ESTATE_ANALYSIS = "Real Estate Analysis"
    SMART_CITY_INTEGRATION = "Smart City Integration"
    CUSTOM_INTEGRATION = "Custom Integration"
    SLA_GUARANTEE = "SLA Guarantee"
    WHITE_LABEL = "White Label"
    CUSTOM_FEATURES = "Custom Features"

    @property
    def requires_subscription(self) -> bool:
        return self not in _FREE_FEATURES


_FREE_FEATURES = frozenset(
    {Feature.BASIC_HEALTH, Feature.BASIC_VISUALIZATION, Feature.STANDARD_ANALYTICS}
)


class BillingInterval(str, Enum):
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    YEARLY = "yearly"

    @property
    def months(self) -> int:
        return {"monthly": 1, "quarterly": 3, "yearly": 12}[self.value]


class PaymentChannel(str, Enum):
    """Which payment collaborator sells a tier."""

    APP_STORE = "app_store"
    HOSTED_CHECKOUT = "hosted_checkout"


@dataclass(frozen=True)
class Plan:
    """A price for one billing interval.

    Customizable plans carry a negotiated price range; ``price`` is then
    the lower bound.
    """

    price: float
    interval: BillingInterval
    savings_percent: int | None = None
    price_range: tuple[float, float] | None = None
    customizable: bool = False

    @classmethod
    def ranged(cls, low: float, high: float, interval: BillingInterval) -> "Plan":
        return cls(price=low, interval=interval, price_range=(low, high), customizable=True)

    @property
    def price_per_month(self) -> float:
        return self.price / self.interval.months


@dataclass(frozen=True)
class UsageLimits:
    """Resource limits per tier; None means unlimited."""

    storage_gb: int | None
    api_calls_per_day: int | None
    max_devices: int | None
    max_users: int | None
    retention_days: int | None
    max_exports: int | None


@dataclass(frozen=True)
class MLCapabilities:
    allows_batch_processing: bool
    max_models: int | None
    custom_models: bool


@dataclass(frozen=True)
class TierDefinition:
    tier: SubscriptionTier
    features: frozenset[Feature]
    storage_limit: int
    analytics_limit: int
    plans: Mapping[BillingInterval, Plan]
    limits: UsageLimits
    ml: MLCapabilities
    channel: PaymentChannel
    checkout_amount_cents: int

    def allows(self, feature: Feature) -> bool:
        return feature in self.features


_PERSONAL_FEATURES = frozenset(
    {
        Feature.BASIC_HEALTH,
        Feature.ADVANCED_VISUALIZATION,
        Feature.PERSONAL_ANALYTICS,
        Feature.CUSTOM_INSIGHTS,
        Feature.EXPORT_DATA,
        Feature.PRIORITY_SUPPORT,
    }
)

_PROFESSIONAL_FEATURES = _PERSONAL_FEATURES | {
    Feature.AI_POWERED_INSIGHTS,
    Feature.CUSTOM_DASHBOARDS,
    Feature.ADVANCED_ANALYTICS,
    Feature.API_ACCESS,
}

_RESEARCH_FEATURES = _PROFESSIONAL_FEATURES | {
    Feature.RESEARCH_ANALYTICS,
    Feature.BATCH_PROCESSING,
    Feature.ML_PIPELINES,
    Feature.RESEARCH_API,
    Feature.DEDICATED_SUPPORT,
}


def _monthly(price: float) -> Plan:
    return Plan(price=price, interval=BillingInterval.MONTHLY)


TIER_TABLE: Mapping[SubscriptionTier, TierDefinition] = MappingProxyType(
    {
        SubscriptionTier.FREE: TierDefinition(
            tier=SubscriptionTier.FREE,
            features=_FREE_FEATURES,
            storage_limit=100_000,
            analytics_limit=1_000,
            plans=MappingProxyType({BillingInterval.MONTHLY: _monthly(0.0)}),
            limits=UsageLimits(1, 100, 1, 1, 30, 1),
            ml=MLCapabilities(allows_batch_processing=False, max_models=1, custom_models=False),
            channel=PaymentChannel.APP_STORE,
            checkout_amount_cents=0,
        ),
        SubscriptionTier.PERSONAL: TierDefinition(
            tier=SubscriptionTier.PERSONAL,
            features=_PERSONAL_FEATURES,
            storage_limit=1_000_000,
            analytics_limit=10_000,
            plans=MappingProxyType(
                {
                    BillingInterval.MONTHLY: _monthly(14.99),
                    BillingInterval.QUARTERLY: Plan(39.99, BillingInterval.QUARTERLY, 11),
                    BillingInterval.YEARLY: Plan(149.99, BillingInterval.YEARLY, 17),
                }
            ),
            limits=UsageLimits(10, 1_000, 3, 1, 90, 10),
            ml=MLCapabilities(allows_batch_processing=True, max_models=3, custom_models=False),
            channel=PaymentChannel.APP_STORE,
            checkout_amount_cents=999,
        ),
        SubscriptionTier.PROFESSIONAL: TierDefinition(
            tier=SubscriptionTier.PROFESSIONAL,
            features=_PROFESSIONAL_FEATURES,
            storage_limit=10_000_000,
            analytics_limit=100_000,
            plans=MappingProxyType(
                {
                    BillingInterval.MONTHLY: _monthly(29.99),
                    BillingInterval.QUARTERLY: Plan(79.99, BillingInterval.QUARTERLY, 11),
                    BillingInterval.YEARLY: Plan(299.99, BillingInterval.YEARLY, 17),
                }
            ),
            limits=UsageLimits(50, 10_000, 5, 1, 365, 50),
            ml=MLCapabilities(allows_batch_processing=True, max_models=5, custom_models=False),
            channel=PaymentChannel.APP_STORE,
            checkout_amount_cents=1999,
        ),
        SubscriptionTier.RESEARCH: TierDefinition(
            tier=SubscriptionTier.RESEARCH,
            features=_RESEARCH_FEATURES,
            storage_limit=50_000_000,
            analytics_limit=500_000,
            plans=MappingProxyType(
                {
                    BillingInterval.MONTHLY: _monthly(99.99),
                    BillingInterval.QUARTERLY: Plan(269.99, BillingInterval.QUARTERLY, 10),
                    BillingInterval.YEARLY: Plan(999.99, BillingInterval.YEARLY, 16),
                }
            ),
            limits=UsageLimits(500, 100_000, 10, 5, 730, None),
            ml=MLCapabilities(allows_batch_processing=True, max_models=10, custom_models=True),
            channel=PaymentChannel.HOSTED_CHECKOUT,
            checkout_amount_cents=4999,
        ),
        SubscriptionTier.ENTERPRISE: TierDefinition(
            tier=SubscriptionTier.ENTERPRISE,
            features=frozenset(Feature),
            storage_limit=100_000_000,
            analytics_limit=1_000_000,
            plans=MappingProxyType(
                {
                    BillingInterval.MONTHLY: Plan.ranged(499.99, 4999.99, BillingInterval.MONTHLY),
                    BillingInterval.YEARLY: Plan.ranged(4999.99, 49999.99, BillingInterval.YEARLY),
                }
            ),
            limits=UsageLimits(None, None, None, None, None, None),
            ml=MLCapabilities(allows_batch_processing=True, max_models=None, custom_models=True),
            channel=PaymentChannel.HOSTED_CHECKOUT,
            checkout_amount_cents=9999,
        ),
    }
)


class AccessLevel(IntEnum):
    """Strictly ordered authentication scale."""

    NONE = 0
    BASIC = 1
    STANDARD = 2
    ENHANCED = 3
    VERIFIED = 4
    ENTERPRISE = 5


def elevate(current: AccessLevel, requested: AccessLevel) -> AccessLevel:
    """Return ``requested`` only if it is strictly above ``current``."""
    return requested if requested > current else current
