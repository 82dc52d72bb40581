"""Subscription tiers, entitlements and payment routing."""

from .errors import (
    FeatureNotAvailableError,
    PaymentError,
    ProductNotFoundError,
    PurchaseFailedError,
    SubscriptionError,
    SubscriptionValidationError,
)
from .manager import SubscriptionManager
from .payments import HTTPPaymentBackend, PaymentRouter, Receipt
from .tiers import TIER_TABLE, AccessLevel, Feature, SubscriptionTier, elevate

__all__ = [
    "AccessLevel",
    "Feature",
    "FeatureNotAvailableError",
    "HTTPPaymentBackend",
    "PaymentError",
    "PaymentRouter",
    "ProductNotFoundError",
    "PurchaseFailedError",
    "Receipt",
    "SubscriptionError",
    "SubscriptionManager",
    "SubscriptionTier",
    "SubscriptionValidationError",
    "TIER_TABLE",
    "elevate",
]
