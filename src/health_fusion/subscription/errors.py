"""Subscription and payment exception hierarchies."""

from .tiers import SubscriptionTier


class SubscriptionError(Exception):
    """Base class for subscription failures surfaced to callers."""


class ProductNotFoundError(SubscriptionError):
    def __init__(self, tier: SubscriptionTier) -> None:
        super().__init__(f"No product available for tier '{tier.value}'")
        self.tier = tier


class PurchaseFailedError(SubscriptionError):
    def __init__(self, tier: SubscriptionTier, reason: str) -> None:
        super().__init__(f"Purchase of '{tier.value}' failed: {reason}")
        self.tier = tier
        self.reason = reason


class SubscriptionValidationError(SubscriptionError):
    """The payment collaborator did not confirm the purchased entitlement."""


class PaymentError(Exception):
    """Base class for payment collaborator failures."""


class PaymentProductNotFoundError(PaymentError):
    pass


class PaymentCancelledError(PaymentError):
    pass


class PaymentPendingError(PaymentError):
    pass


class PaymentVerificationError(PaymentError):
    """The collaborator's response could not be verified as a receipt."""


class PaymentConfigurationError(PaymentError):
    """The backend is missing an endpoint or credentials."""


class FeatureNotAvailableError(SubscriptionError):
    """The current tier does not include any feature the operation needs."""

    def __init__(self, operation: str, tier: SubscriptionTier) -> None:
        super().__init__(f"'{operation}' is not available on tier '{tier.value}'")
        self.operation = operation
        self.tier = tier
