"""Payment collaborators: HTTP billing backends and per-tier routing."""

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, Protocol

import httpx
import structlog

from ..tracing import trace_headers
from .errors import (
    PaymentCancelledError,
    PaymentConfigurationError,
    PaymentError,
    PaymentPendingError,
    PaymentProductNotFoundError,
    PaymentVerificationError,
)
from .tiers import TIER_TABLE, BillingInterval, PaymentChannel, SubscriptionTier, TierDefinition

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class Receipt:
    """An entitlement as reported by a payment collaborator."""

    product_id: str
    tier: SubscriptionTier
    active: bool
    backend: str
    expires_at: datetime | None = None
    transaction_id: str | None = None

    @property
    def is_active(self) -> bool:
        if not self.active:
            return False
        return self.expires_at is None or self.expires_at > datetime.now(UTC)


class PaymentBackend(Protocol):
    name: str

    async def purchase(self, tier: SubscriptionTier) -> Receipt: ...

    async def current_entitlement(self) -> Receipt | None: ...


def product_id_for(tier: SubscriptionTier, interval: BillingInterval) -> str:
    return f"{tier.product_id}.{interval.value}"


class HTTPPaymentBackend:
    """Billing service client.

    ``POST /purchases`` buys a product and returns the receipt;
    ``GET /entitlement`` returns the active entitlement or 404.
    """

    def __init__(
        self,
        name: str,
        base_url: str | None,
        api_token: str | None = None,
        timeout: float = 15.0,
        tier_table: Mapping[SubscriptionTier, TierDefinition] = TIER_TABLE,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.name = name
        self._tier_table = tier_table
        headers = {"Content-Type": "application/json"}
        if api_token:
            headers["Authorization"] = f"Bearer {api_token}"
        if client is not None:
            self._client: httpx.AsyncClient | None = client
        elif base_url:
            self._client = httpx.AsyncClient(base_url=base_url, headers=headers, timeout=timeout)
        else:
            self._client = None

    def _require_client(self) -> httpx.AsyncClient:
        if self._client is None:
            raise PaymentConfigurationError(f"Payment backend '{self.name}' has no endpoint")
        return self._client

    async def purchase(self, tier: SubscriptionTier) -> Receipt:
        """Buy the monthly product for a tier.

        Raises:
            PaymentProductNotFoundError: 404.
            PaymentCancelledError: 402, the buyer cancelled or was declined.
            PaymentPendingError: 409, awaiting approval.
            PaymentConfigurationError: No endpoint, or 401/403.
            PaymentVerificationError: 2xx with a body that is not a receipt.
            PaymentError: Any other failure.
        """
        client = self._require_client()
        definition = self._tier_table[tier]
        payload = {
            "product_id": product_id_for(tier, BillingInterval.MONTHLY),
            "tier": tier.value,
            "amount": definition.checkout_amount_cents,
            "currency": "usd",
            "metadata": {"tier": tier.product_id, "backend": self.name},
        }
        try:
            response = await client.post("/purchases", json=payload, headers=trace_headers())
        except httpx.HTTPError as e:
            raise PaymentError(f"{self.name}: {e}") from e

        status = response.status_code
        if status == 404:
            raise PaymentProductNotFoundError(payload["product_id"])
        if status == 402:
            raise PaymentCancelledError(f"{self.name}: purchase cancelled")
        if status == 409:
            raise PaymentPendingError(f"{self.name}: purchase pending")
        if status in (401, 403):
            raise PaymentConfigurationError(f"{self.name}: auth error {status}")
        if not response.is_success:
            raise PaymentError(f"{self.name}: HTTP {status}")

        receipt = self._parse_receipt(response)
        if receipt is None:
            raise PaymentVerificationError(f"{self.name}: purchase returned no receipt")
        logger.info(
            "purchase_completed",
            backend=self.name,
            tier=tier.value,
            transaction_id=receipt.transaction_id,
        )
        return receipt

    async def current_entitlement(self) -> Receipt | None:
        """Active entitlement, or None when there is none or no endpoint is configured."""
        if self._client is None:
            logger.debug("payment_backend_unconfigured", backend=self.name)
            return None
        client = self._client
        try:
            response = await client.get("/entitlement", headers=trace_headers())
        except httpx.HTTPError as e:
            raise PaymentError(f"{self.name}: {e}") from e

        if response.status_code == 404:
            return None
        if not response.is_success:
            raise PaymentError(f"{self.name}: HTTP {response.status_code}")
        return self._parse_receipt(response)

    def _parse_receipt(self, response: httpx.Response) -> Receipt | None:
        try:
            data: Any = response.json()
        except ValueError as e:
            raise PaymentVerificationError(f"{self.name}: response is not JSON") from e

        if isinstance(data, dict) and "entitlement" in data:
            data = data["entitlement"]
        if data is None:
            return None
        if not isinstance(data, dict) or "product_id" not in data:
            raise PaymentVerificationError(f"{self.name}: missing product_id")

        try:
            tier = SubscriptionTier.from_product_id(str(data["product_id"]))
            expires = data.get("expires_at")
            expires_at = datetime.fromisoformat(expires) if expires else None
            if expires_at is not None and expires_at.tzinfo is None:
                expires_at = expires_at.replace(tzinfo=UTC)
            return Receipt(
                product_id=str(data["product_id"]),
                tier=tier,
                active=bool(data.get("active", False)),
                backend=self.name,
                expires_at=expires_at,
                transaction_id=data.get("transaction_id"),
            )
        except (TypeError, ValueError) as e:
            raise PaymentVerificationError(f"{self.name}: {e}") from e

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()


class PaymentRouter:
    """Route purchases to the collaborator that sells each tier.

    App store for individual tiers, hosted checkout for research and
    enterprise.
    """

    def __init__(
        self,
        app_store: PaymentBackend,
        hosted_checkout: PaymentBackend,
        tier_table: Mapping[SubscriptionTier, TierDefinition] = TIER_TABLE,
    ) -> None:
        self._backends = {
            PaymentChannel.APP_STORE: app_store,
            PaymentChannel.HOSTED_CHECKOUT: hosted_checkout,
        }
        self._tier_table = tier_table

    def backend_for(self, tier: SubscriptionTier) -> PaymentBackend:
        return self._backends[self._tier_table[tier].channel]

    async def purchase(self, tier: SubscriptionTier) -> Receipt:
        backend = self.backend_for(tier)
        logger.info("purchase_routed", tier=tier.value, backend=backend.name)
        return await backend.purchase(tier)

    async def current_entitlement(self) -> Receipt | None:
        """Highest active entitlement across backends.

        Without an active one, the first inactive receipt found, app store first.
        """
        ranks = list(SubscriptionTier)
        best: Receipt | None = None
        inactive: Receipt | None = None
        for backend in self._backends.values():
            receipt = await backend.current_entitlement()
            if receipt is None:
                continue
            if not receipt.is_active:
                inactive = inactive or receipt
            elif best is None or ranks.index(receipt.tier) > ranks.index(best.tier):
                best = receipt
        return best or inactive
