"""Tests for payment backends and routing."""

from datetime import UTC, datetime, timedelta
import json

import httpx
import pytest

from health_fusion.subscription import HTTPPaymentBackend, PaymentRouter, Receipt, SubscriptionTier
from health_fusion.subscription.errors import (
    PaymentCancelledError,
    PaymentConfigurationError,
    PaymentError,
    PaymentPendingError,
    PaymentProductNotFoundError,
    PaymentVerificationError,
)


def _backend(handler, name="app_store"):
    client = httpx.AsyncClient(
        base_url="http://billing.test", transport=httpx.MockTransport(handler)
    )
    return HTTPPaymentBackend(name, "http://billing.test", client=client)


class StaticBackend:
    def __init__(self, name, receipt=None):
        self.name = name
        self.receipt = receipt
        self.purchases = []

    async def purchase(self, tier):
        self.purchases.append(tier)
        return self.receipt

    async def current_entitlement(self):
        return self.receipt


async def test_purchase_posts_product_and_parses_receipt():
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(
            200,
            json={
                "product_id": "com.ibiome.personal.monthly",
                "active": True,
                "transaction_id": "txn-1",
            },
        )

    backend = _backend(handler)
    receipt = await backend.purchase(SubscriptionTier.PERSONAL)
    await backend.close()

    assert receipt.tier == SubscriptionTier.PERSONAL
    assert receipt.transaction_id == "txn-1"
    assert receipt.backend == "app_store"
    assert receipt.is_active

    assert requests[0].method == "POST"
    assert requests[0].url.path == "/purchases"
    body = json.loads(requests[0].content)
    assert body["product_id"] == "com.ibiome.personal.monthly"
    assert body["amount"] == 999
    assert body["currency"] == "usd"


@pytest.mark.parametrize(
    ("status", "error"),
    [
        (404, PaymentProductNotFoundError),
        (402, PaymentCancelledError),
        (409, PaymentPendingError),
        (401, PaymentConfigurationError),
        (403, PaymentConfigurationError),
        (500, PaymentError),
    ],
)
async def test_purchase_maps_status_codes(status, error):
    backend = _backend(lambda request: httpx.Response(status, json={}))

    with pytest.raises(error):
        await backend.purchase(SubscriptionTier.PROFESSIONAL)


async def test_purchase_without_receipt_fails_verification():
    backend = _backend(lambda request: httpx.Response(200, text="ok"))

    with pytest.raises(PaymentVerificationError, match="not JSON"):
        await backend.purchase(SubscriptionTier.PERSONAL)

    backend = _backend(lambda request: httpx.Response(200, json={"entitlement": None}))
    with pytest.raises(PaymentVerificationError, match="no receipt"):
        await backend.purchase(SubscriptionTier.PERSONAL)


async def test_transport_error_becomes_payment_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    backend = _backend(handler)

    with pytest.raises(PaymentError, match="app_store"):
        await backend.current_entitlement()


async def test_entitlement_lookup():
    expires = (datetime.now(UTC) - timedelta(days=1)).isoformat()
    responses = iter(
        [
            httpx.Response(404),
            httpx.Response(
                200,
                json={
                    "entitlement": {
                        "product_id": "com.ibiome.research.yearly",
                        "active": True,
                        "expires_at": expires,
                    }
                },
            ),
            httpx.Response(200, json={"product_id": "bogus"}),
        ]
    )
    backend = _backend(lambda request: next(responses), name="hosted_checkout")

    assert await backend.current_entitlement() is None

    expired = await backend.current_entitlement()
    assert expired.tier == SubscriptionTier.RESEARCH
    assert expired.active
    assert not expired.is_active

    with pytest.raises(PaymentVerificationError):
        await backend.current_entitlement()


async def test_non_string_expiry_fails_verification():
    backend = _backend(
        lambda request: httpx.Response(
            200,
            json={"product_id": "com.ibiome.personal", "active": True, "expires_at": 1735689600},
        )
    )

    with pytest.raises(PaymentVerificationError, match="app_store"):
        await backend.purchase(SubscriptionTier.PERSONAL)


async def test_unconfigured_backend():
    backend = HTTPPaymentBackend("app_store", None)

    assert await backend.current_entitlement() is None
    with pytest.raises(PaymentConfigurationError, match="no endpoint"):
        await backend.purchase(SubscriptionTier.PERSONAL)
    await backend.close()


async def test_router_sends_each_tier_to_its_channel():
    app_store = StaticBackend("app_store")
    hosted = StaticBackend("hosted_checkout")
    router = PaymentRouter(app_store, hosted)

    await router.purchase(SubscriptionTier.PROFESSIONAL)
    await router.purchase(SubscriptionTier.ENTERPRISE)

    assert app_store.purchases == [SubscriptionTier.PROFESSIONAL]
    assert hosted.purchases == [SubscriptionTier.ENTERPRISE]
    assert router.backend_for(SubscriptionTier.RESEARCH) is hosted


async def test_router_prefers_active_entitlement():
    inactive = Receipt("com.ibiome.personal", SubscriptionTier.PERSONAL, False, "app_store")
    active = Receipt("com.ibiome.research", SubscriptionTier.RESEARCH, True, "hosted_checkout")

    router = PaymentRouter(StaticBackend("app_store", inactive), StaticBackend("hosted", active))
    assert await router.current_entitlement() is active

    router = PaymentRouter(StaticBackend("app_store", inactive), StaticBackend("hosted"))
    assert await router.current_entitlement() is inactive

    router = PaymentRouter(StaticBackend("app_store"), StaticBackend("hosted"))
    assert await router.current_entitlement() is None


async def test_router_reports_highest_active_entitlement():
    professional = Receipt(
        "com.ibiome.professional", SubscriptionTier.PROFESSIONAL, True, "app_store"
    )
    research = Receipt("com.ibiome.research", SubscriptionTier.RESEARCH, True, "hosted_checkout")

    router = PaymentRouter(
        StaticBackend("app_store", professional), StaticBackend("hosted", research)
    )

    assert await router.current_entitlement() is research
