"""Stripe client wrapper tests.

Webhook signature checks run offline. The live API tests only run when a
real test-mode key is configured.
"""

import hashlib
import hmac
import json
import time

import pytest
import stripe

from resumakr.billing.stripe_client import (
    construct_webhook_event,
    create_checkout_session,
    create_customer,
)
from resumakr.config import settings


def _signed_header(payload: bytes, secret: str, timestamp: int | None = None) -> str:
    timestamp = timestamp or int(time.time())
    signed = f"{timestamp}.{payload.decode()}".encode()
    signature = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


PAYLOAD = json.dumps(
    {
        "id": "evt_sig_1",
        "object": "event",
        "type": "customer.subscription.deleted",
        "data": {"object": {"id": "sub_1", "object": "subscription"}},
    }
).encode()


class TestConstructWebhookEvent:
    def test_valid_signature(self):
        event = construct_webhook_event(
            PAYLOAD, _signed_header(PAYLOAD, settings.stripe_webhook_secret)
        )
        assert event.id == "evt_sig_1"
        assert event.type == "customer.subscription.deleted"
        assert event.data.object["id"] == "sub_1"

    def test_wrong_secret(self):
        with pytest.raises(stripe.SignatureVerificationError):
            construct_webhook_event(PAYLOAD, _signed_header(PAYLOAD, "whsec_other"))

    def test_stale_timestamp(self):
        header = _signed_header(PAYLOAD, settings.stripe_webhook_secret, int(time.time()) - 3600)
        with pytest.raises(stripe.SignatureVerificationError):
            construct_webhook_event(PAYLOAD, header)

    def test_tampered_payload(self):
        header = _signed_header(PAYLOAD, settings.stripe_webhook_secret)
        with pytest.raises(stripe.SignatureVerificationError):
            construct_webhook_event(PAYLOAD.replace(b"sub_1", b"sub_2"), header)


LIVE_KEY = settings.stripe_secret_key.startswith("sk_test_") and settings.stripe_secret_key != "sk_test_dummy"


@pytest.mark.skipif(not LIVE_KEY, reason="No Stripe test-mode key configured")
class TestStripeIntegration:
    """Real Stripe API tests: only run when a test-mode key is available."""

    async def test_create_real_customer(self):
        customer = await create_customer(
            email="integration-test@resumakr.test",
            name="Integration Test User",
            user_id="test-integration-user-id",
        )
        assert customer.id.startswith("cus_")
        assert customer.metadata["user_id"] == "test-integration-user-id"

    async def test_create_checkout_session_returns_url(self):
        if not settings.stripe_monthly_price_id.startswith("price_") or (
            settings.stripe_monthly_price_id == "price_monthly_test"
        ):
            pytest.skip("STRIPE_MONTHLY_PRICE_ID not configured")

        customer = await create_customer(
            email="checkout-test@resumakr.test",
            name="Checkout Test User",
            user_id="test-checkout-user-id",
        )
        session = await create_checkout_session(
            customer_id=customer.id,
            user_id="test-checkout-user-id",
            price_id=settings.stripe_monthly_price_id,
            success_url="https://example.com/success",
            cancel_url="https://example.com/cancel",
        )
        assert session.id.startswith("cs_")
        assert session.client_reference_id == "test-checkout-user-id"
        assert session.url is not None
