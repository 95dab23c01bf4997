"""Tests for turning Stripe webhook events into processor events."""

from datetime import datetime, timezone
from decimal import Decimal
from unittest.mock import AsyncMock, patch

import pytest
import stripe

from resumakr.billing.webhooks import (
    _get_period_end,
    _get_price_id_from_subscription,
    extract_processor_event,
)

PERIOD_END_TS = 1_709_290_800  # 2024-03-01 11:00:00 UTC
PERIOD_END = datetime.fromtimestamp(PERIOD_END_TS, tz=timezone.utc).replace(tzinfo=None)


def _subscription(status: str = "active", price_id: str = "price_monthly_test") -> dict:
    return {
        "id": "sub_123",
        "object": "subscription",
        "customer": "cus_123",
        "status": status,
        "metadata": {"user_id": "0b7f3e9c-1111-4a57-9a4b-6a1f6f0a2b3c"},
        "items": {
            "object": "list",
            "data": [
                {
                    "id": "si_1",
                    "current_period_end": PERIOD_END_TS,
                    "price": {"id": price_id, "unit_amount": 999},
                }
            ],
        },
    }


def _event(event_type: str, obj: dict, as_stripe: bool = False):
    data = {"id": "evt_123", "object": "event", "type": event_type, "data": {"object": obj}}
    if as_stripe:
        return stripe.Event.construct_from(data, "sk_test_dummy")
    return data


class TestSubscriptionHelpers:
    def test_price_and_period_from_first_item(self):
        sub = stripe.Subscription.construct_from(_subscription(), "sk_test_dummy")
        assert _get_price_id_from_subscription(sub) == "price_monthly_test"
        assert _get_period_end(sub) == PERIOD_END

    def test_period_end_falls_back_to_subscription(self):
        sub = _subscription()
        sub["items"]["data"][0].pop("current_period_end")
        sub["current_period_end"] = PERIOD_END_TS
        assert _get_period_end(sub) == PERIOD_END

    def test_no_items(self):
        assert _get_price_id_from_subscription({"items": {"data": []}}) is None
        assert _get_period_end({}) is None


class TestExtractProcessorEvent:
    @pytest.mark.parametrize("as_stripe", [False, True])
    async def test_subscription_updated(self, as_stripe):
        event = await extract_processor_event(
            _event("customer.subscription.updated", _subscription("past_due"), as_stripe)
        )
        assert event.external_event_id == "evt_123"
        assert event.event_type == "customer.subscription.updated"
        assert event.subject_id == "sub_123"
        assert event.customer_id == "cus_123"
        assert event.status == "past_due"
        assert event.price_id == "price_monthly_test"
        assert event.current_period_end == PERIOD_END
        assert event.amount == Decimal("9.99")
        assert event.user_id == "0b7f3e9c-1111-4a57-9a4b-6a1f6f0a2b3c"
        assert event.raw["id"] == "sub_123"

    async def test_checkout_fetches_subscription(self):
        session = {
            "id": "cs_1",
            "object": "checkout.session",
            "customer": "cus_123",
            "subscription": "sub_123",
            "client_reference_id": "user-uuid",
            "amount_total": 7999,
            "metadata": {"coupon_code": "LAUNCH20"},
        }
        stripe_sub = stripe.Subscription.construct_from(
            _subscription(price_id="price_annual_test"), "sk_test_dummy"
        )
        with patch(
            "resumakr.billing.webhooks.get_subscription",
            new_callable=AsyncMock,
            return_value=stripe_sub,
        ) as mock_get:
            event = await extract_processor_event(_event("checkout.session.completed", session, True))

        mock_get.assert_awaited_once_with("sub_123")
        assert event.subject_id == "sub_123"
        assert event.user_id == "user-uuid"
        assert event.price_id == "price_annual_test"
        assert event.current_period_end == PERIOD_END
        assert event.amount == Decimal("79.99")
        assert event.coupon_code == "LAUNCH20"

    async def test_checkout_survives_subscription_fetch_failure(self):
        session = {"id": "cs_1", "customer": "cus_1", "subscription": "sub_9", "metadata": {}}
        with patch(
            "resumakr.billing.webhooks.get_subscription",
            new_callable=AsyncMock,
            side_effect=stripe.APIConnectionError("network down"),
        ):
            event = await extract_processor_event(_event("checkout.session.completed", session))

        assert event.subject_id == "sub_9"
        assert event.price_id is None
        assert event.current_period_end is None

    async def test_one_time_checkout_has_no_subject(self):
        session = {"id": "cs_2", "customer": "cus_1", "subscription": None, "metadata": {}}
        with patch("resumakr.billing.webhooks.get_subscription", new_callable=AsyncMock) as mock_get:
            event = await extract_processor_event(_event("checkout.session.completed", session))
        mock_get.assert_not_awaited()
        assert event.subject_id is None

    @pytest.mark.parametrize(
        "invoice",
        [
            {"id": "in_1", "customer": "cus_1", "subscription": "sub_1", "amount_paid": 999},
            {
                "id": "in_1",
                "customer": "cus_1",
                "amount_paid": 999,
                "parent": {"subscription_details": {"subscription": "sub_1"}},
            },
        ],
    )
    async def test_invoice_subscription_reference(self, invoice):
        event = await extract_processor_event(_event("invoice.payment_succeeded", invoice))
        assert event.subject_id == "sub_1"
        assert event.customer_id == "cus_1"
        assert event.amount == Decimal("9.99")

    async def test_payment_intent(self):
        intent = {
            "id": "pi_1",
            "customer": "cus_1",
            "amount": 999,
            "amount_received": 999,
            "currency": "USD",
            "status": "succeeded",
            "metadata": {"user_id": "u1"},
            "latest_charge": {
                "id": "ch_1",
                "payment_method_details": {"card": {"brand": "visa", "last4": "4242"}},
            },
        }
        event = await extract_processor_event(_event("payment_intent.succeeded", intent, True))
        assert event.payment.payment_intent_id == "pi_1"
        assert event.payment.amount == Decimal("9.99")
        assert event.payment.currency == "usd"
        assert event.payment.charge_id == "ch_1"
        assert (event.payment.brand, event.payment.last4) == ("visa", "4242")
        assert event.user_id == "u1"

    async def test_payment_intent_with_unexpanded_charge(self):
        intent = {"id": "pi_2", "amount": 500, "currency": "usd", "latest_charge": "ch_2"}
        event = await extract_processor_event(_event("payment_intent.succeeded", intent))
        assert event.payment.charge_id == "ch_2"
        assert event.payment.brand is None

    async def test_unknown_event_type_keeps_id_and_type(self):
        event = await extract_processor_event(
            _event("customer.subscription.trial_will_end", {"id": "sub_5"})
        )
        assert event.event_type == "customer.subscription.trial_will_end"
        assert event.subject_id == "sub_5"
        assert event.payment is None
