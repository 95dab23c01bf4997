"""Stripe webhook events -> ProcessorEvent.

Pulls the fields the reconciler needs out of a verified Stripe event. Works
on ``stripe.Event`` objects and on the equivalent plain dicts.
"""

import json
import logging
from decimal import Decimal
from typing import Any

import stripe

from resumakr.billing.reconciler import EventType, PaymentDetails, ProcessorEvent
from resumakr.billing.stripe_client import get_subscription
from resumakr.billing.timeutils import ts_to_naive

logger = logging.getLogger(__name__)


def _field(obj: Any, name: str) -> Any:
    """Read a key with bracket notation (``items`` collides with dict.items)."""
    if obj is None or isinstance(obj, str):
        return None
    try:
        return obj[name]
    except (KeyError, TypeError, AttributeError):
        return None


def _id_of(obj: Any) -> str | None:
    """Stripe references are either an id string or an expanded object."""
    if obj is None or isinstance(obj, str):
        return obj
    return _field(obj, "id")


def _as_dict(obj: Any) -> dict[str, Any]:
    if obj is None:
        return {}
    if isinstance(obj, stripe.StripeObject):
        return json.loads(str(obj))
    return dict(obj)


def _cents(value: Any) -> Decimal | None:
    if value is None:
        return None
    return (Decimal(value) / 100).quantize(Decimal("0.01"))


def _metadata(obj: Any) -> dict[str, Any]:
    return _as_dict(_field(obj, "metadata"))


def _get_first_item(stripe_sub: Any) -> Any:
    sub_items = _field(stripe_sub, "items")
    data = _field(sub_items, "data")
    if data:
        return data[0]
    return None


def _get_price_id_from_subscription(stripe_sub: Any) -> str | None:
    item = _get_first_item(stripe_sub)
    return _id_of(_field(item, "price")) if item else None


def _get_period_end(stripe_sub: Any):
    """Current period end from the first item, falling back to the subscription.

    In Stripe API 2025-08-27 (basil), current_period_end moved from the
    subscription object to the subscription item.
    """
    item = _get_first_item(stripe_sub)
    ts = _field(item, "current_period_end") if item else None
    if ts is None:
        ts = _field(stripe_sub, "current_period_end")
    return ts_to_naive(ts)


def _get_coupon(obj: Any) -> str | None:
    coupon = _metadata(obj).get("coupon_code")
    if coupon:
        return coupon
    discount = _field(obj, "discount")
    return _id_of(_field(discount, "coupon")) if discount else None


def _invoice_subscription_id(invoice: Any) -> str | None:
    sub = _field(invoice, "subscription")
    if sub:
        return _id_of(sub)
    details = _field(_field(invoice, "parent"), "subscription_details")
    return _id_of(_field(details, "subscription"))


async def _checkout_fields(session: Any) -> dict[str, Any]:
    subscription_id = _id_of(_field(session, "subscription"))
    fields: dict[str, Any] = {
        "subject_id": subscription_id,
        "customer_id": _id_of(_field(session, "customer")),
        "user_id": _field(session, "client_reference_id") or _metadata(session).get("user_id"),
        "amount": _cents(_field(session, "amount_total")),
        "coupon_code": _metadata(session).get("coupon_code"),
    }
    if not subscription_id:
        return fields

    # Price and period live on the subscription, not the session
    try:
        stripe_sub = await get_subscription(subscription_id)
    except stripe.StripeError as e:
        logger.warning("Could not fetch subscription %s for checkout: %s", subscription_id, e)
        return fields
    fields["price_id"] = _get_price_id_from_subscription(stripe_sub)
    fields["current_period_end"] = _get_period_end(stripe_sub)
    fields["status"] = _field(stripe_sub, "status")
    return fields


def _subscription_fields(stripe_sub: Any) -> dict[str, Any]:
    item = _get_first_item(stripe_sub)
    price = _field(item, "price") if item else None
    return {
        "subject_id": _field(stripe_sub, "id"),
        "customer_id": _id_of(_field(stripe_sub, "customer")),
        "user_id": _metadata(stripe_sub).get("user_id"),
        "price_id": _id_of(price),
        "status": _field(stripe_sub, "status"),
        "current_period_end": _get_period_end(stripe_sub),
        "amount": _cents(_field(price, "unit_amount")),
        "coupon_code": _get_coupon(stripe_sub),
    }


def _invoice_fields(invoice: Any) -> dict[str, Any]:
    return {
        "subject_id": _invoice_subscription_id(invoice),
        "customer_id": _id_of(_field(invoice, "customer")),
        "status": _field(invoice, "status"),
        "amount": _cents(_field(invoice, "amount_paid")),
    }


def _payment_fields(intent: Any) -> dict[str, Any]:
    charge = _field(intent, "latest_charge")
    card = _field(_field(charge, "payment_method_details"), "card")
    amount = _field(intent, "amount_received")
    if amount is None:
        amount = _field(intent, "amount")
    payment = PaymentDetails(
        payment_intent_id=_field(intent, "id"),
        amount=_cents(amount) or Decimal("0.00"),
        currency=(_field(intent, "currency") or "usd").lower(),
        status=_field(intent, "status") or "succeeded",
        charge_id=_id_of(charge),
        brand=_field(card, "brand"),
        last4=_field(card, "last4"),
        description=_field(intent, "description"),
    )
    return {
        "subject_id": payment.payment_intent_id,
        "customer_id": _id_of(_field(intent, "customer")),
        "user_id": _metadata(intent).get("user_id"),
        "status": payment.status,
        "amount": payment.amount,
        "payment": payment,
    }


async def extract_processor_event(event: Any) -> ProcessorEvent:
    """Build a ProcessorEvent from a verified Stripe event.

    Unknown event types still produce an event (with only id and type) so
    they are logged.
    """
    event_type = _field(event, "type")
    obj = _field(_field(event, "data"), "object")

    if event_type == EventType.CHECKOUT_COMPLETED.value:
        fields = await _checkout_fields(obj)
    elif event_type in (
        EventType.SUBSCRIPTION_CREATED.value,
        EventType.SUBSCRIPTION_UPDATED.value,
        EventType.SUBSCRIPTION_DELETED.value,
    ):
        fields = _subscription_fields(obj)
    elif event_type in (EventType.INVOICE_PAYMENT_SUCCEEDED.value, EventType.INVOICE_PAID.value):
        fields = _invoice_fields(obj)
    elif event_type == EventType.PAYMENT_SUCCEEDED.value:
        fields = _payment_fields(obj)
    else:
        fields = {"subject_id": _id_of(obj)}

    return ProcessorEvent(
        external_event_id=_field(event, "id"),
        event_type=event_type,
        raw=_as_dict(obj),
        **fields,
    )
