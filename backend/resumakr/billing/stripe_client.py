"""Async Stripe API wrapper for Resumakr."""

import logging

import stripe
from stripe import StripeClient

from resumakr.config import settings

logger = logging.getLogger(__name__)


def get_stripe_client() -> StripeClient:
    """Create a StripeClient instance with async HTTP support."""
    return StripeClient(
        settings.stripe_secret_key,
        http_client=stripe.HTTPXClient(),
    )


async def create_customer(email: str, name: str, user_id: str) -> stripe.Customer:
    """Create a Stripe customer linked to a Resumakr user."""
    client = get_stripe_client()
    logger.info("Creating Stripe customer for user %s (%s)", user_id, email)
    customer = await client.v1.customers.create_async(
        params={
            "email": email,
            "name": name,
            "metadata": {"user_id": user_id},
        }
    )
    logger.info("Created Stripe customer %s for user %s", customer.id, user_id)
    return customer


async def create_checkout_session(
    customer_id: str,
    user_id: str,
    price_id: str,
    success_url: str,
    cancel_url: str,
    coupon_code: str | None = None,
) -> stripe.checkout.Session:
    """Create a subscription-mode Checkout Session tagged with the user id.

    The user id is set as ``client_reference_id`` and copied into the session
    and subscription metadata so webhook events can be matched to the user.
    """
    client = get_stripe_client()
    logger.info(
        "Creating checkout session for customer %s, price %s",
        customer_id,
        price_id,
    )
    metadata = {"user_id": user_id}
    if coupon_code:
        metadata["coupon_code"] = coupon_code
    params: dict = {
        "mode": "subscription",
        "customer": customer_id,
        "client_reference_id": user_id,
        "line_items": [{"price": price_id, "quantity": 1}],
        "success_url": success_url,
        "cancel_url": cancel_url,
        "metadata": metadata,
        "subscription_data": {"metadata": metadata},
    }
    if coupon_code:
        params["discounts"] = [{"coupon": coupon_code}]
    else:
        params["allow_promotion_codes"] = True
    return await client.v1.checkout.sessions.create_async(params=params)


async def get_subscription(subscription_id: str) -> stripe.Subscription:
    """Retrieve a Stripe subscription by ID."""
    client = get_stripe_client()
    return await client.v1.subscriptions.retrieve_async(subscription_id)


def construct_webhook_event(payload: bytes, sig_header: str) -> stripe.Event:
    """Verify and construct a Stripe webhook event (synchronous)."""
    client = get_stripe_client()
    return client.construct_event(payload, sig_header, settings.stripe_webhook_secret)
