"""Stripe webhook endpoint: verifies events and hands them to the reconciler."""

import logging

import stripe
from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from resumakr.billing.reconciler import apply_subscription_event
from resumakr.billing.stripe_client import construct_webhook_event
from resumakr.billing.webhooks import extract_processor_event
from resumakr.database import get_session_factory

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/webhooks", tags=["webhooks"])


@router.post("/stripe")
async def stripe_webhook(
    request: Request,
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> dict[str, str]:
    """Receive and reconcile Stripe webhook events.

    Returns 200 for processed, duplicate, orphaned and ignored events so
    Stripe stops redelivering; 500 leaves the event unprocessed for retry.
    """
    # 1. Read raw body (MUST be raw bytes for signature verification)
    payload = await request.body()
    sig_header = request.headers.get("stripe-signature", "")

    # 2. Verify signature
    try:
        event = construct_webhook_event(payload, sig_header)
    except stripe.SignatureVerificationError as e:
        logger.warning("Webhook signature verification failed")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid signature",
        ) from e
    except ValueError as e:
        logger.warning("Invalid webhook payload")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid payload",
        ) from e

    logger.info("Received webhook event: %s (id=%s)", event.type, event.id)

    # 3. Reconcile in its own session (webhook has no auth context)
    try:
        processor_event = await extract_processor_event(event)
        async with session_factory() as db:
            outcome = await apply_subscription_event(db, processor_event)
    except Exception as e:
        logger.exception("Error processing webhook event %s", event.id)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Webhook processing failed",
        ) from e

    return {"status": outcome.value}
