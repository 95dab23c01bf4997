"""Billing API endpoints: Stripe Checkout for subscription upgrades."""

import logging

import stripe
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from resumakr.api.deps import get_current_active_user, get_db
from resumakr.billing.plans import VALID_PLAN_IDS, get_plan
from resumakr.billing.stripe_client import create_checkout_session
from resumakr.config import settings
from resumakr.models.user import User
from resumakr.schemas.billing import CheckoutRequest, CheckoutResponse
from resumakr.services.subscription_service import ensure_stripe_customer

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/billing", tags=["billing"])


@router.post("/checkout", response_model=CheckoutResponse)
async def create_checkout(
    body: CheckoutRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
) -> CheckoutResponse:
    """Create a Stripe Checkout session for a subscription plan."""
    if body.plan not in VALID_PLAN_IDS:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid plan. Choose one of: {', '.join(sorted(VALID_PLAN_IDS))}.",
        )

    plan = get_plan(body.plan)
    if not plan.stripe_price_id:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Stripe price ID not configured for plan.",
        )

    success_url = (
        body.success_url
        or f"{settings.frontend_url}/billing?session_id={{CHECKOUT_SESSION_ID}}"
    )
    cancel_url = body.cancel_url or f"{settings.frontend_url}{settings.upgrade_path}"

    try:
        customer_id = await ensure_stripe_customer(db, current_user)
        session = await create_checkout_session(
            customer_id=customer_id,
            user_id=str(current_user.id),
            price_id=plan.stripe_price_id,
            success_url=success_url,
            cancel_url=cancel_url,
            coupon_code=body.coupon_code,
        )
    except stripe.StripeError as e:
        logger.error("Stripe checkout error: %s", e)
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=str(e),
        ) from e

    await db.commit()

    return CheckoutResponse(
        checkout_url=session.url,
        session_id=session.id,
    )
