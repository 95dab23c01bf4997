"""Pydantic v2 request/response schemas for plans and Stripe Checkout."""

from pydantic import BaseModel

# --- Request schemas ---


class CheckoutRequest(BaseModel):
    """Request to create a Stripe Checkout session."""

    plan: str  # "monthly" or "annual"
    coupon_code: str | None = None
    success_url: str | None = None
    cancel_url: str | None = None


# --- Response schemas ---


class PlanResponse(BaseModel):
    """Purchasable plan for display."""

    plan_id: str
    display_name: str
    period: str
    duration: int
    price_cents: int


class PlansListResponse(BaseModel):
    """All purchasable plans."""

    plans: list[PlanResponse]


class CheckoutResponse(BaseModel):
    """Stripe Checkout session URL returned to frontend."""

    checkout_url: str
    session_id: str
