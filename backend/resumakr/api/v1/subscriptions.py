"""Subscription endpoints: plan listing and the caller's effective tier."""

import logging

from fastapi import APIRouter, Depends

from resumakr.api.deps import get_authenticated_context
from resumakr.billing.entitlements import AuthenticatedContext
from resumakr.billing.gate import Feature, check_feature
from resumakr.billing.plans import PLANS
from resumakr.billing.tiers import BOOLEAN_FEATURES
from resumakr.billing.usage import ai_usage_from_counters, pdf_usage_from_counters
from resumakr.config import settings
from resumakr.schemas.billing import PlanResponse, PlansListResponse
from resumakr.schemas.subscriptions import (
    MyTierResponse,
    TierUsageResponse,
    UsageCountResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/subscriptions", tags=["subscriptions"])


@router.get("/plans", response_model=PlansListResponse)
async def list_plans() -> PlansListResponse:
    """List purchasable plans (public, no auth required)."""
    return PlansListResponse(
        plans=[
            PlanResponse(
                plan_id=p.plan_id,
                display_name=p.display_name,
                period=p.period,
                duration=p.duration,
                price_cents=p.price_cents,
            )
            for p in PLANS.values()
        ]
    )


@router.get("/my-tier", response_model=MyTierResponse)
async def my_tier(
    ctx: AuthenticatedContext = Depends(get_authenticated_context),
) -> MyTierResponse:
    """Effective tier, limits, current usage and feature flags."""
    now = ctx.resolved_at
    pdf = pdf_usage_from_counters(ctx.counters, ctx.limits.pdf_downloads_per_month, now)
    ai = ai_usage_from_counters(ctx.limits, ctx.counters)
    resumes = check_feature(ctx, Feature.RESUME_CREATION, now)

    return MyTierResponse(
        tier=ctx.tier.value,
        is_subscribed=ctx.facts.is_subscribed,
        subscription_plan=ctx.facts.subscription_plan,
        subscription_end_date=ctx.facts.subscription_end_date,
        cancelled_at=ctx.facts.cancelled_at,
        limits=ctx.limits.to_dict(),
        usage=TierUsageResponse(
            pdf_downloads=UsageCountResponse(**pdf.to_dict()),
            ai_credits=UsageCountResponse(**ai.to_dict()),
            resumes_today=UsageCountResponse(
                used=resumes.used or 0, limit=resumes.limit, remaining=resumes.remaining
            ),
        ),
        features={name: ctx.limits.has_feature(name) for name in BOOLEAN_FEATURES},
        upgrade_url=None if ctx.is_paid else f"{settings.frontend_url}{settings.upgrade_path}",
    )
