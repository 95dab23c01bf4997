"""AI credit endpoints: balance and post-success consumption."""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from resumakr.api.deps import get_authenticated_context, get_db, raise_if_denied
from resumakr.billing.entitlements import AuthenticatedContext
from resumakr.billing.gate import Feature, check_feature, usage_limit_denial
from resumakr.billing.usage import (
    ai_credit_total,
    ai_usage_from_counters,
    claim_ai_credits,
    get_ai_credits,
    get_remaining_ai_credits,
)
from resumakr.schemas.subscriptions import AICreditConsumeRequest, AICreditsResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/ai-credits", tags=["ai-credits"])


@router.get("", response_model=AICreditsResponse)
async def get_credits(
    ctx: AuthenticatedContext = Depends(get_authenticated_context),
) -> AICreditsResponse:
    usage = ai_usage_from_counters(ctx.limits, ctx.counters)
    return AICreditsResponse(
        used=usage.used,
        total=usage.limit,
        remaining=usage.remaining,
        bonus=ctx.counters.ai_credits_bonus,
        unlimited=usage.limit is None,
    )


@router.post("/consume", response_model=AICreditsResponse)
async def consume_credits(
    body: AICreditConsumeRequest,
    db: AsyncSession = Depends(get_db),
    ctx: AuthenticatedContext = Depends(get_authenticated_context),
) -> AICreditsResponse:
    """Charge credits for an AI call that already succeeded.

    Raises:
        HTTPException 402: fewer credits left than the call costs.
    """
    raise_if_denied(
        check_feature(ctx, Feature.AI_INVOCATION, ctx.resolved_at, cost=body.credits)
    )

    used = await claim_ai_credits(
        db,
        ctx.user_id,
        action=body.action,
        tier=ctx.tier,
        allowance=ctx.limits.ai_credits_total,
        credits=body.credits,
        resume_id=body.resume_id,
    )
    if used is None:
        usage = await get_ai_credits(db, ctx.user_id, ctx.limits)
        raise_if_denied(usage_limit_denial(ctx, Feature.AI_INVOCATION, usage))

    total = ai_credit_total(ctx.limits, ctx.counters)
    return AICreditsResponse(
        used=used,
        total=total,
        remaining=get_remaining_ai_credits(total, used),
        bonus=ctx.counters.ai_credits_bonus,
        unlimited=total is None,
    )
