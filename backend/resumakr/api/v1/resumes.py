"""Resume creation quota endpoints: rolling 24-hour cap."""

import logging

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from resumakr.api.deps import get_authenticated_context, get_db, raise_if_denied
from resumakr.billing.entitlements import AuthenticatedContext
from resumakr.billing.gate import Feature, check_feature
from resumakr.billing.usage import log_resume_creation
from resumakr.schemas.subscriptions import ResumeCreationRequest, ResumeQuotaResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/resumes", tags=["resumes"])


@router.get("/quota", response_model=ResumeQuotaResponse)
async def resume_quota(
    ctx: AuthenticatedContext = Depends(get_authenticated_context),
) -> ResumeQuotaResponse:
    decision = check_feature(ctx, Feature.RESUME_CREATION, ctx.resolved_at)
    return ResumeQuotaResponse(
        can_create=decision.allowed,
        used=decision.used or 0,
        limit=decision.limit,
        remaining=decision.remaining,
        reset_in_hours=decision.reset_in_hours,
    )


@router.post("/creations", response_model=ResumeQuotaResponse, status_code=status.HTTP_201_CREATED)
async def record_resume_creation(
    body: ResumeCreationRequest,
    db: AsyncSession = Depends(get_db),
    ctx: AuthenticatedContext = Depends(get_authenticated_context),
) -> ResumeQuotaResponse:
    """Count a new resume against the daily cap.

    Raises:
        HTTPException 402: daily limit reached (detail carries ``reset_in_hours``).
    """
    decision = raise_if_denied(check_feature(ctx, Feature.RESUME_CREATION, ctx.resolved_at))
    await log_resume_creation(db, ctx.user_id, body.resume_id, ctx.resolved_at)

    used = (decision.used or 0) + 1
    limit = decision.limit
    return ResumeQuotaResponse(
        can_create=limit is None or used < limit,
        used=used,
        limit=limit,
        remaining=None if limit is None else max(0, limit - used),
    )
