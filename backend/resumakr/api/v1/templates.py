"""Template access endpoint: premium templates and the free allowlist."""

from fastapi import APIRouter, Depends, Query

from resumakr.api.deps import get_authenticated_context
from resumakr.billing.entitlements import AuthenticatedContext
from resumakr.billing.gate import check_template_access
from resumakr.schemas.subscriptions import TemplateAccessResponse

router = APIRouter(prefix="/api/v1/templates", tags=["templates"])


@router.get("/{template_id}/access", response_model=TemplateAccessResponse)
async def template_access(
    template_id: str,
    is_premium: bool = Query(True, description="Whether the template is marked premium"),
    ctx: AuthenticatedContext = Depends(get_authenticated_context),
) -> TemplateAccessResponse:
    decision = check_template_access(ctx, template_id, is_premium)
    return TemplateAccessResponse(
        template_id=template_id,
        is_premium=is_premium,
        allowed=decision.allowed,
        tier=ctx.tier.value,
        reason=decision.reason,
        message=decision.upgrade_message,
        upgrade_url=decision.upgrade_url,
    )
