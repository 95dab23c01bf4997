"""Entitlement dependencies: build the request context and enforce gates with 402."""

import logging
from collections.abc import Awaitable, Callable

from fastapi import Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from resumakr.auth.dependencies import get_current_active_user
from resumakr.billing.entitlements import AuthenticatedContext, build_context
from resumakr.billing.facts import SubscriptionFacts
from resumakr.billing.gate import Feature, GateDecision, check_feature
from resumakr.billing.tiers import TierCatalog, get_tier_catalog
from resumakr.billing.timeutils import utcnow
from resumakr.billing.usage import load_usage_counters
from resumakr.database import get_db
from resumakr.models.user import User

logger = logging.getLogger(__name__)


async def get_authenticated_context(
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_active_user),
    catalog: TierCatalog = Depends(get_tier_catalog),
) -> AuthenticatedContext:
    """Resolve tier, limits and usage once for this request."""
    now = utcnow()
    counters = await load_usage_counters(db, user, now)
    return build_context(
        user_id=user.id,
        email=user.email,
        role=user.role,
        facts=SubscriptionFacts.from_user(user),
        counters=counters,
        now=now,
        catalog=catalog,
    )


def raise_if_denied(decision: GateDecision) -> GateDecision:
    """Raise HTTP 402 with the upgrade payload when the gate denied."""
    if not decision.allowed:
        raise HTTPException(
            status_code=status.HTTP_402_PAYMENT_REQUIRED,
            detail=decision.to_detail(),
        )
    return decision


def require_feature(feature: Feature) -> Callable[..., Awaitable[AuthenticatedContext]]:
    """Dependency factory: allow the route only if ``feature`` passes the gate.

    Usage::

        @router.post("/cover-letters")
        async def create(ctx: AuthenticatedContext = Depends(require_feature(Feature.COVER_LETTERS))):
            ...
    """

    async def _check(
        ctx: AuthenticatedContext = Depends(get_authenticated_context),
    ) -> AuthenticatedContext:
        raise_if_denied(check_feature(ctx, feature, ctx.resolved_at))
        return ctx

    return _check


async def require_admin(
    user: User = Depends(get_current_active_user),
) -> User:
    """Raise 403 unless the caller is an admin."""
    if not user.is_admin:
        logger.warning("Non-admin user %s attempted an admin action", user.id)
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required",
        )
    return user
