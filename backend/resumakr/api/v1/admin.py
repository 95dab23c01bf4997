"""Admin endpoints: direct subscription edits and AI credit grants."""

import logging
import uuid
from dataclasses import asdict

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from resumakr.api.deps import get_db, require_admin
from resumakr.billing.entitlements import resolve_tier
from resumakr.billing.facts import SubscriptionFacts
from resumakr.billing.timeutils import utcnow
from resumakr.billing.usage import grant_ai_credits
from resumakr.models.user import User
from resumakr.schemas.subscriptions import (
    AdminSubscriptionUpdate,
    AICreditGrantRequest,
    AICreditGrantResponse,
    SubscriptionFactsResponse,
)
from resumakr.services.notifications import notify_subscription_changed
from resumakr.services.subscription_service import admin_update_subscription, get_user

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/admin", tags=["admin"])


def _facts_response(user: User) -> SubscriptionFactsResponse:
    facts = SubscriptionFacts.from_user(user)
    return SubscriptionFactsResponse(
        user_id=user.id,
        email=user.email,
        tier=resolve_tier(facts, utcnow()).value,
        **asdict(facts),
    )


@router.get("/users/{user_id}/subscription", response_model=SubscriptionFactsResponse)
async def get_user_subscription(
    user_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_admin),
) -> SubscriptionFactsResponse:
    user = await get_user(db, user_id)
    return _facts_response(user)


@router.patch("/users/{user_id}/subscription", response_model=SubscriptionFactsResponse)
async def update_user_subscription(
    user_id: uuid.UUID,
    body: AdminSubscriptionUpdate,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_admin),
) -> SubscriptionFactsResponse:
    """Edit a user's subscription fields.

    The edit is validated and committed before the user is notified; a failed
    notification does not undo it.

    Raises:
        NotFoundError (404): unknown user.
        InvariantViolation (422): the edit would leave inconsistent fields.
    """
    changes = body.model_dump(exclude_unset=True)
    user = await admin_update_subscription(db, user_id, changes, actor=admin.email)
    await db.commit()

    logger.info("Admin %s updated subscription of user %s: %s", admin.email, user_id, sorted(changes))
    await notify_subscription_changed(user.email, user.full_name, SubscriptionFacts.from_user(user))
    return _facts_response(user)


@router.post("/users/{user_id}/ai-credits", response_model=AICreditGrantResponse)
async def grant_user_ai_credits(
    user_id: uuid.UUID,
    body: AICreditGrantRequest,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_admin),
) -> AICreditGrantResponse:
    bonus = await grant_ai_credits(db, user_id, body.credits)
    logger.info("Admin %s granted %d AI credit(s) to user %s", admin.email, body.credits, user_id)
    return AICreditGrantResponse(user_id=user_id, ai_credits_bonus=bonus)
