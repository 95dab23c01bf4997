"""Subscription service: user lookups and the single write path for subscription facts.

Admin edits and the event reconciler both go through
``write_subscription_facts`` on a row locked with ``SELECT ... FOR UPDATE``,
so each path validates and persists the facts atomically on its own.
"""

import logging
import uuid
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from resumakr.billing.exceptions import NotFoundError, StorageError
from resumakr.billing.facts import SubscriptionFacts, ensure_valid_subscription_facts
from resumakr.billing.stripe_client import create_customer
from resumakr.billing.timeutils import utcnow
from resumakr.models.user import User

logger = logging.getLogger(__name__)


def _parse_uuid(value: Any) -> uuid.UUID | None:
    if value is None or isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except ValueError:
        return None


async def get_user(
    db: AsyncSession, user_id: uuid.UUID, *, for_update: bool = False
) -> User:
    """Load a user, optionally taking a row lock. Raises NotFoundError."""
    stmt = select(User).where(User.id == user_id)
    if for_update:
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    try:
        result = await db.execute(stmt)
    except SQLAlchemyError as e:
        raise StorageError("get_user", e) from e
    user = result.scalar_one_or_none()
    if user is None:
        raise NotFoundError("User", user_id)
    return user


async def find_user_for_subject(
    db: AsyncSession,
    *,
    subscription_id: str | None = None,
    customer_id: str | None = None,
    user_id: str | uuid.UUID | None = None,
) -> User | None:
    """Locate (and lock) the user a processor event refers to.

    Tries the external subscription id, then the customer id, then the user id
    the checkout was tagged with. Returns None for orphaned events.
    """
    lookups = []
    if subscription_id:
        lookups.append(User.external_subscription_id == subscription_id)
    if customer_id:
        lookups.append(User.external_customer_id == customer_id)
    parsed_user_id = _parse_uuid(user_id)
    if parsed_user_id is not None:
        lookups.append(User.id == parsed_user_id)

    for condition in lookups:
        try:
            result = await db.execute(
                select(User)
                .where(condition)
                .with_for_update()
                .execution_options(populate_existing=True)
            )
        except SQLAlchemyError as e:
            raise StorageError("find_user_for_subject", e) from e
        user = result.scalar_one_or_none()
        if user is not None:
            return user
    return None


async def write_subscription_facts(
    db: AsyncSession,
    user: User,
    changes: dict[str, Any],
    *,
    source: str,
) -> SubscriptionFacts:
    """Merge ``changes`` into the user's facts, validate, and flush.

    The caller must hold the row lock (``get_user(..., for_update=True)`` or
    ``find_user_for_subject``). Raises InvariantViolation before anything is
    written if the merged facts are inconsistent.
    """
    previous = SubscriptionFacts.from_user(user)
    updated = previous.merge(**changes)
    ensure_valid_subscription_facts(updated, previous)

    updated.apply_to(user)
    try:
        await db.flush()
    except SQLAlchemyError as e:
        raise StorageError("write_subscription_facts", e) from e

    logger.info(
        "Subscription facts for user %s written by %s: subscribed=%s plan=%s ends=%s",
        user.id,
        source,
        updated.is_subscribed,
        updated.subscription_plan,
        updated.subscription_end_date,
    )
    return updated


async def admin_update_subscription(
    db: AsyncSession,
    user_id: uuid.UUID,
    changes: dict[str, Any],
    *,
    actor: str,
) -> User:
    """Apply an admin edit to a user's subscription fields.

    Turning a subscription on stamps ``subscription_started_at`` (unless given)
    and clears ``cancelled_at``; turning it off stamps ``cancelled_at``.
    """
    user = await get_user(db, user_id, for_update=True)
    changes = dict(changes)
    now = utcnow()

    turning_on = changes.get("is_subscribed") is True and not user.is_subscribed
    turning_off = changes.get("is_subscribed") is False and user.is_subscribed
    if turning_on:
        changes.setdefault("subscription_started_at", user.subscription_started_at or now)
        changes.setdefault("cancelled_at", None)
    elif turning_off:
        changes.setdefault("cancelled_at", now)

    await write_subscription_facts(db, user, changes, source=f"admin:{actor}")
    return user


async def ensure_stripe_customer(db: AsyncSession, user: User) -> str:
    """Ensure the user has a Stripe customer ID. Create one if missing."""
    if user.external_customer_id:
        return user.external_customer_id

    customer = await create_customer(
        email=user.email,
        name=user.full_name or user.email,
        user_id=str(user.id),
    )
    locked = await get_user(db, user.id, for_update=True)
    await write_subscription_facts(
        db, locked, {"external_customer_id": customer.id}, source="checkout"
    )
    logger.info("Linked Stripe customer %s to user %s", customer.id, user.id)
    return customer.id
