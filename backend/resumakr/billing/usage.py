"""Usage counter store: PDF downloads, AI credits, and resume creations.

PDF downloads count per calendar month. The stored counter rolls over lazily:
reads treat a stale ``usage_period`` as zero, and the next increment resets
and increments in one conditional UPDATE so concurrent downloads cannot lose
updates. AI credits are a lifetime counter. The plain increments never
enforce limits; that is the feature gate's job. The ``claim_*`` variants
repeat the limit inside the UPDATE's WHERE clause, so concurrent requests
that all passed the gate cannot push a counter past its limit.
"""

import logging
import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import case, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from resumakr.billing.exceptions import NotFoundError, StorageError
from resumakr.billing.facts import UsageCounters
from resumakr.billing.tiers import Tier, TierLimits
from resumakr.billing.timeutils import period_key, utcnow
from resumakr.models.ai_credit_usage import AICreditUsage
from resumakr.models.resume_creation import ResumeCreation
from resumakr.models.user import User

logger = logging.getLogger(__name__)

RESUME_WINDOW = timedelta(hours=24)


@dataclass(frozen=True)
class UsageSnapshot:
    """Usage against a limit. ``limit``/``remaining`` are None when unlimited."""

    used: int
    limit: int | None
    remaining: int | None

    @property
    def exceeded(self) -> bool:
        return self.limit is not None and self.used >= self.limit

    def to_dict(self) -> dict[str, int | None]:
        return {"used": self.used, "limit": self.limit, "remaining": self.remaining}


def remaining_for(used: int, limit: int | None) -> int | None:
    """``max(0, limit - used)``, or None for an unlimited cap."""
    if limit is None:
        return None
    return max(0, limit - used)


@asynccontextmanager
async def _storage(operation: str) -> AsyncIterator[None]:
    try:
        yield
    except SQLAlchemyError as e:
        logger.exception("Storage failure during %s", operation)
        raise StorageError(operation, e) from e


# ---------------------------------------------------------------------------
# PDF downloads (monthly)
# ---------------------------------------------------------------------------


def pdf_usage_from_counters(
    counters: UsageCounters, limit: int | None, now: datetime
) -> UsageSnapshot:
    used = counters.pdf_downloads_in(period_key(now))
    return UsageSnapshot(used=used, limit=limit, remaining=remaining_for(used, limit))


def has_exceeded_pdf_limit(
    counters: UsageCounters, limit: int | None, now: datetime | None = None
) -> bool:
    """True when ``limit`` is finite and this month's downloads reached it."""
    if limit is None:
        return False
    return counters.pdf_downloads_in(period_key(now or utcnow())) >= limit


async def get_pdf_usage(
    db: AsyncSession,
    user_id: uuid.UUID,
    limit: int | None,
    now: datetime | None = None,
) -> UsageSnapshot:
    """Read this month's PDF usage without persisting a rollover."""
    async with _storage("get_pdf_usage"):
        result = await db.execute(
            select(User.pdf_downloads_used, User.usage_period).where(User.id == user_id)
        )
        row = result.one_or_none()
    if row is None:
        raise NotFoundError("User", user_id)

    counters = UsageCounters(pdf_downloads_used=row.pdf_downloads_used, usage_period=row.usage_period)
    return pdf_usage_from_counters(counters, limit, now or utcnow())


async def increment_pdf_download(
    db: AsyncSession,
    user_id: uuid.UUID,
    now: datetime | None = None,
) -> int:
    """Record one PDF download and return the new count for this month.

    A single UPDATE resets the counter when the stored period is stale and
    increments it otherwise, so the read-modify-write is atomic per user.
    """
    period = period_key(now or utcnow())
    stmt = (
        update(User)
        .where(User.id == user_id)
        .values(
            pdf_downloads_used=case(
                (User.usage_period == period, User.pdf_downloads_used + 1),
                else_=1,
            ),
            usage_period=period,
        )
        .returning(User.pdf_downloads_used)
        .execution_options(synchronize_session=False)
    )
    async with _storage("increment_pdf_download"):
        result = await db.execute(stmt)
        new_count = result.scalar_one_or_none()
    if new_count is None:
        raise NotFoundError("User", user_id)

    if new_count == 1:
        logger.info("PDF download counter for user %s started period %s", user_id, period)
    return new_count


async def _ensure_user_exists(db: AsyncSession, user_id: uuid.UUID, operation: str) -> None:
    async with _storage(operation):
        result = await db.execute(select(User.id).where(User.id == user_id))
        found = result.scalar_one_or_none()
    if found is None:
        raise NotFoundError("User", user_id)


async def claim_pdf_download(
    db: AsyncSession,
    user_id: uuid.UUID,
    limit: int | None,
    now: datetime | None = None,
) -> int | None:
    """Record one PDF download only if it stays within ``limit``.

    Returns the new count for this month, or None when the limit is already
    reached. The check and the increment are the same UPDATE, so the count
    never exceeds ``limit`` however many requests race.
    """
    if limit is None:
        return await increment_pdf_download(db, user_id, now)

    period = period_key(now or utcnow())
    current = case((User.usage_period == period, User.pdf_downloads_used), else_=0)
    stmt = (
        update(User)
        .where(User.id == user_id, current < limit)
        .values(pdf_downloads_used=current + 1, usage_period=period)
        .returning(User.pdf_downloads_used)
        .execution_options(synchronize_session=False)
    )
    async with _storage("claim_pdf_download"):
        result = await db.execute(stmt)
        new_count = result.scalar_one_or_none()
    if new_count is None:
        await _ensure_user_exists(db, user_id, "claim_pdf_download")
        logger.info("PDF download for user %s refused at limit %d", user_id, limit)
        return None

    if new_count == 1:
        logger.info("PDF download counter for user %s started period %s", user_id, period)
    return new_count


# ---------------------------------------------------------------------------
# AI credits (lifetime)
# ---------------------------------------------------------------------------


def ai_credit_total(limits: TierLimits, counters: UsageCounters) -> int | None:
    """Tier allowance plus admin-granted bonus credits; None when unlimited."""
    if limits.ai_credits_total is None:
        return None
    return limits.ai_credits_total + counters.ai_credits_bonus


def get_remaining_ai_credits(total: int | None, used: int) -> int | None:
    return remaining_for(used, total)


def ai_usage_from_counters(limits: TierLimits, counters: UsageCounters) -> UsageSnapshot:
    total = ai_credit_total(limits, counters)
    used = counters.ai_credits_used
    return UsageSnapshot(used=used, limit=total, remaining=get_remaining_ai_credits(total, used))


async def get_ai_credits(
    db: AsyncSession, user_id: uuid.UUID, limits: TierLimits
) -> UsageSnapshot:
    async with _storage("get_ai_credits"):
        result = await db.execute(
            select(User.ai_credits_used, User.ai_credits_bonus).where(User.id == user_id)
        )
        row = result.one_or_none()
    if row is None:
        raise NotFoundError("User", user_id)
    counters = UsageCounters(ai_credits_used=row.ai_credits_used, ai_credits_bonus=row.ai_credits_bonus)
    return ai_usage_from_counters(limits, counters)


async def record_ai_credit_usage(
    db: AsyncSession,
    user_id: uuid.UUID,
    action: str,
    tier: Tier,
    credits: int = 1,
    resume_id: uuid.UUID | None = None,
) -> int:
    """Charge credits for a completed AI call and log it. Returns the new used total.

    Call only after the AI call succeeded; failed calls are never charged.
    """
    if credits < 1:
        raise ValueError("credits must be a positive integer")

    stmt = (
        update(User)
        .where(User.id == user_id)
        .values(ai_credits_used=User.ai_credits_used + credits)
        .returning(User.ai_credits_used)
        .execution_options(synchronize_session=False)
    )
    async with _storage("record_ai_credit_usage"):
        result = await db.execute(stmt)
        used = result.scalar_one_or_none()
        if used is None:
            raise NotFoundError("User", user_id)
        await _log_ai_credit_usage(db, user_id, action, tier, credits, resume_id)

    logger.info("User %s spent %d AI credit(s) on %s (used=%d)", user_id, credits, action, used)
    return used


async def claim_ai_credits(
    db: AsyncSession,
    user_id: uuid.UUID,
    action: str,
    tier: Tier,
    allowance: int | None,
    credits: int = 1,
    resume_id: uuid.UUID | None = None,
) -> int | None:
    """Charge ``credits`` only if ``used + credits`` stays within the allowance.

    ``allowance`` is the tier's credit total before bonus credits; the stored
    bonus is added inside the UPDATE. Returns the new used total, or None
    (nothing charged, nothing logged) when the credits would overdraw.
    """
    if allowance is None:
        return await record_ai_credit_usage(
            db, user_id, action=action, tier=tier, credits=credits, resume_id=resume_id
        )
    if credits < 1:
        raise ValueError("credits must be a positive integer")

    stmt = (
        update(User)
        .where(
            User.id == user_id,
            User.ai_credits_used + credits <= allowance + User.ai_credits_bonus,
        )
        .values(ai_credits_used=User.ai_credits_used + credits)
        .returning(User.ai_credits_used)
        .execution_options(synchronize_session=False)
    )
    async with _storage("claim_ai_credits"):
        result = await db.execute(stmt)
        used = result.scalar_one_or_none()
        if used is not None:
            await _log_ai_credit_usage(db, user_id, action, tier, credits, resume_id)
    if used is None:
        await _ensure_user_exists(db, user_id, "claim_ai_credits")
        logger.info("User %s refused %d AI credit(s) on %s: allowance exhausted", user_id, credits, action)
        return None

    logger.info("User %s spent %d AI credit(s) on %s (used=%d)", user_id, credits, action, used)
    return used


async def _log_ai_credit_usage(
    db: AsyncSession,
    user_id: uuid.UUID,
    action: str,
    tier: Tier,
    credits: int,
    resume_id: uuid.UUID | None,
) -> None:
    db.add(
        AICreditUsage(
            user_id=user_id,
            resume_id=resume_id,
            action=action,
            credits_used=credits,
            user_tier=Tier(tier).value,
        )
    )
    await db.flush()


async def grant_ai_credits(db: AsyncSession, user_id: uuid.UUID, credits: int) -> int:
    """Add bonus AI credits to a user's allowance. Returns the new bonus total."""
    if credits < 1:
        raise ValueError("credits must be a positive integer")

    stmt = (
        update(User)
        .where(User.id == user_id)
        .values(ai_credits_bonus=User.ai_credits_bonus + credits)
        .returning(User.ai_credits_bonus)
        .execution_options(synchronize_session=False)
    )
    async with _storage("grant_ai_credits"):
        result = await db.execute(stmt)
        bonus = result.scalar_one_or_none()
    if bonus is None:
        raise NotFoundError("User", user_id)

    logger.info("Granted %d AI credit(s) to user %s (bonus=%d)", credits, user_id, bonus)
    return bonus


# ---------------------------------------------------------------------------
# Resume creations (rolling 24h window)
# ---------------------------------------------------------------------------


async def get_resume_window(
    db: AsyncSession, user_id: uuid.UUID, now: datetime | None = None
) -> tuple[int, datetime | None]:
    """Resumes created in the last 24 hours and when the oldest one leaves the window."""
    now = now or utcnow()
    async with _storage("get_resume_window"):
        result = await db.execute(
            select(func.count(), func.min(ResumeCreation.created_at)).where(
                ResumeCreation.user_id == user_id,
                ResumeCreation.created_at > now - RESUME_WINDOW,
            )
        )
        count, oldest = result.one()
    resets_at = oldest + RESUME_WINDOW if oldest is not None else None
    return count or 0, resets_at


async def log_resume_creation(
    db: AsyncSession,
    user_id: uuid.UUID,
    resume_id: uuid.UUID | None = None,
    now: datetime | None = None,
) -> None:
    async with _storage("log_resume_creation"):
        db.add(ResumeCreation(user_id=user_id, resume_id=resume_id, created_at=now or utcnow()))
        await db.flush()


async def load_usage_counters(
    db: AsyncSession, user: User, now: datetime | None = None
) -> UsageCounters:
    """Snapshot the user's counters together with the resume window."""
    count, resets_at = await get_resume_window(db, user.id, now)
    return UsageCounters.from_user(
        user,
        resumes_created_last_24h=count,
        resume_window_resets_at=resets_at,
    )
