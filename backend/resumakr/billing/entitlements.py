"""Entitlement resolver: effective tier and limits from raw subscription facts.

Both functions are pure and total: they never raise and never touch storage,
so callers can run them on every request without caching.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime

from resumakr.billing.facts import SubscriptionFacts, UsageCounters
from resumakr.billing.tiers import Tier, TierCatalog, TierLimits
from resumakr.billing.timeutils import as_naive_utc


def resolve_tier(facts: SubscriptionFacts | None, now: datetime) -> Tier:
    """``paid`` iff subscribed with an end date strictly after ``now``."""
    if facts is None:
        return Tier.FREE
    end_date = getattr(facts, "subscription_end_date", None)
    if not getattr(facts, "is_subscribed", False) or not isinstance(end_date, datetime):
        return Tier.FREE
    if not isinstance(now, datetime):
        return Tier.FREE
    try:
        still_paid = as_naive_utc(end_date) > as_naive_utc(now)
    except (OverflowError, ValueError):
        return Tier.FREE
    return Tier.PAID if still_paid else Tier.FREE


def resolve_limits(
    facts: SubscriptionFacts | None, now: datetime, catalog: TierCatalog
) -> TierLimits:
    """Limits for the tier ``facts`` resolve to at ``now``."""
    return catalog.get_limits(resolve_tier(facts, now))


@dataclass(frozen=True)
class AuthenticatedContext:
    """Per-request view of the caller, built once and passed to gate checks."""

    user_id: uuid.UUID
    email: str
    role: str
    facts: SubscriptionFacts
    counters: UsageCounters
    tier: Tier
    limits: TierLimits
    resolved_at: datetime

    @property
    def is_paid(self) -> bool:
        return self.tier is Tier.PAID

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


def build_context(
    user_id: uuid.UUID,
    email: str,
    role: str,
    facts: SubscriptionFacts,
    counters: UsageCounters,
    now: datetime,
    catalog: TierCatalog,
) -> AuthenticatedContext:
    """Resolve tier and limits once and freeze them into a request context."""
    tier = resolve_tier(facts, now)
    return AuthenticatedContext(
        user_id=user_id,
        email=email,
        role=role,
        facts=facts,
        counters=counters,
        tier=tier,
        limits=catalog.get_limits(tier),
        resolved_at=now,
    )
