"""Subscription facts and usage counters, plus the shared consistency check.

``validate_subscription_facts`` is the one invariant check every write path
(admin edits, the event reconciler) runs before persisting.
"""

from dataclasses import dataclass, fields, replace
from datetime import datetime
from decimal import Decimal
from typing import Any

from resumakr.billing.exceptions import InvariantViolation


@dataclass(frozen=True)
class SubscriptionFacts:
    """Raw subscription fields as stored on the user record."""

    is_subscribed: bool = False
    subscription_plan: str | None = None
    subscription_end_date: datetime | None = None
    subscription_started_at: datetime | None = None
    cancelled_at: datetime | None = None
    coupon_code_used: str | None = None
    subscription_price: Decimal | None = None
    external_customer_id: str | None = None
    external_subscription_id: str | None = None

    @classmethod
    def from_user(cls, user: Any) -> "SubscriptionFacts":
        return cls(**{name: getattr(user, name) for name in FACT_FIELDS})

    def apply_to(self, user: Any) -> None:
        """Copy every fact onto the ORM user."""
        for name in FACT_FIELDS:
            setattr(user, name, getattr(self, name))

    def merge(self, **changes: Any) -> "SubscriptionFacts":
        unknown = set(changes) - set(FACT_FIELDS)
        if unknown:
            raise TypeError(f"Unknown subscription fields: {sorted(unknown)}")
        return replace(self, **changes)


FACT_FIELDS: tuple[str, ...] = tuple(f.name for f in fields(SubscriptionFacts))


@dataclass(frozen=True)
class UsageCounters:
    """Usage counters as stored on the user record, plus the resume log count."""

    ai_credits_used: int = 0
    ai_credits_bonus: int = 0
    pdf_downloads_used: int = 0
    usage_period: str | None = None
    resumes_created_last_24h: int = 0
    resume_window_resets_at: datetime | None = None

    @classmethod
    def from_user(
        cls,
        user: Any,
        resumes_created_last_24h: int = 0,
        resume_window_resets_at: datetime | None = None,
    ) -> "UsageCounters":
        return cls(
            ai_credits_used=user.ai_credits_used or 0,
            ai_credits_bonus=user.ai_credits_bonus or 0,
            pdf_downloads_used=user.pdf_downloads_used or 0,
            usage_period=user.usage_period,
            resumes_created_last_24h=resumes_created_last_24h,
            resume_window_resets_at=resume_window_resets_at,
        )

    def pdf_downloads_in(self, period: str) -> int:
        """Downloads counted toward ``period``; a stale period counts as zero."""
        if self.usage_period != period:
            return 0
        return self.pdf_downloads_used


def validate_subscription_facts(
    facts: SubscriptionFacts,
    previous: SubscriptionFacts | None = None,
) -> list[str]:
    """Return the list of consistency violations. Empty means the facts are valid.

    Rules:
      * a subscribed record carries both a plan and an end date;
      * an unsubscribed record only carries a plan or end date if it is left
        over from an earlier subscription (``subscription_started_at`` set);
      * a plan cannot be assigned or changed while unsubscribed.
    """
    violations: list[str] = []

    if facts.is_subscribed:
        if facts.subscription_plan is None:
            violations.append("is_subscribed requires subscription_plan")
        if facts.subscription_end_date is None:
            violations.append("is_subscribed requires subscription_end_date")
    else:
        carries_subscription = (
            facts.subscription_plan is not None or facts.subscription_end_date is not None
        )
        if carries_subscription and facts.subscription_started_at is None:
            violations.append(
                "subscription_plan/subscription_end_date require is_subscribed"
            )
        elif (
            previous is not None
            and facts.subscription_plan is not None
            and facts.subscription_plan != previous.subscription_plan
        ):
            violations.append("subscription_plan cannot change while not subscribed")

    if facts.subscription_price is not None and facts.subscription_price < 0:
        violations.append("subscription_price cannot be negative")

    return violations


def ensure_valid_subscription_facts(
    facts: SubscriptionFacts,
    previous: SubscriptionFacts | None = None,
) -> None:
    """Raise InvariantViolation if ``facts`` break the consistency rule."""
    violations = validate_subscription_facts(facts, previous)
    if violations:
        raise InvariantViolation(violations)
