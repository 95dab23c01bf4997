"""Plan definitions: purchasable subscription plans and their billing periods."""

import calendar
from dataclasses import dataclass
from datetime import datetime, timedelta

from resumakr.config import settings


@dataclass(frozen=True)
class SubscriptionPlan:
    """A purchasable plan. Any active plan grants the paid tier."""

    plan_id: str
    display_name: str
    period: str  # "day", "week", "month" or "year"
    duration: int
    price_cents: int
    stripe_price_id: str | None  # None until configured in Stripe


PLANS: dict[str, SubscriptionPlan] = {
    "monthly": SubscriptionPlan(
        plan_id="monthly",
        display_name="Monthly",
        period="month",
        duration=1,
        price_cents=999,
        stripe_price_id=settings.stripe_monthly_price_id or None,
    ),
    "annual": SubscriptionPlan(
        plan_id="annual",
        display_name="Annual",
        period="year",
        duration=1,
        price_cents=7999,
        stripe_price_id=settings.stripe_annual_price_id or None,
    ),
}

VALID_PLAN_IDS: set[str] = set(PLANS.keys())


def get_plan(plan_id: str | None) -> SubscriptionPlan | None:
    """Get a plan by id. Returns None if unknown."""
    if plan_id is None:
        return None
    return PLANS.get(plan_id)


def get_plan_by_price_id(price_id: str | None) -> SubscriptionPlan | None:
    """Reverse lookup: Stripe price ID -> plan. Returns None if not found."""
    if not price_id:
        return None
    for plan in PLANS.values():
        if plan.stripe_price_id and plan.stripe_price_id == price_id:
            return plan
    return None


def _add_months(start: datetime, months: int) -> datetime:
    month_index = start.month - 1 + months
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    day = min(start.day, calendar.monthrange(year, month)[1])
    return start.replace(year=year, month=month, day=day)


def calculate_end_date(start: datetime, period: str, duration: int) -> datetime:
    """Paid-through date for a plan starting at ``start``.

    Months and years advance by calendar (Jan 23 -> Feb 23, Jan 31 -> Feb 28),
    weeks and days by fixed offsets. Unknown periods count as days.
    """
    if period == "month":
        return _add_months(start, duration)
    if period == "year":
        return _add_months(start, 12 * duration)
    if period == "week":
        return start + timedelta(weeks=duration)
    return start + timedelta(days=duration)
