"""Feature gate: allow or deny a feature for an authenticated context.

Every denial carries the feature key, a human-readable upgrade message and
the upgrade URL; counted features also carry used/limit/remaining so clients
can render "x of y remaining" without another request.
"""

import logging
import math
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any

from resumakr.billing.entitlements import AuthenticatedContext
from resumakr.billing.exceptions import UnknownFeatureError
from resumakr.billing.tiers import BOOLEAN_FEATURES, Tier
from resumakr.billing.timeutils import utcnow
from resumakr.billing.usage import (
    UsageSnapshot,
    ai_usage_from_counters,
    pdf_usage_from_counters,
    remaining_for,
)
from resumakr.config import settings

logger = logging.getLogger(__name__)


class Feature(str, Enum):
    """Gateable features."""

    PREMIUM_TEMPLATES = "premium_templates"
    COVER_LETTERS = "cover_letters"
    VERSION_HISTORY = "version_history"
    RESUME_PARSING = "resume_parsing"
    ATS_DETAILED_INSIGHTS = "ats_detailed_insights"
    PDF_EXPORT = "pdf_export"
    AI_INVOCATION = "ai_invocation"
    RESUME_CREATION = "resume_creation"


COUNTED_FEATURES = frozenset({Feature.PDF_EXPORT, Feature.AI_INVOCATION, Feature.RESUME_CREATION})

UPGRADE_MESSAGES: dict[Feature, str] = {
    Feature.PREMIUM_TEMPLATES: "Premium templates are available on paid plans.",
    Feature.COVER_LETTERS: "Cover letters are available on paid plans.",
    Feature.VERSION_HISTORY: "Version history is available on paid plans.",
    Feature.RESUME_PARSING: "Resume import and parsing is available on paid plans.",
    Feature.ATS_DETAILED_INSIGHTS: "Detailed ATS insights are available on paid plans.",
    Feature.PDF_EXPORT: (
        "You have reached your monthly PDF download limit. Upgrade for unlimited downloads."
    ),
    Feature.AI_INVOCATION: "You have used all of your AI credits. Upgrade for unlimited AI assistance.",
    Feature.RESUME_CREATION: "You have reached the daily resume creation limit.",
}


@dataclass(frozen=True)
class GateDecision:
    """Outcome of a gate check."""

    allowed: bool
    feature: str
    tier: Tier
    reason: str | None = None
    upgrade_message: str | None = None
    upgrade_url: str | None = None
    used: int | None = None
    limit: int | None = None
    remaining: int | None = None
    reset_in_hours: int | None = None

    def to_detail(self) -> dict[str, Any]:
        """Structured payload for an upgrade prompt (HTTP 402 detail)."""
        detail: dict[str, Any] = {
            "feature": self.feature,
            "reason": self.reason,
            "message": self.upgrade_message,
            "tier": self.tier.value,
            "upgrade_url": self.upgrade_url,
        }
        if self.limit is not None or self.used is not None:
            detail.update({"used": self.used, "limit": self.limit, "remaining": self.remaining})
        if self.reset_in_hours is not None:
            detail["reset_in_hours"] = self.reset_in_hours
        return detail


def _upgrade_url() -> str:
    return f"{settings.frontend_url}{settings.upgrade_path}"


def _allow(ctx: AuthenticatedContext, feature: str, **counts: Any) -> GateDecision:
    return GateDecision(allowed=True, feature=feature, tier=ctx.tier, **counts)


def _deny(
    ctx: AuthenticatedContext,
    feature: str,
    reason: str,
    message: str,
    **counts: Any,
) -> GateDecision:
    logger.info("Denied %s for user %s (%s, tier=%s)", feature, ctx.user_id, reason, ctx.tier.value)
    return GateDecision(
        allowed=False,
        feature=feature,
        tier=ctx.tier,
        reason=reason,
        upgrade_message=message,
        upgrade_url=_upgrade_url(),
        **counts,
    )


def _parse_feature(feature: Any) -> Feature:
    try:
        return Feature(feature)
    except (ValueError, TypeError):
        raise UnknownFeatureError(feature) from None


def _over_limit(used: int, limit: int | None, cost: int) -> bool:
    return limit is not None and used + cost > limit


def usage_limit_denial(
    ctx: AuthenticatedContext, feature: Feature, usage: UsageSnapshot
) -> GateDecision:
    """Denial for a counted feature whose limit is reached, with ``usage`` counts.

    Used directly when a conditional counter update refuses a request that
    passed ``check_feature`` on the request's earlier snapshot.
    """
    return _deny(
        ctx,
        feature.value,
        "usage_limit_reached",
        UPGRADE_MESSAGES[feature],
        **usage.to_dict(),
    )


def check_feature(
    ctx: AuthenticatedContext,
    feature: Feature | str,
    now: datetime | None = None,
    cost: int = 1,
) -> GateDecision:
    """Decide whether ``ctx`` may use ``feature`` right now.

    Counted features are only checked here; the caller increments the
    counter after the action succeeds. ``cost`` is how many units the action
    consumes; a counted feature is denied when ``used + cost`` would pass
    the limit.

    Raises:
        UnknownFeatureError: ``feature`` is not a known feature key.
    """
    key = _parse_feature(feature)
    now = now or utcnow()
    limits = ctx.limits
    counters = ctx.counters

    if key.value in BOOLEAN_FEATURES:
        if limits.has_feature(key.value):
            return _allow(ctx, key.value)
        return _deny(ctx, key.value, "feature_not_in_tier", UPGRADE_MESSAGES[key])

    if key is Feature.PDF_EXPORT:
        usage = pdf_usage_from_counters(counters, limits.pdf_downloads_per_month, now)
        if _over_limit(usage.used, usage.limit, cost):
            return usage_limit_denial(ctx, key, usage)
        return _allow(ctx, key.value, **usage.to_dict())

    if key is Feature.AI_INVOCATION:
        usage = ai_usage_from_counters(limits, counters)
        if _over_limit(usage.used, usage.limit, cost):
            return usage_limit_denial(ctx, key, usage)
        return _allow(ctx, key.value, **usage.to_dict())

    if key is Feature.RESUME_CREATION:
        limit = limits.max_resumes_per_day
        used = counters.resumes_created_last_24h
        counts = {"used": used, "limit": limit, "remaining": remaining_for(used, limit)}
        if _over_limit(used, limit, cost):
            reset_in = None
            if counters.resume_window_resets_at is not None:
                seconds = (counters.resume_window_resets_at - now).total_seconds()
                reset_in = max(1, math.ceil(seconds / 3600))
            return _deny(
                ctx,
                key.value,
                "usage_limit_reached",
                UPGRADE_MESSAGES[key],
                reset_in_hours=reset_in,
                **counts,
            )
        return _allow(ctx, key.value, **counts)

    raise UnknownFeatureError(feature)


def check_template_access(
    ctx: AuthenticatedContext,
    template_id: str,
    is_premium: bool,
) -> GateDecision:
    """Free users may use non-premium templates and the free-template allowlist."""
    feature = Feature.PREMIUM_TEMPLATES.value
    if not is_premium or ctx.tier is Tier.PAID or ctx.limits.premium_templates:
        return _allow(ctx, feature)

    allowlist = ctx.limits.free_template_ids
    if allowlist is None or template_id in allowlist:
        return _allow(ctx, feature)

    return _deny(
        ctx,
        feature,
        "premium_template",
        "This template requires a paid subscription.",
    )
