"""Tier catalog: feature flags and numeric caps per effective tier."""

from dataclasses import dataclass
from enum import Enum
from functools import lru_cache
from typing import Any

from resumakr.config import Settings, settings


class Tier(str, Enum):
    """Effective access tier. Derived on every request, never persisted."""

    FREE = "free"
    PAID = "paid"


BOOLEAN_FEATURES: tuple[str, ...] = (
    "premium_templates",
    "cover_letters",
    "version_history",
    "resume_parsing",
    "ats_detailed_insights",
)


@dataclass(frozen=True)
class TierLimits:
    """Limits for one tier. Numeric caps of None mean unlimited."""

    tier: Tier
    premium_templates: bool
    cover_letters: bool
    version_history: bool
    resume_parsing: bool
    ats_detailed_insights: bool
    watermark_pdf: bool
    ai_credits_total: int | None
    pdf_downloads_per_month: int | None
    max_resumes_per_day: int | None
    free_template_ids: frozenset[str] | None  # None = every template

    def has_feature(self, feature: str) -> bool:
        return bool(getattr(self, feature))

    def to_dict(self) -> dict[str, Any]:
        return {
            "tier": self.tier.value,
            "premium_templates": self.premium_templates,
            "cover_letters": self.cover_letters,
            "version_history": self.version_history,
            "resume_parsing": self.resume_parsing,
            "ats_detailed_insights": self.ats_detailed_insights,
            "watermark_pdf": self.watermark_pdf,
            "ai_credits_total": self.ai_credits_total,
            "pdf_downloads_per_month": self.pdf_downloads_per_month,
            "max_resumes_per_day": self.max_resumes_per_day,
            "free_template_ids": (
                sorted(self.free_template_ids) if self.free_template_ids is not None else None
            ),
        }


@dataclass(frozen=True)
class TierCatalog:
    """Immutable tier → limits lookup, built once at startup."""

    free: TierLimits
    paid: TierLimits

    def get_limits(self, tier: Any) -> TierLimits:
        """Return limits for ``tier``. Anything unrecognised gets free limits."""
        try:
            resolved = Tier(tier)
        except (ValueError, TypeError):
            return self.free
        return self.paid if resolved is Tier.PAID else self.free


def build_tier_catalog(config: Settings) -> TierCatalog:
    """Build the catalog from settings."""
    free = TierLimits(
        tier=Tier.FREE,
        premium_templates=False,
        cover_letters=False,
        version_history=False,
        resume_parsing=False,
        ats_detailed_insights=False,  # free users only get the ATS score
        watermark_pdf=True,
        ai_credits_total=config.free_ai_credits_total,
        pdf_downloads_per_month=config.free_pdf_downloads_per_month,
        max_resumes_per_day=config.free_max_resumes_per_day,
        free_template_ids=frozenset(config.free_template_ids),
    )
    paid = TierLimits(
        tier=Tier.PAID,
        premium_templates=True,
        cover_letters=True,
        version_history=True,
        resume_parsing=True,
        ats_detailed_insights=True,
        watermark_pdf=False,
        ai_credits_total=None,
        pdf_downloads_per_month=None,
        max_resumes_per_day=None,
        free_template_ids=None,
    )
    return TierCatalog(free=free, paid=paid)


@lru_cache
def get_tier_catalog() -> TierCatalog:
    """Process-wide catalog. Usable as a FastAPI dependency."""
    return build_tier_catalog(settings)
