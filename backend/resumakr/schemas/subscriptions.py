"""Pydantic v2 schemas for tier, usage, gating and admin subscription endpoints."""

import uuid
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from resumakr.billing.timeutils import as_naive_utc

# --- Request schemas ---


class AdminSubscriptionUpdate(BaseModel):
    """Partial update of a user's subscription fields. Unset fields are left alone."""

    model_config = ConfigDict(extra="forbid")

    is_subscribed: bool | None = None
    subscription_plan: str | None = None
    subscription_end_date: datetime | None = None
    subscription_started_at: datetime | None = None
    cancelled_at: datetime | None = None
    coupon_code_used: str | None = None
    subscription_price: Decimal | None = None

    @field_validator(
        "subscription_end_date", "subscription_started_at", "cancelled_at", mode="after"
    )
    @classmethod
    def _naive_utc(cls, value: datetime | None) -> datetime | None:
        return as_naive_utc(value) if value is not None else None

    @field_validator("is_subscribed", mode="after")
    @classmethod
    def _not_null(cls, value: bool | None) -> bool | None:
        if value is None:
            raise ValueError("is_subscribed cannot be null")
        return value


class AICreditGrantRequest(BaseModel):
    """Admin grant of bonus AI credits."""

    credits: int = Field(ge=1, le=10_000)


class AICreditConsumeRequest(BaseModel):
    """Charge for a completed AI invocation."""

    action: str = Field(min_length=1, max_length=100)
    credits: int = Field(default=1, ge=1, le=100)
    resume_id: uuid.UUID | None = None


class ResumeCreationRequest(BaseModel):
    resume_id: uuid.UUID | None = None


# --- Response schemas ---


class UsageCountResponse(BaseModel):
    """Usage against a cap. ``limit`` and ``remaining`` are null when unlimited."""

    used: int
    limit: int | None
    remaining: int | None


class TierUsageResponse(BaseModel):
    pdf_downloads: UsageCountResponse
    ai_credits: UsageCountResponse
    resumes_today: UsageCountResponse


class MyTierResponse(BaseModel):
    """Effective tier with limits, usage and feature flags."""

    tier: str
    is_subscribed: bool
    subscription_plan: str | None
    subscription_end_date: datetime | None
    cancelled_at: datetime | None
    limits: dict
    usage: TierUsageResponse
    features: dict[str, bool]
    upgrade_url: str | None = None


class SubscriptionFactsResponse(BaseModel):
    """A user's stored subscription fields plus the tier they resolve to now."""

    user_id: uuid.UUID
    email: str
    tier: str
    is_subscribed: bool
    subscription_plan: str | None
    subscription_end_date: datetime | None
    subscription_started_at: datetime | None
    cancelled_at: datetime | None
    coupon_code_used: str | None
    subscription_price: Decimal | None
    external_customer_id: str | None
    external_subscription_id: str | None


class AICreditsResponse(BaseModel):
    used: int
    total: int | None
    remaining: int | None
    bonus: int
    unlimited: bool


class AICreditGrantResponse(BaseModel):
    user_id: uuid.UUID
    ai_credits_bonus: int


class PdfStatusResponse(BaseModel):
    """Whether the caller can download a PDF now, and with a watermark or not."""

    can_download: bool
    watermark: bool
    used: int
    limit: int | None
    remaining: int | None
    period: str
    tier: str


class PdfDownloadResponse(BaseModel):
    watermark: bool
    used: int
    limit: int | None
    remaining: int | None


class ResumeQuotaResponse(BaseModel):
    can_create: bool
    used: int
    limit: int | None
    remaining: int | None
    reset_in_hours: int | None = None


class TemplateAccessResponse(BaseModel):
    template_id: str
    is_premium: bool
    allowed: bool
    tier: str
    reason: str | None = None
    message: str | None = None
    upgrade_url: str | None = None
