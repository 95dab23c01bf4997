"""Tests for the feature gate: boolean features, counted features, templates."""

import uuid
from datetime import datetime, timedelta

import pytest

from resumakr.billing.entitlements import AuthenticatedContext, build_context
from resumakr.billing.exceptions import UnknownFeatureError
from resumakr.billing.facts import SubscriptionFacts, UsageCounters
from resumakr.billing.gate import Feature, check_feature, check_template_access
from resumakr.billing.tiers import Tier, get_tier_catalog
from resumakr.config import settings

NOW = datetime(2024, 2, 15, 12, 0)
UPGRADE_URL = f"{settings.frontend_url}{settings.upgrade_path}"


def _ctx(facts: SubscriptionFacts | None = None, **counters) -> AuthenticatedContext:
    return build_context(
        user_id=uuid.uuid4(),
        email="gate@test.com",
        role="user",
        facts=facts or SubscriptionFacts(),
        counters=UsageCounters(**counters),
        now=NOW,
        catalog=get_tier_catalog(),
    )


def _paid_facts(end: datetime) -> SubscriptionFacts:
    return SubscriptionFacts(
        is_subscribed=True,
        subscription_plan="monthly",
        subscription_end_date=end,
        subscription_started_at=end - timedelta(days=30),
    )


class TestBooleanFeatures:
    @pytest.mark.parametrize(
        "feature",
        [
            Feature.COVER_LETTERS,
            Feature.VERSION_HISTORY,
            Feature.RESUME_PARSING,
            Feature.PREMIUM_TEMPLATES,
            Feature.ATS_DETAILED_INSIGHTS,
        ],
    )
    def test_free_user_denied_with_upgrade_payload(self, feature):
        decision = check_feature(_ctx(), feature, NOW)
        assert not decision.allowed
        assert decision.feature == feature.value
        assert decision.reason == "feature_not_in_tier"
        assert decision.upgrade_message
        assert decision.upgrade_url == UPGRADE_URL

    def test_paid_user_allowed(self):
        ctx = _ctx(_paid_facts(NOW + timedelta(days=5)))
        decision = check_feature(ctx, "cover_letters", NOW)
        assert decision.allowed
        assert decision.tier is Tier.PAID
        assert decision.upgrade_message is None

    def test_expired_subscription_denied_despite_flag(self):
        """Subscribed flag still set but the end date was yesterday."""
        ctx = _ctx(_paid_facts(NOW - timedelta(days=1)))
        assert ctx.facts.is_subscribed
        assert ctx.tier is Tier.FREE

        decision = check_feature(ctx, Feature.COVER_LETTERS, NOW)
        assert not decision.allowed
        assert decision.to_detail()["feature"] == "cover_letters"


class TestCountedFeatures:
    def test_ai_credits_exhausted(self):
        total = get_tier_catalog().free.ai_credits_total
        decision = check_feature(_ctx(ai_credits_used=total), Feature.AI_INVOCATION, NOW)

        assert not decision.allowed
        assert decision.reason == "usage_limit_reached"
        assert (decision.used, decision.limit, decision.remaining) == (total, total, 0)
        detail = decision.to_detail()
        assert detail["remaining"] == 0
        assert detail["limit"] == total

    def test_ai_bonus_credits_extend_allowance(self):
        total = get_tier_catalog().free.ai_credits_total
        decision = check_feature(
            _ctx(ai_credits_used=total, ai_credits_bonus=2), Feature.AI_INVOCATION, NOW
        )
        assert decision.allowed
        assert decision.remaining == 2

    def test_ai_cost_above_remaining_denied(self):
        total = get_tier_catalog().free.ai_credits_total
        ctx = _ctx(ai_credits_used=total - 1)
        assert check_feature(ctx, Feature.AI_INVOCATION, NOW, cost=1).allowed

        decision = check_feature(ctx, Feature.AI_INVOCATION, NOW, cost=100)
        assert not decision.allowed
        assert decision.reason == "usage_limit_reached"
        assert decision.remaining == 1

    def test_paid_ai_ignores_cost(self):
        ctx = _ctx(_paid_facts(NOW + timedelta(days=5)), ai_credits_used=10_000)
        assert check_feature(ctx, Feature.AI_INVOCATION, NOW, cost=100).allowed

    def test_paid_ai_is_unlimited(self):
        ctx = _ctx(_paid_facts(NOW + timedelta(days=5)), ai_credits_used=10_000)
        decision = check_feature(ctx, Feature.AI_INVOCATION, NOW)
        assert decision.allowed
        assert decision.limit is None and decision.remaining is None

    def test_pdf_limit_reached_this_month(self):
        limit = get_tier_catalog().free.pdf_downloads_per_month
        ctx = _ctx(pdf_downloads_used=limit, usage_period="2024-02")
        decision = check_feature(ctx, Feature.PDF_EXPORT, NOW)
        assert not decision.allowed
        assert decision.remaining == 0

    def test_pdf_usage_from_last_month_does_not_count(self):
        limit = get_tier_catalog().free.pdf_downloads_per_month
        ctx = _ctx(pdf_downloads_used=limit, usage_period="2024-01")
        decision = check_feature(ctx, Feature.PDF_EXPORT, NOW)
        assert decision.allowed
        assert (decision.used, decision.remaining) == (0, limit)

    def test_resume_cap_reports_reset_time(self):
        limit = get_tier_catalog().free.max_resumes_per_day
        ctx = _ctx(
            resumes_created_last_24h=limit,
            resume_window_resets_at=NOW + timedelta(hours=5, minutes=10),
        )
        decision = check_feature(ctx, Feature.RESUME_CREATION, NOW)
        assert not decision.allowed
        assert decision.reset_in_hours == 6
        assert decision.to_detail()["reset_in_hours"] == 6

    def test_resume_below_cap(self):
        decision = check_feature(_ctx(resumes_created_last_24h=1), Feature.RESUME_CREATION, NOW)
        assert decision.allowed
        assert decision.remaining == get_tier_catalog().free.max_resumes_per_day - 1


class TestUnknownFeature:
    @pytest.mark.parametrize("feature", ["teleportation", "", None, 3])
    def test_unknown_feature_fails_loudly(self, feature):
        with pytest.raises(UnknownFeatureError):
            check_feature(_ctx(), feature, NOW)

    def test_is_a_lookup_error(self):
        with pytest.raises(LookupError):
            check_feature(_ctx(), "coverLetters", NOW)


class TestTemplateAccess:
    def test_free_user_can_use_non_premium_template(self):
        assert check_template_access(_ctx(), "anything", is_premium=False).allowed

    def test_free_user_can_use_allowlisted_premium_template(self):
        template_id = sorted(settings.free_template_ids)[0]
        assert check_template_access(_ctx(), template_id, is_premium=True).allowed

    def test_free_user_denied_premium_template(self):
        decision = check_template_access(_ctx(), "gold-foil-deluxe", is_premium=True)
        assert not decision.allowed
        assert decision.reason == "premium_template"
        assert decision.feature == "premium_templates"
        assert decision.upgrade_url == UPGRADE_URL

    def test_paid_user_can_use_any_template(self):
        ctx = _ctx(_paid_facts(NOW + timedelta(days=1)))
        assert check_template_access(ctx, "gold-foil-deluxe", is_premium=True).allowed
