"""Tests for the subscription service write path and user lookups."""

import uuid
from datetime import timedelta
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from resumakr.billing.exceptions import InvariantViolation, NotFoundError
from resumakr.billing.timeutils import utcnow
from resumakr.models.user import User
from resumakr.services.subscription_service import (
    admin_update_subscription,
    ensure_stripe_customer,
    find_user_for_subject,
    get_user,
    write_subscription_facts,
)


class TestGetUser:
    async def test_returns_user(self, db_session: AsyncSession, free_user: User):
        user = await get_user(db_session, free_user.id, for_update=True)
        assert user.id == free_user.id

    async def test_unknown_user(self, db_session: AsyncSession):
        with pytest.raises(NotFoundError):
            await get_user(db_session, uuid.uuid4())


class TestFindUserForSubject:
    async def test_by_subscription_id(self, db_session: AsyncSession, paid_user: User):
        user = await find_user_for_subject(
            db_session, subscription_id=paid_user.external_subscription_id
        )
        assert user.id == paid_user.id

    async def test_falls_back_to_customer_id(self, db_session: AsyncSession, paid_user: User):
        user = await find_user_for_subject(
            db_session,
            subscription_id="sub_unknown",
            customer_id=paid_user.external_customer_id,
        )
        assert user.id == paid_user.id

    async def test_falls_back_to_tagged_user_id(self, db_session: AsyncSession, free_user: User):
        user = await find_user_for_subject(
            db_session, subscription_id="sub_new", customer_id="cus_new", user_id=str(free_user.id)
        )
        assert user.id == free_user.id

    async def test_orphan_returns_none(self, db_session: AsyncSession, free_user: User):
        assert (
            await find_user_for_subject(
                db_session, subscription_id="sub_x", customer_id="cus_x", user_id="not-a-uuid"
            )
            is None
        )

    async def test_no_identifiers(self, db_session: AsyncSession):
        assert await find_user_for_subject(db_session) is None


class TestWriteSubscriptionFacts:
    async def test_valid_write_is_applied(self, db_session: AsyncSession, free_user: User):
        user = await get_user(db_session, free_user.id, for_update=True)
        end = utcnow() + timedelta(days=30)
        facts = await write_subscription_facts(
            db_session,
            user,
            {
                "is_subscribed": True,
                "subscription_plan": "monthly",
                "subscription_end_date": end,
                "subscription_started_at": utcnow(),
            },
            source="test",
        )
        assert facts.is_subscribed is True
        assert user.subscription_plan == "monthly"
        assert user.subscription_end_date == end

    async def test_subscribed_without_plan_rejected(self, db_session: AsyncSession, free_user: User):
        user = await get_user(db_session, free_user.id, for_update=True)
        with pytest.raises(InvariantViolation) as exc_info:
            await write_subscription_facts(
                db_session,
                user,
                {"is_subscribed": True, "subscription_end_date": utcnow() + timedelta(days=1)},
                source="test",
            )
        assert "is_subscribed requires subscription_plan" in exc_info.value.violations
        # Nothing was applied to the row
        assert user.is_subscribed is False
        assert user.subscription_end_date is None

    async def test_unknown_field_rejected(self, db_session: AsyncSession, free_user: User):
        user = await get_user(db_session, free_user.id, for_update=True)
        with pytest.raises(TypeError):
            await write_subscription_facts(db_session, user, {"role": "admin"}, source="test")


class TestPlanWhileUnsubscribed:
    """A plan may only be assigned or changed on a subscribed record."""

    async def test_never_subscribed_user_cannot_get_a_plan(
        self, db_session: AsyncSession, free_user: User
    ):
        user = await get_user(db_session, free_user.id, for_update=True)
        with pytest.raises(InvariantViolation) as exc_info:
            await write_subscription_facts(
                db_session, user, {"subscription_plan": "monthly"}, source="test"
            )
        assert exc_info.value.violations == [
            "subscription_plan/subscription_end_date require is_subscribed"
        ]
        assert user.subscription_plan is None

    async def test_lapsed_user_plan_change_rejected(self, db_session: AsyncSession, make_user):
        now = utcnow()
        lapsed = await make_user(
            subscription_plan="monthly",
            subscription_started_at=now - timedelta(days=60),
            subscription_end_date=now - timedelta(days=30),
            cancelled_at=now - timedelta(days=30),
        )
        user = await get_user(db_session, lapsed.id, for_update=True)
        with pytest.raises(InvariantViolation) as exc_info:
            await write_subscription_facts(
                db_session, user, {"subscription_plan": "annual"}, source="test"
            )
        assert exc_info.value.violations == ["subscription_plan cannot change while not subscribed"]
        assert user.subscription_plan == "monthly"

    async def test_lapsed_user_without_plan_cannot_be_assigned_one(
        self, db_session: AsyncSession, make_user
    ):
        now = utcnow()
        lapsed = await make_user(subscription_started_at=now - timedelta(days=90))
        user = await get_user(db_session, lapsed.id, for_update=True)
        with pytest.raises(InvariantViolation):
            await write_subscription_facts(
                db_session, user, {"subscription_plan": "annual"}, source="test"
            )
        assert user.subscription_plan is None

    async def test_lapsed_user_keeps_history_on_unrelated_write(
        self, db_session: AsyncSession, make_user
    ):
        now = utcnow()
        lapsed = await make_user(
            subscription_plan="monthly",
            subscription_started_at=now - timedelta(days=60),
            subscription_end_date=now - timedelta(days=30),
        )
        user = await get_user(db_session, lapsed.id, for_update=True)
        facts = await write_subscription_facts(
            db_session, user, {"coupon_code_used": "WELCOME10"}, source="test"
        )
        assert facts.subscription_plan == "monthly"
        assert user.coupon_code_used == "WELCOME10"


class TestAdminUpdateSubscription:
    async def test_turning_on_stamps_started_at(self, db_session: AsyncSession, free_user: User):
        end = utcnow() + timedelta(days=30)
        user = await admin_update_subscription(
            db_session,
            free_user.id,
            {"is_subscribed": True, "subscription_plan": "monthly", "subscription_end_date": end},
            actor="admin@test.com",
        )
        assert user.is_subscribed is True
        assert user.subscription_started_at is not None
        assert user.cancelled_at is None

    async def test_turning_off_stamps_cancelled_at(self, db_session: AsyncSession, paid_user: User):
        user = await admin_update_subscription(
            db_session, paid_user.id, {"is_subscribed": False}, actor="admin@test.com"
        )
        assert user.is_subscribed is False
        assert user.cancelled_at is not None
        # Plan and end date are kept as history
        assert user.subscription_plan == "monthly"
        assert user.subscription_end_date is not None

    async def test_plan_change_while_unsubscribed_rejected(
        self, db_session: AsyncSession, make_user
    ):
        lapsed = await make_user(
            is_subscribed=False,
            subscription_plan="monthly",
            subscription_started_at=utcnow() - timedelta(days=60),
            subscription_end_date=utcnow() - timedelta(days=30),
        )
        with pytest.raises(InvariantViolation):
            await admin_update_subscription(
                db_session, lapsed.id, {"subscription_plan": "annual"}, actor="admin@test.com"
            )

    async def test_price_update_on_paid_user(self, db_session: AsyncSession, paid_user: User):
        user = await admin_update_subscription(
            db_session, paid_user.id, {"subscription_price": Decimal("4.99")}, actor="admin@test.com"
        )
        assert user.subscription_price == Decimal("4.99")
        assert user.is_subscribed is True

    async def test_unknown_user(self, db_session: AsyncSession):
        with pytest.raises(NotFoundError):
            await admin_update_subscription(
                db_session, uuid.uuid4(), {"is_subscribed": False}, actor="admin@test.com"
            )


class TestEnsureStripeCustomer:
    async def test_existing_customer_not_recreated(self, db_session: AsyncSession, paid_user: User):
        with patch(
            "resumakr.services.subscription_service.create_customer", new_callable=AsyncMock
        ) as mock_create:
            customer_id = await ensure_stripe_customer(db_session, paid_user)
        assert customer_id == paid_user.external_customer_id
        mock_create.assert_not_awaited()

    async def test_creates_and_links_customer(self, db_session: AsyncSession, free_user: User):
        user = await get_user(db_session, free_user.id)
        customer = MagicMock()
        customer.id = "cus_created_1"
        with patch(
            "resumakr.services.subscription_service.create_customer",
            new_callable=AsyncMock,
            return_value=customer,
        ) as mock_create:
            customer_id = await ensure_stripe_customer(db_session, user)

        assert customer_id == "cus_created_1"
        mock_create.assert_awaited_once_with(
            email=user.email, name=user.full_name, user_id=str(user.id)
        )
        assert user.external_customer_id == "cus_created_1"
        assert user.is_subscribed is False
