"""Subscription event reconciler: applies payment processor events idempotently.

Processing one event:

1. Record the receipt with an insert-or-ignore on the unique event id and
   commit it, so an event that later fails to apply is still visible as
   received-but-unprocessed.
2. In a new transaction, lock the event row. If it is already processed the
   delivery is a duplicate and nothing happens.
3. Apply the event's effect to the subscription facts of the user the event
   refers to (orphaned events are logged and skipped).
4. Mark the row processed in the same transaction as the effect.

Every effect sets absolute values, so re-applying an unprocessed event after
a failure is safe.
"""

import logging
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from enum import Enum
from typing import Any, NamedTuple

from sqlalchemy import Table, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from resumakr.billing.exceptions import DuplicateEventError, EntitlementError, StorageError
from resumakr.billing.plans import calculate_end_date, get_plan_by_price_id
from resumakr.billing.timeutils import utcnow
from resumakr.config import settings
from resumakr.models.payment import Payment
from resumakr.models.subscription_event import SubscriptionEvent
from resumakr.models.user import User
from resumakr.services.subscription_service import (
    find_user_for_subject,
    write_subscription_facts,
)

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    CHECKOUT_COMPLETED = "checkout.session.completed"
    SUBSCRIPTION_CREATED = "customer.subscription.created"
    SUBSCRIPTION_UPDATED = "customer.subscription.updated"
    SUBSCRIPTION_DELETED = "customer.subscription.deleted"
    INVOICE_PAYMENT_SUCCEEDED = "invoice.payment_succeeded"
    INVOICE_PAID = "invoice.paid"
    PAYMENT_SUCCEEDED = "payment_intent.succeeded"


class EventOutcome(str, Enum):
    PROCESSED = "processed"
    DUPLICATE = "duplicate"
    ORPHANED = "orphaned"
    IGNORED = "ignored"


@dataclass(frozen=True)
class PaymentDetails:
    payment_intent_id: str
    amount: Decimal
    currency: str
    status: str
    charge_id: str | None = None
    brand: str | None = None
    last4: str | None = None
    description: str | None = None


@dataclass(frozen=True)
class ProcessorEvent:
    """The fields of a verified processor event the reconciler needs."""

    external_event_id: str
    event_type: str
    subject_id: str | None
    customer_id: str | None = None
    user_id: str | None = None
    price_id: str | None = None
    status: str | None = None
    current_period_end: datetime | None = None
    amount: Decimal | None = None
    coupon_code: str | None = None
    payment: PaymentDetails | None = None
    raw: dict[str, Any] = field(default_factory=dict)

    def to_payload(self) -> dict[str, Any]:
        """JSON-safe log payload: the raw object plus the extracted fields."""
        fields = asdict(self)
        fields.pop("raw")
        return {"object": self.raw, "fields": _jsonable(fields)}

    @classmethod
    def from_log(cls, row: SubscriptionEvent) -> "ProcessorEvent":
        fields = dict((row.payload or {}).get("fields") or {})
        period_end = fields.get("current_period_end")
        amount = fields.get("amount")
        payment = fields.get("payment")
        return cls(
            external_event_id=row.external_event_id,
            event_type=row.event_type,
            subject_id=row.subject_id,
            customer_id=fields.get("customer_id"),
            user_id=fields.get("user_id"),
            price_id=fields.get("price_id"),
            status=fields.get("status"),
            current_period_end=datetime.fromisoformat(period_end) if period_end else None,
            amount=Decimal(amount) if amount is not None else None,
            coupon_code=fields.get("coupon_code"),
            payment=(
                PaymentDetails(**{**payment, "amount": Decimal(payment["amount"])})
                if payment
                else None
            ),
            raw=(row.payload or {}).get("object") or {},
        )


def _jsonable(value: Any) -> Any:
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_jsonable(v) for v in value]
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    return value


class HandlerResult(NamedTuple):
    outcome: EventOutcome
    user_id: uuid.UUID | None = None


Handler = Callable[[AsyncSession, ProcessorEvent, datetime], Awaitable[HandlerResult]]


def _insert(db: AsyncSession, table: Table):
    """Dialect-specific Core INSERT that supports ON CONFLICT DO NOTHING."""
    if db.get_bind().dialect.name == "sqlite":
        return sqlite.insert(table)
    return postgresql.insert(table)


# ---------------------------------------------------------------------------
# Effects
# ---------------------------------------------------------------------------


async def _find_user(db: AsyncSession, event: ProcessorEvent) -> User | None:
    return await find_user_for_subject(
        db,
        subscription_id=event.subject_id,
        customer_id=event.customer_id,
        user_id=event.user_id,
    )


def _orphaned(event: ProcessorEvent) -> HandlerResult:
    logger.warning(
        "No user found for %s (event %s, subject %s, customer %s); skipping",
        event.event_type,
        event.external_event_id,
        event.subject_id,
        event.customer_id,
    )
    return HandlerResult(EventOutcome.ORPHANED)


def _paid_through(event: ProcessorEvent, now: datetime) -> tuple[str, datetime]:
    """Plan id and end date for a new subscription.

    The plan's own period wins; otherwise the processor-reported period end,
    otherwise a fixed fallback.
    """
    plan = get_plan_by_price_id(event.price_id)
    if plan is not None:
        return plan.plan_id, calculate_end_date(now, plan.period, plan.duration)

    logger.warning(
        "Unknown price %s in event %s; using plan %s",
        event.price_id,
        event.external_event_id,
        settings.default_plan_id,
    )
    if event.current_period_end is not None:
        return settings.default_plan_id, event.current_period_end
    return settings.default_plan_id, now + timedelta(days=settings.fallback_subscription_days)


async def _activate(
    db: AsyncSession, user: User, event: ProcessorEvent, now: datetime
) -> HandlerResult:
    plan_id, end_date = _paid_through(event, now)
    changes: dict[str, Any] = {
        "is_subscribed": True,
        "subscription_plan": plan_id,
        "subscription_end_date": end_date,
        "subscription_started_at": now,
        "cancelled_at": None,
        "external_subscription_id": event.subject_id,
    }
    if event.customer_id:
        changes["external_customer_id"] = event.customer_id
    if event.amount is not None:
        changes["subscription_price"] = event.amount
    if event.coupon_code:
        changes["coupon_code_used"] = event.coupon_code

    await write_subscription_facts(db, user, changes, source=f"event:{event.event_type}")
    logger.info(
        "Subscription %s activated for user %s on plan %s until %s",
        event.subject_id,
        user.id,
        plan_id,
        end_date,
    )
    return HandlerResult(EventOutcome.PROCESSED, user.id)


async def handle_checkout_completed(
    db: AsyncSession, event: ProcessorEvent, now: datetime
) -> HandlerResult:
    """checkout.session.completed: activate the new subscription."""
    if not event.subject_id:
        logger.info("Checkout %s has no subscription (one-time?), skipping", event.external_event_id)
        return HandlerResult(EventOutcome.IGNORED)

    user = await _find_user(db, event)
    if user is None:
        return _orphaned(event)
    return await _activate(db, user, event, now)


async def handle_subscription_created(
    db: AsyncSession, event: ProcessorEvent, now: datetime
) -> HandlerResult:
    """customer.subscription.created: same effect as checkout, keyed by subscription."""
    user = await _find_user(db, event)
    if user is None:
        return _orphaned(event)
    return await _activate(db, user, event, now)


async def handle_subscription_updated(
    db: AsyncSession, event: ProcessorEvent, now: datetime
) -> HandlerResult:
    """customer.subscription.updated: sync subscribed flag and paid-through date."""
    user = await _find_user(db, event)
    if user is None:
        return _orphaned(event)

    active = event.status == "active"
    changes: dict[str, Any] = {
        "is_subscribed": active,
        "external_subscription_id": event.subject_id,
    }
    if event.current_period_end is not None:
        changes["subscription_end_date"] = event.current_period_end
    else:
        logger.warning(
            "Subscription %s update has no period end; keeping %s",
            event.subject_id,
            user.subscription_end_date,
        )

    if active:
        if user.subscription_plan is None:
            plan = get_plan_by_price_id(event.price_id)
            changes["subscription_plan"] = plan.plan_id if plan else settings.default_plan_id
        if user.subscription_started_at is None:
            changes["subscription_started_at"] = now
        if "subscription_end_date" not in changes and user.subscription_end_date is None:
            changes["subscription_end_date"] = now + timedelta(
                days=settings.fallback_subscription_days
            )
    elif user.subscription_started_at is None:
        # Never activated here: nothing to keep a paid-through date for
        changes.pop("subscription_end_date", None)

    await write_subscription_facts(db, user, changes, source=f"event:{event.event_type}")
    logger.info(
        "Subscription %s updated for user %s: status=%s",
        event.subject_id,
        user.id,
        event.status,
    )
    return HandlerResult(EventOutcome.PROCESSED, user.id)


async def handle_subscription_deleted(
    db: AsyncSession, event: ProcessorEvent, now: datetime
) -> HandlerResult:
    """customer.subscription.deleted: unsubscribe, keep the paid-through date."""
    user = await _find_user(db, event)
    if user is None:
        return _orphaned(event)

    await write_subscription_facts(
        db,
        user,
        {"is_subscribed": False, "cancelled_at": now},
        source=f"event:{event.event_type}",
    )
    logger.info("Subscription %s cancelled for user %s", event.subject_id, user.id)
    return HandlerResult(EventOutcome.PROCESSED, user.id)


async def handle_invoice_payment_succeeded(
    db: AsyncSession, event: ProcessorEvent, now: datetime
) -> HandlerResult:
    """invoice.payment_succeeded: re-assert the subscribed flag only."""
    user = await _find_user(db, event)
    if user is None:
        return _orphaned(event)

    if user.subscription_plan is None or user.subscription_end_date is None:
        logger.warning(
            "Invoice paid for user %s without plan/end date on record; leaving facts unchanged",
            user.id,
        )
        return HandlerResult(EventOutcome.IGNORED, user.id)

    await write_subscription_facts(
        db, user, {"is_subscribed": True}, source=f"event:{event.event_type}"
    )
    return HandlerResult(EventOutcome.PROCESSED, user.id)


async def handle_payment_succeeded(
    db: AsyncSession, event: ProcessorEvent, now: datetime
) -> HandlerResult:
    """payment_intent.succeeded: add a payment ledger entry (once per intent)."""
    if event.payment is None:
        logger.warning("Payment event %s carries no payment details", event.external_event_id)
        return HandlerResult(EventOutcome.IGNORED)

    user = await find_user_for_subject(db, customer_id=event.customer_id, user_id=event.user_id)
    if user is None:
        return _orphaned(event)

    payment = event.payment
    stmt = (
        _insert(db, Payment.__table__)
        .values(
            id=uuid.uuid4(),
            user_id=user.id,
            payment_intent_id=payment.payment_intent_id,
            charge_id=payment.charge_id,
            amount=payment.amount,
            currency=payment.currency,
            status=payment.status,
            payment_method_brand=payment.brand,
            payment_method_last4=payment.last4,
            description=payment.description or "Subscription payment",
            metadata=_jsonable((event.raw or {}).get("metadata") or {}),
        )
        .on_conflict_do_nothing(index_elements=["payment_intent_id"])
    )
    result = await db.execute(stmt)
    if result.rowcount:
        logger.info(
            "Payment %s recorded for user %s: %s %s",
            payment.payment_intent_id,
            user.id,
            payment.amount,
            payment.currency,
        )
    return HandlerResult(EventOutcome.PROCESSED, user.id)


EVENT_HANDLERS: dict[str, Handler] = {
    EventType.CHECKOUT_COMPLETED.value: handle_checkout_completed,
    EventType.SUBSCRIPTION_CREATED.value: handle_subscription_created,
    EventType.SUBSCRIPTION_UPDATED.value: handle_subscription_updated,
    EventType.SUBSCRIPTION_DELETED.value: handle_subscription_deleted,
    EventType.INVOICE_PAYMENT_SUCCEEDED.value: handle_invoice_payment_succeeded,
    EventType.INVOICE_PAID.value: handle_invoice_payment_succeeded,
    EventType.PAYMENT_SUCCEEDED.value: handle_payment_succeeded,
}


# ---------------------------------------------------------------------------
# Event log
# ---------------------------------------------------------------------------


async def record_event_receipt(db: AsyncSession, event: ProcessorEvent) -> bool:
    """Insert the event row unless its id is already logged. True if inserted."""
    stmt = (
        _insert(db, SubscriptionEvent.__table__)
        .values(
            id=uuid.uuid4(),
            external_event_id=event.external_event_id,
            event_type=event.event_type,
            subject_id=event.subject_id,
            payload=event.to_payload(),
            processed=False,
            received_at=utcnow(),
        )
        .on_conflict_do_nothing(index_elements=["external_event_id"])
    )
    result = await db.execute(stmt)
    return bool(result.rowcount)


async def _apply_logged_event(
    db: AsyncSession, event: ProcessorEvent, now: datetime
) -> EventOutcome:
    result = await db.execute(
        select(SubscriptionEvent)
        .where(SubscriptionEvent.external_event_id == event.external_event_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    row = result.scalar_one()
    if row.processed:
        raise DuplicateEventError(event.external_event_id)

    handler = EVENT_HANDLERS.get(event.event_type)
    if handler is None:
        logger.info("Unhandled event type %s (%s); logged only", event.event_type, event.external_event_id)
        handled = HandlerResult(EventOutcome.IGNORED)
    else:
        handled = await handler(db, event, now)

    row.processed = True
    row.processed_at = now
    row.user_id = handled.user_id
    await db.flush()
    return handled.outcome


async def apply_subscription_event(
    db: AsyncSession,
    event: ProcessorEvent,
    now: datetime | None = None,
) -> EventOutcome:
    """Apply one processor event at most once. Commits ``db``.

    Raises:
        StorageError: storage failed; the event stays unprocessed.
        InvariantViolation: the effect would break the facts rule; the event
            stays unprocessed.
    """
    now = now or utcnow()

    try:
        inserted = await record_event_receipt(db, event)
        await db.commit()
    except SQLAlchemyError as e:
        await db.rollback()
        logger.exception("Could not record event %s", event.external_event_id)
        raise StorageError("record_event_receipt", e) from e

    if not inserted:
        logger.info("Event %s already received; checking whether it was processed", event.external_event_id)

    try:
        outcome = await _apply_logged_event(db, event, now)
        await db.commit()
    except DuplicateEventError:
        await db.rollback()
        logger.info("Event %s already processed, skipping", event.external_event_id)
        return EventOutcome.DUPLICATE
    except SQLAlchemyError as e:
        await db.rollback()
        logger.exception("Storage failure applying event %s", event.external_event_id)
        raise StorageError("apply_subscription_event", e) from e
    except Exception:
        await db.rollback()
        logger.exception("Error applying event %s; left unprocessed", event.external_event_id)
        raise

    logger.info("Event %s (%s) %s", event.external_event_id, event.event_type, outcome.value)
    return outcome


async def replay_unprocessed_events(
    db: AsyncSession,
    now: datetime | None = None,
    limit: int = 100,
) -> dict[str, EventOutcome]:
    """Re-apply events that were received but never marked processed.

    Failures are collected per event so one bad event does not block the rest.
    """
    result = await db.execute(
        select(SubscriptionEvent)
        .where(SubscriptionEvent.processed.is_(False))
        .order_by(SubscriptionEvent.received_at)
        .limit(limit)
    )
    pending = [ProcessorEvent.from_log(row) for row in result.scalars().all()]
    await db.commit()

    outcomes: dict[str, EventOutcome] = {}
    for event in pending:
        try:
            outcomes[event.external_event_id] = await apply_subscription_event(db, event, now)
        except (EntitlementError, SQLAlchemyError, ValueError) as e:
            logger.warning("Replay of event %s failed: %s", event.external_event_id, e)
    return outcomes
