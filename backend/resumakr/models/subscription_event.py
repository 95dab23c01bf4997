"""Subscription event log: append-only record of payment processor events."""

import uuid
from datetime import datetime

from sqlalchemy import JSON, Boolean, String, false, func
from sqlalchemy.orm import Mapped, mapped_column

from resumakr.database import Base, UUIDPrimaryKeyMixin


class SubscriptionEvent(UUIDPrimaryKeyMixin, Base):
    """One row per processor event id.

    The unique constraint on ``external_event_id`` is the idempotency barrier:
    receipt is an insert-or-ignore, and ``processed`` flips to true in the same
    transaction that applies the event's effect.
    """

    __tablename__ = "subscription_events"

    external_event_id: Mapped[str] = mapped_column(
        String(255), unique=True, index=True, nullable=False
    )
    event_type: Mapped[str] = mapped_column(String(100), nullable=False)
    subject_id: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    payload: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    processed: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default=false(), nullable=False, index=True
    )
    received_at: Mapped[datetime] = mapped_column(server_default=func.now())
    processed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    user_id: Mapped[uuid.UUID | None] = mapped_column(nullable=True)

    def __repr__(self) -> str:
        return (
            f"<SubscriptionEvent(id={self.external_event_id!r}, type={self.event_type!r}, "
            f"processed={self.processed})>"
        )
