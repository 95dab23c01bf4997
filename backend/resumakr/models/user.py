"""User model: account, subscription facts, and usage counters."""

from datetime import datetime
from decimal import Decimal

from sqlalchemy import Boolean, Integer, Numeric, String, false
from sqlalchemy.orm import Mapped, mapped_column, relationship

from resumakr.database import Base, TimestampMixin, UUIDPrimaryKeyMixin


class User(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """Resume builder account.

    Subscription facts are written by admin edits and by the subscription
    event reconciler; usage counters are written by the usage store only.
    """

    __tablename__ = "users"

    email: Mapped[str] = mapped_column(String(255), unique=True, index=True, nullable=False)
    full_name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    role: Mapped[str] = mapped_column(String(50), default="user", nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    # Subscription facts
    is_subscribed: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default=false(), nullable=False
    )
    subscription_plan: Mapped[str | None] = mapped_column(String(50), nullable=True)
    subscription_end_date: Mapped[datetime | None] = mapped_column(nullable=True)
    subscription_started_at: Mapped[datetime | None] = mapped_column(nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(nullable=True)
    coupon_code_used: Mapped[str | None] = mapped_column(String(100), nullable=True)
    subscription_price: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)
    external_customer_id: Mapped[str | None] = mapped_column(
        String(255), unique=True, index=True, nullable=True
    )
    external_subscription_id: Mapped[str | None] = mapped_column(
        String(255), unique=True, index=True, nullable=True
    )

    # Usage counters
    ai_credits_used: Mapped[int] = mapped_column(
        Integer, default=0, server_default="0", nullable=False
    )
    ai_credits_bonus: Mapped[int] = mapped_column(
        Integer, default=0, server_default="0", nullable=False
    )
    pdf_downloads_used: Mapped[int] = mapped_column(
        Integer, default=0, server_default="0", nullable=False
    )
    usage_period: Mapped[str | None] = mapped_column(String(7), nullable=True)  # "YYYY-MM"

    # Relationships
    ai_credit_usages: Mapped[list["AICreditUsage"]] = relationship(  # type: ignore[name-defined]  # noqa: F821
        "AICreditUsage", back_populates="user", lazy="raise", passive_deletes=True
    )
    payments: Mapped[list["Payment"]] = relationship(  # type: ignore[name-defined]  # noqa: F821
        "Payment", back_populates="user", lazy="raise", passive_deletes=True
    )

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    def __repr__(self) -> str:
        return (
            f"<User id={self.id} email={self.email!r} "
            f"is_subscribed={self.is_subscribed} plan={self.subscription_plan!r}>"
        )
