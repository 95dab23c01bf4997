"""AI credit usage log model."""

import uuid
from datetime import datetime

from sqlalchemy import ForeignKey, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from resumakr.database import Base, UUIDPrimaryKeyMixin


class AICreditUsage(UUIDPrimaryKeyMixin, Base):
    """One row per successful AI invocation, for analytics and support."""

    __tablename__ = "ai_credit_usage"

    user_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    resume_id: Mapped[uuid.UUID | None] = mapped_column(nullable=True)
    action: Mapped[str] = mapped_column(String(100), nullable=False)
    credits_used: Mapped[int] = mapped_column(Integer, default=1, server_default="1")
    user_tier: Mapped[str] = mapped_column(String(20), nullable=False)
    created_at: Mapped[datetime] = mapped_column(server_default=func.now(), index=True)

    # Relationships
    user: Mapped["User"] = relationship(back_populates="ai_credit_usages", lazy="selectin")  # type: ignore[name-defined]  # noqa: F821

    def __repr__(self) -> str:
        return f"<AICreditUsage(id={self.id}, user_id={self.user_id}, action={self.action!r}, credits={self.credits_used})>"
