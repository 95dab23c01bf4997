"""Resume creation log: backs the per-day resume creation cap."""

import uuid
from datetime import datetime

from sqlalchemy import ForeignKey
from sqlalchemy.orm import Mapped, mapped_column

from resumakr.database import Base, UUIDPrimaryKeyMixin


class ResumeCreation(UUIDPrimaryKeyMixin, Base):
    """Records that a user created a resume at a point in time."""

    __tablename__ = "resume_creations"

    user_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    resume_id: Mapped[uuid.UUID | None] = mapped_column(nullable=True)
    # Set explicitly (naive UTC) so the rolling window compares like with like
    created_at: Mapped[datetime] = mapped_column(nullable=False, index=True)

    def __repr__(self) -> str:
        return f"<ResumeCreation(user_id={self.user_id}, created_at={self.created_at})>"
