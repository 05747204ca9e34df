"""
Call Tracker - Token Call Streak Model

One row per user. Updated after every verified outcome: successes extend the
current streak, failures reset it.
"""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import INTEGER, TIMESTAMP, ForeignKey, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from calltracker.models.base import Base


class UserTokenCallStreak(Base):
    """Consecutive successful-call streak per user."""

    __tablename__ = "user_token_call_streaks"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="CASCADE"),
        unique=True,
        nullable=False,
    )
    current_success_streak: Mapped[int] = mapped_column(
        INTEGER, nullable=False, default=0, server_default="0"
    )
    longest_success_streak: Mapped[int] = mapped_column(
        INTEGER, nullable=False, default=0, server_default="0"
    )
    last_verified_call_timestamp: Mapped[datetime | None] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    def __repr__(self) -> str:
        return (
            f"<UserTokenCallStreak user={self.user_id!r} "
            f"current={self.current_success_streak} longest={self.longest_success_streak}>"
        )
