"""
Call Tracker - User Model

Minimal identity record. Token calls reference users(id); the leaderboard
decorates each aggregate with the username, display name and avatar.
"""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import TIMESTAMP, String, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from calltracker.models.base import Base


class User(Base):
    """Platform user as seen by the call pipeline."""

    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )
    username: Mapped[str] = mapped_column(
        String,
        unique=True,
        nullable=False,
        comment="Twitter handle",
    )
    display_name: Mapped[str] = mapped_column(String, nullable=False)
    avatar_url: Mapped[str | None] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        server_default=func.now(),
        comment="Account creation timestamp",
    )

    def __repr__(self) -> str:
        return f"<User id={self.id!r} username={self.username!r}>"
