"""
Call Tracker - Token Call Model

A user's prediction that a token's price reaches target_price by target_date.
Creation fields are written once by the call-creation flow; verification
fields are written only by the verification pipeline.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import (
    FLOAT,
    NUMERIC,
    TIMESTAMP,
    CheckConstraint,
    Enum as SAEnum,
    ForeignKey,
    Index,
    String,
    Uuid,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from calltracker.config import TokenCallStatus
from calltracker.models.base import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TokenCall(Base):
    """
    Persisted token call.

    CHECK constraints mirror the success invariant: a VERIFIED_SUCCESS row
    always carries a target_hit_timestamp and a time_to_hit_ratio.
    """

    __tablename__ = "token_calls"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
        comment="Unique call identifier",
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        comment="Owning user",
    )
    token_id: Mapped[str] = mapped_column(
        String,
        nullable=False,
        comment="Token mint address",
    )

    # --- Call details ---
    call_timestamp: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        default=_utcnow,
        server_default=func.now(),
        comment="When the call was made",
    )
    reference_price: Mapped[Decimal] = mapped_column(
        NUMERIC(38, 18), nullable=False, comment="Live price at call time"
    )
    reference_supply: Mapped[Decimal | None] = mapped_column(
        NUMERIC(38, 8), nullable=True, comment="Token supply at call time"
    )
    target_price: Mapped[Decimal] = mapped_column(
        NUMERIC(38, 18), nullable=False, comment="Predicted price"
    )
    timeframe_duration: Mapped[str] = mapped_column(
        String, nullable=False, comment="Timeframe label, e.g. '1h', '3d', '1M'"
    )
    target_date: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, comment="Deadline for the target"
    )

    # --- Verification details ---
    status: Mapped[TokenCallStatus] = mapped_column(
        SAEnum(
            TokenCallStatus,
            name="token_call_status",
            values_callable=lambda enum: [member.value for member in enum],
        ),
        nullable=False,
        default=TokenCallStatus.PENDING,
        server_default=TokenCallStatus.PENDING.value,
    )
    verification_timestamp: Mapped[datetime | None] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True
    )
    peak_price_during_period: Mapped[Decimal | None] = mapped_column(
        NUMERIC(38, 18), nullable=True
    )
    final_price_at_target_date: Mapped[Decimal | None] = mapped_column(
        NUMERIC(38, 18), nullable=True
    )

    # --- Success metrics (VERIFIED_SUCCESS only) ---
    target_hit_timestamp: Mapped[datetime | None] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True
    )
    time_to_hit_ratio: Mapped[float | None] = mapped_column(FLOAT, nullable=True)

    price_history_url: Mapped[str | None] = mapped_column(
        String, nullable=True, comment="Stored price-history JSON artifact"
    )

    # --- Timestamps ---
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        default=_utcnow,
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        default=_utcnow,
        onupdate=_utcnow,
        server_default=func.now(),
        nullable=False,
    )

    __table_args__ = (
        Index("ix_token_calls_status_target_date", "status", "target_date"),
        Index("ix_token_calls_user_id", "user_id"),
        Index("ix_token_calls_token_id", "token_id"),
        CheckConstraint(
            "status != 'VERIFIED_SUCCESS' OR time_to_hit_ratio IS NOT NULL",
            name="ck_token_calls_success_has_ratio",
        ),
        CheckConstraint(
            "status != 'VERIFIED_SUCCESS' OR target_hit_timestamp IS NOT NULL",
            name="ck_token_calls_success_has_hit",
        ),
        CheckConstraint("reference_price > 0", name="ck_token_calls_reference_positive"),
        CheckConstraint("target_price > 0", name="ck_token_calls_target_positive"),
        CheckConstraint("target_date > call_timestamp", name="ck_token_calls_target_after_call"),
    )

    def validate_creation(self) -> None:
        """Raise ValueError if the creation-time fields break the call invariants."""
        if self.reference_price is None or self.reference_price <= 0:
            raise ValueError(f"reference_price must be positive, got {self.reference_price}")
        if self.target_price is None or self.target_price <= 0:
            raise ValueError(f"target_price must be positive, got {self.target_price}")
        if self.call_timestamp is not None and self.target_date <= self.call_timestamp:
            raise ValueError("target_date must be after call_timestamp")

    def __repr__(self) -> str:
        return (
            f"<TokenCall id={self.id!r} token={self.token_id!r} "
            f"status={self.status!r} target={self.target_price}>"
        )
