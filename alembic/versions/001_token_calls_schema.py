"""Token call schema - users, token_calls

Revision ID: 001_token_calls_schema
Revises: None
Create Date: 2026-10-18
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID

# revision identifiers
revision: str = "001_token_calls_schema"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

token_call_status = sa.Enum(
    "PENDING",
    "VERIFIED_SUCCESS",
    "VERIFIED_FAIL",
    "ERROR",
    name="token_call_status",
)


def upgrade() -> None:
    # --- users ---
    op.create_table(
        "users",
        sa.Column(
            "id",
            UUID(as_uuid=True),
            primary_key=True,
            server_default=sa.text("gen_random_uuid()"),
        ),
        sa.Column("username", sa.String(), nullable=False, comment="Twitter handle"),
        sa.Column("display_name", sa.String(), nullable=False),
        sa.Column("avatar_url", sa.String(), nullable=True),
        sa.Column(
            "created_at",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
    )
    op.create_index("ix_users_username", "users", ["username"], unique=True)

    # --- token_calls ---
    op.create_table(
        "token_calls",
        sa.Column(
            "id",
            UUID(as_uuid=True),
            primary_key=True,
            server_default=sa.text("gen_random_uuid()"),
        ),
        sa.Column(
            "user_id",
            UUID(as_uuid=True),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("token_id", sa.String(), nullable=False, comment="Token mint address"),
        sa.Column(
            "call_timestamp",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column("reference_price", sa.NUMERIC(38, 18), nullable=False),
        sa.Column("reference_supply", sa.NUMERIC(38, 8), nullable=True),
        sa.Column("target_price", sa.NUMERIC(38, 18), nullable=False),
        sa.Column("timeframe_duration", sa.String(), nullable=False),
        sa.Column("target_date", sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column(
            "status",
            token_call_status,
            server_default="PENDING",
            nullable=False,
        ),
        sa.Column("verification_timestamp", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("peak_price_during_period", sa.NUMERIC(38, 18), nullable=True),
        sa.Column("final_price_at_target_date", sa.NUMERIC(38, 18), nullable=True),
        sa.Column("target_hit_timestamp", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("time_to_hit_ratio", sa.FLOAT(), nullable=True),
        sa.Column("price_history_url", sa.String(), nullable=True),
        sa.Column(
            "created_at",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.CheckConstraint(
            "status != 'VERIFIED_SUCCESS' OR time_to_hit_ratio IS NOT NULL",
            name="ck_token_calls_success_has_ratio",
        ),
        sa.CheckConstraint(
            "status != 'VERIFIED_SUCCESS' OR target_hit_timestamp IS NOT NULL",
            name="ck_token_calls_success_has_hit",
        ),
        sa.CheckConstraint("reference_price > 0", name="ck_token_calls_reference_positive"),
        sa.CheckConstraint("target_price > 0", name="ck_token_calls_target_positive"),
        sa.CheckConstraint("target_date > call_timestamp", name="ck_token_calls_target_after_call"),
    )
    # Pending-past-target scan
    op.create_index("ix_token_calls_status_target_date", "token_calls", ["status", "target_date"])
    op.create_index("ix_token_calls_user_id", "token_calls", ["user_id"])
    op.create_index("ix_token_calls_token_id", "token_calls", ["token_id"])


def downgrade() -> None:
    op.drop_index("ix_token_calls_token_id", table_name="token_calls")
    op.drop_index("ix_token_calls_user_id", table_name="token_calls")
    op.drop_index("ix_token_calls_status_target_date", table_name="token_calls")
    op.drop_table("token_calls")
    token_call_status.drop(op.get_bind(), checkfirst=True)
    op.drop_index("ix_users_username", table_name="users")
    op.drop_table("users")
