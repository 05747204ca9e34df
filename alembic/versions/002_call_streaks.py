"""Per-user token call success streaks

Revision ID: 002_call_streaks
Revises: 001_token_calls_schema
Create Date: 2026-10-18

Adds:
  - user_token_call_streaks (one row per user, FK users.id)
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID

# revision identifiers
revision: str = "002_call_streaks"
down_revision: Union[str, None] = "001_token_calls_schema"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "user_token_call_streaks",
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
        sa.Column("current_success_streak", sa.INTEGER(), server_default="0", nullable=False),
        sa.Column("longest_success_streak", sa.INTEGER(), server_default="0", nullable=False),
        sa.Column("last_verified_call_timestamp", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column(
            "updated_at",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
    )
    op.create_index(
        "ix_user_token_call_streaks_user_id",
        "user_token_call_streaks",
        ["user_id"],
        unique=True,
    )


def downgrade() -> None:
    op.drop_index("ix_user_token_call_streaks_user_id", table_name="user_token_call_streaks")
    op.drop_table("user_token_call_streaks")
