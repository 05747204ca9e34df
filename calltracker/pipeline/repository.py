"""
Call Tracker - Token Call Repository

All database access of the verification pipeline. Every method opens its own
short-lived session, so one failed write never poisons the rest of a batch.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Iterable

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from calltracker.config import VERIFIED_STATUSES, TokenCallStatus
from calltracker.engine.leaderboard import LeaderboardUser, VerifiedCallRow
from calltracker.models.call_streak import UserTokenCallStreak
from calltracker.models.notification import Notification
from calltracker.models.token_call import TokenCall
from calltracker.models.user import User

logger = structlog.get_logger(__name__)


class CallRepository:
    """
    Persistence for token calls, streaks, notifications and leaderboard reads.

    Usage:
        repo = CallRepository(session_factory)
        pending = await repo.find_pending_calls_past_target(now)
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    # -----------------------------------------------------------------------
    # Token calls
    # -----------------------------------------------------------------------

    async def find_pending_calls_past_target(self, now: datetime) -> list[TokenCall]:
        """PENDING calls whose target_date has passed, oldest target first."""
        stmt = (
            select(TokenCall)
            .where(TokenCall.status == TokenCallStatus.PENDING)
            .where(TokenCall.target_date <= now)
            .order_by(TokenCall.target_date.asc(), TokenCall.id.asc())
        )
        async with self.session_factory() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def find_verified_calls_missing_artifact(self) -> list[TokenCall]:
        """Verified calls without a price-history artifact, oldest call first."""
        stmt = (
            select(TokenCall)
            .where(TokenCall.status.in_(VERIFIED_STATUSES))
            .where(TokenCall.price_history_url.is_(None))
            .order_by(TokenCall.call_timestamp.asc(), TokenCall.id.asc())
        )
        async with self.session_factory() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def save_call(self, call: TokenCall) -> TokenCall:
        """Upsert a call by id and commit."""
        async with self.session_factory() as session:
            merged = await session.merge(call)
            await session.commit()
        logger.debug("token_call_saved", call_id=str(call.id), status=call.status.value)
        return merged

    # -----------------------------------------------------------------------
    # Streaks
    # -----------------------------------------------------------------------

    async def get_streak(self, user_id: uuid.UUID) -> UserTokenCallStreak:
        """Return the user's streak row, or a fresh unsaved one."""
        stmt = select(UserTokenCallStreak).where(UserTokenCallStreak.user_id == user_id)
        async with self.session_factory() as session:
            result = await session.execute(stmt)
            streak = result.scalar_one_or_none()

        if streak is None:
            streak = UserTokenCallStreak(
                user_id=user_id,
                current_success_streak=0,
                longest_success_streak=0,
                last_verified_call_timestamp=None,
            )
        return streak

    async def save_streak(self, streak: UserTokenCallStreak) -> UserTokenCallStreak:
        async with self.session_factory() as session:
            merged = await session.merge(streak)
            await session.commit()
        return merged

    # -----------------------------------------------------------------------
    # Notifications
    # -----------------------------------------------------------------------

    async def save_notification(self, notification: Notification) -> Notification:
        async with self.session_factory() as session:
            session.add(notification)
            await session.commit()
        logger.debug(
            "notification_saved",
            user_id=str(notification.user_id),
            type=notification.type,
        )
        return notification

    # -----------------------------------------------------------------------
    # Leaderboard reads
    # -----------------------------------------------------------------------

    async def load_verified_call_rows(self) -> list[VerifiedCallRow]:
        """Every verified call, reduced to the columns the leaderboard aggregates."""
        stmt = (
            select(
                TokenCall.user_id,
                TokenCall.status,
                TokenCall.time_to_hit_ratio,
                TokenCall.target_price,
                TokenCall.reference_price,
                TokenCall.reference_supply,
            )
            .where(TokenCall.status.in_(VERIFIED_STATUSES))
            .order_by(TokenCall.user_id.asc(), TokenCall.call_timestamp.asc())
        )
        async with self.session_factory() as session:
            result = await session.execute(stmt)
            return [VerifiedCallRow(*row) for row in result.all()]

    async def load_leaderboard_users(
        self, user_ids: Iterable[uuid.UUID]
    ) -> dict[uuid.UUID, LeaderboardUser]:
        ids = list(user_ids)
        if not ids:
            return {}
        stmt = select(User).where(User.id.in_(ids))
        async with self.session_factory() as session:
            result = await session.execute(stmt)
            users = result.scalars().all()
        return {
            user.id: LeaderboardUser(
                id=user.id,
                username=user.username,
                display_name=user.display_name,
                avatar_url=user.avatar_url,
            )
            for user in users
        }
