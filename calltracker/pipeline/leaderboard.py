"""
Call Tracker - Token Call Leaderboard Service

Read-time leaderboard: loads every verified call, aggregates and ranks in
memory (engine/leaderboard.py), then decorates the requested page with user
details. Nothing is cached; each request recomputes.
"""

from __future__ import annotations

import structlog

from calltracker.config import LeaderboardSortField
from calltracker.engine.leaderboard import (
    LeaderboardPage,
    aggregate_calls,
    clamp_pagination,
    paginate,
    rank_entries,
)
from calltracker.pipeline.repository import CallRepository

logger = structlog.get_logger(__name__)


class LeaderboardUnavailable(Exception):
    """Leaderboard data could not be loaded."""


class LeaderboardService:
    def __init__(self, repository: CallRepository):
        self.repository = repository

    async def get_leaderboard(
        self,
        page: int | None = 1,
        limit: int | None = None,
        sort_by: LeaderboardSortField | str | None = None,
    ) -> LeaderboardPage:
        """
        Return one page of the token-call leaderboard.

        sort_by is validated but ordering is always adjusted_score, then
        average_multiplier, then total_calls.

        Raises:
            ValueError: Unknown sort_by value.
            LeaderboardUnavailable: The verified calls could not be read.
        """
        sort_field = LeaderboardSortField(sort_by) if sort_by is not None else LeaderboardSortField.ACCURACY_RATE
        page, limit = clamp_pagination(page, limit)

        try:
            rows = await self.repository.load_verified_call_rows()
        except Exception as e:
            logger.error(
                "leaderboard_load_failed",
                error=str(e),
                error_type=type(e).__name__,
            )
            raise LeaderboardUnavailable("Could not fetch leaderboard data.") from e

        ranked = rank_entries(aggregate_calls(rows))
        skip = (page - 1) * limit
        page_user_ids = [aggregate.user_id for aggregate in ranked[skip : skip + limit]]

        try:
            users = await self.repository.load_leaderboard_users(page_user_ids)
        except Exception as e:
            logger.error(
                "leaderboard_users_load_failed",
                error=str(e),
                error_type=type(e).__name__,
            )
            raise LeaderboardUnavailable("Could not fetch leaderboard users.") from e

        result = paginate(ranked, page, limit, users)
        logger.info(
            "leaderboard_served",
            page=page,
            limit=limit,
            sort_by=sort_field.value,
            total=result.total,
            returned=len(result.items),
        )
        return result
