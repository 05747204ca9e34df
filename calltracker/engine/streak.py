"""
Call Tracker - Success Streaks

A verified success extends the user's current streak (and the longest streak
if it is now the best). A verified failure resets the current streak to 0.
Outcomes verified before the last recorded verification are ignored. Outcomes
sharing a timestamp, as calls from one batch do, all count in arrival order.
"""

from __future__ import annotations

from datetime import datetime

import structlog

from calltracker.config import TokenCallStatus
from calltracker.engine.resolution import as_utc
from calltracker.models.call_streak import UserTokenCallStreak

logger = structlog.get_logger(__name__)


def apply_streak_outcome(
    streak: UserTokenCallStreak,
    status: TokenCallStatus,
    verified_at: datetime,
) -> bool:
    """
    Fold one verified outcome into the streak record.

    Returns:
        True if the streak record changed and needs saving.
    """
    if status not in (TokenCallStatus.VERIFIED_SUCCESS, TokenCallStatus.VERIFIED_FAIL):
        return False

    last = streak.last_verified_call_timestamp
    if last is not None and as_utc(verified_at) < as_utc(last):
        logger.debug(
            "streak_outcome_ignored_out_of_order",
            user_id=str(streak.user_id),
            verified_at=verified_at.isoformat(),
            last_verified=last.isoformat(),
        )
        return False

    current = streak.current_success_streak or 0
    longest = streak.longest_success_streak or 0

    if status == TokenCallStatus.VERIFIED_SUCCESS:
        current += 1
        longest = max(longest, current)
    else:
        current = 0

    streak.current_success_streak = current
    streak.longest_success_streak = longest
    streak.last_verified_call_timestamp = verified_at
    return True
