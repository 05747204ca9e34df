"""
Call Tracker - Token Call Leaderboard Ranking

Aggregates every verified call (VERIFIED_SUCCESS / VERIFIED_FAIL) per user and
ranks users by a volume-damped accuracy score:

    adjusted_score = accuracy_rate * ln(total_calls + 1)

Ordering is a fixed three-level chain, all descending:
    1. adjusted_score
    2. average_multiplier (None counts as 0)
    3. total_calls
Exact ties fall back to user_id ascending so pages are reproducible.
"""

from __future__ import annotations

import math
import uuid
from decimal import Decimal
from typing import Iterable, NamedTuple, Sequence

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from calltracker.config import TokenCallStatus, settings


# ---------------------------------------------------------------------------
# Inputs / aggregates
# ---------------------------------------------------------------------------


class VerifiedCallRow(NamedTuple):
    """The columns of a verified call the leaderboard needs."""

    user_id: uuid.UUID
    status: TokenCallStatus
    time_to_hit_ratio: float | None
    target_price: Decimal
    reference_price: Decimal
    reference_supply: Decimal | None


class UserAggregate(NamedTuple):
    """Per-user derived leaderboard statistics."""

    user_id: uuid.UUID
    total_calls: int
    successful_calls: int
    accuracy_rate: float
    average_time_to_hit_ratio: float | None
    average_multiplier: float | None
    average_market_cap_at_call_time: float | None
    adjusted_score: float


def _dec(value: Decimal | float | int) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


class _Accumulator:
    __slots__ = (
        "total",
        "successful",
        "ratio_sum",
        "ratio_count",
        "multiplier_sum",
        "multiplier_count",
        "market_cap_sum",
        "market_cap_count",
    )

    def __init__(self) -> None:
        self.total = 0
        self.successful = 0
        self.ratio_sum = 0.0
        self.ratio_count = 0
        self.multiplier_sum = 0.0
        self.multiplier_count = 0
        self.market_cap_sum = 0.0
        self.market_cap_count = 0

    def add(self, row: VerifiedCallRow) -> None:
        self.total += 1
        reference_price = _dec(row.reference_price)

        if row.status == TokenCallStatus.VERIFIED_SUCCESS:
            self.successful += 1
            if row.time_to_hit_ratio is not None:
                self.ratio_sum += float(row.time_to_hit_ratio)
                self.ratio_count += 1
            if reference_price != 0:
                self.multiplier_sum += float(_dec(row.target_price) / reference_price)
                self.multiplier_count += 1

        if row.reference_supply is not None:
            supply = _dec(row.reference_supply)
            if reference_price > 0 and supply > 0:
                self.market_cap_sum += float(reference_price * supply)
                self.market_cap_count += 1


def _mean(total: float, count: int) -> float | None:
    return total / count if count > 0 else None


def compute_adjusted_score(accuracy_rate: float, total_calls: int) -> float:
    """accuracy * ln(total + 1); 0 for users without verified calls."""
    if total_calls <= 0:
        return 0.0
    return accuracy_rate * math.log(total_calls + 1)


def aggregate_calls(rows: Iterable[VerifiedCallRow]) -> list[UserAggregate]:
    """
    Fold verified call rows into one aggregate per user.

    Rows with a non-verified status are ignored. Output order follows first
    appearance of each user; use rank_entries() for leaderboard order.
    """
    accumulators: dict[uuid.UUID, _Accumulator] = {}
    for row in rows:
        if row.status not in (TokenCallStatus.VERIFIED_SUCCESS, TokenCallStatus.VERIFIED_FAIL):
            continue
        accumulators.setdefault(row.user_id, _Accumulator()).add(row)

    aggregates = []
    for user_id, acc in accumulators.items():
        accuracy_rate = acc.successful / acc.total if acc.total > 0 else 0.0
        aggregates.append(
            UserAggregate(
                user_id=user_id,
                total_calls=acc.total,
                successful_calls=acc.successful,
                accuracy_rate=accuracy_rate,
                average_time_to_hit_ratio=_mean(acc.ratio_sum, acc.ratio_count),
                average_multiplier=_mean(acc.multiplier_sum, acc.multiplier_count),
                average_market_cap_at_call_time=_mean(acc.market_cap_sum, acc.market_cap_count),
                adjusted_score=compute_adjusted_score(accuracy_rate, acc.total),
            )
        )
    return aggregates


def _ranking_key(aggregate: UserAggregate) -> tuple[float, float, int, str]:
    return (
        -aggregate.adjusted_score,
        -(aggregate.average_multiplier or 0.0),
        -aggregate.total_calls,
        str(aggregate.user_id),
    )


def rank_entries(aggregates: Iterable[UserAggregate]) -> list[UserAggregate]:
    """Sort aggregates into leaderboard order."""
    return sorted(aggregates, key=_ranking_key)


# ---------------------------------------------------------------------------
# Output DTOs
# ---------------------------------------------------------------------------


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class LeaderboardUser(_CamelModel):
    """Public user summary shown next to a leaderboard entry."""

    id: uuid.UUID
    username: str | None = None
    display_name: str | None = None
    avatar_url: str | None = None


class LeaderboardEntry(_CamelModel):
    rank: int
    user: LeaderboardUser
    total_calls: int
    successful_calls: int
    accuracy_rate: float
    average_time_to_hit_ratio: float | None = None
    average_multiplier: float | None = None
    average_market_cap_at_call_time: float | None = None
    adjusted_score: float


class LeaderboardPage(_CamelModel):
    items: list[LeaderboardEntry]
    total: int
    page: int
    limit: int


# ---------------------------------------------------------------------------
# Pagination
# ---------------------------------------------------------------------------


def clamp_pagination(page: int | None, limit: int | None) -> tuple[int, int]:
    """Clamp page to >= 1 and limit to [LEADERBOARD_MIN_LIMIT, LEADERBOARD_MAX_LIMIT]."""
    if page is None:
        page = 1
    if limit is None:
        limit = settings.LEADERBOARD_DEFAULT_LIMIT
    page = max(1, page)
    limit = min(max(limit, settings.LEADERBOARD_MIN_LIMIT), settings.LEADERBOARD_MAX_LIMIT)
    return page, limit


def paginate(
    ranked: Sequence[UserAggregate],
    page: int,
    limit: int,
    users: dict[uuid.UUID, LeaderboardUser] | None = None,
) -> LeaderboardPage:
    """
    Slice an already ranked list into one page.

    rank is the absolute 1-indexed position in the full ranked list.
    """
    users = users or {}
    skip = (page - 1) * limit
    window = ranked[skip : skip + limit]

    items = [
        LeaderboardEntry(
            rank=skip + index + 1,
            user=users.get(aggregate.user_id) or LeaderboardUser(id=aggregate.user_id),
            total_calls=aggregate.total_calls,
            successful_calls=aggregate.successful_calls,
            accuracy_rate=aggregate.accuracy_rate,
            average_time_to_hit_ratio=aggregate.average_time_to_hit_ratio,
            average_multiplier=aggregate.average_multiplier,
            average_market_cap_at_call_time=aggregate.average_market_cap_at_call_time,
            adjusted_score=aggregate.adjusted_score,
        )
        for index, aggregate in enumerate(window)
    ]
    return LeaderboardPage(items=items, total=len(ranked), page=page, limit=limit)

