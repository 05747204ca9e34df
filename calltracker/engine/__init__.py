from calltracker.engine.evaluator import CallOutcome, apply_outcome, evaluate_call
from calltracker.engine.leaderboard import (
    aggregate_calls,
    clamp_pagination,
    paginate,
    rank_entries,
)
from calltracker.engine.notification import VerificationNotice, build_verification_notice
from calltracker.engine.price_history import PriceHistory, PriceSample
from calltracker.engine.resolution import (
    select_candle_type,
    select_resolution,
    select_resolution_for_duration,
)
from calltracker.engine.streak import apply_streak_outcome

__all__ = [
    "CallOutcome",
    "PriceHistory",
    "PriceSample",
    "VerificationNotice",
    "aggregate_calls",
    "apply_outcome",
    "apply_streak_outcome",
    "build_verification_notice",
    "clamp_pagination",
    "evaluate_call",
    "paginate",
    "rank_entries",
    "select_candle_type",
    "select_resolution",
    "select_resolution_for_duration",
]
