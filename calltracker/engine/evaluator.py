"""
Call Tracker - Call Outcome Evaluator

Resolves a pending call against its price history in one chronological pass:

- peak price:   highest sample seen in the window
- hit time:     first sample whose price >= target price
- final price:  price of the last sample

Success requires peak >= target AND a hit sample. time_to_hit_ratio is the
fraction of the call window elapsed at the hit:

    ratio = max(0, hit - call) / (target_date - call)

An empty history is "not enough data yet": the call stays PENDING and only
verification_timestamp is stamped, so the next run retries it.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import NamedTuple

import structlog

from calltracker.config import TokenCallStatus, settings
from calltracker.engine.price_history import PriceHistory
from calltracker.engine.resolution import as_utc, duration_ms
from calltracker.models.token_call import TokenCall

logger = structlog.get_logger(__name__)


class CallOutcome(NamedTuple):
    """Result of evaluating one call. Fields map 1:1 onto TokenCall columns."""

    status: TokenCallStatus
    verification_timestamp: datetime
    peak_price: Decimal | None = None
    final_price: Decimal | None = None
    target_hit_timestamp: datetime | None = None
    time_to_hit_ratio: float | None = None


def _to_price(value: float | Decimal) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def compute_time_to_hit_ratio(
    call_timestamp: datetime,
    target_date: datetime,
    hit_timestamp: datetime,
) -> float:
    """Fraction of the call window elapsed when the target was hit. Never negative."""
    call_duration = duration_ms(call_timestamp, target_date)
    time_to_hit = duration_ms(call_timestamp, hit_timestamp)

    if call_duration > 0:
        return max(0, time_to_hit) / call_duration
    # Zero or negative window: all we can say is whether the hit came after the call.
    return 1.0 if time_to_hit > 0 else 0.0


def evaluate_call(
    call: TokenCall,
    history: PriceHistory,
    now: datetime | None = None,
    stale_after_hours: int | None = None,
) -> CallOutcome:
    """
    Evaluate a pending call against its price history.

    Args:
        call: The pending call (only creation fields are read).
        history: Samples covering [call_timestamp, target_date], ascending.
        now: Verification time (default: current UTC time).
        stale_after_hours: Empty-history staleness bound in hours; 0 disables it
            (default from settings).

    Returns:
        CallOutcome. Identical inputs always give an identical outcome.
    """
    if now is None:
        now = datetime.now(timezone.utc)
    stale_hours = (
        stale_after_hours if stale_after_hours is not None else settings.PENDING_STALE_AFTER_HOURS
    )

    if history.is_empty():
        if stale_hours > 0 and as_utc(now) - as_utc(call.target_date) > timedelta(hours=stale_hours):
            logger.warning(
                "evaluation_stale_no_history",
                call_id=str(call.id),
                token_id=call.token_id,
                stale_after_hours=stale_hours,
            )
            return CallOutcome(status=TokenCallStatus.ERROR, verification_timestamp=now)

        logger.warning(
            "evaluation_no_history",
            call_id=str(call.id),
            token_id=call.token_id,
        )
        return CallOutcome(status=TokenCallStatus.PENDING, verification_timestamp=now)

    target_price = _to_price(call.target_price)
    peak_price: Decimal | None = None
    hit_unix_time: int | None = None

    for sample in history.items:
        price = _to_price(sample.value)
        if peak_price is None or price > peak_price:
            peak_price = price
        if hit_unix_time is None and price >= target_price:
            hit_unix_time = sample.unix_time

    final_price = _to_price(history.items[-1].value)

    if peak_price is not None and peak_price >= target_price and hit_unix_time is not None:
        hit_timestamp = datetime.fromtimestamp(hit_unix_time, tz=timezone.utc)
        ratio = compute_time_to_hit_ratio(call.call_timestamp, call.target_date, hit_timestamp)
        outcome = CallOutcome(
            status=TokenCallStatus.VERIFIED_SUCCESS,
            verification_timestamp=now,
            peak_price=peak_price,
            final_price=final_price,
            target_hit_timestamp=hit_timestamp,
            time_to_hit_ratio=ratio,
        )
    else:
        outcome = CallOutcome(
            status=TokenCallStatus.VERIFIED_FAIL,
            verification_timestamp=now,
            peak_price=peak_price,
            final_price=final_price,
        )

    logger.debug(
        "evaluation_complete",
        call_id=str(call.id),
        status=outcome.status.value,
        peak_price=str(outcome.peak_price),
        final_price=str(outcome.final_price),
        time_to_hit_ratio=outcome.time_to_hit_ratio,
        samples=len(history.items),
    )
    return outcome


def apply_outcome(call: TokenCall, outcome: CallOutcome) -> TokenCall:
    """Copy an outcome onto the call. A PENDING outcome only stamps verification_timestamp."""
    call.verification_timestamp = outcome.verification_timestamp
    call.status = outcome.status

    if outcome.status == TokenCallStatus.PENDING or outcome.status == TokenCallStatus.ERROR:
        return call

    call.peak_price_during_period = outcome.peak_price
    call.final_price_at_target_date = outcome.final_price
    call.target_hit_timestamp = outcome.target_hit_timestamp
    call.time_to_hit_ratio = outcome.time_to_hit_ratio
    return call
