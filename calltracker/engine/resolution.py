"""
Call Tracker - Adaptive Price Resolution

Short calls get fine-grained samples, long calls get coarse ones, which keeps
every history_price response well inside Birdeye's per-request limits.

Thresholds (inclusive upper bound of each bucket):
- <= 1 hour:   1m
- <= 6 hours:  5m
- <= 1 day:    15m
- <= 3 days:   30m
- <= 1 week:   1H
- <= 30 days:  2H
- otherwise:   1D
"""

from __future__ import annotations

from datetime import datetime, timezone

import structlog

from calltracker.config import Resolution, settings

logger = structlog.get_logger(__name__)

_ONE_HOUR_MS = 60 * 60 * 1000
_ONE_DAY_MS = 24 * _ONE_HOUR_MS

RESOLUTION_THRESHOLDS_MS: tuple[tuple[int, Resolution], ...] = (
    (_ONE_HOUR_MS, Resolution.ONE_MINUTE),
    (6 * _ONE_HOUR_MS, Resolution.FIVE_MINUTES),
    (_ONE_DAY_MS, Resolution.FIFTEEN_MINUTES),
    (3 * _ONE_DAY_MS, Resolution.THIRTY_MINUTES),
    (7 * _ONE_DAY_MS, Resolution.ONE_HOUR),
    (30 * _ONE_DAY_MS, Resolution.TWO_HOURS),
)

# OHLCV candle types, finest to coarsest.
OHLCV_CANDLE_TYPES: tuple[tuple[str, int], ...] = (
    ("1m", 60),
    ("3m", 3 * 60),
    ("5m", 5 * 60),
    ("15m", 15 * 60),
    ("30m", 30 * 60),
    ("1H", 60 * 60),
    ("2H", 2 * 60 * 60),
    ("4H", 4 * 60 * 60),
    ("6H", 6 * 60 * 60),
    ("12H", 12 * 60 * 60),
    ("1D", 24 * 60 * 60),
    ("3D", 3 * 24 * 60 * 60),
    ("1W", 7 * 24 * 60 * 60),
)


def as_utc(value: datetime) -> datetime:
    """Return value as an aware UTC datetime. Naive values are taken as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def duration_ms(start: datetime, end: datetime) -> int:
    """Milliseconds from start to end (negative if end precedes start)."""
    delta = as_utc(end) - as_utc(start)
    return (delta.days * 86_400 + delta.seconds) * 1000 + delta.microseconds // 1000


def select_resolution_for_duration(duration: int) -> Resolution:
    """Map a call duration in milliseconds to a sampling resolution."""
    for upper_bound, resolution in RESOLUTION_THRESHOLDS_MS:
        if duration <= upper_bound:
            return resolution
    return Resolution.ONE_DAY


def select_resolution(call_timestamp: datetime, target_date: datetime) -> Resolution:
    """Pick the price-history resolution for a call's [call_timestamp, target_date] window."""
    duration = duration_ms(call_timestamp, target_date)
    resolution = select_resolution_for_duration(duration)
    logger.debug(
        "resolution_selected",
        duration_ms=duration,
        resolution=resolution.value,
    )
    return resolution


def select_candle_type(
    time_from: int,
    time_to: int,
    max_candles: int | None = None,
) -> str:
    """
    Choose the finest OHLCV candle type whose candle count fits under the cap.

    Args:
        time_from: Window start, unix seconds.
        time_to: Window end, unix seconds.
        max_candles: Upstream cap on candles per request (default from settings).

    Returns:
        Candle type string such as "15m" or "1D". Falls back to the coarsest
        type when every candidate exceeds the cap.

    Raises:
        ValueError: If the window is empty or inverted.
    """
    cap = max_candles if max_candles is not None else settings.MAX_OHLCV_CANDLES
    duration_seconds = time_to - time_from
    if duration_seconds <= 0:
        raise ValueError("Time range duration must be positive.")

    for candle_type, seconds in OHLCV_CANDLE_TYPES:
        num_candles = duration_seconds // seconds
        if 0 < num_candles <= cap:
            return candle_type

    return OHLCV_CANDLE_TYPES[-1][0]
