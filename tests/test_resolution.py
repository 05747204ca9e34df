"""
Tests for adaptive resolution selection (calltracker/engine/resolution.py).

Covers:
- Threshold buckets and their inclusive upper bounds
- Monotonic coarsening as the window grows
- OHLCV candle-type selection under the candle cap
- UTC normalisation helpers
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from calltracker.config import Resolution
from calltracker.engine.resolution import (
    as_utc,
    duration_ms,
    select_candle_type,
    select_resolution,
    select_resolution_for_duration,
)

HOUR_MS = 60 * 60 * 1000
DAY_MS = 24 * HOUR_MS

ORDER = list(Resolution)


@pytest.mark.parametrize(
    "duration, expected",
    [
        (1, Resolution.ONE_MINUTE),
        (HOUR_MS, Resolution.ONE_MINUTE),
        (HOUR_MS + 1, Resolution.FIVE_MINUTES),
        (6 * HOUR_MS, Resolution.FIVE_MINUTES),
        (6 * HOUR_MS + 1, Resolution.FIFTEEN_MINUTES),
        (DAY_MS, Resolution.FIFTEEN_MINUTES),
        (3 * DAY_MS, Resolution.THIRTY_MINUTES),
        (7 * DAY_MS, Resolution.ONE_HOUR),
        (30 * DAY_MS, Resolution.TWO_HOURS),
        (30 * DAY_MS + 1, Resolution.ONE_DAY),
    ],
)
def test_threshold_buckets(duration, expected):
    assert select_resolution_for_duration(duration) == expected


def test_two_hour_call_uses_five_minutes():
    start = datetime(2024, 3, 1, tzinfo=timezone.utc)
    assert select_resolution(start, start + timedelta(hours=2)) == Resolution.FIVE_MINUTES


def test_forty_five_day_call_uses_one_day():
    start = datetime(2024, 3, 1, tzinfo=timezone.utc)
    assert select_resolution(start, start + timedelta(days=45)) == Resolution.ONE_DAY


def test_resolution_never_gets_finer_as_duration_grows():
    durations = [0, HOUR_MS // 2, HOUR_MS, 2 * HOUR_MS, DAY_MS, 2 * DAY_MS, 5 * DAY_MS, 20 * DAY_MS, 90 * DAY_MS]
    indexes = [ORDER.index(select_resolution_for_duration(d)) for d in durations]
    assert indexes == sorted(indexes)


def test_non_positive_duration_falls_in_finest_bucket():
    assert select_resolution_for_duration(0) == Resolution.ONE_MINUTE
    assert select_resolution_for_duration(-HOUR_MS) == Resolution.ONE_MINUTE


def test_naive_datetimes_are_treated_as_utc():
    aware = datetime(2024, 3, 1, 8, 0, tzinfo=timezone.utc)
    naive = datetime(2024, 3, 1, 8, 0)
    assert as_utc(naive) == aware
    assert duration_ms(naive, aware + timedelta(hours=3)) == 3 * HOUR_MS


class TestCandleType:
    def test_finest_type_that_fits(self):
        assert select_candle_type(0, 3600) == "1m"

    def test_steps_up_when_cap_exceeded(self):
        # 951 one-minute candles is over the cap, 317 three-minute ones is not
        assert select_candle_type(0, 951 * 60) == "3m"

    def test_exact_cap_is_allowed(self):
        assert select_candle_type(0, 950 * 60) == "1m"

    def test_custom_cap(self):
        assert select_candle_type(0, 3600, max_candles=10) == "15m"

    def test_falls_back_to_weekly_when_nothing_fits(self):
        # Shorter than one candle of any type
        assert select_candle_type(0, 30) == "1W"
        # Far too long for weekly candles under the cap
        assert select_candle_type(0, 2000 * 7 * 24 * 3600) == "1W"

    @pytest.mark.parametrize("time_from, time_to", [(100, 100), (200, 100)])
    def test_empty_or_inverted_range_raises(self, time_from, time_to):
        with pytest.raises(ValueError):
            select_candle_type(time_from, time_to)
