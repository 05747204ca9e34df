"""
Tests for the verification job (calltracker/pipeline/verification.py).

Covers:
- End-to-end batch against SQLite: success, fail, empty history
- Per-call isolation when the provider fails for one call
- Streak updates after verified outcomes
- Verification notifications, best-effort
- One run timestamp shared by every call in a batch
- Mutual exclusion: overlapping runs are skipped
- Setup failures propagate and release the lock
- Inter-item delay
"""

from __future__ import annotations

import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy import select

from conftest import T0, FakeProvider, history
from calltracker.config import NotificationType, Resolution, TokenCallStatus, settings
from calltracker.engine.price_history import PriceHistory
from calltracker.engine.resolution import as_utc
from calltracker.models import Notification, TokenCall
from calltracker.pipeline.birdeye import RateLimitExceeded
from calltracker.pipeline.verification import VerificationJob, VerificationSummary

NOW = T0 + timedelta(days=1)

WINNER = history((T0 + timedelta(minutes=30), 2.50), (T0 + timedelta(minutes=55), 1.80))
LOSER = history((T0 + timedelta(minutes=10), 1.20), (T0 + timedelta(minutes=50), 0.90))


async def _load(repository, call_id):
    async with repository.session_factory() as session:
        return await session.get(TokenCall, call_id)


@pytest.mark.asyncio
async def test_batch_resolves_each_call(repository, make_call):
    winner = make_call(token_id="WIN")
    loser = make_call(token_id="LOSE")
    quiet = make_call(token_id="QUIET")
    for call in (winner, loser, quiet):
        await repository.save_call(call)

    provider = FakeProvider({"WIN": WINNER, "LOSE": LOSER, "QUIET": PriceHistory()})
    job = VerificationJob(repository, provider, item_delay_seconds=0)

    summary = await job.run(now=NOW)

    assert summary == VerificationSummary(checked=3, succeeded=1, failed=1, errored=0, pending=1)

    won = await _load(repository, winner.id)
    assert won.status == TokenCallStatus.VERIFIED_SUCCESS
    assert as_utc(won.target_hit_timestamp) == T0 + timedelta(minutes=30)
    assert won.time_to_hit_ratio == pytest.approx(0.5)
    assert won.verification_timestamp is not None

    lost = await _load(repository, loser.id)
    assert lost.status == TokenCallStatus.VERIFIED_FAIL
    assert lost.target_hit_timestamp is None
    assert lost.time_to_hit_ratio is None

    waiting = await _load(repository, quiet.id)
    assert waiting.status == TokenCallStatus.PENDING
    assert waiting.verification_timestamp is not None
    assert waiting.peak_price_during_period is None


@pytest.mark.asyncio
async def test_provider_called_with_call_window_and_resolution(repository, make_call):
    call = make_call(token_id="WIN", duration=timedelta(hours=2))
    await repository.save_call(call)
    provider = FakeProvider({"WIN": WINNER})

    await VerificationJob(repository, provider, item_delay_seconds=0).run(now=NOW)

    [(token_id, start, end, resolution)] = provider.calls
    assert token_id == "WIN"
    assert as_utc(start) == T0
    assert as_utc(end) == T0 + timedelta(hours=2)
    assert resolution == Resolution.FIVE_MINUTES


@pytest.mark.asyncio
async def test_rate_limited_call_does_not_stop_batch(repository, make_call):
    first = make_call(token_id="A", duration=timedelta(hours=1))
    second = make_call(token_id="B", duration=timedelta(hours=2))
    third = make_call(token_id="C", duration=timedelta(hours=3))
    for call in (first, second, third):
        await repository.save_call(call)

    provider = FakeProvider({"A": RateLimitExceeded("429"), "B": WINNER, "C": LOSER})
    summary = await VerificationJob(repository, provider, item_delay_seconds=0).run(now=NOW)

    assert summary.errored == 1
    assert summary.succeeded == 1
    assert summary.failed == 1
    assert [c[0] for c in provider.calls] == ["A", "B", "C"]
    assert (await _load(repository, first.id)).status == TokenCallStatus.ERROR
    assert (await _load(repository, second.id)).status == TokenCallStatus.VERIFIED_SUCCESS
    assert (await _load(repository, third.id)).status == TokenCallStatus.VERIFIED_FAIL


@pytest.mark.asyncio
async def test_verified_calls_are_not_picked_up_again(repository, make_call):
    await repository.save_call(make_call(token_id="WIN"))
    provider = FakeProvider({"WIN": WINNER})
    job = VerificationJob(repository, provider, item_delay_seconds=0)

    await job.run(now=NOW)
    second = await job.run(now=NOW)

    assert second == VerificationSummary()
    assert len(provider.calls) == 1


@pytest.mark.asyncio
async def test_success_updates_user_streak(repository, make_call, add_user):
    user = await add_user("caller")
    await repository.save_call(make_call(token_id="WIN", user_id=user.id))

    await VerificationJob(repository, FakeProvider({"WIN": WINNER}), item_delay_seconds=0).run(now=NOW)

    streak = await repository.get_streak(user.id)
    assert streak.current_success_streak == 1
    assert streak.longest_success_streak == 1
    assert streak.last_verified_call_timestamp is not None


@pytest.mark.asyncio
async def test_streak_failure_does_not_fail_the_call(make_call):
    call = make_call(token_id="WIN")
    repository = AsyncMock()
    repository.find_pending_calls_past_target.return_value = [call]
    repository.get_streak.side_effect = RuntimeError("streak table locked")

    summary = await VerificationJob(repository, FakeProvider({"WIN": WINNER}), item_delay_seconds=0).run(now=NOW)

    assert summary.succeeded == 1
    assert summary.errored == 0
    repository.save_call.assert_awaited_once()


@pytest.mark.asyncio
async def test_error_save_failure_is_swallowed(make_call):
    call = make_call(token_id="A")
    repository = AsyncMock()
    repository.find_pending_calls_past_target.return_value = [call]
    repository.save_call.side_effect = RuntimeError("database gone")

    summary = await VerificationJob(
        repository, FakeProvider({"A": RateLimitExceeded("429")}), item_delay_seconds=0
    ).run(now=NOW)

    assert summary == VerificationSummary(checked=1, errored=1)
    assert call.status == TokenCallStatus.ERROR
    assert call.verification_timestamp is not None


@pytest.mark.asyncio
async def test_setup_failure_propagates_and_releases_lock():
    repository = AsyncMock()
    repository.find_pending_calls_past_target.side_effect = RuntimeError("connection refused")
    job = VerificationJob(repository, FakeProvider(), item_delay_seconds=0)

    with pytest.raises(RuntimeError):
        await job.run(now=NOW)

    assert job.is_running is False
    with pytest.raises(RuntimeError):
        await job.run(now=NOW)


class _GatedProvider(FakeProvider):
    """Blocks inside fetch until released."""

    def __init__(self):
        super().__init__({"WIN": WINNER})
        self.entered = asyncio.Event()
        self.release = asyncio.Event()

    async def fetch_price_history(self, token_id, start, end, resolution):
        self.entered.set()
        await self.release.wait()
        return await super().fetch_price_history(token_id, start, end, resolution)


@pytest.mark.asyncio
async def test_overlapping_run_is_skipped(make_call):
    call = make_call(token_id="WIN")
    repository = AsyncMock()
    repository.find_pending_calls_past_target.return_value = [call]
    repository.get_streak.return_value = None
    provider = _GatedProvider()
    job = VerificationJob(repository, provider, item_delay_seconds=0)

    with patch("calltracker.pipeline.verification.apply_streak_outcome", return_value=False):
        first = asyncio.create_task(job.run(now=NOW))
        await asyncio.wait_for(provider.entered.wait(), timeout=1)

        assert job.is_running is True
        assert await job.run(now=NOW) is None

        provider.release.set()
        summary = await asyncio.wait_for(first, timeout=1)

    assert summary.succeeded == 1
    assert job.is_running is False
    assert repository.find_pending_calls_past_target.await_count == 1
    assert len(provider.calls) == 1


@pytest.mark.asyncio
async def test_delay_only_between_items(make_call):
    calls = [make_call(token_id=f"T{i}") for i in range(3)]
    repository = AsyncMock()
    repository.find_pending_calls_past_target.return_value = calls
    job = VerificationJob(repository, FakeProvider(), item_delay_seconds=1.0)

    with patch("calltracker.pipeline.verification.asyncio.sleep", new=AsyncMock()) as sleep:
        summary = await job.run(now=NOW)

    assert summary.pending == 3
    assert sleep.await_count == 2
    sleep.assert_awaited_with(1.0)


@pytest.mark.asyncio
async def test_no_pending_calls(repository):
    summary = await VerificationJob(repository, FakeProvider(), item_delay_seconds=0).run(now=NOW)

    assert summary == VerificationSummary()


async def _notifications(repository):
    async with repository.session_factory() as session:
        result = await session.execute(select(Notification).order_by(Notification.message))
        return list(result.scalars().all())


@pytest.mark.asyncio
async def test_verified_calls_create_notifications(repository, make_call, add_user):
    user = await add_user("caller")
    winner = make_call(token_id="WIN", user_id=user.id)
    loser = make_call(token_id="LOSE", user_id=user.id, target_price="1500.5")
    quiet = make_call(token_id="QUIET", user_id=user.id)
    for call in (winner, loser, quiet):
        await repository.save_call(call)

    provider = FakeProvider({"WIN": WINNER, "LOSE": LOSER})
    await VerificationJob(repository, provider, item_delay_seconds=0).run(now=NOW)

    lost, won = await _notifications(repository)

    assert won.user_id == user.id
    assert won.type == NotificationType.TOKEN_CALL_VERIFIED.value
    assert won.message == "Your call for $WIN reached its target price of $2!"
    assert won.is_read is False
    assert won.related_entity_id == winner.id
    assert won.related_entity_type == "token_call"
    assert won.related_metadata["callId"] == str(winner.id)
    assert won.related_metadata["status"] == "success"
    assert won.related_metadata["timeToHitRatio"] == pytest.approx(0.5)
    assert won.related_metadata["targetHitTimestamp"].startswith("2024-01-01T12:30:00")

    assert lost.message == "Your call for $LOSE did not reach its target price of $1,500.5."
    assert lost.related_metadata["status"] == "fail"
    assert lost.related_metadata["targetHitTimestamp"] is None
    assert lost.related_metadata["timeToHitRatio"] is None


@pytest.mark.asyncio
async def test_notification_failure_does_not_fail_the_call(make_call):
    call = make_call(token_id="WIN")
    repository = AsyncMock()
    repository.find_pending_calls_past_target.return_value = [call]
    repository.get_streak.return_value = None
    repository.save_notification.side_effect = RuntimeError("notifications table missing")

    with patch("calltracker.pipeline.verification.apply_streak_outcome", return_value=False):
        summary = await VerificationJob(
            repository, FakeProvider({"WIN": WINNER}), item_delay_seconds=0
        ).run(now=NOW)

    assert summary == VerificationSummary(checked=1, succeeded=1)
    assert call.status == TokenCallStatus.VERIFIED_SUCCESS
    repository.save_call.assert_awaited_once()
    repository.save_notification.assert_awaited_once()


@pytest.mark.asyncio
async def test_batch_calls_share_the_run_timestamp(repository, make_call, add_user):
    user = await add_user("caller")
    first = make_call(token_id="WIN", user_id=user.id, duration=timedelta(hours=1))
    second = make_call(token_id="WIN", user_id=user.id, duration=timedelta(hours=2))
    for call in (first, second):
        await repository.save_call(call)

    await VerificationJob(repository, FakeProvider({"WIN": WINNER}), item_delay_seconds=0).run(now=NOW)

    for call in (first, second):
        assert as_utc((await _load(repository, call.id)).verification_timestamp) == NOW

    streak = await repository.get_streak(user.id)
    assert streak.current_success_streak == 2
    assert streak.longest_success_streak == 2


@pytest.mark.asyncio
async def test_staleness_is_measured_from_the_run_timestamp(repository, make_call):
    call = make_call(token_id="QUIET", duration=timedelta(hours=1))
    await repository.save_call(call)
    job = VerificationJob(repository, FakeProvider(), item_delay_seconds=0)

    with patch.object(settings, "PENDING_STALE_AFTER_HOURS", 2):
        early = await job.run(now=T0 + timedelta(minutes=90))
        late = await job.run(now=T0 + timedelta(hours=4))

    assert early.pending == 1
    assert late.errored == 1
    stored = await _load(repository, call.id)
    assert stored.status == TokenCallStatus.ERROR
    assert as_utc(stored.verification_timestamp) == T0 + timedelta(hours=4)


@pytest.mark.asyncio
async def test_error_transition_uses_the_run_timestamp(make_call):
    call = make_call(token_id="A")
    repository = AsyncMock()
    repository.find_pending_calls_past_target.return_value = [call]

    await VerificationJob(
        repository, FakeProvider({"A": RateLimitExceeded("429")}), item_delay_seconds=0
    ).run(now=NOW)

    assert call.status == TokenCallStatus.ERROR
    assert call.verification_timestamp == NOW
