"""
Call Tracker - Token Call Verification Job

Resolves every PENDING call whose target date has passed:

    select resolution -> fetch price history -> evaluate -> persist
        -> streak -> notification

Calls are processed one at a time with a fixed delay in between to stay under
Birdeye's rate limit. A failure on one call marks that call ERROR and the
batch moves on; only a failure to list pending calls aborts the run.
Streak and notification writes are best-effort: their failures are logged
and never change the call outcome. Every call in a batch is stamped with the
batch start time.

Only one run may be active at a time. A run requested while another is in
progress is skipped, not queued.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import NamedTuple

import structlog

from calltracker.config import VERIFIED_STATUSES, NotificationType, TokenCallStatus, settings
from calltracker.engine.evaluator import apply_outcome, evaluate_call
from calltracker.engine.notification import RELATED_ENTITY_TYPE, build_verification_notice
from calltracker.engine.resolution import select_resolution
from calltracker.engine.streak import apply_streak_outcome
from calltracker.models.notification import Notification
from calltracker.models.token_call import TokenCall
from calltracker.pipeline.birdeye import PriceHistoryProvider, RateLimitExceeded
from calltracker.pipeline.repository import CallRepository

logger = structlog.get_logger(__name__)


class VerificationSummary(NamedTuple):
    checked: int = 0
    succeeded: int = 0
    failed: int = 0
    errored: int = 0
    pending: int = 0


class VerificationJob:
    """
    Mutually exclusive verification batch.

    Usage:
        job = VerificationJob(repository, birdeye_client)
        summary = await job.run()   # None if a run was already in progress
    """

    def __init__(
        self,
        repository: CallRepository,
        provider: PriceHistoryProvider,
        item_delay_seconds: float | None = None,
    ):
        self.repository = repository
        self.provider = provider
        self.item_delay_seconds = (
            item_delay_seconds
            if item_delay_seconds is not None
            else settings.VERIFICATION_ITEM_DELAY_SECONDS
        )
        self._lock = asyncio.Lock()

    @property
    def is_running(self) -> bool:
        return self._lock.locked()

    async def run(self, now: datetime | None = None) -> VerificationSummary | None:
        """
        Run one verification batch unless one is already running.

        Returns:
            VerificationSummary, or None when the run was skipped.
        """
        # No await between the check and the acquire: atomic on the event loop.
        if self._lock.locked():
            logger.warning("verification_job_skipped_already_running")
            return None

        async with self._lock:
            logger.info("verification_job_started")
            try:
                summary = await self.verify_pending_calls(now)
            except Exception as e:
                logger.error(
                    "verification_job_failed",
                    error=str(e),
                    error_type=type(e).__name__,
                )
                raise
            finally:
                logger.info("verification_job_finished")

        logger.info("verification_job_summary", **summary._asdict())
        return summary

    async def verify_pending_calls(self, now: datetime | None = None) -> VerificationSummary:
        """Verify every pending call past its target date. Setup errors propagate."""
        if now is None:
            now = datetime.now(timezone.utc)

        pending_calls = await self.repository.find_pending_calls_past_target(now)
        if not pending_calls:
            logger.info("verification_no_pending_calls")
            return VerificationSummary()

        logger.info("verification_pending_calls_found", count=len(pending_calls))

        counts = {status: 0 for status in TokenCallStatus}
        for index, call in enumerate(pending_calls):
            if index > 0 and self.item_delay_seconds > 0:
                await asyncio.sleep(self.item_delay_seconds)

            try:
                status = await self.verify_single_call(call, now)
            except Exception as e:
                logger.error(
                    "verification_call_failed",
                    call_id=str(call.id),
                    token_id=call.token_id,
                    error=str(e),
                    error_type=type(e).__name__,
                    rate_limited=isinstance(e, RateLimitExceeded),
                )
                await self._mark_error(call, now)
                status = TokenCallStatus.ERROR
            counts[status] += 1

        return VerificationSummary(
            checked=len(pending_calls),
            succeeded=counts[TokenCallStatus.VERIFIED_SUCCESS],
            failed=counts[TokenCallStatus.VERIFIED_FAIL],
            errored=counts[TokenCallStatus.ERROR],
            pending=counts[TokenCallStatus.PENDING],
        )

    async def verify_single_call(
        self, call: TokenCall, now: datetime | None = None
    ) -> TokenCallStatus:
        """Fetch, evaluate and persist one call. Raises on provider or save failure."""
        if now is None:
            now = datetime.now(timezone.utc)

        resolution = select_resolution(call.call_timestamp, call.target_date)
        logger.info(
            "verification_call_start",
            call_id=str(call.id),
            token_id=call.token_id,
            resolution=resolution.value,
        )

        history = await self.provider.fetch_price_history(
            call.token_id,
            call.call_timestamp,
            call.target_date,
            resolution,
        )

        outcome = evaluate_call(call, history, now=now)
        apply_outcome(call, outcome)
        await self.repository.save_call(call)

        logger.info(
            "verification_call_complete",
            call_id=str(call.id),
            status=call.status.value,
            peak_price=str(call.peak_price_during_period),
            final_price=str(call.final_price_at_target_date),
            time_to_hit_ratio=call.time_to_hit_ratio,
        )

        if call.status in VERIFIED_STATUSES:
            await self._update_streak(call)
            await self._notify(call)
        return call.status

    async def _update_streak(self, call: TokenCall) -> None:
        try:
            streak = await self.repository.get_streak(call.user_id)
            if apply_streak_outcome(streak, call.status, call.verification_timestamp):
                await self.repository.save_streak(streak)
        except Exception as e:
            logger.error(
                "verification_streak_update_failed",
                call_id=str(call.id),
                user_id=str(call.user_id),
                error=str(e),
                error_type=type(e).__name__,
            )

    async def _notify(self, call: TokenCall) -> None:
        notice = build_verification_notice(call)
        if notice is None:
            return
        try:
            await self.repository.save_notification(
                Notification(
                    user_id=call.user_id,
                    type=NotificationType.TOKEN_CALL_VERIFIED.value,
                    message=notice.message,
                    is_read=False,
                    related_entity_id=call.id,
                    related_entity_type=RELATED_ENTITY_TYPE,
                    related_metadata=notice.metadata,
                )
            )
        except Exception as e:
            logger.error(
                "verification_notification_failed",
                call_id=str(call.id),
                user_id=str(call.user_id),
                error=str(e),
                error_type=type(e).__name__,
            )

    async def _mark_error(self, call: TokenCall, now: datetime | None = None) -> None:
        """Best-effort ERROR transition. A failing save is logged and swallowed."""
        call.status = TokenCallStatus.ERROR
        call.verification_timestamp = now or datetime.now(timezone.utc)
        try:
            await self.repository.save_call(call)
        except Exception as e:
            logger.error(
                "verification_error_save_failed",
                call_id=str(call.id),
                error=str(e),
                error_type=type(e).__name__,
            )
