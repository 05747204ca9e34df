"""
Call Tracker - Price History Backfill

Operator-triggered batch that re-fetches the price history of verified calls
that have no stored artifact yet, stores it as JSON, and records the URL on
the call. Oldest calls first, one at a time, same rate-limit delay as the
verification job. Only one backfill runs at a time; a request that arrives
while one is in progress is skipped.
"""

from __future__ import annotations

import asyncio
from typing import NamedTuple

import structlog

from calltracker.config import settings
from calltracker.engine.resolution import select_resolution
from calltracker.models.token_call import TokenCall
from calltracker.pipeline.artifacts import ArtifactStore, artifact_key
from calltracker.pipeline.birdeye import PriceHistoryProvider
from calltracker.pipeline.repository import CallRepository

logger = structlog.get_logger(__name__)


class BackfillResult(NamedTuple):
    processed: int
    failed: int


class BackfillJob:
    """
    Usage:
        job = BackfillJob(repository, birdeye_client, artifact_store)
        result = await job.run()
    """

    def __init__(
        self,
        repository: CallRepository,
        provider: PriceHistoryProvider,
        store: ArtifactStore,
        item_delay_seconds: float | None = None,
    ):
        self.repository = repository
        self.provider = provider
        self.store = store
        self.item_delay_seconds = (
            item_delay_seconds
            if item_delay_seconds is not None
            else settings.BACKFILL_ITEM_DELAY_SECONDS
        )
        self._lock = asyncio.Lock()

    @property
    def is_running(self) -> bool:
        return self._lock.locked()

    async def run(self) -> BackfillResult | None:
        """
        Backfill every verified call missing its artifact.

        Per-call failures are counted, never raised. Failing to list the calls
        at all is raised to the caller.

        Returns:
            BackfillResult, or None when another backfill was already running.
        """
        if self._lock.locked():
            logger.warning("backfill_skipped_already_running")
            return None

        async with self._lock:
            return await self._run_locked()

    async def _run_locked(self) -> BackfillResult:
        logger.info("backfill_started")

        try:
            calls = await self.repository.find_verified_calls_missing_artifact()
        except Exception as e:
            logger.error("backfill_setup_failed", error=str(e), error_type=type(e).__name__)
            raise

        logger.info("backfill_calls_found", count=len(calls))

        processed = 0
        failed = 0
        for index, call in enumerate(calls):
            if index > 0 and self.item_delay_seconds > 0:
                await asyncio.sleep(self.item_delay_seconds)

            logger.info(
                "backfill_call_start",
                call_id=str(call.id),
                position=index + 1,
                total=len(calls),
            )
            try:
                if await self.backfill_call(call):
                    processed += 1
                else:
                    failed += 1
            except Exception as e:
                failed += 1
                logger.error(
                    "backfill_call_failed",
                    call_id=str(call.id),
                    error=str(e),
                    error_type=type(e).__name__,
                )

        logger.info("backfill_complete", processed=processed, failed=failed)
        return BackfillResult(processed=processed, failed=failed)

    async def backfill_call(self, call: TokenCall) -> bool:
        """Store one call's artifact. Returns False when upstream has no history."""
        resolution = select_resolution(call.call_timestamp, call.target_date)
        history = await self.provider.fetch_price_history(
            call.token_id,
            call.call_timestamp,
            call.target_date,
            resolution,
        )

        if history.is_empty():
            logger.warning("backfill_no_price_history", call_id=str(call.id))
            return False

        url = await self.store.store(artifact_key(call.id), history.to_artifact_json())
        call.price_history_url = url
        await self.repository.save_call(call)

        logger.info("backfill_call_complete", call_id=str(call.id), url=url)
        return True
