"""
Call Tracker - Verification Scheduler

Runs the verification job on a fixed wall-clock cadence (hourly by default)
and exposes fire-and-forget manual triggers for verification and backfill.

Overlap is prevented by the job itself: a tick that lands while a run is
still in progress (e.g. one started by a manual trigger) is skipped.
On shutdown, triggered runs that are still in flight are cancelled and awaited.
"""

from __future__ import annotations

import asyncio
import signal
from datetime import datetime, timedelta, timezone
from typing import Any

import structlog

from calltracker.config import settings
from calltracker.pipeline.backfill import BackfillJob
from calltracker.pipeline.verification import VerificationJob

logger = structlog.get_logger(__name__)


class Scheduler:
    """
    Async scheduler for the verification pipeline.

    The first verification run happens one full interval after start-up.
    """

    def __init__(
        self,
        verification_job: VerificationJob,
        backfill_job: BackfillJob | None = None,
        interval_minutes: int | None = None,
        tick_seconds: float | None = None,
    ):
        self.verification_job = verification_job
        self.backfill_job = backfill_job
        self._shutdown_event = asyncio.Event()

        self._verification_last_run: datetime = datetime.now(timezone.utc)
        self._verification_cadence_minutes = (
            interval_minutes
            if interval_minutes is not None
            else settings.VERIFICATION_INTERVAL_MINUTES
        )
        self._tick_seconds = (
            tick_seconds if tick_seconds is not None else settings.SCHEDULER_TICK_SECONDS
        )

        # Strong references to fire-and-forget tasks until they finish
        self._background_tasks: set[asyncio.Task[Any]] = set()

    async def shutdown(self) -> None:
        """Signal graceful shutdown to the scheduler loop."""
        logger.info("scheduler_shutdown_requested")
        self._shutdown_event.set()

    def _should_run_verification(self) -> bool:
        """Check if the verification window has elapsed."""
        now = datetime.now(timezone.utc)
        elapsed = now - self._verification_last_run
        return elapsed >= timedelta(minutes=self._verification_cadence_minutes)

    async def _run_verification(self) -> None:
        """One scheduled verification tick. Errors are logged, never raised."""
        try:
            await self.verification_job.run()
        except Exception as e:
            logger.error(
                "scheduler_verification_failed",
                error=str(e),
                error_type=type(e).__name__,
            )
        finally:
            self._verification_last_run = datetime.now(timezone.utc)

    # -----------------------------------------------------------------------
    # Manual triggers
    # -----------------------------------------------------------------------

    def _spawn(self, coro: Any, name: str) -> asyncio.Task[Any]:
        task = asyncio.create_task(coro, name=name)
        self._background_tasks.add(task)

        def _done(finished: asyncio.Task[Any]) -> None:
            self._background_tasks.discard(finished)
            if finished.cancelled():
                logger.warning("scheduler_trigger_cancelled", task=name)
                return
            error = finished.exception()
            if error is not None:
                logger.error(
                    "scheduler_trigger_failed",
                    task=name,
                    error=str(error),
                    error_type=type(error).__name__,
                )
            else:
                logger.info("scheduler_trigger_finished", task=name)

        task.add_done_callback(_done)
        return task

    async def _cancel_background_tasks(self) -> None:
        tasks = [task for task in self._background_tasks if not task.done()]
        if not tasks:
            return
        logger.info("scheduler_cancelling_triggers", count=len(tasks))
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    def trigger_verification(self) -> asyncio.Task[Any]:
        """Start a verification run now without waiting for it."""
        logger.info("scheduler_verification_triggered")
        return self._spawn(self.verification_job.run(), "verification")

    def trigger_backfill(self) -> asyncio.Task[Any]:
        """Start a price-history backfill now without waiting for it."""
        if self.backfill_job is None:
            raise RuntimeError("Scheduler was created without a backfill job")
        logger.info("scheduler_backfill_triggered")
        return self._spawn(self.backfill_job.run(), "backfill")

    # -----------------------------------------------------------------------
    # Main loop
    # -----------------------------------------------------------------------

    async def run(self) -> None:
        """
        Main scheduler loop. Runs indefinitely until shutdown is signaled.
        """
        logger.info(
            "scheduler_started",
            verification_cadence_minutes=self._verification_cadence_minutes,
        )

        try:
            while not self._shutdown_event.is_set():
                try:
                    if self._should_run_verification():
                        await self._run_verification()

                    # Sleep before next check
                    await asyncio.wait_for(
                        self._shutdown_event.wait(),
                        timeout=self._tick_seconds,
                    )
                except asyncio.TimeoutError:
                    # Expected: timeout means no shutdown signal, continue loop
                    continue
                except Exception as e:
                    logger.error(
                        "scheduler_unknown_error",
                        error=str(e),
                        error_type=type(e).__name__,
                    )
                    await asyncio.sleep(self._tick_seconds)

        except asyncio.CancelledError:
            logger.info("scheduler_cancelled")
            raise
        finally:
            await self._cancel_background_tasks()
            logger.info("scheduler_stopped")


async def run_scheduler(
    verification_job: VerificationJob,
    backfill_job: BackfillJob | None = None,
) -> None:
    """
    Initialize and run the scheduler with graceful shutdown handling.

    Registers SIGTERM/SIGINT handlers to trigger shutdown.
    """
    scheduler = Scheduler(verification_job, backfill_job)

    def handle_signal(_signum: int, _frame: Any) -> None:
        """Called by SIGTERM/SIGINT."""
        logger.info("scheduler_signal_received")
        asyncio.create_task(scheduler.shutdown())

    loop = asyncio.get_running_loop()

    # Platform-dependent signal handling
    try:
        loop.add_signal_handler(signal.SIGTERM, handle_signal, signal.SIGTERM, None)
        loop.add_signal_handler(signal.SIGINT, handle_signal, signal.SIGINT, None)
    except NotImplementedError:
        # Windows doesn't support add_signal_handler for all signals
        logger.warning("signal_handlers_not_supported_on_platform")

    try:
        await scheduler.run()
    except Exception as e:
        logger.error("scheduler_fatal_error", error=str(e), error_type=type(e).__name__)
        raise
