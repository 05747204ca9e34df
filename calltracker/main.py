"""
Call Tracker - Application Entrypoint

Initializes the async SQLAlchemy engine, configures structlog, and starts the
verification scheduler.

Run via:
    python -m calltracker.main
"""

from __future__ import annotations

import asyncio
import logging
import sys
from typing import Any

import structlog
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from calltracker import __version__
from calltracker.config import settings
from calltracker.pipeline.artifacts import build_artifact_store
from calltracker.pipeline.backfill import BackfillJob
from calltracker.pipeline.birdeye import BirdeyeClient
from calltracker.pipeline.repository import CallRepository
from calltracker.pipeline.scheduler import run_scheduler
from calltracker.pipeline.verification import VerificationJob


# ---------------------------------------------------------------------------
# Structlog Configuration
# ---------------------------------------------------------------------------


def configure_logging(log_level: str | None = None) -> None:
    """
    Set up structured logging with JSON output.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR). Defaults to LOG_LEVEL.
    """
    level = getattr(logging, (log_level or settings.LOG_LEVEL).upper())

    # Configure stdlib logging first (for third-party libraries)
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=level,
    )

    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


# ---------------------------------------------------------------------------
# Database Setup
# ---------------------------------------------------------------------------


async def create_db_engine(
    database_url: str | None = None,
) -> tuple[Any, async_sessionmaker[AsyncSession]]:
    """
    Create SQLAlchemy async engine and session factory.

    Returns:
        (engine, session_factory) tuple.
    """
    logger = structlog.get_logger(__name__)
    url = database_url or settings.DATABASE_URL

    logger.info("database_engine_initializing")

    engine_kwargs: dict[str, Any] = {"echo": False, "pool_pre_ping": True}
    if not url.startswith("sqlite"):
        engine_kwargs.update(pool_size=5, max_overflow=10)

    engine = create_async_engine(url, **engine_kwargs)

    session_factory = async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )

    logger.info("database_engine_ready")
    return engine, session_factory


async def check_database(session_factory: async_sessionmaker[AsyncSession]) -> None:
    """Health check: run SELECT 1."""
    async with session_factory() as session:
        await session.execute(text("SELECT 1"))


# ---------------------------------------------------------------------------
# Application Startup
# ---------------------------------------------------------------------------


async def main() -> None:
    """
    Application entrypoint. Initializes subsystems and starts the scheduler.

    Execution order:
    1. Configure logging (structlog JSON)
    2. Create async database engine and session factory
    3. Verify database connection (health check)
    4. Open the Birdeye client and artifact store
    5. Start the scheduler (run indefinitely until shutdown signal)
    """
    configure_logging()
    logger = structlog.get_logger(__name__)

    logger.info("calltracker_startup_begin", version=__version__)

    if not settings.BIRDEYE_API_KEY:
        logger.warning("config_birdeye_api_key_missing", note="using empty API key")

    try:
        engine, session_factory = await create_db_engine()
    except Exception as e:
        logger.error(
            "database_engine_creation_failed",
            error=str(e),
            error_type=type(e).__name__,
        )
        raise

    try:
        await check_database(session_factory)
        logger.info("database_health_check_passed")
    except Exception as e:
        logger.error(
            "database_health_check_failed",
            error=str(e),
            error_type=type(e).__name__,
        )
        await engine.dispose()
        raise

    repository = CallRepository(session_factory)

    try:
        async with BirdeyeClient() as birdeye, build_artifact_store() as store:
            verification_job = VerificationJob(repository, birdeye)
            backfill_job = BackfillJob(repository, birdeye, store)

            logger.info(
                "calltracker_startup_complete",
                verification_interval_minutes=settings.VERIFICATION_INTERVAL_MINUTES,
                artifact_store_backend=settings.ARTIFACT_STORE_BACKEND,
            )
            await run_scheduler(verification_job, backfill_job)
    except KeyboardInterrupt:
        logger.info("calltracker_interrupted_by_user")
    except Exception as e:
        logger.error(
            "calltracker_fatal_error",
            error=str(e),
            error_type=type(e).__name__,
        )
        raise
    finally:
        await engine.dispose()
        logger.info("calltracker_shutdown_complete")


# ---------------------------------------------------------------------------
# CLI Entry
# ---------------------------------------------------------------------------


if __name__ == "__main__":
    asyncio.run(main())
