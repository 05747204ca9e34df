"""
Call Tracker - Operator Job Runner

Runs a pipeline job once, outside the hourly scheduler.

Usage:
    python scripts/run_jobs.py verify
    python scripts/run_jobs.py backfill
    python scripts/run_jobs.py leaderboard --page 1 --limit 25
    python scripts/run_jobs.py serve
"""

from __future__ import annotations

import argparse
import asyncio
import os
import sys

# Resolve project root so this script can be run from any working directory
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from calltracker.config import LeaderboardSortField
from calltracker.main import configure_logging, create_db_engine
from calltracker.main import main as serve
from calltracker.pipeline.artifacts import build_artifact_store
from calltracker.pipeline.backfill import BackfillJob
from calltracker.pipeline.birdeye import BirdeyeClient
from calltracker.pipeline.leaderboard import LeaderboardService
from calltracker.pipeline.repository import CallRepository
from calltracker.pipeline.verification import VerificationJob


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Run a Call Tracker pipeline job once.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python scripts/run_jobs.py verify
  python scripts/run_jobs.py backfill
  python scripts/run_jobs.py leaderboard --page 2 --limit 50
  python scripts/run_jobs.py serve
""",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("verify", help="Verify pending calls whose target date has passed.")
    sub.add_parser("backfill", help="Store missing price-history artifacts for verified calls.")
    sub.add_parser("serve", help="Start the hourly verification scheduler.")

    board = sub.add_parser("leaderboard", help="Print one leaderboard page as JSON.")
    board.add_argument("--page", type=int, default=1, help="Page number (default: 1).")
    board.add_argument("--limit", type=int, default=None, help="Page size, clamped to [5, 100].")
    board.add_argument(
        "--sort-by",
        type=str,
        default=LeaderboardSortField.ACCURACY_RATE.value,
        choices=[field.value for field in LeaderboardSortField],
        help="Accepted for compatibility; ordering is always the composite score.",
    )
    return parser.parse_args(argv)


async def run(args: argparse.Namespace) -> int:
    engine, session_factory = await create_db_engine()
    repository = CallRepository(session_factory)

    try:
        if args.command == "leaderboard":
            service = LeaderboardService(repository)
            result = await service.get_leaderboard(args.page, args.limit, args.sort_by)
            print(result.model_dump_json(by_alias=True, indent=2))
            return 0

        async with BirdeyeClient() as birdeye:
            if args.command == "verify":
                summary = await VerificationJob(repository, birdeye).run()
                if summary is None:
                    print("Verification skipped: a run is already in progress.")
                else:
                    print(
                        f"Verified {summary.checked} calls: {summary.succeeded} success, "
                        f"{summary.failed} fail, {summary.errored} error, {summary.pending} still pending"
                    )
                return 0

            async with build_artifact_store() as store:
                result = await BackfillJob(repository, birdeye, store).run()
            if result is None:
                print("Backfill skipped: a run is already in progress.")
            else:
                print(f"Backfill complete. Processed: {result.processed}, Failed: {result.failed}")
            return 0
    finally:
        await engine.dispose()


def main() -> None:
    args = parse_args()
    if args.command == "serve":
        asyncio.run(serve())
        return

    configure_logging()
    try:
        exit_code = asyncio.run(run(args))
    except Exception as e:
        print(f"{args.command} failed: {e}", file=sys.stderr)
        sys.exit(1)
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
