"""Verification, backfill and leaderboard pipeline."""
