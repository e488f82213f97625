"""Leaderboard snapshot materialization and reads."""
