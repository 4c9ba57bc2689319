"""Gamification and ranking engine: XP ledger, streaks, levels and leaderboards."""

__version__ = "0.1.0"
