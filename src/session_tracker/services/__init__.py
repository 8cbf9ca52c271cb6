"""
Services module for Session Tracker.

- session_stats: per-player deltas, team aggregates, trends and records

Usage:
    from session_tracker.services import SessionStatsService
"""

from .session_stats import SessionStatsService, TeamSummary

__all__ = ["SessionStatsService", "TeamSummary"]
