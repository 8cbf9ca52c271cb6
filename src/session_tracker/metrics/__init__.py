"""
Metrics extraction and delta computation.

Usage:
    from session_tracker.metrics import extract_metrics
    from session_tracker.metrics import compute_player_delta, aggregate_team
"""

from .deltas import (
    RECORDABLE_METRICS,
    PlayerDelta,
    TeamAggregate,
    TrendWindow,
    aggregate_team,
    compute_player_delta,
    compute_records,
    numeric_delta,
    session_win_rate,
    trend_windows,
)
from .extractor import PAYLOAD_PARSERS, extract_metrics

__all__ = [
    "RECORDABLE_METRICS",
    "PlayerDelta",
    "TeamAggregate",
    "TrendWindow",
    "aggregate_team",
    "compute_player_delta",
    "compute_records",
    "numeric_delta",
    "session_win_rate",
    "trend_windows",
    "PAYLOAD_PARSERS",
    "extract_metrics",
]
