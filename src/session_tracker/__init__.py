"""
Session Tracker

Live session tracking for small groups of ranked players. Polls an external
stats provider on a per-session timer, detects newly played matches, stores
point-in-time snapshots and computes session deltas, team aggregates, trends
and records.

Usage:
    from session_tracker import SessionPoller, TrackerStatsClient, SqliteSnapshotStore

    provider = TrackerStatsClient.from_settings()
    poller = SessionPoller(provider, SqliteSnapshotStore("tracker.sqlite"))
    session = await poller.start_session("2v2", [("xbl", "Handle")])
"""

__version__ = "1.0.0"

from .core import DerivedMetrics, GameMode, Settings, get_settings
from .core.http import (
    ConfigurationError,
    ExternalAPIError,
    ProviderClientError,
    RateLimitError,
)
from .metrics import extract_metrics
from .polling import CooldownTracker, PollingLog, SessionEndedError
from .polling.poller import SessionNotFoundError, SessionPoller
from .providers import StatsProviderProtocol, TrackerStatsClient
from .services import SessionStatsService
from .store import InMemorySnapshotStore, SnapshotStore, SqliteSnapshotStore

__all__ = [
    "__version__",
    "DerivedMetrics",
    "GameMode",
    "Settings",
    "get_settings",
    "ConfigurationError",
    "ExternalAPIError",
    "ProviderClientError",
    "RateLimitError",
    "extract_metrics",
    "CooldownTracker",
    "PollingLog",
    "SessionEndedError",
    "SessionNotFoundError",
    "SessionPoller",
    "StatsProviderProtocol",
    "TrackerStatsClient",
    "SessionStatsService",
    "InMemorySnapshotStore",
    "SnapshotStore",
    "SqliteSnapshotStore",
]
