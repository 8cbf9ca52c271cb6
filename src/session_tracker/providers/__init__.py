"""Stats providers consumed by the session poller."""

from .base import ProviderStatus, StatsProviderProtocol
from .tracker import TrackerStatsClient

__all__ = ["ProviderStatus", "StatsProviderProtocol", "TrackerStatsClient"]
