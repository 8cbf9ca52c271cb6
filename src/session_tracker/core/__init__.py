"""
Core module for Session Tracker.

This module provides the foundational components:
- Configuration management (config.py)
- Derived metrics models (models.py)
- Game modes and the mode registry (types.py)
- Shared HTTP client infrastructure and errors (http.py)

Usage:
    from session_tracker.core import Settings, get_settings
    from session_tracker.core import GameMode, get_mode_config
    from session_tracker.core import DerivedMetrics
    from session_tracker.core.http import BaseApiClient, RateLimitError
"""

# Configuration
from .config import Settings, get_settings

# Types
from .types import (
    GameMode,
    ModeConfig,
    MODE_REGISTRY,
    TRACKED_PLAYLIST_IDS,
    get_mode_config,
    parse_mode,
)

# Models
from .models import (
    DerivedMetrics,
    PlaylistAverage,
    PlaylistStats,
)

__all__ = [
    # Config
    "Settings",
    "get_settings",
    # Types
    "GameMode",
    "ModeConfig",
    "MODE_REGISTRY",
    "TRACKED_PLAYLIST_IDS",
    "get_mode_config",
    "parse_mode",
    # Models
    "DerivedMetrics",
    "PlaylistAverage",
    "PlaylistStats",
]
