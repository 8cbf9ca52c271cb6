"""
Core types and constants for Session Tracker.

This module provides:
- GameMode enum
- ModeConfig dataclass for mode-specific playlist settings
- MODE_REGISTRY for centralized mode configurations
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class GameMode(str, Enum):
    """Supported game modes."""

    SOLO = "solo"
    DOUBLES = "2v2"
    STANDARD = "3v3"
    CHAOS = "4v4"


@dataclass(frozen=True)
class ModeConfig:
    """
    Configuration for a game mode.

    ``ranked`` is a business rule: ladder fields are never reported for
    unranked modes even when the provider payload contains them.
    """

    mode: GameMode
    team_size: int
    ranked: bool
    playlist_id: Optional[int] = None
    playlist_name: Optional[str] = None


# =============================================================================
# MODE REGISTRY - Central configuration for all modes
# =============================================================================

MODE_REGISTRY: dict[str, ModeConfig] = {
    GameMode.SOLO.value: ModeConfig(
        mode=GameMode.SOLO,
        team_size=1,
        ranked=True,
        playlist_id=10,
        playlist_name="Ranked Duel 1v1",
    ),
    GameMode.DOUBLES.value: ModeConfig(
        mode=GameMode.DOUBLES,
        team_size=2,
        ranked=True,
        playlist_id=11,
        playlist_name="Ranked Doubles 2v2",
    ),
    GameMode.STANDARD.value: ModeConfig(
        mode=GameMode.STANDARD,
        team_size=3,
        ranked=True,
        playlist_id=13,
        playlist_name="Ranked Standard 3v3",
    ),
    GameMode.CHAOS.value: ModeConfig(
        mode=GameMode.CHAOS,
        team_size=4,
        ranked=False,
    ),
}

# Playlists whose per-playlist breakdowns and averages are retained.
TRACKED_PLAYLIST_IDS: frozenset[int] = frozenset(
    cfg.playlist_id for cfg in MODE_REGISTRY.values() if cfg.playlist_id is not None
)


def parse_mode(mode: str | GameMode) -> GameMode:
    """
    Validate a game mode.

    Raises:
        ValueError: If mode is not in the registry
    """
    if isinstance(mode, GameMode):
        return mode
    try:
        return GameMode(mode)
    except ValueError:
        raise ValueError(
            f"Unknown game mode: {mode!r} (expected one of {', '.join(MODE_REGISTRY)})"
        ) from None


def get_mode_config(mode: str | GameMode | None) -> Optional[ModeConfig]:
    """Get configuration for a mode, or None when no mode hint is given."""
    if mode is None:
        return None
    mode_id = mode.value if isinstance(mode, GameMode) else mode
    return MODE_REGISTRY.get(mode_id)
