"""
Base stats provider protocol.

Defines the interface the session poller consumes, so the polling engine
stays provider-agnostic and can be driven by in-process fakes in tests.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field
from typing import Any, Optional


@dataclass
class ProviderStatus:
    """Outcome of a one-off reachability check against the provider."""

    ok: bool
    status_code: int
    error: Optional[str] = None
    retry_after_ms: Optional[int] = None
    headers: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class StatsProviderProtocol(ABC):
    """
    Abstract interface for player stats providers.

    The provider is responsible for:
    1. Making API calls to the external service
    2. Raising RateLimitError (with retry_after_ms) when throttled
    3. Returning the raw JSON payload untouched

    The provider is NOT responsible for:
    - Retries (handled by polling.retry)
    - Metric extraction (handled by metrics.extractor)
    - Detecting new matches (handled by the session poller)
    """

    provider_name: str = ""

    @abstractmethod
    async def fetch_profile(self, platform: str, handle: str) -> Any:
        """
        Fetch a player's current profile stats.

        Args:
            platform: Platform identifier (e.g. "xbl", "steam", "epic")
            handle: Player display handle on that platform

        Returns:
            Raw provider payload
        """
        ...

    @abstractmethod
    async def fetch_match_history(self, platform: str, handle: str) -> Any:
        """
        Fetch a player's recent match history.

        Returns:
            Raw provider payload; normalised by polling.matches.flatten_matches
        """
        ...

    async def close(self) -> None:
        """Release any underlying resources."""
        return None
