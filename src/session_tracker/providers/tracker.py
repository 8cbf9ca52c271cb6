"""
Tracker Network stats provider.

Fetches player profiles and recent match sessions over HTTP. All error
classification and quota bookkeeping lives in BaseApiClient; this module only
knows the URL layout and authentication header.
"""

from __future__ import annotations

import logging
from typing import Any
from urllib.parse import quote

import httpx

from ..core.config import Settings, get_settings
from ..core.http import BaseApiClient, ConfigurationError
from ..polling.cooldown import CooldownTracker, parse_retry_after_ms
from .base import ProviderStatus, StatsProviderProtocol

logger = logging.getLogger(__name__)

USER_AGENT = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36"


class TrackerStatsClient(BaseApiClient, StatsProviderProtocol):
    """Fetches player profile stats and match history from Tracker Network."""

    provider_name = "tracker"

    def __init__(
        self,
        *,
        api_key: str | None = None,
        base_url: str | None = None,
        cooldown: CooldownTracker | None = None,
        timeout: float = 20.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.api_key = api_key
        headers = {
            "User-Agent": USER_AGENT,
            "Accept": "application/json",
            "Accept-Language": "en-US,en;q=0.9",
        }
        if api_key:
            headers["TRN-Api-Key"] = api_key
        super().__init__(
            base_url=base_url,
            headers=headers,
            cooldown=cooldown,
            timeout=timeout,
            transport=transport,
        )

    @classmethod
    def from_settings(
        cls,
        settings: Settings | None = None,
        cooldown: CooldownTracker | None = None,
    ) -> "TrackerStatsClient":
        settings = settings or get_settings()
        if cooldown is None:
            cooldown = CooldownTracker(
                fallback_ms=settings.rate_limit_fallback_ms,
                max_ms=settings.rate_limit_max_ms,
            )
        return cls(
            api_key=settings.stats_api_key,
            base_url=settings.stats_api_base_url,
            cooldown=cooldown,
            timeout=settings.stats_api_timeout,
        )

    def is_configured(self) -> bool:
        return bool(self._base_url) and bool(self.api_key)

    def _check_configured(self) -> None:
        if not self._base_url:
            raise ConfigurationError("Player stats API base URL is not configured.")
        if not self.api_key:
            raise ConfigurationError("Player stats API key is not configured.")

    @staticmethod
    def _player_path(platform: str, handle: str) -> str:
        return f"/{quote(platform, safe='')}/{quote(handle, safe='')}"

    async def fetch_profile(self, platform: str, handle: str) -> Any:
        return await self._get(self._player_path(platform, handle))

    async def fetch_match_history(self, platform: str, handle: str) -> Any:
        return await self._get(f"{self._player_path(platform, handle)}/sessions")

    async def check_status(self, platform: str, handle: str, force: bool = False) -> ProviderStatus:
        """
        Report whether the provider currently answers for a player.

        Never raises for provider-side failures; the outcome is in the
        returned status. While a cooldown is active no request is made
        unless ``force`` is set. The check does not touch cooldown state.

        Raises:
            ConfigurationError: If the client is missing its key or base URL
        """
        self._check_configured()

        remaining = self.cooldown.remaining_cooldown_ms()
        if remaining > 0 and not force:
            return ProviderStatus(
                ok=False,
                status_code=429,
                error="Rate limit cooldown active.",
                retry_after_ms=remaining,
            )

        try:
            response = await self.client.get(self._player_path(platform, handle))
        except httpx.RequestError as e:
            logger.warning(f"Stats API status check failed: {e}")
            return ProviderStatus(ok=False, status_code=0, error=str(e) or "Request failed")

        return ProviderStatus(
            ok=response.is_success,
            status_code=response.status_code,
            error=None if response.is_success else f"Stats API error {response.status_code}",
            retry_after_ms=parse_retry_after_ms(
                response.headers.get("retry-after"),
                now=self.cooldown.now(),
                max_ms=self.cooldown.max_ms,
            ),
            headers=dict(response.headers),
        )
