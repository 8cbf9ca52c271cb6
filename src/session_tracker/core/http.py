"""
Shared HTTP client infrastructure for the stats provider.

Provides BaseApiClient with cooldown awareness, quota header tracking and
error classification. No retries here; callers wrap provider calls with
polling.retry.run_with_retry.

Subclasses set the base URL and auth headers and expose one method per
endpoint; see providers.tracker.TrackerStatsClient.
"""

import logging
from typing import Any

import httpx

from ..polling.cooldown import (
    CooldownTracker,
    parse_int_header,
    parse_reset_at_ms,
    parse_retry_after_ms,
)

logger = logging.getLogger(__name__)

# Cloudflare's "you are being rate limited" marker, served with a non-JSON body.
CLOUDFLARE_RATE_LIMIT_MARKER = "error code: 1015"


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------

class ExternalAPIError(Exception):
    """Base exception for external API errors (transient unless subclassed)."""

    def __init__(
        self,
        message: str,
        code: str = "EXTERNAL_API_ERROR",
        status_code: int = 500,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.status_code = status_code


class RateLimitError(ExternalAPIError):
    """Exception raised when the provider rate limit is exceeded or cooling down."""

    def __init__(self, message: str, retry_after_ms: int = 60_000):
        super().__init__(message, code="RATE_LIMITED", status_code=429)
        self.retry_after_ms = retry_after_ms


class ConfigurationError(ExternalAPIError):
    """Raised when the client is missing required configuration (API key, base URL)."""

    def __init__(self, message: str):
        super().__init__(message, code="NOT_CONFIGURED", status_code=500)


class ProviderClientError(ExternalAPIError):
    """Non-retryable 4xx response (unknown player, forbidden, ...)."""

    def __init__(self, message: str, status_code: int):
        super().__init__(message, code="PROVIDER_CLIENT_ERROR", status_code=status_code)


def is_retryable(error: BaseException) -> bool:
    """Whether a provider failure is worth another attempt."""
    if isinstance(error, (RateLimitError, ConfigurationError, ProviderClientError)):
        return False
    return True


# ---------------------------------------------------------------------------
# Base client
# ---------------------------------------------------------------------------

class BaseApiClient:
    """
    Async HTTP client base with cooldown awareness.

    The httpx client is created on first request and released by ``close()``
    or by leaving an ``async with`` block. Pass ``transport`` to serve
    requests in-process (httpx.MockTransport in tests).
    """

    BASE_URL: str = ""

    def __init__(
        self,
        *,
        base_url: str | None = None,
        headers: dict[str, str] | None = None,
        cooldown: CooldownTracker | None = None,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._base_url = (base_url or self.BASE_URL or "").rstrip("/")
        self._default_headers = headers or {}
        self.cooldown = cooldown or CooldownTracker()
        self._timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    # -- Lifecycle -----------------------------------------------------------

    async def __aenter__(self) -> "BaseApiClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    @property
    def client(self) -> httpx.AsyncClient:
        """Return the HTTP client, lazily creating it if needed."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self._base_url,
                headers=self._default_headers,
                timeout=httpx.Timeout(self._timeout),
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    def is_configured(self) -> bool:
        """
        Check if the client has required configuration (API keys, etc.).

        Override in subclasses that need configuration validation.
        """
        return bool(self._base_url)

    def _check_configured(self) -> None:
        if not self.is_configured():
            raise ConfigurationError(f"{type(self).__name__} is not configured")

    # -- HTTP methods --------------------------------------------------------

    async def _get(
        self,
        path: str,
        params: dict[str, Any] | None = None,
    ) -> Any:
        """Make a single GET request."""
        return await self._request("GET", path, params=params)

    async def _request(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
    ) -> Any:
        """
        Make one HTTP request and classify the outcome.

        Raises:
            ConfigurationError: If the client is missing its key or base URL
            RateLimitError: If cooling down, or the provider answered 429/1015
            ProviderClientError: For other 4xx responses
            ExternalAPIError: For 5xx, transport failures and invalid JSON
        """
        self._check_configured()

        remaining = self.cooldown.remaining_cooldown_ms()
        if remaining > 0:
            raise RateLimitError("Stats API rate limit cooldown.", retry_after_ms=remaining)

        try:
            response = await self.client.request(method=method, url=path, params=params)
        except httpx.RequestError as e:
            raise ExternalAPIError(f"Request failed: {str(e)}") from e

        self._record_quota(response.headers)
        text = response.text

        if response.status_code == 429:
            retry_after = parse_retry_after_ms(
                response.headers.get("retry-after"),
                now=self.cooldown.now(),
                max_ms=self.cooldown.max_ms,
            )
            remaining = self.cooldown.record_rate_limit_signal(retry_after)
            logger.warning(f"Stats API rate limited (429), cooling down {remaining // 1000}s")
            raise RateLimitError("Stats API rate limit (429).", retry_after_ms=remaining)

        if CLOUDFLARE_RATE_LIMIT_MARKER in text and (
            response.is_error or not _looks_like_json(text)
        ):
            remaining = self.cooldown.record_rate_limit_signal(None)
            logger.warning(f"Stats API rate limited (1015), cooling down {remaining // 1000}s")
            raise RateLimitError("Stats API rate limit (1015).", retry_after_ms=remaining)

        if 400 <= response.status_code < 500:
            # Client errors (except 429) are not retryable
            raise ProviderClientError(
                f"Stats API error {response.status_code}: {text[:120]}",
                status_code=response.status_code,
            )
        if response.is_error:
            raise ExternalAPIError(
                f"Stats API error {response.status_code}: {text[:120]}",
                status_code=response.status_code,
            )

        try:
            return response.json()
        except ValueError as e:
            raise ExternalAPIError("Stats API response was not valid JSON.") from e

    def _record_quota(self, headers: httpx.Headers) -> None:
        self.cooldown.record_headers(
            limit=parse_int_header(headers.get("x-ratelimit-limit")),
            remaining=parse_int_header(headers.get("x-ratelimit-remaining")),
            reset_at_ms=parse_reset_at_ms(headers.get("x-ratelimit-reset"), now=self.cooldown.now()),
        )


def _looks_like_json(text: str) -> bool:
    stripped = text.lstrip()
    return stripped.startswith("{") or stripped.startswith("[")
