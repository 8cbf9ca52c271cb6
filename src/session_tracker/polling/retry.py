"""Bounded retry with exponential backoff for provider calls."""

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Up to ``retries + 1`` attempts, waiting ``base_delay_ms * 2**attempt`` between them."""

    retries: int = 3
    base_delay_ms: int = 500

    def delay_ms(self, attempt: int, error: BaseException) -> int:
        """Delay before the attempt following ``attempt`` (0-indexed)."""
        retry_after_ms = getattr(error, "retry_after_ms", None)
        if isinstance(retry_after_ms, (int, float)) and not isinstance(retry_after_ms, bool):
            return max(0, int(retry_after_ms))
        return self.base_delay_ms * (2 ** attempt)


async def run_with_retry(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy = RetryPolicy(),
    *,
    should_retry: Optional[Callable[[BaseException], bool]] = None,
    sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
) -> T:
    """
    Execute ``operation`` with the given retry policy.

    An explicit ``retry_after_ms`` carried by the failure replaces the
    exponential delay. Errors rejected by ``should_retry`` propagate at once;
    otherwise the last error is re-raised after the final attempt.

    Raises:
        Exception: Whatever the final failing attempt raised
    """
    attempt = 0
    while True:
        try:
            return await operation()
        except Exception as e:
            if attempt >= policy.retries:
                raise
            if should_retry is not None and not should_retry(e):
                raise
            delay = policy.delay_ms(attempt, e)
            logger.debug(
                f"Attempt {attempt + 1}/{policy.retries + 1} failed, retrying in {delay}ms: {e}"
            )
            await sleep(delay / 1000)
            attempt += 1
