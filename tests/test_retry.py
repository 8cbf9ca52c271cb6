"""Retry executor tests."""

from __future__ import annotations

import pytest

from session_tracker.core.http import ExternalAPIError, ProviderClientError, RateLimitError, is_retryable
from session_tracker.polling.retry import RetryPolicy, run_with_retry


class Recorder:
    def __init__(self):
        self.sleeps: list[float] = []

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)


class TestRunWithRetry:
    async def test_always_failing_operation(self):
        recorder = Recorder()
        attempts = []

        async def operation():
            attempts.append(len(attempts) + 1)
            raise ExternalAPIError(f"failure {len(attempts)}")

        with pytest.raises(ExternalAPIError, match="failure 3"):
            await run_with_retry(
                operation,
                RetryPolicy(retries=2, base_delay_ms=500),
                sleep=recorder.sleep,
            )

        assert attempts == [1, 2, 3]
        assert recorder.sleeps == [0.5, 1.0]

    async def test_returns_first_success(self):
        recorder = Recorder()
        attempts = []

        async def operation():
            attempts.append(1)
            if len(attempts) < 3:
                raise ExternalAPIError("transient")
            return {"ok": True}

        result = await run_with_retry(operation, RetryPolicy(retries=3), sleep=recorder.sleep)

        assert result == {"ok": True}
        assert recorder.sleeps == [0.5, 1.0]

    async def test_zero_retries_is_single_attempt(self):
        recorder = Recorder()

        async def operation():
            raise ExternalAPIError("nope")

        with pytest.raises(ExternalAPIError):
            await run_with_retry(operation, RetryPolicy(retries=0), sleep=recorder.sleep)
        assert recorder.sleeps == []

    async def test_retry_after_replaces_backoff(self):
        recorder = Recorder()
        attempts = []

        async def operation():
            attempts.append(1)
            if len(attempts) == 1:
                raise RateLimitError("wait", retry_after_ms=2_500)
            return "done"

        assert await run_with_retry(operation, RetryPolicy(retries=1), sleep=recorder.sleep) == "done"
        assert recorder.sleeps == [2.5]

    async def test_should_retry_rejects(self):
        recorder = Recorder()
        attempts = []

        async def operation():
            attempts.append(1)
            raise RateLimitError("wait", retry_after_ms=1_000)

        with pytest.raises(RateLimitError):
            await run_with_retry(
                operation,
                RetryPolicy(retries=3),
                should_retry=is_retryable,
                sleep=recorder.sleep,
            )
        assert len(attempts) == 1
        assert recorder.sleeps == []


class TestIsRetryable:
    def test_classification(self):
        assert is_retryable(ExternalAPIError("5xx"))
        assert is_retryable(TimeoutError())
        assert not is_retryable(RateLimitError("429"))
        assert not is_retryable(ProviderClientError("404", status_code=404))
