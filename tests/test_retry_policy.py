"""
Retry policy tests.
"""

import asyncio
import time

import pytest

from coverdeploy.resilience.retry_policy import (
    NonRetryableError,
    RetryCancelledError,
    RetryConfig,
    RetryExhaustedError,
    RetryPolicy,
    do,
    with_retry,
)


class TestRetryConfig:
    """Tests for retry configuration."""

    def test_rejects_zero_attempts(self):
        with pytest.raises(ValueError):
            RetryConfig(max_attempts=0)

    def test_rejects_jitter_outside_unit_range(self):
        with pytest.raises(ValueError):
            RetryConfig(jitter_fraction=1.5)

    def test_presets_are_valid(self):
        for config in (
            RetryConfig.default(),
            RetryConfig.network(),
            RetryConfig.github_api(),
            RetryConfig.file_operation(),
        ):
            assert config.max_attempts >= 1
            assert config.retry_if is not None


class TestCalculateDelay:
    """Tests for backoff delay calculation."""

    def test_exponential_without_jitter(self):
        """Test delay follows initial * multiplier^(n-1) up to the cap."""
        policy = RetryPolicy(RetryConfig(
            initial_delay=1.0, max_delay=10.0, multiplier=2.0, jitter_fraction=0.0,
        ))
        assert [policy.calculate_delay(n) for n in range(1, 6)] == [1.0, 2.0, 4.0, 8.0, 10.0]

    def test_non_decreasing_up_to_cap(self):
        policy = RetryPolicy(RetryConfig(
            initial_delay=0.1, max_delay=3.0, multiplier=1.5, jitter_fraction=0.0,
        ))
        delays = [policy.calculate_delay(n) for n in range(1, 20)]
        assert delays == sorted(delays)
        assert max(delays) == 3.0

    def test_jitter_varies_delay(self):
        """Test repeated calls with jitter are not all identical."""
        policy = RetryPolicy(RetryConfig(initial_delay=1.0, jitter_fraction=0.5))
        delays = {policy.calculate_delay(1) for _ in range(50)}
        assert len(delays) > 1
        assert all(0.5 <= d <= 1.5 for d in delays)


class TestExecute:
    """Tests for the retry executor."""

    @pytest.mark.asyncio
    async def test_succeeds_after_failures(self, fast_retry_config):
        """Test fn failing k-1 times then succeeding is called exactly k times."""
        call_count = 0

        async def flaky():
            nonlocal call_count
            call_count += 1
            if call_count < 3:
                raise TimeoutError("temporary failure")
            return "ok"

        result = await RetryPolicy(fast_retry_config).execute(flaky)
        assert result == "ok"
        assert call_count == 3

    @pytest.mark.asyncio
    async def test_non_retryable_error_stops_immediately(self):
        """Test a rejected error is attempted once."""
        config = RetryConfig(max_attempts=5, initial_delay=0.001, jitter_fraction=0.0)
        call_count = 0

        async def invalid():
            nonlocal call_count
            call_count += 1
            raise ValueError("bad input")

        with pytest.raises(NonRetryableError) as exc_info:
            await RetryPolicy(config).execute(invalid)

        assert call_count == 1
        assert "non-retryable error" in str(exc_info.value)
        assert isinstance(exc_info.value.__cause__, ValueError)

    @pytest.mark.asyncio
    async def test_exhausts_max_attempts(self, fast_retry_config):
        """Test fn is called exactly max_attempts times before giving up."""
        call_count = 0

        async def always_fails():
            nonlocal call_count
            call_count += 1
            raise ConnectionRefusedError("connection refused")

        with pytest.raises(RetryExhaustedError) as exc_info:
            await RetryPolicy(fast_retry_config).execute(always_fails)

        assert call_count == 3
        assert "operation failed after 3 attempts" in str(exc_info.value)
        assert exc_info.value.attempts == 3

    @pytest.mark.asyncio
    async def test_cancel_during_wait_returns_promptly(self):
        """Test setting the cancel event aborts a long backoff wait."""
        config = RetryConfig(
            max_attempts=3, initial_delay=10.0, max_delay=10.0,
            jitter_fraction=0.0, retry_if=lambda e: True,
        )
        cancel = asyncio.Event()

        async def fails():
            raise TimeoutError("timed out")

        loop = asyncio.get_running_loop()
        loop.call_later(0.05, cancel.set)

        start = time.monotonic()
        with pytest.raises(RetryCancelledError) as exc_info:
            await RetryPolicy(config).execute(fails, cancel_event=cancel)

        assert time.monotonic() - start < 2.0
        assert "context canceled" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_already_cancelled_skips_wait(self, fast_retry_config):
        cancel = asyncio.Event()
        cancel.set()
        call_count = 0

        async def fails():
            nonlocal call_count
            call_count += 1
            raise TimeoutError("timed out")

        with pytest.raises(RetryCancelledError):
            await RetryPolicy(fast_retry_config).execute(fails, cancel_event=cancel)
        assert call_count == 1

    @pytest.mark.asyncio
    async def test_passes_arguments(self, fast_retry_config):
        async def add(a, b=0):
            return a + b

        assert await RetryPolicy(fast_retry_config).execute(add, 2, b=3) == 5


class TestHelpers:
    """Tests for do() and the with_retry decorator."""

    @pytest.mark.asyncio
    async def test_do(self, fast_retry_config):
        attempts = []

        async def op():
            attempts.append(1)
            if len(attempts) == 1:
                raise TimeoutError("timeout")
            return "done"

        assert await do(op, fast_retry_config) == "done"
        assert len(attempts) == 2

    @pytest.mark.asyncio
    async def test_with_retry_decorator(self):
        call_count = 0

        @with_retry(max_attempts=2, initial_delay=0.001)
        async def fetch():
            nonlocal call_count
            call_count += 1
            raise ConnectionResetError("connection reset")

        with pytest.raises(RetryExhaustedError):
            await fetch()
        assert call_count == 2
