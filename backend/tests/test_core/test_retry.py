"""Tests for retry utilities."""

import pytest
from unittest.mock import AsyncMock, patch

import httpx

from snapshot_engine.core.retry import (
    RetryConfig,
    RETRY_STANDARD,
    RETRY_UPLOAD,
    NO_RETRY,
    calculate_delay,
    retry_async,
)


class TestRetryConfig:
    """Tests for RetryConfig class."""

    def test_default_values(self):
        """Config should have sensible defaults."""
        config = RetryConfig()
        assert config.max_attempts == 3
        assert config.base_delay == 1.0
        assert config.max_delay == 30.0
        assert config.exponential_base == 2.0
        assert config.jitter is True
        assert config.retryable_exceptions == (Exception,)

    def test_rejects_zero_attempts(self):
        with pytest.raises(ValueError):
            RetryConfig(max_attempts=0)


class TestPreConfiguredStrategies:
    """Tests for pre-configured retry strategies."""

    def test_retry_standard(self):
        assert RETRY_STANDARD.max_attempts == 3
        assert RETRY_STANDARD.base_delay == 1.0
        assert RETRY_STANDARD.max_delay == 10.0

    def test_retry_upload_only_retries_transport_errors(self):
        """Uploads retry once, and only on transport-level failures."""
        assert RETRY_UPLOAD.max_attempts == 2
        assert httpx.TransportError in RETRY_UPLOAD.retryable_exceptions
        assert Exception not in RETRY_UPLOAD.retryable_exceptions

    def test_no_retry(self):
        assert NO_RETRY.max_attempts == 1


class TestCalculateDelay:
    """Tests for delay calculation."""

    def test_exponential_increase(self):
        """Delay should increase exponentially."""
        config = RetryConfig(base_delay=1.0, exponential_base=2.0, jitter=False)
        assert calculate_delay(0, config) == 1.0
        assert calculate_delay(1, config) == 2.0
        assert calculate_delay(2, config) == 4.0

    def test_max_delay_cap(self):
        """Delay should not exceed max_delay."""
        config = RetryConfig(base_delay=1.0, max_delay=5.0, jitter=False)
        assert calculate_delay(10, config) == 5.0

    def test_jitter_stays_within_bounds(self):
        config = RetryConfig(base_delay=10.0, jitter=True)
        for _ in range(50):
            assert 7.5 <= calculate_delay(0, config) <= 12.5


class TestRetryAsync:
    """Tests for retry_async function."""

    @pytest.mark.asyncio
    async def test_succeeds_on_first_attempt(self):
        operation = AsyncMock(return_value="success")

        result = await retry_async(operation, config=NO_RETRY)

        assert result == "success"
        operation.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_retries_on_failure(self):
        """Should retry on failure and eventually succeed."""
        attempts = []

        async def operation():
            attempts.append(1)
            if len(attempts) < 3:
                raise ConnectionError("Failed")
            return "success"

        config = RetryConfig(max_attempts=3, base_delay=0.01, jitter=False)
        result = await retry_async(operation, config=config)
        assert result == "success"
        assert len(attempts) == 3

    @pytest.mark.asyncio
    async def test_raises_after_exhausted(self):
        async def always_fails():
            raise ValueError("Always fails")

        config = RetryConfig(max_attempts=2, base_delay=0.01, jitter=False)
        with pytest.raises(ValueError, match="Always fails"):
            await retry_async(always_fails, config=config)

    @pytest.mark.asyncio
    async def test_only_retries_specified_exceptions(self):
        attempts = []

        async def operation():
            attempts.append(1)
            raise KeyError("Not retryable")

        config = RetryConfig(max_attempts=3, base_delay=0.01, retryable_exceptions=(ValueError,))
        with pytest.raises(KeyError):
            await retry_async(operation, config=config)
        assert len(attempts) == 1

    @pytest.mark.asyncio
    async def test_passes_args_and_kwargs(self):
        async def operation(a, b, c=None):
            return f"{a}-{b}-{c}"

        result = await retry_async(operation, "x", "y", c="z", config=NO_RETRY)
        assert result == "x-y-z"

    @pytest.mark.asyncio
    async def test_sleeps_between_attempts(self):
        """Backoff delay is awaited between attempts."""
        operation = AsyncMock(side_effect=[httpx.ConnectError("refused"), "ok"])

        with patch("snapshot_engine.core.retry.asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
            result = await retry_async(operation, config=RETRY_UPLOAD, operation_name="snapshot_upload")

        assert result == "ok"
        mock_sleep.assert_awaited_once_with(0.5)
