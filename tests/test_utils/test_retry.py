"""
Tests for the retry utility.

Tests cover:
- RetryConfig defaults and validation
- Delay calculation: exponential, capped, fixed interval, jitter
- Retryable error filtering
- Overall deadlines and unbounded polling
- Cancellation
"""

import asyncio
import time
from typing import List
from unittest.mock import AsyncMock, patch

import pytest

from anvilkit.utils.retry import RetryConfig, calculate_delay, retry_async


# =============================================================================
# RetryConfig Tests
# =============================================================================


class TestRetryConfig:
    """Tests for RetryConfig dataclass."""

    def test_default_values(self) -> None:
        """Test RetryConfig default values."""
        config = RetryConfig()

        assert config.max_attempts == 3
        assert config.base_delay_ms == 1000
        assert config.max_delay_ms == 30000
        assert config.jitter is True
        assert config.exponential_base == 2.0
        assert config.timeout_s is None
        assert config.retryable_errors == (Exception,)

    def test_unbounded_requires_deadline(self) -> None:
        """Unbounded attempts without a deadline would poll forever."""
        with pytest.raises(ValueError, match="timeout_s"):
            RetryConfig(max_attempts=None)

    def test_unbounded_with_deadline(self) -> None:
        config = RetryConfig(max_attempts=None, timeout_s=1.0)
        assert config.max_attempts is None

    def test_zero_attempts_rejected(self) -> None:
        with pytest.raises(ValueError, match="at least 1"):
            RetryConfig(max_attempts=0)


# =============================================================================
# Delay Calculation Tests
# =============================================================================


class TestDelayCalculation:
    """Tests for calculate_delay function."""

    def test_exponential_growth(self) -> None:
        """Test delay grows exponentially."""
        config = RetryConfig(base_delay_ms=1000, jitter=False, exponential_base=2.0)

        delays = [calculate_delay(i, config) for i in range(5)]

        # Expected: 1s, 2s, 4s, 8s, 16s
        assert delays == [1.0, 2.0, 4.0, 8.0, 16.0]

    def test_max_delay_cap(self) -> None:
        """Test delay is capped at max_delay_ms."""
        config = RetryConfig(base_delay_ms=1000, max_delay_ms=5000, jitter=False)

        assert calculate_delay(10, config) == 5.0

    def test_fixed_interval(self) -> None:
        """A base of 1.0 without jitter gives a constant polling interval."""
        config = RetryConfig(base_delay_ms=100, exponential_base=1.0, jitter=False)

        delays = [calculate_delay(i, config) for i in range(20)]

        assert all(d == 0.1 for d in delays)

    def test_jitter_bounds(self) -> None:
        """Test jitter stays between zero and the computed delay."""
        config = RetryConfig(base_delay_ms=1000, jitter=True)

        delays = [calculate_delay(0, config) for _ in range(50)]

        assert min(delays) != max(delays)
        assert all(0 <= d <= 1.0 for d in delays)


# =============================================================================
# Async Retry Tests
# =============================================================================


class TestRetryAsync:
    """Tests for retry_async function."""

    @pytest.mark.asyncio
    async def test_success_on_first_attempt(self) -> None:
        call_count = 0

        async def success_fn():
            nonlocal call_count
            call_count += 1
            return "success"

        result = await retry_async(success_fn)

        assert result == "success"
        assert call_count == 1

    @pytest.mark.asyncio
    async def test_retry_on_failure(self) -> None:
        """Test retry after transient failure."""
        call_count = 0

        async def fail_then_succeed():
            nonlocal call_count
            call_count += 1
            if call_count < 3:
                raise ValueError("Transient error")
            return "success"

        config = RetryConfig(max_attempts=5, base_delay_ms=1, jitter=False)
        result = await retry_async(fail_then_succeed, config)

        assert result == "success"
        assert call_count == 3

    @pytest.mark.asyncio
    async def test_max_attempts_exceeded(self) -> None:
        """Test the last error is raised after max attempts."""
        call_count = 0

        async def always_fail():
            nonlocal call_count
            call_count += 1
            raise ValueError("Persistent error")

        config = RetryConfig(max_attempts=3, base_delay_ms=1, jitter=False)

        with pytest.raises(ValueError, match="Persistent error"):
            await retry_async(always_fail, config)

        assert call_count == 3

    @pytest.mark.asyncio
    async def test_retryable_error_filter(self) -> None:
        """Test a non-retryable error stops the loop immediately."""
        call_count = 0
        errors: List[type] = [ValueError, ValueError, RuntimeError]

        async def raise_different_errors():
            nonlocal call_count
            error_type = errors[call_count]
            call_count += 1
            raise error_type("Error")

        config = RetryConfig(max_attempts=5, retryable_errors=(ValueError,), base_delay_ms=1)

        with pytest.raises(RuntimeError):
            await retry_async(raise_different_errors, config)

        assert call_count == 3

    @pytest.mark.asyncio
    async def test_default_config(self) -> None:
        call_count = 0

        async def fail_once():
            nonlocal call_count
            call_count += 1
            if call_count == 1:
                raise Exception("First attempt fails")
            return "success"

        with patch("anvilkit.utils.retry.asyncio.sleep", new_callable=AsyncMock):
            result = await retry_async(fail_once)

        assert result == "success"
        assert call_count == 2


# =============================================================================
# Deadline Tests
# =============================================================================


class TestDeadline:
    """Tests for timeout_s and unbounded polling."""

    @pytest.mark.asyncio
    async def test_unbounded_polls_until_success(self) -> None:
        call_count = 0

        async def ready_on_tenth():
            nonlocal call_count
            call_count += 1
            if call_count < 10:
                raise ValueError("not ready")
            return call_count

        config = RetryConfig(
            max_attempts=None,
            base_delay_ms=1,
            exponential_base=1.0,
            jitter=False,
            timeout_s=5.0,
        )

        assert await retry_async(ready_on_tenth, config) == 10

    @pytest.mark.asyncio
    async def test_deadline_raises_timeout(self) -> None:
        """An unbounded loop ends with TimeoutError at the deadline."""
        config = RetryConfig(
            max_attempts=None,
            base_delay_ms=20,
            exponential_base=1.0,
            jitter=False,
            timeout_s=0.2,
        )

        async def never_ready():
            raise ValueError("not ready")

        started = time.monotonic()
        with pytest.raises(asyncio.TimeoutError):
            await retry_async(never_ready, config)

        assert 0.15 <= time.monotonic() - started < 2.0

    @pytest.mark.asyncio
    async def test_deadline_interrupts_slow_attempt(self) -> None:
        config = RetryConfig(max_attempts=1, timeout_s=0.1)

        async def slow():
            await asyncio.sleep(10)

        with pytest.raises(asyncio.TimeoutError):
            await retry_async(slow, config)

    @pytest.mark.asyncio
    async def test_cancellation_stops_polling(self) -> None:
        """Cancelling the caller leaves no polling behind."""
        call_count = 0

        async def never_ready():
            nonlocal call_count
            call_count += 1
            raise ValueError("not ready")

        config = RetryConfig(
            max_attempts=None,
            base_delay_ms=10,
            exponential_base=1.0,
            jitter=False,
            timeout_s=10.0,
        )

        task = asyncio.ensure_future(retry_async(never_ready, config))
        await asyncio.sleep(0.05)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        calls_at_cancel = call_count
        await asyncio.sleep(0.05)
        assert call_count == calls_at_cancel
