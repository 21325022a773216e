"""
Tests for retry logic with exponential backoff and jitter.

Review checklist:
    [x] Jitter prevents thundering herd
    [x] Works with async functions
    [x] Respects Retry-After hints
"""

import sqlite3
from unittest.mock import AsyncMock, Mock, patch

import pytest

from carrier_automation.errors import NotFoundError, StorageError
from core.errors import PermanentError, ThrottlingError, TrackerError, TransientError
from core.resilience.retry import (
    DEFAULT_RETRY,
    STORE_READ_RETRY,
    RetryConfig,
    with_retry_async,
)


class TestRetryConfig:
    """Tests for RetryConfig."""

    def test_default_values(self):
        """Test default configuration values."""
        config = RetryConfig()
        assert config.max_attempts == 3
        assert config.base_delay == 1.0
        assert config.max_delay == 30.0
        assert config.exponential_base == 2.0
        assert config.respect_permanent is True
        assert config.respect_retry_after is True
        assert config.never_retry == set()

    def test_type_conversion_from_strings(self):
        """Test that config handles string inputs (e.g., from YAML)."""
        config = RetryConfig(
            max_attempts="5",
            base_delay="2.5",
            max_delay="60",
            exponential_base="3",
        )
        assert config.max_attempts == 5
        assert config.base_delay == 2.5
        assert config.max_delay == 60.0
        assert config.exponential_base == 3.0

    def test_store_read_retry_is_short(self):
        assert STORE_READ_RETRY.max_delay <= 1.0
        assert DEFAULT_RETRY.max_attempts == 3


class TestGetDelay:
    def test_equal_jitter_bounds(self):
        """Delay is between half and all of the exponential value."""
        config = RetryConfig(base_delay=1.0, max_delay=100.0)
        for attempt in range(5):
            expected = 2.0**attempt
            for _ in range(20):
                delay = config.get_delay(attempt)
                assert expected / 2 <= delay <= expected

    def test_jitter_varies(self):
        config = RetryConfig(base_delay=1.0, max_delay=100.0)
        delays = {config.get_delay(3) for _ in range(20)}
        assert len(delays) > 1

    def test_capped_at_max_delay(self):
        config = RetryConfig(base_delay=1.0, max_delay=5.0)
        assert config.get_delay(10) == 5.0

    def test_ceiling_equal_to_base_gives_fixed_delay(self):
        config = RetryConfig(base_delay=5.0, max_delay=5.0)
        assert {config.get_delay(n) for n in range(1, 6)} == {5.0}

    def test_respects_retry_after(self):
        config = RetryConfig(max_delay=60.0)
        assert config.get_delay(0, ThrottlingError("slow down", retry_after=12)) == 12

    def test_retry_after_capped(self):
        config = RetryConfig(max_delay=10.0)
        assert config.get_delay(0, ThrottlingError("slow down", retry_after=120)) == 10.0

    def test_retry_after_ignored_when_disabled(self):
        config = RetryConfig(base_delay=1.0, respect_retry_after=False)
        assert config.get_delay(0, ThrottlingError("slow down", retry_after=20)) <= 1.0


class TestShouldRetry:
    def test_stops_at_max_attempts(self):
        config = RetryConfig(max_attempts=3)
        assert config.should_retry(TransientError("x"), 0)
        assert config.should_retry(TransientError("x"), 1)
        assert not config.should_retry(TransientError("x"), 2)

    def test_permanent_not_retried(self):
        config = RetryConfig(max_attempts=5)
        assert not config.should_retry(PermanentError("x"), 0)
        assert not config.should_retry(NotFoundError("x"), 0)

    def test_never_retry_overrides(self):
        config = RetryConfig(max_attempts=5, never_retry={StorageError})
        assert not config.should_retry(StorageError("x"), 0)

    def test_plain_exceptions_classified(self):
        config = RetryConfig(max_attempts=5)
        assert config.should_retry(sqlite3.OperationalError("database is locked"), 0)
        assert config.should_retry(RuntimeError("unknown"), 0)
        assert not config.should_retry(ValueError("bad"), 0)


@pytest.fixture
def no_sleep():
    with patch("core.resilience.retry.asyncio.sleep", new_callable=AsyncMock) as sleep:
        yield sleep


class TestWithRetryAsync:
    async def test_success_first_try(self, no_sleep):
        func = AsyncMock(return_value="ok")
        func.__name__ = "load"
        decorated = with_retry_async(RetryConfig(max_attempts=3))(func)

        assert await decorated("sub-1") == "ok"
        func.assert_awaited_once_with("sub-1")
        no_sleep.assert_not_awaited()

    async def test_retries_transient_then_succeeds(self, no_sleep):
        func = AsyncMock(side_effect=[StorageError("locked"), StorageError("locked"), "ok"])
        func.__name__ = "load"
        on_retry = Mock()
        decorated = with_retry_async(RetryConfig(max_attempts=3), on_retry=on_retry)(func)

        assert await decorated() == "ok"
        assert func.await_count == 3
        assert on_retry.call_count == 2
        assert no_sleep.await_count == 2

    async def test_permanent_raised_immediately(self, no_sleep):
        func = AsyncMock(side_effect=NotFoundError("gone"))
        func.__name__ = "load"
        decorated = with_retry_async(RetryConfig(max_attempts=5))(func)

        with pytest.raises(NotFoundError):
            await decorated()
        assert func.await_count == 1

    async def test_exhausted_raises_wrapped(self, no_sleep):
        func = AsyncMock(side_effect=sqlite3.OperationalError("database is locked"))
        func.__name__ = "load"
        decorated = with_retry_async(RetryConfig(max_attempts=2))(func)

        with pytest.raises(TransientError) as exc_info:
            await decorated()
        assert isinstance(exc_info.value.__cause__, sqlite3.OperationalError)
        assert func.await_count == 2

    async def test_wrap_errors_disabled(self, no_sleep):
        func = AsyncMock(side_effect=ValueError("bad"))
        func.__name__ = "load"
        decorated = with_retry_async(RetryConfig(max_attempts=3), wrap_errors=False)(func)

        with pytest.raises(ValueError):
            await decorated()
        assert func.await_count == 1

    async def test_callback_error_does_not_break_retry(self, no_sleep):
        func = AsyncMock(side_effect=[TransientError("x"), "ok"])
        func.__name__ = "load"
        on_retry = Mock(side_effect=RuntimeError("callback failed"))
        decorated = with_retry_async(RetryConfig(max_attempts=2), on_retry=on_retry)(func)

        assert await decorated() == "ok"

    async def test_unknown_tracker_error_retried(self, no_sleep):
        func = AsyncMock(side_effect=[TrackerError("odd"), "ok"])
        func.__name__ = "load"
        decorated = with_retry_async(RetryConfig(max_attempts=2))(func)

        assert await decorated() == "ok"
