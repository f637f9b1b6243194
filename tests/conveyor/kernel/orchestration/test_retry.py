"""Tests for RetryConfig and execute_with_retry."""

from __future__ import annotations

import asyncio

import pytest

from conveyor.kernel.exceptions import (
    AdapterError,
    BuildFailedError,
    ErrorKind,
    ToolUnavailableError,
)
from conveyor.kernel.orchestration.retry import RetryConfig, execute_with_retry, is_transient


class TestRetryConfig:
    def test_defaults(self) -> None:
        config = RetryConfig()
        assert config.max_attempts == 3
        assert config.has_retries

    def test_single_attempt_has_no_retries(self) -> None:
        assert not RetryConfig(max_attempts=1).has_retries

    def test_exponential_delay_capped(self) -> None:
        config = RetryConfig(delay=0.5, backoff=3.0, max_delay=4.0)
        assert [config.compute_delay(n) for n in (1, 2, 3)] == [0.5, 1.5, 4.0]

    @pytest.mark.parametrize(
        "kwargs",
        [{"max_attempts": 0}, {"delay": -1.0}, {"max_delay": -1.0}, {"backoff": 0.5}],
    )
    def test_invalid_values(self, kwargs) -> None:
        with pytest.raises(ValueError):
            RetryConfig(**kwargs)


class TestIsTransient:
    def test_transient_kinds(self) -> None:
        assert is_transient(ToolUnavailableError("registry down"))
        assert is_transient(AdapterError("scm down", kind=ErrorKind.SOURCE_UNAVAILABLE))

    def test_terminal_kinds(self) -> None:
        assert not is_transient(BuildFailedError("tests failed"))
        assert not is_transient(AdapterError("timeout", kind=ErrorKind.TIMEOUT))

    def test_other_exceptions(self) -> None:
        assert not is_transient(RuntimeError("bug"))


class TestExecuteWithRetry:
    @pytest.mark.asyncio
    async def test_succeeds_first_time(self) -> None:
        calls = 0

        async def fn() -> str:
            nonlocal calls
            calls += 1
            return "ok"

        assert await execute_with_retry(fn, RetryConfig(delay=0)) == "ok"
        assert calls == 1

    @pytest.mark.asyncio
    async def test_retries_transient_then_succeeds(self) -> None:
        attempts: list[int] = []
        retries: list[tuple[int, int, float]] = []

        async def fn() -> str:
            attempts.append(len(attempts) + 1)
            if len(attempts) < 3:
                raise ToolUnavailableError("not yet")
            return "done"

        def on_retry(attempt: int, max_attempts: int, error: Exception, delay: float) -> None:
            retries.append((attempt, max_attempts, delay))

        config = RetryConfig(max_attempts=5, delay=0.0)
        assert await execute_with_retry(fn, config, on_retry=on_retry) == "done"
        assert attempts == [1, 2, 3]
        assert retries == [(1, 5, 0.0), (2, 5, 0.0)]

    @pytest.mark.asyncio
    async def test_raises_after_max_attempts(self) -> None:
        calls = 0

        async def fn() -> None:
            nonlocal calls
            calls += 1
            raise ToolUnavailableError("still down")

        with pytest.raises(ToolUnavailableError):
            await execute_with_retry(fn, RetryConfig(max_attempts=2, delay=0))
        assert calls == 2

    @pytest.mark.asyncio
    async def test_terminal_error_not_retried(self) -> None:
        calls = 0

        async def fn() -> None:
            nonlocal calls
            calls += 1
            raise BuildFailedError("compilation failed")

        with pytest.raises(BuildFailedError):
            await execute_with_retry(fn, RetryConfig(max_attempts=5, delay=0))
        assert calls == 1

    @pytest.mark.asyncio
    async def test_cancel_event_stops_retrying(self) -> None:
        cancel = asyncio.Event()
        calls = 0

        async def fn() -> None:
            nonlocal calls
            calls += 1
            cancel.set()
            raise ToolUnavailableError("down")

        with pytest.raises(ToolUnavailableError):
            await execute_with_retry(fn, RetryConfig(max_attempts=5, delay=0), cancel_event=cancel)
        assert calls == 1

    @pytest.mark.asyncio
    async def test_custom_predicate(self) -> None:
        calls = 0

        async def fn() -> str:
            nonlocal calls
            calls += 1
            if calls == 1:
                raise ConnectionError("reset")
            return "ok"

        result = await execute_with_retry(
            fn,
            RetryConfig(delay=0),
            retry_if=lambda exc: isinstance(exc, ConnectionError),
        )
        assert result == "ok"
        assert calls == 2
