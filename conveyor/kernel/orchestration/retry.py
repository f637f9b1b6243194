"""Bounded retry with exponential backoff for adapter invocations.

Only transient infrastructure failures (``SourceUnavailable``,
``AnalysisUnavailable``, ``ToolUnavailable``) are retried. Terminal kinds
such as ``QualityGateFailed`` or ``BuildFailed`` surface on the first
attempt.

Examples
--------
Custom backoff::

    config = RetryConfig(max_attempts=5, delay=0.5, backoff=3.0, max_delay=30.0)
    outcome = await execute_with_retry(invoke, config)
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from conveyor.kernel.exceptions import AdapterError
from conveyor.kernel.logging import get_logger

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

logger = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class RetryConfig:
    """Configuration for retry behavior with exponential backoff.

    Parameters
    ----------
    max_attempts : int
        Total number of attempts. 1 means no retries (single attempt).
    delay : float
        Initial delay in seconds before the first retry.
    backoff : float
        Multiplier applied to the delay after each retry.
    max_delay : float
        Maximum delay cap in seconds.
    """

    max_attempts: int = 3
    delay: float = 1.0
    backoff: float = 2.0
    max_delay: float = 60.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.delay < 0 or self.max_delay < 0:
            raise ValueError("delays must be non-negative")
        if self.backoff < 1:
            raise ValueError("backoff must be >= 1")

    @property
    def has_retries(self) -> bool:
        """Whether this config enables retries (max_attempts > 1)."""
        return self.max_attempts > 1

    def compute_delay(self, attempt: int) -> float:
        """Compute the delay after a failed attempt (1-indexed).

        Examples
        --------
        >>> cfg = RetryConfig(delay=1.0, backoff=2.0, max_delay=10.0)
        >>> cfg.compute_delay(1)
        1.0
        >>> cfg.compute_delay(3)
        4.0
        >>> cfg.compute_delay(10)
        10.0
        """
        return min(self.delay * (self.backoff ** (attempt - 1)), self.max_delay)


def is_transient(exc: BaseException) -> bool:
    """Default retry predicate: adapter errors of a transient kind."""
    return isinstance(exc, AdapterError) and exc.kind.is_transient


async def execute_with_retry(
    fn: Callable[[], Awaitable[Any]],
    config: RetryConfig,
    *,
    retry_if: Callable[[BaseException], bool] = is_transient,
    on_retry: Callable[[int, int, Exception, float], Any] | None = None,
    cancel_event: asyncio.Event | None = None,
) -> Any:
    """Execute an async callable, retrying eligible failures with backoff.

    Parameters
    ----------
    fn : Callable[[], Awaitable[Any]]
        Zero-argument async callable to execute.
    config : RetryConfig
        Retry configuration.
    retry_if : callable
        Predicate deciding whether an exception is worth another attempt.
    on_retry : callable, optional
        Invoked before each retry sleep with ``(attempt, max_attempts, error, delay)``.
    cancel_event : asyncio.Event, optional
        When set, no further attempts are started and the last error is raised.

    Returns
    -------
    Any
        The return value of *fn*.
    """
    attempt = 1
    while True:
        try:
            return await fn()
        except Exception as exc:
            exhausted = attempt >= config.max_attempts
            cancelled = cancel_event is not None and cancel_event.is_set()
            if exhausted or cancelled or not retry_if(exc):
                raise
            delay = config.compute_delay(attempt)
            if on_retry is not None:
                on_retry(attempt, config.max_attempts, exc, delay)
            await asyncio.sleep(delay)
            attempt += 1
