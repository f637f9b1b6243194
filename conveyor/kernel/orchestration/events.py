"""Run, batch and stage lifecycle events and observer notification."""

from __future__ import annotations

import asyncio
import inspect
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from conveyor.kernel.logging import get_logger

logger = get_logger(__name__)


@dataclass(slots=True)
class Event:
    """Base class for all events - provides timestamp."""

    timestamp: datetime = field(default_factory=datetime.now, init=False)

    def log_message(self) -> str:
        """Get a formatted log message for this event.

        Override in subclasses to provide custom formatting.
        """
        return f"{self.__class__.__name__} at {self.timestamp.isoformat()}"


# Run events
@dataclass(slots=True)
class RunStarted(Event):
    """A run (or a retry of one) has started."""

    run_id: str
    pipeline: str
    commit: str
    total_stages: int
    attempt: int = 1

    def log_message(self) -> str:
        retry = f" (attempt {self.attempt})" if self.attempt > 1 else ""
        return (
            f"Run '{self.run_id}' of '{self.pipeline}' started for {self.commit[:7]}"
            f" with {self.total_stages} stages{retry}"
        )


@dataclass(slots=True)
class RunCompleted(Event):
    """A run reached a terminal status and was sealed."""

    run_id: str
    status: str
    duration_ms: float
    failed_stages: tuple[str, ...] = ()

    def log_message(self) -> str:
        failed = f" (failed: {', '.join(self.failed_stages)})" if self.failed_stages else ""
        return (
            f"Run '{self.run_id}' finished with status {self.status} "
            f"in {self.duration_ms / 1000:.2f}s{failed}"
        )


# Batch events
@dataclass(slots=True)
class BatchStarted(Event):
    """A batch of independent stages is being dispatched."""

    batch_index: int
    stages: tuple[str, ...]

    def log_message(self) -> str:
        return f"Batch {self.batch_index} started: {', '.join(self.stages)}"


@dataclass(slots=True)
class BatchCompleted(Event):
    """Every stage of a batch has resolved."""

    batch_index: int
    stages: tuple[str, ...]
    duration_ms: float
    halted: bool = False

    def log_message(self) -> str:
        suffix = " - downstream halted" if self.halted else ""
        return f"Batch {self.batch_index} completed in {self.duration_ms / 1000:.2f}s{suffix}"


# Stage events
@dataclass(slots=True)
class StageStarted(Event):
    """A stage's adapter invocation was dispatched."""

    name: str
    tool_id: str
    batch_index: int
    generation: int = 1

    def log_message(self) -> str:
        return f"Stage '{self.name}' started ({self.tool_id}, batch {self.batch_index})"


@dataclass(slots=True)
class StageSucceeded(Event):
    """A stage resolved to success."""

    name: str
    duration_ms: float
    metrics: dict[str, Any] = field(default_factory=dict)

    def log_message(self) -> str:
        return f"Stage '{self.name}' succeeded in {self.duration_ms / 1000:.2f}s"


@dataclass(slots=True)
class StageFailed(Event):
    """A stage resolved to failure."""

    name: str
    error_kind: str
    message: str
    gating: bool = False

    def log_message(self) -> str:
        gate = " [gating]" if self.gating else ""
        return f"Stage '{self.name}' failed{gate}: {self.error_kind}: {self.message}"


@dataclass(slots=True)
class StageSkipped(Event):
    """A stage was skipped because an upstream gating stage failed."""

    name: str
    reason: str | None = None

    def log_message(self) -> str:
        return f"Stage '{self.name}' skipped: {self.reason or 'unknown'}"


ObserverFunc = Callable[[Event], None] | Callable[[Event], Awaitable[None]]


class EventBus:
    """Delivers events to registered observers.

    Observers are read-only: a failing observer is logged and never affects
    the run that emitted the event.
    """

    def __init__(self, observers: list[ObserverFunc] | None = None) -> None:
        self._observers: list[ObserverFunc] = list(observers or [])

    def register(self, observer: ObserverFunc) -> None:
        self._observers.append(observer)

    def unregister(self, observer: ObserverFunc) -> bool:
        try:
            self._observers.remove(observer)
        except ValueError:
            return False
        return True

    async def notify(self, event: Event) -> None:
        for observer in tuple(self._observers):
            name = getattr(observer, "__name__", observer.__class__.__name__)
            try:
                result = observer(event)
                if inspect.isawaitable(result):
                    await result
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.warning(f"Observer {name} failed for {type(event).__name__}: {exc}")

    def __len__(self) -> int:
        return len(self._observers)


class LoggingObserver:
    """Writes every lifecycle event to the conveyor log."""

    __name__ = "LoggingObserver"

    def __init__(self, logger_name: str = "conveyor.events") -> None:
        self._logger = get_logger(logger_name)

    def __call__(self, event: Event) -> None:
        if isinstance(event, StageFailed):
            self._logger.error(event.log_message())
        elif isinstance(event, StageSkipped):
            self._logger.warning(event.log_message())
        else:
            self._logger.info(event.log_message())
