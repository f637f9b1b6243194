"""Pipeline execution: executor, stage runner, retry policy and lifecycle events."""

from conveyor.kernel.orchestration.events import EventBus, LoggingObserver
from conveyor.kernel.orchestration.executor import PipelineExecutor
from conveyor.kernel.orchestration.retry import RetryConfig, execute_with_retry
from conveyor.kernel.orchestration.stage_runner import StageRunner

__all__ = [
    "EventBus",
    "LoggingObserver",
    "PipelineExecutor",
    "RetryConfig",
    "StageRunner",
    "execute_with_retry",
]
