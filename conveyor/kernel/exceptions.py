"""Core exception hierarchy for conveyor.

All conveyor exceptions inherit from ConveyorError for easy exception handling.
Adapter failures additionally carry an :class:`ErrorKind`, which is what the
executor records on a failed StageResult and what the CLI maps to exit codes.
"""

from __future__ import annotations

from enum import IntEnum, StrEnum
from typing import Any


class ExitCode(IntEnum):
    """Process exit codes of the operator CLI."""

    SUCCESS = 0
    STAGE_FAILURE = 1
    QUALITY_GATE_FAILURE = 2
    INFRA_UNAVAILABLE = 3
    INVALID_DEFINITION = 4


class ErrorKind(StrEnum):
    """Structured error kinds recorded on failed stages.

    Attributes
    ----------
    CYCLE_DETECTED, UNKNOWN_DEPENDENCY, DUPLICATE_STAGE, INVALID_DEFINITION
        Definition-time errors, reported before any Run starts.
    SOURCE_UNAVAILABLE, ANALYSIS_UNAVAILABLE, TOOL_UNAVAILABLE
        Transient infrastructure errors, eligible for backoff retry.
    QUALITY_GATE_FAILED, BUILD_FAILED
        Terminal for the current Run; always halt downstream stages.
    ACCESS_DENIED, NOT_FOUND
        Credential resolution errors, fatal for the invoking stage only.
    """

    CYCLE_DETECTED = "CycleDetected"
    UNKNOWN_DEPENDENCY = "UnknownDependency"
    DUPLICATE_STAGE = "DuplicateStage"
    INVALID_DEFINITION = "InvalidDefinition"
    SOURCE_UNAVAILABLE = "SourceUnavailable"
    ANALYSIS_UNAVAILABLE = "AnalysisUnavailable"
    TOOL_UNAVAILABLE = "ToolUnavailable"
    QUALITY_GATE_FAILED = "QualityGateFailed"
    BUILD_FAILED = "BuildFailed"
    ACCESS_DENIED = "AccessDenied"
    NOT_FOUND = "NotFound"
    MISSING_INPUT = "MissingInput"
    TIMEOUT = "StageTimedOut"
    ABORTED = "Aborted"
    INTERNAL = "InternalError"

    @property
    def is_transient(self) -> bool:
        """Whether a failure of this kind may be retried with backoff."""
        return self in _TRANSIENT_KINDS

    @property
    def halts_pipeline(self) -> bool:
        """Whether a failure of this kind fails the whole run regardless of gating."""
        return self in _HALTING_KINDS

    @property
    def is_infrastructure(self) -> bool:
        """Whether this kind denotes unavailable infrastructure rather than a code problem."""
        return self in _TRANSIENT_KINDS or self is ErrorKind.TIMEOUT

    @property
    def exit_code(self) -> ExitCode:
        """Exit code the CLI reports when this kind caused the run to fail."""
        if self is ErrorKind.QUALITY_GATE_FAILED:
            return ExitCode.QUALITY_GATE_FAILURE
        if self.is_infrastructure:
            return ExitCode.INFRA_UNAVAILABLE
        if self in _DEFINITION_KINDS:
            return ExitCode.INVALID_DEFINITION
        return ExitCode.STAGE_FAILURE


_TRANSIENT_KINDS = frozenset({
    ErrorKind.SOURCE_UNAVAILABLE,
    ErrorKind.ANALYSIS_UNAVAILABLE,
    ErrorKind.TOOL_UNAVAILABLE,
})
_HALTING_KINDS = frozenset({ErrorKind.QUALITY_GATE_FAILED, ErrorKind.BUILD_FAILED})
_DEFINITION_KINDS = frozenset({
    ErrorKind.CYCLE_DETECTED,
    ErrorKind.UNKNOWN_DEPENDENCY,
    ErrorKind.DUPLICATE_STAGE,
    ErrorKind.INVALID_DEFINITION,
})


# ============================================================================
# Base Exception
# ============================================================================


class ConveyorError(Exception):
    """Base exception for all conveyor errors.

    Catch this to handle all conveyor-specific errors.
    """

    pass


# ============================================================================
# Configuration Errors
# ============================================================================


class ConfigurationError(ConveyorError):
    """Raised when configuration is invalid or missing.

    Examples
    --------
    Example usage::

        raise ConfigurationError("executor", "max_concurrency must be positive")
    """

    def __init__(self, component: str, reason: str) -> None:
        super().__init__(f"Configuration error in '{component}': {reason}")
        self.component = component
        self.reason = reason


# ============================================================================
# Pipeline Definition Errors
# ============================================================================


class PipelineDefinitionError(ConveyorError):
    """Base exception for malformed pipeline definitions."""

    kind: ErrorKind = ErrorKind.INVALID_DEFINITION


class CycleDetectedError(PipelineDefinitionError):
    """Raised when the stage dependencies contain a cycle."""

    kind = ErrorKind.CYCLE_DETECTED

    def __init__(self, cycle: list[str]) -> None:
        self.cycle = cycle
        super().__init__(f"Cycle detected: {' -> '.join(cycle)}")


class UnknownDependencyError(PipelineDefinitionError):
    """Raised when a stage depends on a stage that is not defined."""

    kind = ErrorKind.UNKNOWN_DEPENDENCY

    def __init__(self, stage: str, dependency: str) -> None:
        self.stage = stage
        self.dependency = dependency
        super().__init__(f"Stage '{stage}' depends on unknown stage '{dependency}'")


class DuplicateStageError(PipelineDefinitionError):
    """Raised when two stages share a name."""

    kind = ErrorKind.DUPLICATE_STAGE

    def __init__(self, stage: str) -> None:
        self.stage = stage
        super().__init__(f"Stage '{stage}' is defined more than once")


class UnknownAdapterError(PipelineDefinitionError):
    """Raised when a stage references an adapter id that is not registered."""

    def __init__(self, stage: str, adapter_id: str, available: list[str] | None = None) -> None:
        msg = f"Stage '{stage}' uses unknown adapter '{adapter_id}'"
        if available:
            msg += f". Available: {', '.join(sorted(available))}"
        super().__init__(msg)
        self.stage = stage
        self.adapter_id = adapter_id


class InvalidStageParamsError(PipelineDefinitionError):
    """Raised when a stage's adapter parameters fail validation."""

    def __init__(self, stage: str, adapter_id: str, reason: str) -> None:
        super().__init__(
            f"Stage '{stage}' has invalid parameters for adapter '{adapter_id}': {reason}"
        )
        self.stage = stage
        self.adapter_id = adapter_id
        self.reason = reason


# ============================================================================
# Adapter Errors
# ============================================================================


class AdapterError(ConveyorError):
    """Structured failure raised by a tool adapter.

    The executor catches these at the stage boundary and records
    ``kind``, ``message`` and ``metrics`` on the failed StageResult.
    """

    kind: ErrorKind = ErrorKind.INTERNAL

    def __init__(
        self,
        message: str,
        *,
        kind: ErrorKind | None = None,
        metrics: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        if kind is not None:
            self.kind = kind
        self.message = message
        self.metrics = dict(metrics or {})


class SourceUnavailableError(AdapterError):
    """The commit reference could not be resolved to a snapshot."""

    kind = ErrorKind.SOURCE_UNAVAILABLE


class AnalysisUnavailableError(AdapterError):
    """The analysis server could not be reached or did not finish."""

    kind = ErrorKind.ANALYSIS_UNAVAILABLE


class ToolUnavailableError(AdapterError):
    """An external tool or service is not reachable or not installed."""

    kind = ErrorKind.TOOL_UNAVAILABLE


class QualityGateFailedError(AdapterError):
    """Static analysis completed and the quality gate rejected the snapshot."""

    kind = ErrorKind.QUALITY_GATE_FAILED


class BuildFailedError(AdapterError):
    """Compilation or tests failed."""

    kind = ErrorKind.BUILD_FAILED


class MissingInputError(AdapterError):
    """A required upstream artifact or value is not available to the stage."""

    kind = ErrorKind.MISSING_INPUT


class StageAbortedError(AdapterError):
    """The adapter honored the cooperative cancellation signal."""

    kind = ErrorKind.ABORTED


class CredentialError(AdapterError):
    """Base class for credential resolution failures."""


class AccessDeniedError(CredentialError):
    """The requesting stage is outside the credential's declared scope."""

    kind = ErrorKind.ACCESS_DENIED


class CredentialNotFoundError(CredentialError):
    """No credential is declared or stored under the requested name."""

    kind = ErrorKind.NOT_FOUND


# ============================================================================
# Run / Ledger Errors
# ============================================================================


class InvalidTransitionError(ConveyorError):
    """Raised when a StageResult is moved along an illegal status transition."""

    def __init__(self, stage: str, from_status: str, to_status: str) -> None:
        self.stage = stage
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(f"Stage '{stage}' cannot move from {from_status} to {to_status}")


class RunSealedError(ConveyorError):
    """Raised when a sealed Run is mutated."""

    def __init__(self, run_id: str) -> None:
        self.run_id = run_id
        super().__init__(f"Run '{run_id}' is sealed")


class RunNotFoundError(ConveyorError):
    """Raised when a run id is not present in the ledger."""

    def __init__(self, run_id: str) -> None:
        self.run_id = run_id
        super().__init__(f"Run '{run_id}' not found")


class LedgerError(ConveyorError):
    """Raised when the run ledger cannot be read or written."""

    pass


class RunStateError(ConveyorError):
    """Raised when an operator command does not fit the run's current state.

    Examples
    --------
    Example usage::

        raise RunStateError("abc123", "run is still in progress")
    """

    def __init__(self, run_id: str, reason: str) -> None:
        self.run_id = run_id
        self.reason = reason
        super().__init__(f"Run '{run_id}': {reason}")


class HttpClientError(ConveyorError):
    """Raised by the HTTP driver on non-2xx responses or transport failures.

    ``status_code`` is None when no response was received at all.
    """

    def __init__(self, status_code: int | None, body: Any = None, message: str | None = None):
        self.status_code = status_code
        self.body = body
        super().__init__(message or f"HTTP {status_code}")
