"""Run and StageResult domain models.

A Run is one execution of a PipelineDefinition for one commit. It owns one
StageResult per stage and is mutated only by the executor; once every stage
is resolved (or the run is halted/aborted) it is sealed and further
mutation raises :class:`RunSealedError`.

StageResults are immutable values. Status changes produce new instances and
only follow ``pending -> running -> success|failure`` or ``pending -> skipped``.
"""

from __future__ import annotations

import uuid
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from conveyor.kernel.domain.artifacts import ArtifactReference, ImageReference
from conveyor.kernel.exceptions import ErrorKind, ExitCode, InvalidTransitionError, RunSealedError

MetricValue = float | int | str | bool


class StageStatus(StrEnum):
    """Lifecycle status of one stage within a run."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    FAILURE = "failure"
    SKIPPED = "skipped"

    @property
    def is_resolved(self) -> bool:
        return self in (StageStatus.SUCCESS, StageStatus.FAILURE, StageStatus.SKIPPED)


class RunStatus(StrEnum):
    """Overall status of a run.

    UNSTABLE means a non-gating stage failed while nothing was halted.
    """

    RUNNING = "running"
    SUCCESS = "success"
    UNSTABLE = "unstable"
    FAILURE = "failure"
    ABORTED = "aborted"


_ALLOWED_TRANSITIONS: dict[StageStatus, frozenset[StageStatus]] = {
    StageStatus.PENDING: frozenset({StageStatus.RUNNING, StageStatus.SKIPPED}),
    StageStatus.RUNNING: frozenset({StageStatus.SUCCESS, StageStatus.FAILURE}),
    StageStatus.SUCCESS: frozenset(),
    StageStatus.FAILURE: frozenset(),
    StageStatus.SKIPPED: frozenset(),
}


def _now() -> datetime:
    return datetime.now(UTC)


class StageResult(BaseModel):
    """Outcome of one generation of one stage.

    Attributes
    ----------
    stage : str
        Stage name
    generation : int
        1 for the first execution; incremented by every operator retry
    gating : bool
        Whether the stage was declared gating
    error_kind : ErrorKind | None
        Set on failure
    log_ref : str | None
        Reference to captured adapter output
    """

    model_config = ConfigDict(frozen=True)

    stage: str
    status: StageStatus = StageStatus.PENDING
    generation: int = 1
    gating: bool = False
    started_at: datetime | None = None
    finished_at: datetime | None = None
    attempts: int = 0
    error_kind: ErrorKind | None = None
    message: str | None = None
    metrics: dict[str, MetricValue] = Field(default_factory=dict)
    artifact: ArtifactReference | None = None
    image: ImageReference | None = None
    log_ref: str | None = None
    skipped_reason: str | None = None

    def _transition(self, to_status: StageStatus, **update: Any) -> StageResult:
        if to_status not in _ALLOWED_TRANSITIONS[self.status]:
            raise InvalidTransitionError(self.stage, self.status, to_status)
        return self.model_copy(update={"status": to_status, **update})

    def start(self) -> StageResult:
        return self._transition(StageStatus.RUNNING, started_at=_now())

    def succeed(
        self,
        *,
        metrics: Mapping[str, MetricValue] | None = None,
        artifact: ArtifactReference | None = None,
        image: ImageReference | None = None,
        log_ref: str | None = None,
        attempts: int = 1,
    ) -> StageResult:
        return self._transition(
            StageStatus.SUCCESS,
            finished_at=_now(),
            metrics=dict(metrics or {}),
            artifact=artifact,
            image=image,
            log_ref=log_ref,
            attempts=attempts,
        )

    def fail(
        self,
        kind: ErrorKind,
        message: str,
        *,
        metrics: Mapping[str, MetricValue] | None = None,
        log_ref: str | None = None,
        attempts: int = 1,
    ) -> StageResult:
        return self._transition(
            StageStatus.FAILURE,
            finished_at=_now(),
            error_kind=kind,
            message=message,
            metrics=dict(metrics or {}),
            log_ref=log_ref,
            attempts=attempts,
        )

    def skip(self, reason: str) -> StageResult:
        return self._transition(StageStatus.SKIPPED, skipped_reason=reason, finished_at=_now())

    def next_generation(self) -> StageResult:
        """Fresh pending result for an operator retry of this stage."""
        return StageResult(stage=self.stage, gating=self.gating, generation=self.generation + 1)

    @property
    def fails_run(self) -> bool:
        """True when this failure fails the whole run instead of leaving it unstable."""
        if self.status is not StageStatus.FAILURE:
            return False
        return self.gating or (self.error_kind is not None and self.error_kind.halts_pipeline)

    @property
    def duration_ms(self) -> float | None:
        if self.started_at is None or self.finished_at is None:
            return None
        return (self.finished_at - self.started_at).total_seconds() * 1000


def compute_run_status(results: Iterable[StageResult], aborted: bool = False) -> RunStatus:
    """Overall status from the latest StageResult of each stage.

    failure if any gating stage failed; running while stages are unresolved;
    unstable if only non-gating stages failed; success otherwise.
    """
    latest = list(results)
    if aborted:
        return RunStatus.ABORTED
    if any(r.fails_run for r in latest):
        return RunStatus.FAILURE
    if any(not r.status.is_resolved for r in latest):
        return RunStatus.RUNNING
    if any(r.status is StageStatus.FAILURE for r in latest):
        return RunStatus.UNSTABLE
    return RunStatus.SUCCESS


def exit_code_for(results: Iterable[StageResult], aborted: bool = False) -> ExitCode:
    """Process exit code for a run outcome.

    A quality gate failure wins over unavailable infrastructure, which wins
    over any other stage failure. Aborted runs report a stage failure.
    """
    latest = list(results)
    if aborted:
        return ExitCode.STAGE_FAILURE
    failed = [r for r in latest if r.status is StageStatus.FAILURE]
    if not failed:
        return ExitCode.SUCCESS
    kinds = {r.error_kind for r in failed if r.error_kind is not None}
    if ErrorKind.QUALITY_GATE_FAILED in kinds:
        return ExitCode.QUALITY_GATE_FAILURE
    if any(kind.is_infrastructure for kind in kinds):
        return ExitCode.INFRA_UNAVAILABLE
    return ExitCode.STAGE_FAILURE


def new_run_id() -> str:
    return uuid.uuid4().hex[:12]


@dataclass(slots=True)
class Run:
    """One execution instance of a pipeline for one commit."""

    run_id: str
    pipeline_name: str
    commit: str
    branch: str | None = None
    build_number: int = 1
    attempt: int = 1
    started_at: datetime = field(default_factory=_now)
    finished_at: datetime | None = None
    results: dict[str, StageResult] = field(default_factory=dict)
    aborted: bool = False
    sealed: bool = False

    def record(self, result: StageResult) -> None:
        """Replace the current result of ``result.stage``."""
        if self.sealed:
            raise RunSealedError(self.run_id)
        if result.stage not in self.results:
            raise KeyError(f"Stage '{result.stage}' is not part of run '{self.run_id}'")
        self.results[result.stage] = result

    def mark_aborted(self) -> None:
        if self.sealed:
            raise RunSealedError(self.run_id)
        self.aborted = True

    def seal(self) -> None:
        if not self.sealed:
            self.finished_at = _now()
            self.sealed = True

    @property
    def status(self) -> RunStatus:
        return compute_run_status(self.results.values(), self.aborted)

    @property
    def exit_code(self) -> ExitCode:
        return exit_code_for(self.results.values(), self.aborted)

    def failed_stages(self) -> list[StageResult]:
        return [r for r in self.results.values() if r.status is StageStatus.FAILURE]
