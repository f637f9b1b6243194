"""Port interface for the Run Ledger.

The ledger is append-only and keyed by run id. Every StageResult generation
is kept; the current view of a run is the latest generation per stage.
"""

from __future__ import annotations

from abc import abstractmethod
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Protocol, runtime_checkable

from conveyor.kernel.domain.run import RunStatus, StageResult, compute_run_status


@dataclass(slots=True)
class RunRecord:
    """Run header row: identity, trigger data and the pipeline document.

    Attributes
    ----------
    definition : dict[str, Any]
        The pipeline document the run was started from, so ``status`` and
        ``retry`` only need the run id
    aborted : bool
        Operator requested an abort
    attempt : int
        1 for the first execution, incremented by each retry
    """

    run_id: str
    pipeline_name: str
    commit: str
    branch: str | None = None
    build_number: int = 1
    definition: dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    finished_at: datetime | None = None
    aborted: bool = False
    attempt: int = 1

    @property
    def finished(self) -> bool:
        return self.finished_at is not None


@dataclass(frozen=True, slots=True)
class LedgerEntry:
    """One appended StageResult with its position in the run history."""

    sequence: int
    run_id: str
    result: StageResult


def latest_by_stage(results: Iterable[StageResult]) -> dict[str, StageResult]:
    """Latest generation of each stage, in first-appearance order."""
    latest: dict[str, StageResult] = {}
    for result in results:
        current = latest.get(result.stage)
        if current is None or result.generation >= current.generation:
            latest[result.stage] = result
    return latest


def status_of(results: Iterable[StageResult], aborted: bool = False) -> RunStatus:
    """Overall run status from an ordered history of StageResults."""
    return compute_run_status(latest_by_stage(results).values(), aborted)


@runtime_checkable
class RunLedger(Protocol):
    """Append-only store of runs and their StageResult generations."""

    @abstractmethod
    async def anext_build_number(self, pipeline_name: str) -> int:
        """Allocate the next build number for ``pipeline_name`` (starting at 1)."""
        ...

    @abstractmethod
    async def acreate_run(self, record: RunRecord) -> None:
        """Register a new run header."""
        ...

    @abstractmethod
    async def aappend(self, run_id: str, stage_name: str, result: StageResult) -> LedgerEntry:
        """Append a StageResult generation for ``stage_name``.

        Raises
        ------
        RunNotFoundError
            If the run does not exist
        """
        ...

    @abstractmethod
    async def aget(self, run_id: str) -> list[StageResult]:
        """Every StageResult appended for the run, in append order."""
        ...

    @abstractmethod
    async def aget_run(self, run_id: str) -> RunRecord:
        """Run header for ``run_id``."""
        ...

    @abstractmethod
    async def alist_runs(
        self, pipeline_name: str | None = None, limit: int = 20
    ) -> list[RunRecord]:
        """Most recent runs first."""
        ...

    @abstractmethod
    async def aupdate_run(self, record: RunRecord) -> None:
        """Persist changes to a run header (finish time, abort flag, attempt)."""
        ...

    @abstractmethod
    async def arequest_abort(self, run_id: str) -> RunRecord:
        """Flag an unfinished run as aborted; a running executor polls this flag.

        Only the abort flag is written, and only while the run has no finish
        time, so a run that finishes concurrently is never reopened.

        Raises
        ------
        RunNotFoundError
            If the run does not exist
        RunStateError
            If the run already finished
        """
        ...

    @abstractmethod
    async def afinish_run(self, run_id: str, finished_at: datetime, aborted: bool) -> None:
        """Record the finish time and final abort flag, leaving the attempt untouched."""
        ...

    async def alatest(self, run_id: str) -> dict[str, StageResult]:
        """Latest StageResult generation of each stage."""
        return latest_by_stage(await self.aget(run_id))

    async def alatest_status(self, run_id: str) -> RunStatus:
        """Overall run status from the latest generations and the abort flag."""
        record = await self.aget_run(run_id)
        return status_of(await self.aget(run_id), record.aborted)

    async def aclose(self) -> None:
        """Release backend resources."""
        return None
