"""In-memory Run Ledger for tests and single-process use."""

from __future__ import annotations

import dataclasses
from collections import defaultdict
from datetime import datetime

from conveyor.kernel.domain.run import StageResult
from conveyor.kernel.exceptions import LedgerError, RunNotFoundError, RunStateError
from conveyor.kernel.ports.ledger import LedgerEntry, RunLedger, RunRecord


class InMemoryRunLedger(RunLedger):
    """Ledger kept in process memory.

    Run headers are copied in and out so callers cannot mutate stored state
    behind the ledger's back.
    """

    def __init__(self) -> None:
        self._runs: dict[str, RunRecord] = {}
        self._entries: dict[str, list[LedgerEntry]] = defaultdict(list)
        self._build_numbers: dict[str, int] = defaultdict(int)
        self._sequence = 0

    async def anext_build_number(self, pipeline_name: str) -> int:
        self._build_numbers[pipeline_name] += 1
        return self._build_numbers[pipeline_name]

    async def acreate_run(self, record: RunRecord) -> None:
        if record.run_id in self._runs:
            raise LedgerError(f"Run '{record.run_id}' already exists")
        self._runs[record.run_id] = dataclasses.replace(record)
        self._build_numbers[record.pipeline_name] = max(
            self._build_numbers[record.pipeline_name], record.build_number
        )

    async def aappend(self, run_id: str, stage_name: str, result: StageResult) -> LedgerEntry:
        if run_id not in self._runs:
            raise RunNotFoundError(run_id)
        if stage_name != result.stage:
            raise LedgerError(f"Result for '{result.stage}' appended under '{stage_name}'")
        self._sequence += 1
        entry = LedgerEntry(sequence=self._sequence, run_id=run_id, result=result)
        self._entries[run_id].append(entry)
        return entry

    async def aget(self, run_id: str) -> list[StageResult]:
        if run_id not in self._runs:
            raise RunNotFoundError(run_id)
        return [entry.result for entry in self._entries[run_id]]

    async def aget_run(self, run_id: str) -> RunRecord:
        try:
            return dataclasses.replace(self._runs[run_id])
        except KeyError:
            raise RunNotFoundError(run_id) from None

    async def alist_runs(
        self, pipeline_name: str | None = None, limit: int = 20
    ) -> list[RunRecord]:
        runs = [
            dataclasses.replace(r)
            for r in self._runs.values()
            if pipeline_name is None or r.pipeline_name == pipeline_name
        ]
        runs.sort(key=lambda r: r.created_at, reverse=True)
        return runs[:limit]

    async def aupdate_run(self, record: RunRecord) -> None:
        if record.run_id not in self._runs:
            raise RunNotFoundError(record.run_id)
        self._runs[record.run_id] = dataclasses.replace(record)

    async def arequest_abort(self, run_id: str) -> RunRecord:
        stored = self._runs.get(run_id)
        if stored is None:
            raise RunNotFoundError(run_id)
        if stored.finished:
            raise RunStateError(run_id, "run already finished")
        stored.aborted = True
        return dataclasses.replace(stored)

    async def afinish_run(self, run_id: str, finished_at: datetime, aborted: bool) -> None:
        stored = self._runs.get(run_id)
        if stored is None:
            raise RunNotFoundError(run_id)
        stored.finished_at = finished_at
        stored.aborted = aborted
