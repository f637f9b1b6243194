"""SQLite-backed Run Ledger with async support."""

from __future__ import annotations

import json
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime
from pathlib import Path
from typing import Any

import aiosqlite

from conveyor.kernel.domain.run import StageResult
from conveyor.kernel.exceptions import LedgerError, RunNotFoundError, RunStateError
from conveyor.kernel.logging import get_logger
from conveyor.kernel.ports.ledger import LedgerEntry, RunLedger, RunRecord

logger = get_logger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS runs (
    run_id TEXT PRIMARY KEY,
    pipeline_name TEXT NOT NULL,
    commit_ref TEXT NOT NULL,
    branch TEXT,
    build_number INTEGER NOT NULL,
    definition TEXT NOT NULL,
    created_at TEXT NOT NULL,
    finished_at TEXT,
    aborted INTEGER NOT NULL DEFAULT 0,
    attempt INTEGER NOT NULL DEFAULT 1
);
CREATE TABLE IF NOT EXISTS stage_results (
    sequence INTEGER PRIMARY KEY AUTOINCREMENT,
    run_id TEXT NOT NULL REFERENCES runs(run_id),
    stage TEXT NOT NULL,
    generation INTEGER NOT NULL,
    status TEXT NOT NULL,
    payload TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_stage_results_run ON stage_results(run_id, sequence);
CREATE TABLE IF NOT EXISTS build_numbers (
    pipeline_name TEXT PRIMARY KEY,
    last_number INTEGER NOT NULL
);
"""


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


class SqliteRunLedger(RunLedger):
    """Run Ledger persisted in a SQLite file.

    Rows in ``stage_results`` are only ever inserted. The ``runs`` header
    row is updated for the finish time, abort flag and retry attempt.

    Parameters
    ----------
    db_path : str | Path
        Database file, or ``":memory:"``
    timeout : float
        Connection busy timeout in seconds
    """

    def __init__(self, db_path: str | Path = ":memory:", timeout: float = 5.0) -> None:
        self.db_path = Path(db_path) if str(db_path) != ":memory:" else ":memory:"
        self.timeout = timeout
        self.connection: aiosqlite.Connection | None = None

    async def _ensure_database(self) -> aiosqlite.Connection:
        if self.connection is not None:
            return self.connection

        if isinstance(self.db_path, Path):
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.connection = await aiosqlite.connect(str(self.db_path), timeout=self.timeout)
        self.connection.row_factory = aiosqlite.Row
        if isinstance(self.db_path, Path):
            await self.connection.execute("PRAGMA journal_mode = WAL")
        await self.connection.execute("PRAGMA foreign_keys = ON")
        await self.connection.executescript(_SCHEMA)
        await self.connection.commit()
        return self.connection

    @asynccontextmanager
    async def _get_cursor(self) -> AsyncIterator[aiosqlite.Cursor]:
        connection = await self._ensure_database()
        async with connection.cursor() as cursor:
            try:
                yield cursor
                await connection.commit()
            except aiosqlite.Error as e:
                logger.error(f"Ledger database error: {e}")
                await connection.rollback()
                raise LedgerError(str(e)) from e

    async def anext_build_number(self, pipeline_name: str) -> int:
        async with self._get_cursor() as cursor:
            await cursor.execute(
                "INSERT INTO build_numbers (pipeline_name, last_number) VALUES (?, 1) "
                "ON CONFLICT(pipeline_name) DO UPDATE SET last_number = last_number + 1",
                (pipeline_name,),
            )
            await cursor.execute(
                "SELECT last_number FROM build_numbers WHERE pipeline_name = ?", (pipeline_name,)
            )
            row = await cursor.fetchone()
        return int(row[0]) if row else 1

    async def acreate_run(self, record: RunRecord) -> None:
        async with self._get_cursor() as cursor:
            await cursor.execute("SELECT 1 FROM runs WHERE run_id = ?", (record.run_id,))
            if await cursor.fetchone() is not None:
                raise LedgerError(f"Run '{record.run_id}' already exists")
            await cursor.execute(
                "INSERT INTO runs (run_id, pipeline_name, commit_ref, branch, build_number, "
                "definition, created_at, finished_at, aborted, attempt) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    record.run_id,
                    record.pipeline_name,
                    record.commit,
                    record.branch,
                    record.build_number,
                    json.dumps(record.definition),
                    _iso(record.created_at),
                    _iso(record.finished_at),
                    int(record.aborted),
                    record.attempt,
                ),
            )
            await cursor.execute(
                "INSERT INTO build_numbers (pipeline_name, last_number) VALUES (?, ?) "
                "ON CONFLICT(pipeline_name) DO UPDATE SET "
                "last_number = MAX(last_number, excluded.last_number)",
                (record.pipeline_name, record.build_number),
            )

    async def aappend(self, run_id: str, stage_name: str, result: StageResult) -> LedgerEntry:
        if stage_name != result.stage:
            raise LedgerError(f"Result for '{result.stage}' appended under '{stage_name}'")
        async with self._get_cursor() as cursor:
            await cursor.execute("SELECT 1 FROM runs WHERE run_id = ?", (run_id,))
            if await cursor.fetchone() is None:
                raise RunNotFoundError(run_id)
            await cursor.execute(
                "INSERT INTO stage_results (run_id, stage, generation, status, payload) "
                "VALUES (?, ?, ?, ?, ?)",
                (
                    run_id,
                    stage_name,
                    result.generation,
                    str(result.status),
                    result.model_dump_json(),
                ),
            )
            sequence = cursor.lastrowid or 0
        return LedgerEntry(sequence=sequence, run_id=run_id, result=result)

    async def aget(self, run_id: str) -> list[StageResult]:
        await self.aget_run(run_id)
        async with self._get_cursor() as cursor:
            await cursor.execute(
                "SELECT payload FROM stage_results WHERE run_id = ? ORDER BY sequence", (run_id,)
            )
            rows = await cursor.fetchall()
        return [StageResult.model_validate_json(row["payload"]) for row in rows]

    async def aget_run(self, run_id: str) -> RunRecord:
        async with self._get_cursor() as cursor:
            await cursor.execute("SELECT * FROM runs WHERE run_id = ?", (run_id,))
            row = await cursor.fetchone()
        if row is None:
            raise RunNotFoundError(run_id)
        return self._row_to_record(row)

    async def alist_runs(
        self, pipeline_name: str | None = None, limit: int = 20
    ) -> list[RunRecord]:
        query = "SELECT * FROM runs"
        params: tuple[Any, ...] = ()
        if pipeline_name is not None:
            query += " WHERE pipeline_name = ?"
            params = (pipeline_name,)
        query += " ORDER BY created_at DESC LIMIT ?"
        async with self._get_cursor() as cursor:
            await cursor.execute(query, (*params, limit))
            rows = await cursor.fetchall()
        return [self._row_to_record(row) for row in rows]

    async def aupdate_run(self, record: RunRecord) -> None:
        async with self._get_cursor() as cursor:
            await cursor.execute(
                "UPDATE runs SET finished_at = ?, aborted = ?, attempt = ? WHERE run_id = ?",
                (_iso(record.finished_at), int(record.aborted), record.attempt, record.run_id),
            )
            if cursor.rowcount == 0:
                raise RunNotFoundError(record.run_id)

    async def arequest_abort(self, run_id: str) -> RunRecord:
        async with self._get_cursor() as cursor:
            await cursor.execute(
                "UPDATE runs SET aborted = 1 WHERE run_id = ? AND finished_at IS NULL", (run_id,)
            )
            updated = cursor.rowcount
        if updated == 0:
            await self.aget_run(run_id)  # RunNotFoundError for unknown runs
            raise RunStateError(run_id, "run already finished")
        return await self.aget_run(run_id)

    async def afinish_run(self, run_id: str, finished_at: datetime, aborted: bool) -> None:
        async with self._get_cursor() as cursor:
            await cursor.execute(
                "UPDATE runs SET finished_at = ?, aborted = ? WHERE run_id = ?",
                (_iso(finished_at), int(aborted), run_id),
            )
            if cursor.rowcount == 0:
                raise RunNotFoundError(run_id)

    async def aclose(self) -> None:
        if self.connection is not None:
            await self.connection.close()
            self.connection = None

    @staticmethod
    def _row_to_record(row: aiosqlite.Row) -> RunRecord:
        return RunRecord(
            run_id=row["run_id"],
            pipeline_name=row["pipeline_name"],
            commit=row["commit_ref"],
            branch=row["branch"],
            build_number=row["build_number"],
            definition=json.loads(row["definition"]),
            created_at=datetime.fromisoformat(row["created_at"]),
            finished_at=datetime.fromisoformat(row["finished_at"]) if row["finished_at"] else None,
            aborted=bool(row["aborted"]),
            attempt=row["attempt"],
        )
