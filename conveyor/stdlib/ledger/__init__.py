"""Run Ledger backends."""

from __future__ import annotations

from pathlib import Path

from conveyor.kernel.ports.ledger import RunLedger
from conveyor.stdlib.ledger.memory import InMemoryRunLedger
from conveyor.stdlib.ledger.sqlite import SqliteRunLedger


def open_ledger(path: str | Path | None) -> RunLedger:
    """SQLite ledger at ``path``, or an in-memory one when no path is configured."""
    if path is None or str(path) == ":memory:":
        return InMemoryRunLedger()
    return SqliteRunLedger(path)


__all__ = ["InMemoryRunLedger", "SqliteRunLedger", "open_ledger"]
