"""Port interfaces: tool adapters, run ledger and secret store."""

from conveyor.kernel.ports.adapter import (
    AdapterOutcome,
    Capability,
    InvocationContext,
    OutcomeStatus,
    ToolAdapter,
)
from conveyor.kernel.ports.ledger import LedgerEntry, RunLedger, RunRecord
from conveyor.kernel.ports.secret import SecretStore

__all__ = [
    "AdapterOutcome",
    "Capability",
    "InvocationContext",
    "LedgerEntry",
    "OutcomeStatus",
    "RunLedger",
    "RunRecord",
    "SecretStore",
    "ToolAdapter",
]
