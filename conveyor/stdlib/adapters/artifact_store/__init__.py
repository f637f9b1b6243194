"""Artifact repository adapters."""

from conveyor.stdlib.adapters.artifact_store.nexus_adapter import (
    NexusAdapter,
    NexusParams,
    first_snapshot_value,
)

__all__ = ["NexusAdapter", "NexusParams", "first_snapshot_value"]
