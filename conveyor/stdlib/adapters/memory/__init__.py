"""In-process adapters for tests and dry runs."""

from conveyor.stdlib.adapters.memory.memory_artifact_store import MemoryArtifactStore
from conveyor.stdlib.adapters.memory.memory_image_builder import MemoryImageBuilder
from conveyor.stdlib.adapters.memory.memory_registry import MemoryRegistry
from conveyor.stdlib.adapters.memory.mock_adapter import MockAdapter, MockCall, MockParams

__all__ = [
    "MemoryArtifactStore",
    "MemoryImageBuilder",
    "MemoryRegistry",
    "MockAdapter",
    "MockCall",
    "MockParams",
]
