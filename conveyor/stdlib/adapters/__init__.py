"""Built-in tool adapters.

Importing this package registers every built-in adapter class with
:class:`~conveyor.stdlib.adapters.base.ConveyorAdapter`; use
:func:`default_registry` to get one instance of each.
"""

from conveyor.stdlib.adapters.analysis import SonarQubeAdapter
from conveyor.stdlib.adapters.artifact_store import NexusAdapter
from conveyor.stdlib.adapters.base import AdapterParams, ConveyorAdapter
from conveyor.stdlib.adapters.build import MavenAdapter
from conveyor.stdlib.adapters.container import (
    DockerBuildAdapter,
    DockerDeployAdapter,
    DockerPushAdapter,
)
from conveyor.stdlib.adapters.memory import (
    MemoryArtifactStore,
    MemoryImageBuilder,
    MemoryRegistry,
    MockAdapter,
)
from conveyor.stdlib.adapters.registry import AdapterRegistry, default_registry
from conveyor.stdlib.adapters.scm import GitAdapter

__all__ = [
    "AdapterParams",
    "AdapterRegistry",
    "ConveyorAdapter",
    "DockerBuildAdapter",
    "DockerDeployAdapter",
    "DockerPushAdapter",
    "GitAdapter",
    "MavenAdapter",
    "MemoryArtifactStore",
    "MemoryImageBuilder",
    "MemoryRegistry",
    "MockAdapter",
    "NexusAdapter",
    "SonarQubeAdapter",
    "default_registry",
]
