"""conveyor: CI/CD pipeline orchestration.

Runs a DAG of stages (checkout, static analysis gate, build and test,
artifact publish, image build, image push, deploy) against external tools,
recording every stage outcome in a run ledger.
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("conveyor-ci")
except PackageNotFoundError:
    __version__ = "0.0.0.dev0"

from conveyor.compiler.pipeline_loader import PipelineLoader
from conveyor.kernel.domain.dag import AdapterInvocation, PipelineDefinition, StageSpec
from conveyor.kernel.domain.run import Run, RunStatus, StageResult, StageStatus
from conveyor.kernel.orchestration.executor import PipelineExecutor
from conveyor.kernel.trigger import PushTrigger
from conveyor.stdlib.adapters import default_registry

__all__ = [
    "AdapterInvocation",
    "PipelineDefinition",
    "PipelineExecutor",
    "PipelineLoader",
    "PushTrigger",
    "Run",
    "RunStatus",
    "StageResult",
    "StageSpec",
    "StageStatus",
    "__version__",
    "default_registry",
]
