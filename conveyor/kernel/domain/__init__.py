"""Domain models: pipeline graph, runs, stage results and artifact identity."""

from conveyor.kernel.domain.artifacts import ArtifactReference, ImageReference, image_tag
from conveyor.kernel.domain.dag import AdapterInvocation, PipelineDefinition, StageSpec
from conveyor.kernel.domain.pipeline_config import PipelineDocument, StageDocument
from conveyor.kernel.domain.run import (
    Run,
    RunStatus,
    StageResult,
    StageStatus,
    compute_run_status,
    exit_code_for,
)

__all__ = [
    "AdapterInvocation",
    "ArtifactReference",
    "ImageReference",
    "PipelineDefinition",
    "PipelineDocument",
    "Run",
    "RunStatus",
    "StageDocument",
    "StageResult",
    "StageSpec",
    "StageStatus",
    "compute_run_status",
    "exit_code_for",
    "image_tag",
]
