"""Pipeline document compiler."""

from conveyor.compiler.pipeline_loader import PipelineLoader

__all__ = ["PipelineLoader"]
