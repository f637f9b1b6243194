"""Load ``kind: Pipeline`` YAML documents into PipelineDefinitions.

Every problem with a document surfaces here, before a Run exists: malformed
YAML, schema violations, unknown adapters, invalid adapter parameters,
duplicate stages, unknown dependencies and cycles all raise a
:class:`~conveyor.kernel.exceptions.PipelineDefinitionError`.
"""

from __future__ import annotations

from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from conveyor.kernel.domain.dag import AdapterInvocation, PipelineDefinition, StageSpec
from conveyor.kernel.domain.pipeline_config import PipelineDocument
from conveyor.kernel.exceptions import PipelineDefinitionError, UnknownAdapterError
from conveyor.kernel.logging import get_logger
from conveyor.stdlib.adapters.registry import AdapterRegistry

logger = get_logger(__name__)


class PipelineLoader:
    """Build validated pipeline definitions from YAML.

    Parameters
    ----------
    registry : AdapterRegistry | Mapping
        Adapters the document may reference; stage parameters are validated
        against each adapter's ``Params`` model

    Examples
    --------
    Example usage::

        loader = PipelineLoader(default_registry())
        definition, document = loader.load_file("pipeline.yaml")
    """

    def __init__(self, registry: AdapterRegistry | Mapping[str, Any]) -> None:
        if not isinstance(registry, AdapterRegistry):
            registry = AdapterRegistry(registry)
        self.registry = registry

    def load_file(self, path: str | Path) -> tuple[PipelineDefinition, dict[str, Any]]:
        """Load a pipeline document from ``path``.

        Raises
        ------
        PipelineDefinitionError
            If the file is missing or the document is invalid
        """
        file_path = Path(path)
        try:
            content = file_path.read_text(encoding="utf-8")
        except OSError as e:
            raise PipelineDefinitionError(f"Cannot read pipeline file {file_path}: {e}") from e
        logger.debug("Loading pipeline from {}", file_path)
        return self.load_string(content)

    def load_string(self, content: str) -> tuple[PipelineDefinition, dict[str, Any]]:
        try:
            data = yaml.safe_load(content)
        except yaml.YAMLError as e:
            raise PipelineDefinitionError(f"Invalid YAML: {e}") from e
        if not isinstance(data, dict):
            raise PipelineDefinitionError(
                f"Pipeline document must be a mapping, got {type(data).__name__}"
            )
        return self.load_document(data)

    def load_document(
        self, data: Mapping[str, Any]
    ) -> tuple[PipelineDefinition, dict[str, Any]]:
        """Validate an already-parsed document.

        Returns the definition plus the normalized document, which is what
        gets stored with each Run so it can be rebuilt for ``retry``.
        """
        try:
            document = PipelineDocument.model_validate(dict(data))
        except ValidationError as e:
            raise PipelineDefinitionError(_format_errors(e)) from e

        specs: list[StageSpec] = []
        for stage in document.spec.stages:
            if stage.adapter not in self.registry:
                raise UnknownAdapterError(stage.name, stage.adapter, self.registry.ids())
            params = self.registry.validate_params(stage.name, stage.adapter, stage.params)
            capability = self.registry.capability(stage.adapter)
            specs.append(
                StageSpec(
                    name=stage.name,
                    invocation=AdapterInvocation(
                        tool_id=stage.adapter,
                        params=params,
                        credentials=tuple(stage.credentials),
                    ),
                    deps=frozenset(stage.depends_on),
                    gating=stage.gating,
                    timeout=stage.timeout,
                    capability=str(capability),
                )
            )

        definition = PipelineDefinition.define(specs, name=document.name)
        logger.debug(
            "Loaded pipeline '{}' with {} stages in {} batches",
            definition.name,
            len(definition),
            len(definition.batch_names()),
        )
        return definition, document.to_dict()


def _format_errors(error: ValidationError) -> str:
    lines = ["Invalid pipeline document:"]
    for err in error.errors():
        location = ".".join(str(part) for part in err["loc"]) or "<root>"
        lines.append(f"  {location}: {err['msg']}")
    return "\n".join(lines)
