"""Pydantic models of the ``kind: Pipeline`` YAML document.

These models validate the document's shape only; adapter ids and adapter
parameters are checked by :class:`~conveyor.compiler.pipeline_loader.PipelineLoader`
against the adapter registry.
"""

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

API_VERSION = "conveyor/v1"


class StageDocument(BaseModel):
    """One entry of ``spec.stages``."""

    model_config = ConfigDict(extra="forbid")

    name: str = Field(min_length=1, description="Unique stage name")
    adapter: str = Field(min_length=1, description="Registered adapter (tool) id")
    depends_on: list[str] = Field(
        default_factory=list, description="Stages that must finish successfully first"
    )
    gating: bool = Field(
        default=False,
        description="A failure halts all downstream stages (always true for analysis adapters)",
    )
    params: dict[str, Any] = Field(default_factory=dict, description="Adapter parameters")
    credentials: list[str] = Field(
        default_factory=list, description="Credential names the stage may resolve"
    )
    timeout: float | None = Field(default=None, gt=0, description="Per-stage timeout in seconds")

    @field_validator("depends_on", "credentials", mode="before")
    @classmethod
    def _listify(cls, value: Any) -> Any:
        # YAML allows a bare string
        if isinstance(value, str):
            return [value]
        if value is None:
            return []
        return value


class PipelineMetadata(BaseModel):
    model_config = ConfigDict(extra="allow")

    name: str = Field(min_length=1)
    description: str | None = None


class PipelineSpec(BaseModel):
    model_config = ConfigDict(extra="forbid")

    stages: list[StageDocument] = Field(min_length=1)


class PipelineDocument(BaseModel):
    """A complete pipeline document.

    Examples
    --------
    >>> doc = PipelineDocument.model_validate({
    ...     "apiVersion": "conveyor/v1",
    ...     "kind": "Pipeline",
    ...     "metadata": {"name": "app"},
    ...     "spec": {"stages": [{"name": "checkout", "adapter": "git"}]},
    ... })
    >>> doc.spec.stages[0].depends_on
    []
    """

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    api_version: Literal["conveyor/v1"] = Field(default=API_VERSION, alias="apiVersion")
    kind: Literal["Pipeline"] = "Pipeline"
    metadata: PipelineMetadata
    spec: PipelineSpec

    @property
    def name(self) -> str:
        return self.metadata.name

    def to_dict(self) -> dict[str, Any]:
        """Plain mapping suitable for storing with a Run and re-loading later."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)
