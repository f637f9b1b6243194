"""Image builder that only computes the deterministic image reference."""

from __future__ import annotations

from collections.abc import Mapping
from typing import TYPE_CHECKING, Any, Literal

from conveyor.kernel.domain.artifacts import ImageReference
from conveyor.kernel.ports.adapter import AdapterOutcome, Capability
from conveyor.stdlib.adapters.base import AdapterParams, ConveyorAdapter

if TYPE_CHECKING:
    from conveyor.kernel.credentials import CredentialHandle
    from conveyor.kernel.ports.adapter import InvocationContext


class MemoryImageParams(AdapterParams):
    image: str
    tag_from: Literal["build_number", "version"] = "build_number"


class MemoryImageBuilder(
    ConveyorAdapter, tool_id="memory_image_builder", capability=Capability.IMAGE_BUILDER
):
    Params = MemoryImageParams

    def __init__(self, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.built: list[ImageReference] = []

    async def ainvoke(
        self,
        params: Mapping[str, Any],
        credentials: Mapping[str, CredentialHandle],
        context: InvocationContext,
    ) -> AdapterOutcome:
        p: MemoryImageParams = self.parse_params(params)
        artifact = context.upstream_artifact()
        tag_source = context.build_number if p.tag_from == "build_number" else artifact.version
        image = ImageReference.for_build(
            p.image, tag_source, context.commit_hash, artifact.fingerprint
        )
        self.built.append(image)
        return AdapterOutcome.success(image=image, metrics={"image": image.full_name})
