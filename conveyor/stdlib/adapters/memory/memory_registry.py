"""In-memory image registry; pushing an existing tag is a no-op."""

from __future__ import annotations

import hashlib
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from conveyor.kernel.ports.adapter import AdapterOutcome, Capability
from conveyor.stdlib.adapters.base import ConveyorAdapter

if TYPE_CHECKING:
    from conveyor.kernel.credentials import CredentialHandle
    from conveyor.kernel.domain.artifacts import ImageReference
    from conveyor.kernel.ports.adapter import InvocationContext


class MemoryRegistry(ConveyorAdapter, tool_id="memory_registry", capability=Capability.REGISTRY):
    """Registry keyed by ``repository:tag``."""

    def __init__(self, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.images: dict[str, ImageReference] = {}
        self.pushes = 0

    def push(self, image: ImageReference) -> tuple[ImageReference, bool]:
        """Store ``image``; returns the stored reference and whether the tag was new."""
        if image.full_name in self.images:
            return self.images[image.full_name], False
        seed = f"{image.full_name}@{image.artifact_fingerprint or ''}".encode()
        stored = image.model_copy(update={"digest": f"sha256:{hashlib.sha256(seed).hexdigest()}"})
        self.images[image.full_name] = stored
        self.pushes += 1
        return stored, True

    async def ainvoke(
        self,
        params: Mapping[str, Any],
        credentials: Mapping[str, CredentialHandle],
        context: InvocationContext,
    ) -> AdapterOutcome:
        image = context.upstream_image()
        stored, created = self.push(image)
        return AdapterOutcome.success(
            image=stored,
            metrics={
                "image": stored.full_name,
                "digest": stored.digest or "",
                "already_present": not created,
            },
        )
