"""In-memory artifact repository with the same idempotency contract as Nexus."""

from __future__ import annotations

from collections.abc import Mapping
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from conveyor.kernel.logging import get_logger
from conveyor.kernel.ports.adapter import AdapterOutcome, Capability
from conveyor.stdlib.adapters.base import AdapterParams, ConveyorAdapter

if TYPE_CHECKING:
    from conveyor.kernel.credentials import CredentialHandle
    from conveyor.kernel.domain.artifacts import ArtifactReference
    from conveyor.kernel.ports.adapter import InvocationContext

logger = get_logger(__name__)


class MemoryStoreParams(AdapterParams):
    repository: str = "memory"


class MemoryArtifactStore(
    ConveyorAdapter, tool_id="memory_artifact_store", capability=Capability.ARTIFACT_STORE
):
    """Artifact store keeping published references in a dict.

    Publishing the same artifact (same coordinates and checksum, or the same
    fingerprint when no checksum is known) twice returns the first reference.
    Snapshots get a timestamped ``resolved_version`` the way a maven2
    repository assigns one.
    """

    Params = MemoryStoreParams

    def __init__(self, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self._published: dict[tuple[str, ...], ArtifactReference] = {}
        self._snapshot_builds: dict[str, int] = {}
        self.uploads = 0

    def publish(self, artifact: ArtifactReference) -> tuple[ArtifactReference, bool]:
        """Store ``artifact``; returns the stored reference and whether it was new."""
        key = (
            artifact.group,
            artifact.name,
            artifact.version,
            artifact.packaging,
            artifact.checksum or artifact.fingerprint,
        )
        if key in self._published:
            return self._published[key], False

        resolved_version = artifact.version
        if artifact.is_snapshot:
            build = self._snapshot_builds.get(artifact.coordinates, 0) + 1
            self._snapshot_builds[artifact.coordinates] = build
            timestamp = datetime.now(UTC).strftime("%Y%m%d.%H%M%S")
            resolved_version = f"{artifact.version.removesuffix('-SNAPSHOT')}-{timestamp}-{build}"

        stored = artifact.resolved(resolved_version)
        self._published[key] = stored
        self.uploads += 1
        return stored, True

    @property
    def artifacts(self) -> list[ArtifactReference]:
        return list(self._published.values())

    async def ainvoke(
        self,
        params: Mapping[str, Any],
        credentials: Mapping[str, CredentialHandle],
        context: InvocationContext,
    ) -> AdapterOutcome:
        p: MemoryStoreParams = self.parse_params(params)
        artifact = context.upstream_artifact()
        stored, created = self.publish(artifact)
        if not created:
            logger.info(f"{artifact.coordinates} already published, not uploading")
        return AdapterOutcome.success(
            artifact=stored,
            metrics={
                "repository": p.repository,
                "repository_path": stored.repository_path,
                "resolved_version": stored.resolved_version or stored.version,
                "already_published": not created,
            },
        )
