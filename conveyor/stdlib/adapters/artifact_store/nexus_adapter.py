"""Nexus Repository Manager adapter.

Publishing is idempotent: an asset whose SHA-1 already exists under the
same coordinates is not uploaded again. Snapshot versions are resolved to
the timestamped version the repository assigned by reading the first
``<value>`` of the version's ``maven-metadata.xml``, which is also what
the application image build downloads.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from pathlib import Path
from typing import TYPE_CHECKING, Any

from conveyor.kernel.config.models import ENDPOINT_ARTIFACT_REPOSITORY, ENDPOINT_ARTIFACT_STORE
from conveyor.kernel.domain.artifacts import ArtifactReference, group_path
from conveyor.kernel.exceptions import (
    AccessDeniedError,
    HttpClientError,
    MissingInputError,
    ToolUnavailableError,
)
from conveyor.kernel.logging import get_logger
from conveyor.kernel.ports.adapter import AdapterOutcome, Capability
from conveyor.stdlib.adapters.base import (
    AdapterParams,
    ConveyorAdapter,
    require_credential,
    split_user_password,
)

if TYPE_CHECKING:
    from conveyor.drivers.http_client import HttpClientDriver
    from conveyor.kernel.credentials import CredentialHandle
    from conveyor.kernel.ports.adapter import InvocationContext

logger = get_logger(__name__)

SNAPSHOTS_REPOSITORY = "maven-snapshots"
RELEASES_REPOSITORY = "maven-releases"
_VALUE_RE = re.compile(r"<value>\s*([^<\s]+)\s*</value>")


class NexusParams(AdapterParams):
    """Parameters of the ``nexus`` adapter.

    ``credential`` names a ``user:password`` credential.
    """

    url: str | None = None
    repository: str | None = None
    credential: str | None = "nexus-credentials"


def first_snapshot_value(metadata_xml: str) -> str | None:
    """First ``<value>`` element of a ``maven-metadata.xml`` document.

    >>> first_snapshot_value("<snapshotVersion><value>1.0-20240101.120000-3</value>")
    '1.0-20240101.120000-3'
    """
    match = _VALUE_RE.search(metadata_xml)
    return match.group(1) if match else None


class NexusAdapter(ConveyorAdapter, tool_id="nexus", capability=Capability.ARTIFACT_STORE):
    """Publish the upstream artifact to a Nexus maven2 repository."""

    Params = NexusParams

    async def ainvoke(
        self,
        params: Mapping[str, Any],
        credentials: Mapping[str, CredentialHandle],
        context: InvocationContext,
    ) -> AdapterOutcome:
        p: NexusParams = self.parse_params(params)
        artifact = context.upstream_artifact()
        base_url = context.endpoint(ENDPOINT_ARTIFACT_STORE, p.url)
        repository = (
            p.repository
            or context.endpoints.get(ENDPOINT_ARTIFACT_REPOSITORY)
            or (SNAPSHOTS_REPOSITORY if artifact.is_snapshot else RELEASES_REPOSITORY)
        )
        handle = require_credential(credentials, p.credential)
        user, password = split_user_password(handle.reveal()) if handle else (None, None)

        http = self.http_factory(
            base_url=base_url, basic_auth_username=user, basic_auth_password=password
        )
        try:
            async with http:
                existing = await self._find_existing(http, repository, artifact)
                if existing is None:
                    context.check_cancelled()
                    await self._upload(http, repository, artifact)
                    logger.info(f"Uploaded {artifact.coordinates} to {repository}")
                else:
                    logger.info(f"{artifact.coordinates} already in {repository}, not uploading")
                resolved_version = await self._resolve_version(http, repository, artifact)
        except HttpClientError as e:
            raise _classify(e, base_url) from e

        published = artifact.resolved(resolved_version)
        return AdapterOutcome.success(
            artifact=published,
            metrics={
                "repository": repository,
                "repository_path": published.repository_path,
                "resolved_version": resolved_version,
                "already_published": existing is not None,
                "download_url": f"{base_url.rstrip('/')}/repository/{repository}/"
                f"{published.repository_path}",
            },
        )

    async def _find_existing(
        self, http: HttpClientDriver, repository: str, artifact: ArtifactReference
    ) -> dict[str, Any] | None:
        if artifact.checksum is None and artifact.is_snapshot:
            return None
        query: dict[str, Any] = {
            "repository": repository,
            "maven.groupId": artifact.group,
            "maven.artifactId": artifact.name,
            "maven.baseVersion": artifact.version,
            "maven.extension": artifact.packaging,
        }
        if artifact.checksum:
            query["sha1"] = artifact.checksum
        response = await http.aget("/service/rest/v1/search/assets", params=query)
        items = response["body"].get("items", []) if isinstance(response["body"], dict) else []
        return items[0] if items else None

    async def _upload(
        self, http: HttpClientDriver, repository: str, artifact: ArtifactReference
    ) -> None:
        if not artifact.file_name:
            raise MissingInputError(f"Artifact {artifact.coordinates} has no file to upload")
        path = Path(artifact.file_name)
        try:
            content = path.read_bytes()
        except OSError as e:
            raise MissingInputError(f"Cannot read artifact file {path}: {e}") from e
        await http.apost(
            "/service/rest/v1/components",
            params={"repository": repository},
            data={
                "maven2.groupId": artifact.group,
                "maven2.artifactId": artifact.name,
                "maven2.version": artifact.version,
                "maven2.generate-pom": "true",
                "maven2.packaging": artifact.packaging,
                "maven2.asset1.extension": artifact.packaging,
            },
            files={"maven2.asset1": (path.name, content)},
        )

    async def _resolve_version(
        self, http: HttpClientDriver, repository: str, artifact: ArtifactReference
    ) -> str:
        if not artifact.is_snapshot:
            return artifact.version
        metadata_path = (
            f"/repository/{repository}/{group_path(artifact.group, artifact.name)}"
            f"/{artifact.version}/maven-metadata.xml"
        )
        response = await http.aget(metadata_path)
        resolved = first_snapshot_value(str(response["body"]))
        if resolved is None:
            raise ToolUnavailableError(f"No snapshot version listed in {metadata_path}")
        return resolved


def _classify(error: HttpClientError, base_url: str) -> Exception:
    if error.status_code in (401, 403):
        return AccessDeniedError(f"Nexus at {base_url} rejected the credentials ({error})")
    return ToolUnavailableError(f"Nexus at {base_url} unavailable: {error}")
