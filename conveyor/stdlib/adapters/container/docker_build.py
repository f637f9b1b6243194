"""Image builder adapter (``docker build``).

The image tag is deterministic, ``{image}:{buildNumberOrVersion}-{shortCommit}``,
so the same build of the same commit always produces the same reference.
The application artifact is not copied into the build context; its
repository coordinates are passed as build arguments and the Dockerfile
downloads it, as the application's deployment image always has.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import TYPE_CHECKING, Any, Literal

from pydantic import Field

from conveyor.kernel.config.models import ENDPOINT_ARTIFACT_REPOSITORY, ENDPOINT_ARTIFACT_STORE
from conveyor.kernel.domain.artifacts import ImageReference, group_path
from conveyor.kernel.exceptions import BuildFailedError
from conveyor.kernel.logging import get_logger
from conveyor.kernel.ports.adapter import AdapterOutcome, Capability
from conveyor.stdlib.adapters.base import (
    SOURCE_DIR,
    AdapterParams,
    ConveyorAdapter,
    require_credential,
)

if TYPE_CHECKING:
    from conveyor.kernel.credentials import CredentialHandle
    from conveyor.kernel.domain.artifacts import ArtifactReference
    from conveyor.kernel.ports.adapter import InvocationContext

logger = get_logger(__name__)

ARTIFACT_SECRET_ID = "artifact_credentials"


class DockerBuildParams(AdapterParams):
    """Parameters of the ``docker_build`` adapter.

    ``artifact_credential`` (``user:password``) is exposed to the build as
    the BuildKit secret ``artifact_credentials`` instead of a build
    argument, so it never ends up in an image layer.
    """

    image: str
    dockerfile: str = "Dockerfile"
    context_dir: str = "."
    tag_from: Literal["build_number", "version"] = "build_number"
    build_args: dict[str, str] = Field(default_factory=dict)
    artifact_credential: str | None = None
    docker_command: list[str] = ["docker"]


class DockerBuildAdapter(
    ConveyorAdapter, tool_id="docker_build", capability=Capability.IMAGE_BUILDER
):
    """Build the deployment image for the upstream artifact."""

    Params = DockerBuildParams

    async def ainvoke(
        self,
        params: Mapping[str, Any],
        credentials: Mapping[str, CredentialHandle],
        context: InvocationContext,
    ) -> AdapterOutcome:
        p: DockerBuildParams = self.parse_params(params)
        artifact = context.upstream_artifact()
        tag_source = context.build_number if p.tag_from == "build_number" else artifact.version
        image = ImageReference.for_build(
            p.image, tag_source, context.commit_hash, artifact.fingerprint
        )

        args = [*p.docker_command, "build", "-f", p.dockerfile, "-t", image.full_name]
        build_args = {**artifact_build_args(artifact, context.endpoints), **p.build_args}
        for key, value in build_args.items():
            args += ["--build-arg", f"{key}={value}"]
        args += ["--label", f"org.opencontainers.image.revision={context.commit_hash}"]

        env = {"DOCKER_BUILDKIT": "1"}
        handle = require_credential(credentials, p.artifact_credential)
        if handle is not None:
            env["ARTIFACT_CREDENTIALS"] = handle.reveal()
            args += ["--secret", f"id={ARTIFACT_SECRET_ID},env=ARTIFACT_CREDENTIALS"]
        args.append(p.context_dir)

        result = await self.runner.run(
            args, cwd=context.workspace / SOURCE_DIR, env=env, context=context
        )
        if not result.ok:
            raise BuildFailedError(
                f"docker build exited with {result.returncode}: {result.tail(10)}"
            )

        logger.info(f"Built image {image.full_name}")
        return AdapterOutcome.success(
            image=image, metrics={"image": image.full_name, "tag": image.tag}
        )


def artifact_build_args(
    artifact: ArtifactReference, endpoints: Mapping[str, str]
) -> dict[str, str]:
    """Build arguments locating ``artifact`` in the artifact repository.

    ``VERSION`` is the base version; the Dockerfile resolves snapshots
    itself. ``ARTIFACT_PATH`` is the fully resolved repository path.
    """
    build_args = {
        "GROUP_PATH": group_path(artifact.group, artifact.name),
        "VERSION": artifact.version,
        "ARTIFACT_PATH": artifact.repository_path,
    }
    if url := endpoints.get(ENDPOINT_ARTIFACT_STORE):
        build_args["NEXUS_URL"] = url
    if repository := endpoints.get(ENDPOINT_ARTIFACT_REPOSITORY):
        build_args["NEXUS_REPO"] = repository
    return build_args
