"""Deploy adapter: replace a named container with the freshly pushed image."""

from __future__ import annotations

from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from pydantic import Field

from conveyor.kernel.exceptions import ToolUnavailableError
from conveyor.kernel.logging import get_logger
from conveyor.kernel.ports.adapter import AdapterOutcome, Capability
from conveyor.stdlib.adapters.base import AdapterParams, ConveyorAdapter

if TYPE_CHECKING:
    from conveyor.kernel.credentials import CredentialHandle
    from conveyor.kernel.ports.adapter import InvocationContext

logger = get_logger(__name__)


class DockerDeployParams(AdapterParams):
    """Parameters of the ``docker_deploy`` adapter."""

    container_name: str
    ports: list[str] = Field(default_factory=lambda: ["8080:8080"])
    env: dict[str, str] = Field(default_factory=dict)
    run_args: list[str] = Field(default_factory=list)
    docker_command: list[str] = ["docker"]


class DockerDeployAdapter(ConveyorAdapter, tool_id="docker_deploy", capability=Capability.DEPLOY):
    """``docker rm -f`` the previous container, then ``docker run -d`` the new image."""

    Params = DockerDeployParams

    async def ainvoke(
        self,
        params: Mapping[str, Any],
        credentials: Mapping[str, CredentialHandle],
        context: InvocationContext,
    ) -> AdapterOutcome:
        p: DockerDeployParams = self.parse_params(params)
        image = context.upstream_image()
        docker = [*p.docker_command]

        removed = await self.runner.run([*docker, "rm", "-f", p.container_name], context=context)
        if not removed.ok:
            logger.debug("No previous container '{}' to remove", p.container_name)

        args = [*docker, "run", "-d", "--name", p.container_name]
        for mapping in p.ports:
            args += ["-p", mapping]
        for key, value in p.env.items():
            args += ["-e", f"{key}={value}"]
        args += [*p.run_args, image.full_name]

        result = await self.runner.run(args, context=context)
        if not result.ok:
            raise ToolUnavailableError(
                f"docker run exited with {result.returncode}: {result.tail(5)}"
            )

        container_id = result.output.strip().splitlines()[-1] if result.output.strip() else ""
        logger.info(f"Deployed {image.full_name} as '{p.container_name}'")
        return AdapterOutcome.success(
            image=image,
            metrics={
                "container": p.container_name,
                "container_id": container_id[:12],
                "image": image.full_name,
                "ports": ",".join(p.ports),
            },
        )
