"""Registry adapter (``docker push``).

Pushing is idempotent: a tag the registry already serves is left alone.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from conveyor.kernel.config.models import ENDPOINT_REGISTRY
from conveyor.kernel.exceptions import AccessDeniedError, ToolUnavailableError
from conveyor.kernel.logging import get_logger
from conveyor.kernel.ports.adapter import AdapterOutcome, Capability
from conveyor.stdlib.adapters.base import (
    AdapterParams,
    ConveyorAdapter,
    require_credential,
    split_user_password,
)

if TYPE_CHECKING:
    from conveyor.kernel.credentials import CredentialHandle
    from conveyor.kernel.ports.adapter import InvocationContext

logger = get_logger(__name__)

_DIGEST_RE = re.compile(r"digest:\s*(sha256:[0-9a-f]{64})")


class DockerPushParams(AdapterParams):
    """Parameters of the ``docker_push`` adapter.

    ``credential`` names a ``user:password`` credential for ``docker login``.
    """

    registry: str | None = None
    credential: str | None = "registry-credentials"
    docker_command: list[str] = ["docker"]


class DockerPushAdapter(ConveyorAdapter, tool_id="docker_push", capability=Capability.REGISTRY):
    """Push the upstream image unless the registry already has the tag."""

    Params = DockerPushParams

    async def ainvoke(
        self,
        params: Mapping[str, Any],
        credentials: Mapping[str, CredentialHandle],
        context: InvocationContext,
    ) -> AdapterOutcome:
        p: DockerPushParams = self.parse_params(params)
        image = context.upstream_image()
        docker = [*p.docker_command]
        registry = p.registry or context.endpoints.get(ENDPOINT_REGISTRY)

        handle = require_credential(credentials, p.credential)
        if handle is not None:
            user, password = split_user_password(handle.reveal())
            login = [*docker, "login", "-u", user, "--password-stdin"]
            if registry:
                login.append(registry)
            result = await self.runner.run(login, stdin=password, context=context)
            if not result.ok:
                if "unauthorized" in result.output.lower() or "denied" in result.output.lower():
                    raise AccessDeniedError(f"Registry login rejected: {result.tail(3)}")
                raise ToolUnavailableError(f"docker login failed: {result.tail(3)}")

        inspect = await self.runner.run(
            [*docker, "manifest", "inspect", image.full_name], context=context
        )
        if inspect.ok:
            logger.info(f"{image.full_name} already in registry, not pushing")
            return AdapterOutcome.success(
                image=image, metrics={"image": image.full_name, "already_present": True}
            )

        context.check_cancelled()
        pushed = await self.runner.run([*docker, "push", image.full_name], context=context)
        if not pushed.ok:
            raise ToolUnavailableError(
                f"docker push exited with {pushed.returncode}: {pushed.tail(5)}"
            )

        match = _DIGEST_RE.search(pushed.output)
        if match:
            image = image.model_copy(update={"digest": match.group(1)})
        logger.info(f"Pushed {image.full_name}")
        metrics: dict[str, Any] = {"image": image.full_name, "already_present": False}
        if image.digest:
            metrics["digest"] = image.digest
        return AdapterOutcome.success(image=image, metrics=metrics)
