"""Container image adapters: build, push and deploy with the docker CLI."""

from conveyor.stdlib.adapters.container.docker_build import DockerBuildAdapter, DockerBuildParams
from conveyor.stdlib.adapters.container.docker_deploy import (
    DockerDeployAdapter,
    DockerDeployParams,
)
from conveyor.stdlib.adapters.container.docker_push import DockerPushAdapter, DockerPushParams

__all__ = [
    "DockerBuildAdapter",
    "DockerBuildParams",
    "DockerDeployAdapter",
    "DockerDeployParams",
    "DockerPushAdapter",
    "DockerPushParams",
]
