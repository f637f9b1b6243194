"""Artifact identity and naming contracts.

The two naming rules here are relied on by deployments outside conveyor
(registries, repository managers, deploy scripts) and must not drift:

- image tag: ``{imageName}:{buildNumberOrVersion}-{shortCommitHash}``
- repository path: ``{groupPath}/{version}/{artifactName}-{resolvedVersion}.{ext}``
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

SHORT_COMMIT_LENGTH = 7


def short_commit(commit_hash: str) -> str:
    """Abbreviate a commit hash to the conventional seven characters.

    >>> short_commit("ab12cd34ef56")
    'ab12cd3'
    """
    return commit_hash.strip()[:SHORT_COMMIT_LENGTH]


def image_tag(image_name: str, build_number_or_version: str | int, commit_hash: str) -> str:
    """Deterministic image tag for a build.

    >>> image_tag("myapp", 42, "ab12cd3")
    'myapp:42-ab12cd3'
    """
    return f"{image_name}:{build_number_or_version}-{short_commit(commit_hash)}"


def group_path(group: str, name: str) -> str:
    """Repository directory of an artifact: dotted group as path plus artifact name.

    >>> group_path("ua.sergiishapoval.webcarrental", "WebCarRental")
    'ua/sergiishapoval/webcarrental/WebCarRental'
    """
    return "/".join([*group.split("."), name])


def artifact_path(group: str, name: str, version: str, resolved_version: str, ext: str) -> str:
    """Repository path of an artifact file.

    >>> artifact_path("com.acme", "app", "1.0-SNAPSHOT", "1.0-20240101.120000-3", "war")
    'com/acme/app/1.0-SNAPSHOT/app-1.0-20240101.120000-3.war'
    """
    return f"{group_path(group, name)}/{version}/{name}-{resolved_version}.{ext}"


class ArtifactReference(BaseModel):
    """Immutable identifier of a built artifact.

    Created once by the build stage and shared by reference with every stage
    that consumes it. ``fingerprint`` ties the artifact to the commit it was
    built from; ``checksum`` is the SHA-1 of the produced file when known.
    """

    model_config = ConfigDict(frozen=True)

    group: str
    name: str
    version: str
    packaging: str = "jar"
    fingerprint: str
    checksum: str | None = None
    resolved_version: str | None = None
    file_name: str | None = None

    @property
    def coordinates(self) -> str:
        return f"{self.group}:{self.name}:{self.version}"

    @property
    def is_snapshot(self) -> bool:
        return self.version.endswith("-SNAPSHOT")

    @property
    def repository_path(self) -> str:
        """Path inside the artifact repository (uses ``version`` until resolved)."""
        return artifact_path(
            self.group,
            self.name,
            self.version,
            self.resolved_version or self.version,
            self.packaging,
        )

    def resolved(self, resolved_version: str) -> ArtifactReference:
        """Copy of this reference carrying the repository-resolved version."""
        return self.model_copy(update={"resolved_version": resolved_version})


class ImageReference(BaseModel):
    """Immutable identifier of a built container image."""

    model_config = ConfigDict(frozen=True)

    repository: str
    tag: str
    artifact_fingerprint: str | None = None
    digest: str | None = Field(default=None, description="Registry digest once pushed")

    @property
    def full_name(self) -> str:
        return f"{self.repository}:{self.tag}"

    @classmethod
    def for_build(
        cls,
        repository: str,
        build_number_or_version: str | int,
        commit_hash: str,
        artifact_fingerprint: str | None = None,
    ) -> ImageReference:
        full = image_tag(repository, build_number_or_version, commit_hash)
        return cls(
            repository=repository,
            tag=full.rsplit(":", 1)[1],
            artifact_fingerprint=artifact_fingerprint,
        )
