"""Maven build adapter.

Compiles and tests the checked-out sources with ``mvn -B`` and describes
the produced file as an :class:`ArtifactReference`. Coordinates come from
the stage parameters, falling back to the project's ``pom.xml``.
"""

from __future__ import annotations

import hashlib
import re
import xml.etree.ElementTree as ET
from collections.abc import Mapping
from pathlib import Path
from typing import TYPE_CHECKING, Any

from pydantic import Field

from conveyor.kernel.domain.artifacts import ArtifactReference
from conveyor.kernel.exceptions import BuildFailedError
from conveyor.kernel.logging import get_logger
from conveyor.kernel.ports.adapter import AdapterOutcome, Capability
from conveyor.stdlib.adapters.base import SOURCE_DIR, AdapterParams, ConveyorAdapter

if TYPE_CHECKING:
    from conveyor.kernel.credentials import CredentialHandle
    from conveyor.kernel.ports.adapter import InvocationContext

logger = get_logger(__name__)

_POM_NS = "{http://maven.apache.org/POM/4.0.0}"
_TESTS_RE = re.compile(
    r"Tests run:\s*(\d+),\s*Failures:\s*(\d+),\s*Errors:\s*(\d+),\s*Skipped:\s*(\d+)"
)


class MavenParams(AdapterParams):
    """Parameters of the ``maven`` adapter."""

    goals: list[str] = Field(default_factory=lambda: ["clean", "package"])
    args: list[str] = Field(default_factory=list)
    project_dir: str = "."
    target_dir: str = "target"
    group_id: str | None = None
    artifact_id: str | None = None
    version: str | None = None
    packaging: str | None = None
    maven_command: list[str] = ["mvn"]


class MavenAdapter(ConveyorAdapter, tool_id="maven", capability=Capability.BUILD):
    """Build, test and package a Maven project."""

    Params = MavenParams

    async def ainvoke(
        self,
        params: Mapping[str, Any],
        credentials: Mapping[str, CredentialHandle],
        context: InvocationContext,
    ) -> AdapterOutcome:
        p: MavenParams = self.parse_params(params)
        project = context.workspace / SOURCE_DIR / p.project_dir

        result = await self.runner.run(
            [*p.maven_command, "-B", *p.goals, *p.args], cwd=project, context=context
        )
        metrics: dict[str, Any] = _test_summary(result.output)
        if not result.ok:
            raise BuildFailedError(
                f"mvn exited with {result.returncode}: {result.tail(10)}", metrics=metrics
            )

        group, name, version, packaging = _coordinates(p, project / "pom.xml")
        produced = project / p.target_dir / f"{name}-{version}.{packaging}"
        if not produced.is_file():
            raise BuildFailedError(f"Build finished but {produced.name} was not produced")

        checksum = _sha1(produced)
        artifact = ArtifactReference(
            group=group,
            name=name,
            version=version,
            packaging=packaging,
            fingerprint=context.commit_hash,
            checksum=checksum,
            file_name=str(produced),
        )
        metrics.update({"artifact": artifact.coordinates, "sha1": checksum})
        logger.info(f"Built {artifact.coordinates} ({packaging}) from {context.commit_hash[:7]}")
        return AdapterOutcome.success(metrics=metrics, artifact=artifact)


def _test_summary(output: str) -> dict[str, Any]:
    """Totals from the last surefire summary line, if any."""
    matches = _TESTS_RE.findall(output)
    if not matches:
        return {}
    run, failures, errors, skipped = (int(n) for n in matches[-1])
    return {
        "tests_run": run,
        "tests_failed": failures,
        "tests_errors": errors,
        "tests_skipped": skipped,
    }


def _coordinates(p: MavenParams, pom: Path) -> tuple[str, str, str, str]:
    """Resolve ``(group, artifact, version, packaging)``; explicit params win."""
    values = {
        "groupId": p.group_id,
        "artifactId": p.artifact_id,
        "version": p.version,
        "packaging": p.packaging,
    }
    if not all(values.values()):
        values = {**_read_pom(pom), **{k: v for k, v in values.items() if v}}
    values.setdefault("packaging", "jar")
    missing = [k for k in ("groupId", "artifactId", "version") if not values.get(k)]
    if missing:
        raise BuildFailedError(f"Cannot determine artifact {', '.join(missing)} from {pom}")
    return (
        str(values["groupId"]),
        str(values["artifactId"]),
        str(values["version"]),
        str(values["packaging"] or "jar"),
    )


def _read_pom(pom: Path) -> dict[str, str]:
    try:
        root = ET.parse(pom).getroot()
    except (OSError, ET.ParseError) as e:
        logger.debug("Cannot read {}: {}", pom, e)
        return {}

    def text(parent: ET.Element | None, tag: str) -> str | None:
        if parent is None:
            return None
        node = parent.find(f"{_POM_NS}{tag}")
        if node is None:
            node = parent.find(tag)
        return node.text.strip() if node is not None and node.text else None

    parent = root.find(f"{_POM_NS}parent")
    if parent is None:
        parent = root.find("parent")
    found = {
        "groupId": text(root, "groupId") or text(parent, "groupId"),
        "artifactId": text(root, "artifactId"),
        "version": text(root, "version") or text(parent, "version"),
        "packaging": text(root, "packaging"),
    }
    return {k: v for k, v in found.items() if v}


def _sha1(path: Path) -> str:
    digest = hashlib.sha1()  # noqa: S324
    with path.open("rb") as fh:
        for chunk in iter(lambda: fh.read(65536), b""):
            digest.update(chunk)
    return digest.hexdigest()
