"""Tests for the Maven build adapter."""

from __future__ import annotations

import hashlib
from pathlib import Path
from unittest.mock import AsyncMock

import pytest

from conveyor.drivers.process import ProcessResult, ProcessRunner
from conveyor.kernel.exceptions import BuildFailedError, ErrorKind
from conveyor.stdlib.adapters.build import MavenAdapter
from conveyor.stdlib.adapters.build.maven_adapter import MavenParams, _coordinates, _test_summary

POM = """<?xml version="1.0" encoding="UTF-8"?>
<project xmlns="http://maven.apache.org/POM/4.0.0">
  <modelVersion>4.0.0</modelVersion>
  <groupId>ua.sergiishapoval.webcarrental</groupId>
  <artifactId>WebCarRental</artifactId>
  <version>1.0-SNAPSHOT</version>
  <packaging>war</packaging>
</project>
"""

SUREFIRE_OK = """[INFO] Building WebCarRental 1.0-SNAPSHOT
Tests run: 4, Failures: 0, Errors: 0, Skipped: 0
Tests run: 12, Failures: 0, Errors: 0, Skipped: 1
[INFO] BUILD SUCCESS
"""

SUREFIRE_FAILED = """Tests run: 12, Failures: 2, Errors: 1, Skipped: 0
[ERROR] BUILD FAILURE
"""


def runner_returning(returncode: int, output: str) -> AsyncMock:
    runner = AsyncMock(spec=ProcessRunner)
    runner.run.return_value = ProcessResult(("mvn",), returncode, output)
    return runner


@pytest.fixture
def project(make_context) -> tuple[object, Path]:
    context = make_context("build", tool_id="maven", commit="ab12cd34ef56")
    source = context.workspace / "source"
    source.mkdir(parents=True)
    (source / "pom.xml").write_text(POM)
    return context, source


def produce(source: Path, name: str = "WebCarRental-1.0-SNAPSHOT.war") -> bytes:
    target = source / "target"
    target.mkdir(exist_ok=True)
    content = b"PK\x03\x04 war bytes"
    (target / name).write_bytes(content)
    return content


class TestMavenAdapter:
    async def test_successful_build(self, project) -> None:
        context, source = project
        content = produce(source)
        runner = runner_returning(0, SUREFIRE_OK)

        outcome = await MavenAdapter(runner=runner).ainvoke({}, {}, context)

        args = runner.run.await_args
        assert list(args.args[0]) == ["mvn", "-B", "clean", "package"]
        assert args.kwargs["cwd"] == source / "."
        artifact = outcome.artifact
        assert artifact is not None
        assert artifact.coordinates == "ua.sergiishapoval.webcarrental:WebCarRental:1.0-SNAPSHOT"
        assert artifact.packaging == "war"
        assert artifact.fingerprint == "ab12cd34ef56"
        assert artifact.checksum == hashlib.sha1(content).hexdigest()
        assert outcome.metrics["tests_run"] == 12
        assert outcome.metrics["tests_skipped"] == 1
        assert outcome.metrics["sha1"] == artifact.checksum

    async def test_goals_and_args(self, project) -> None:
        context, source = project
        produce(source)
        runner = runner_returning(0, "")
        await MavenAdapter(runner=runner).ainvoke(
            {"goals": ["verify"], "args": ["-DskipITs"], "maven_command": ["./mvnw"]}, {}, context
        )
        assert list(runner.run.await_args.args[0]) == ["./mvnw", "-B", "verify", "-DskipITs"]

    async def test_failing_tests(self, project) -> None:
        context, _ = project
        runner = runner_returning(1, SUREFIRE_FAILED)
        with pytest.raises(BuildFailedError) as exc_info:
            await MavenAdapter(runner=runner).ainvoke({}, {}, context)
        assert exc_info.value.kind is ErrorKind.BUILD_FAILED
        assert exc_info.value.metrics["tests_failed"] == 2
        assert "mvn exited with 1" in str(exc_info.value)

    async def test_missing_output_file(self, project) -> None:
        context, _ = project
        with pytest.raises(BuildFailedError, match="was not produced"):
            await MavenAdapter(runner=runner_returning(0, "")).ainvoke({}, {}, context)

    async def test_params_override_pom(self, project) -> None:
        context, source = project
        produce(source, "car-2.0.jar")
        outcome = await MavenAdapter(runner=runner_returning(0, "")).ainvoke(
            {"artifact_id": "car", "version": "2.0", "packaging": "jar"}, {}, context
        )
        assert outcome.artifact is not None
        assert outcome.artifact.coordinates == "ua.sergiishapoval.webcarrental:car:2.0"


class TestHelpers:
    def test_test_summary_empty(self) -> None:
        assert _test_summary("[INFO] nothing to test") == {}

    def test_coordinates_without_pom(self, tmp_path: Path) -> None:
        with pytest.raises(BuildFailedError, match="groupId"):
            _coordinates(MavenParams(artifact_id="a", version="1"), tmp_path / "pom.xml")

    def test_coordinates_from_parent(self, tmp_path: Path) -> None:
        pom = tmp_path / "pom.xml"
        pom.write_text(
            "<project><parent><groupId>com.acme</groupId><version>3.1</version></parent>"
            "<artifactId>child</artifactId></project>"
        )
        assert _coordinates(MavenParams(), pom) == ("com.acme", "child", "3.1", "jar")
