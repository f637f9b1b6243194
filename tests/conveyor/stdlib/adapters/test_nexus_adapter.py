"""Tests for the Nexus artifact repository adapter."""

from __future__ import annotations

from datetime import UTC, datetime
from functools import partial
from pathlib import Path

import httpx
import pytest

from conveyor.drivers.http_client import HttpClientDriver
from conveyor.kernel.domain.artifacts import ArtifactReference
from conveyor.kernel.domain.run import StageResult
from conveyor.kernel.exceptions import AccessDeniedError, MissingInputError, ToolUnavailableError
from conveyor.stdlib.adapters.artifact_store import NexusAdapter
from conveyor.stdlib.adapters.artifact_store.nexus_adapter import first_snapshot_value

NEXUS = "http://nexus:8081"
METADATA = """<?xml version="1.0" encoding="UTF-8"?>
<metadata modelVersion="1.1.0">
  <versioning>
    <snapshotVersions>
      <snapshotVersion>
        <extension>war</extension>
        <value>1.0-20240101.120000-3</value>
      </snapshotVersion>
    </snapshotVersions>
  </versioning>
</metadata>
"""


class FakeNexus:
    """Search, component upload and metadata endpoints of Nexus 3."""

    def __init__(self, existing: bool = False, upload_status: int = 204) -> None:
        self.existing = existing
        self.upload_status = upload_status
        self.requests: list[httpx.Request] = []
        self.uploads: list[bytes] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if path == "/service/rest/v1/search/assets":
            items = [{"path": "existing.war"}] if self.existing else []
            return httpx.Response(200, json={"items": items, "continuationToken": None})
        if path == "/service/rest/v1/components":
            self.uploads.append(request.read())
            self.existing = True
            return httpx.Response(self.upload_status)
        if path.endswith("/maven-metadata.xml"):
            return httpx.Response(200, text=METADATA, headers={"content-type": "application/xml"})
        return httpx.Response(404)


def war(tmp_path: Path, version: str = "1.0-SNAPSHOT") -> ArtifactReference:
    path = tmp_path / f"WebCarRental-{version}.war"
    path.write_bytes(b"PK\x03\x04 war bytes")
    return ArtifactReference(
        group="ua.sergiishapoval.webcarrental",
        name="WebCarRental",
        version=version,
        packaging="war",
        fingerprint="ab12cd34ef56",
        checksum="0f1e2d3c4b5a",
        file_name=str(path),
    )


def context_for(make_context, artifact: ArtifactReference, **endpoints: str):
    result = StageResult(stage="build").start().succeed(artifact=artifact)
    result = result.model_copy(update={"finished_at": datetime.now(UTC)})
    return make_context(
        "publish",
        tool_id="nexus",
        upstream={"build": result},
        endpoints={"artifact_store": NEXUS, **endpoints},
    )


def nexus_adapter(server) -> NexusAdapter:
    transport = httpx.MockTransport(server)
    return NexusAdapter(http_factory=partial(HttpClientDriver, transport=transport))


@pytest.fixture
def credentials(make_handle):
    return {"nexus-credentials": make_handle("nexus-credentials", "admin:admin123", "publish")}


class TestNexusAdapter:
    async def test_uploads_new_snapshot(self, make_context, credentials, tmp_path) -> None:
        server = FakeNexus()
        artifact = war(tmp_path)

        outcome = await nexus_adapter(server).ainvoke(
            {}, credentials, context_for(make_context, artifact)
        )

        assert len(server.uploads) == 1
        assert b'name="maven2.groupId"' in server.uploads[0]
        assert b"ua.sergiishapoval.webcarrental" in server.uploads[0]
        assert b'filename="WebCarRental-1.0-SNAPSHOT.war"' in server.uploads[0]
        upload = server.requests[1]
        assert upload.url.params["repository"] == "maven-snapshots"
        assert upload.headers["authorization"].startswith("Basic ")

        published = outcome.artifact
        assert published is not None
        assert published.resolved_version == "1.0-20240101.120000-3"
        assert published.checksum == artifact.checksum
        assert outcome.metrics["already_published"] is False
        assert outcome.metrics["repository_path"] == (
            "ua/sergiishapoval/webcarrental/WebCarRental/1.0-SNAPSHOT/"
            "WebCarRental-1.0-20240101.120000-3.war"
        )
        assert outcome.metrics["download_url"] == (
            f"{NEXUS}/repository/maven-snapshots/{published.repository_path}"
        )

    async def test_search_by_checksum(self, make_context, credentials, tmp_path) -> None:
        server = FakeNexus()
        await nexus_adapter(server).ainvoke(
            {}, credentials, context_for(make_context, war(tmp_path))
        )
        search = server.requests[0].url.params
        assert search["maven.baseVersion"] == "1.0-SNAPSHOT"
        assert search["maven.extension"] == "war"
        assert search["sha1"] == "0f1e2d3c4b5a"

    async def test_republish_skips_upload(self, make_context, credentials, tmp_path) -> None:
        server = FakeNexus(existing=True)
        outcome = await nexus_adapter(server).ainvoke(
            {}, credentials, context_for(make_context, war(tmp_path))
        )
        assert server.uploads == []
        assert outcome.metrics["already_published"] is True
        assert outcome.metrics["resolved_version"] == "1.0-20240101.120000-3"

    async def test_release_goes_to_releases(self, make_context, credentials, tmp_path) -> None:
        server = FakeNexus()
        outcome = await nexus_adapter(server).ainvoke(
            {}, credentials, context_for(make_context, war(tmp_path, "1.0"))
        )
        assert outcome.metrics["repository"] == "maven-releases"
        assert outcome.metrics["resolved_version"] == "1.0"
        assert not any(r.url.path.endswith("maven-metadata.xml") for r in server.requests)

    async def test_configured_repository(self, make_context, credentials, tmp_path) -> None:
        server = FakeNexus()
        context = context_for(make_context, war(tmp_path), artifact_repository="team-snapshots")
        outcome = await nexus_adapter(server).ainvoke({}, credentials, context)
        assert outcome.metrics["repository"] == "team-snapshots"

    async def test_rejected_credentials(self, make_context, credentials, tmp_path) -> None:
        server = FakeNexus(upload_status=401)
        with pytest.raises(AccessDeniedError, match="rejected the credentials"):
            await nexus_adapter(server).ainvoke(
                {}, credentials, context_for(make_context, war(tmp_path))
            )

    async def test_server_error_is_transient(self, make_context, credentials, tmp_path) -> None:
        server = FakeNexus(upload_status=503)
        with pytest.raises(ToolUnavailableError) as exc_info:
            await nexus_adapter(server).ainvoke(
                {}, credentials, context_for(make_context, war(tmp_path))
            )
        assert exc_info.value.kind.is_transient

    async def test_artifact_without_file(self, make_context, credentials, tmp_path) -> None:
        artifact = war(tmp_path).model_copy(update={"file_name": None})
        with pytest.raises(MissingInputError, match="no file to upload"):
            await nexus_adapter(FakeNexus()).ainvoke(
                {}, credentials, context_for(make_context, artifact)
            )

    async def test_no_upstream_artifact(self, make_context, credentials) -> None:
        with pytest.raises(MissingInputError):
            await nexus_adapter(FakeNexus()).ainvoke({}, credentials, make_context("publish"))


class TestSnapshotMetadata:
    def test_first_value(self) -> None:
        assert first_snapshot_value(METADATA) == "1.0-20240101.120000-3"

    def test_no_value(self) -> None:
        assert first_snapshot_value("<metadata/>") is None
