"""Tests for artifact and image naming."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from conveyor.kernel.domain.artifacts import (
    ArtifactReference,
    ImageReference,
    artifact_path,
    group_path,
    image_tag,
    short_commit,
)


class TestNaming:
    def test_image_tag_format(self) -> None:
        assert image_tag("myapp", 42, "ab12cd34ef5678") == "myapp:42-ab12cd3"

    def test_image_tag_with_version(self) -> None:
        tag = image_tag("registry:5000/web", "1.0.3", "ab12cd3")
        assert tag == "registry:5000/web:1.0.3-ab12cd3"

    def test_short_commit_strips_whitespace(self) -> None:
        assert short_commit("  ab12cd34ef\n") == "ab12cd3"

    def test_short_commit_of_short_hash(self) -> None:
        assert short_commit("abc") == "abc"

    def test_group_path(self) -> None:
        assert group_path("ua.sergiishapoval.webcarrental", "WebCarRental") == (
            "ua/sergiishapoval/webcarrental/WebCarRental"
        )

    def test_artifact_path(self) -> None:
        assert artifact_path("com.acme", "app", "1.0", "1.0", "war") == (
            "com/acme/app/1.0/app-1.0.war"
        )


class TestArtifactReference:
    @pytest.fixture
    def snapshot(self) -> ArtifactReference:
        return ArtifactReference(
            group="ua.sergiishapoval.webcarrental",
            name="WebCarRental",
            version="1.0-SNAPSHOT",
            packaging="war",
            fingerprint="ab12cd34",
        )

    def test_coordinates(self, snapshot: ArtifactReference) -> None:
        assert snapshot.coordinates == "ua.sergiishapoval.webcarrental:WebCarRental:1.0-SNAPSHOT"

    def test_is_snapshot(self, snapshot: ArtifactReference) -> None:
        assert snapshot.is_snapshot
        release = snapshot.model_copy(update={"version": "1.0"})
        assert not release.is_snapshot

    def test_repository_path_before_resolution(self, snapshot: ArtifactReference) -> None:
        assert snapshot.repository_path == (
            "ua/sergiishapoval/webcarrental/WebCarRental/1.0-SNAPSHOT/"
            "WebCarRental-1.0-SNAPSHOT.war"
        )

    def test_resolved_copy(self, snapshot: ArtifactReference) -> None:
        resolved = snapshot.resolved("1.0-20240101.120000-3")
        assert resolved.resolved_version == "1.0-20240101.120000-3"
        assert resolved.repository_path.endswith(
            "/1.0-SNAPSHOT/WebCarRental-1.0-20240101.120000-3.war"
        )
        assert snapshot.resolved_version is None

    def test_frozen(self, snapshot: ArtifactReference) -> None:
        with pytest.raises(ValidationError):
            snapshot.version = "2.0"  # type: ignore[misc]

    def test_packaging_defaults_to_jar(self) -> None:
        ref = ArtifactReference(group="g", name="n", version="1", fingerprint="f")
        assert ref.packaging == "jar"


class TestImageReference:
    def test_for_build(self) -> None:
        image = ImageReference.for_build("myapp", 42, "ab12cd34ef", artifact_fingerprint="ab12cd34")
        assert image.repository == "myapp"
        assert image.tag == "42-ab12cd3"
        assert image.full_name == "myapp:42-ab12cd3"
        assert image.artifact_fingerprint == "ab12cd34"
        assert image.digest is None

    def test_for_build_keeps_registry_port(self) -> None:
        image = ImageReference.for_build("localhost:5000/myapp", 7, "0123456789")
        assert image.repository == "localhost:5000/myapp"
        assert image.tag == "7-0123456"

    def test_same_inputs_same_tag(self) -> None:
        first = ImageReference.for_build("myapp", 3, "deadbeefcafe")
        second = ImageReference.for_build("myapp", 3, "deadbeefcafe")
        assert first == second
