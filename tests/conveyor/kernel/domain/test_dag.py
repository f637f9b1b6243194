"""Tests for StageSpec and PipelineDefinition."""

from __future__ import annotations

import pytest

from conveyor.kernel.domain.dag import AdapterInvocation, PipelineDefinition, StageSpec
from conveyor.kernel.exceptions import (
    CycleDetectedError,
    DuplicateStageError,
    ErrorKind,
    PipelineDefinitionError,
    UnknownDependencyError,
)


def stage(name: str, *deps: str, tool_id: str = "mock", **kwargs) -> StageSpec:
    return StageSpec(name, AdapterInvocation(tool_id), deps=frozenset(deps), **kwargs)


@pytest.fixture
def delivery_pipeline() -> PipelineDefinition:
    """Checkout, analysis gate, build, publish, image build, push, deploy."""
    return PipelineDefinition.define(
        [
            stage("checkout"),
            stage("analyze", "checkout", gating=True),
            stage("build", "analyze"),
            stage("publish", "build"),
            stage("image", "publish"),
            stage("push", "image"),
            stage("deploy", "push"),
        ],
        name="webcarrental",
    )


class TestStageSpec:
    """Tests for StageSpec construction."""

    def test_after_adds_dependencies(self) -> None:
        build = stage("build").after("checkout", "analyze")
        assert build.deps == frozenset({"checkout", "analyze"})

    def test_after_returns_copy(self) -> None:
        original = stage("build")
        original.after("checkout")
        assert original.deps == frozenset()

    def test_analysis_capability_forces_gating(self) -> None:
        spec = StageSpec("analyze", AdapterInvocation("sonarqube"), capability="analysis")
        assert spec.gating is True

    def test_other_capabilities_keep_declared_gating(self) -> None:
        spec = StageSpec("build", AdapterInvocation("maven"), capability="build")
        assert spec.gating is False

    def test_invocation_params_are_read_only(self) -> None:
        invocation = AdapterInvocation("maven", {"goals": ["package"]})
        with pytest.raises(TypeError):
            invocation.params["goals"] = ["install"]  # type: ignore[index]

    def test_repr(self) -> None:
        spec = stage("build", "checkout", gating=True)
        assert repr(spec) == "StageSpec('build', mock, deps=['checkout'], gating)"


class TestPipelineDefinition:
    """Tests for definition-time validation and ordering."""

    def test_linear_pipeline_batches(self, delivery_pipeline: PipelineDefinition) -> None:
        assert delivery_pipeline.batch_names() == [
            ["checkout"],
            ["analyze"],
            ["build"],
            ["publish"],
            ["image"],
            ["push"],
            ["deploy"],
        ]

    def test_independent_stages_share_a_batch(self) -> None:
        definition = PipelineDefinition.define(
            [stage("checkout"), stage("lint", "checkout"), stage("test", "checkout")]
        )
        assert definition.batch_names() == [["checkout"], ["lint", "test"]]

    def test_diamond(self) -> None:
        definition = PipelineDefinition.define(
            [stage("a"), stage("b", "a"), stage("c", "a"), stage("d", "b", "c")]
        )
        assert definition.batch_names() == [["a"], ["b", "c"], ["d"]]

    def test_every_dependency_in_earlier_batch(self) -> None:
        definition = PipelineDefinition.define(
            [
                stage("e", "c", "d"),
                stage("d", "b"),
                stage("c", "a"),
                stage("b"),
                stage("a"),
            ]
        )
        position = {
            name: index
            for index, batch in enumerate(definition.batch_names())
            for name in batch
        }
        assert sorted(position) == ["a", "b", "c", "d", "e"]
        for spec in definition:
            for dep in spec.deps:
                assert position[dep] < position[spec.name]

    def test_duplicate_stage_rejected(self) -> None:
        with pytest.raises(DuplicateStageError) as exc_info:
            PipelineDefinition.define([stage("build"), stage("build")])
        assert exc_info.value.stage == "build"
        assert exc_info.value.kind is ErrorKind.DUPLICATE_STAGE

    def test_unknown_dependency_rejected(self) -> None:
        with pytest.raises(UnknownDependencyError) as exc_info:
            PipelineDefinition.define([stage("build", "checkout")])
        assert exc_info.value.stage == "build"
        assert exc_info.value.dependency == "checkout"

    def test_cycle_rejected(self) -> None:
        with pytest.raises(CycleDetectedError) as exc_info:
            PipelineDefinition.define([stage("a", "c"), stage("b", "a"), stage("c", "b")])
        cycle = exc_info.value.cycle
        assert cycle[0] == cycle[-1]
        assert set(cycle) == {"a", "b", "c"}

    def test_self_dependency_is_a_cycle(self) -> None:
        with pytest.raises(CycleDetectedError):
            PipelineDefinition.define([stage("a", "a")])

    def test_definition_errors_share_base(self) -> None:
        with pytest.raises(PipelineDefinitionError):
            PipelineDefinition.define([stage("a", "missing")])

    def test_detect_cycle_none_for_dag(self) -> None:
        assert PipelineDefinition.detect_cycle({"a": set(), "b": {"a"}}) is None

    def test_descendants_and_ancestors(self, delivery_pipeline: PipelineDefinition) -> None:
        assert delivery_pipeline.descendants("publish") == {"image", "push", "deploy"}
        assert delivery_pipeline.ancestors("publish") == {"checkout", "analyze", "build"}
        assert delivery_pipeline.descendants("deploy") == frozenset()
        assert delivery_pipeline.dependents("checkout") == {"analyze"}

    def test_mapping_protocol(self, delivery_pipeline: PipelineDefinition) -> None:
        assert len(delivery_pipeline) == 7
        assert "build" in delivery_pipeline
        assert "missing" not in delivery_pipeline
        assert delivery_pipeline["analyze"].gating is True
        assert [s.name for s in delivery_pipeline][:2] == ["checkout", "analyze"]

    def test_stages_mapping_is_read_only(self, delivery_pipeline: PipelineDefinition) -> None:
        with pytest.raises(TypeError):
            delivery_pipeline.stages["extra"] = stage("extra")  # type: ignore[index]

    def test_repr(self, delivery_pipeline: PipelineDefinition) -> None:
        assert repr(delivery_pipeline) == (
            "PipelineDefinition('webcarrental', stages=7, batches=7)"
        )
