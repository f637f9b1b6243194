"""Tests for the push trigger."""

from __future__ import annotations

import pytest

from conveyor.kernel.domain.dag import PipelineDefinition
from conveyor.kernel.domain.run import RunStatus
from conveyor.kernel.trigger import PushTrigger, normalize_branch


@pytest.fixture
def trigger(make_executor, make_stage) -> PushTrigger:
    definition = PipelineDefinition.define([make_stage("checkout")], name="app")
    return PushTrigger(
        make_executor(),
        definition,
        watch_branches=["main", "release/*"],
        document={"metadata": {"name": "app"}},
    )


class TestNormalizeBranch:
    def test_strips_ref_prefix(self) -> None:
        assert normalize_branch("refs/heads/release/1.2") == "release/1.2"

    def test_plain_branch_unchanged(self) -> None:
        assert normalize_branch("main") == "main"


class TestPushTrigger:
    def test_watches(self, trigger: PushTrigger) -> None:
        assert trigger.watches("main")
        assert trigger.watches("refs/heads/main")
        assert trigger.watches("release/2.0")
        assert not trigger.watches("feature/login")
        assert not trigger.watches("mainline")

    @pytest.mark.asyncio
    async def test_watched_push_starts_run(self, trigger: PushTrigger, ledger, mock_adapter):
        run = await trigger.on_push("refs/heads/main", "ab12cd34ef")

        assert run is not None
        assert run.status is RunStatus.SUCCESS
        assert run.branch == "main"
        assert mock_adapter.calls[0].commit == "ab12cd34ef"
        record = await ledger.aget_run(run.run_id)
        assert record.definition == {"metadata": {"name": "app"}}

    @pytest.mark.asyncio
    async def test_unwatched_push_ignored(self, trigger: PushTrigger, ledger, mock_adapter):
        assert await trigger.on_push("feature/login", "ab12cd34ef") is None
        assert mock_adapter.calls == []
        assert await ledger.alist_runs() == []

    @pytest.mark.asyncio
    async def test_each_push_gets_a_build_number(self, trigger: PushTrigger) -> None:
        first = await trigger.on_push("main", "1111111")
        second = await trigger.on_push("main", "2222222")
        assert first is not None and second is not None
        assert (first.build_number, second.build_number) == (1, 2)
