"""Tests for lifecycle events and the EventBus."""

from __future__ import annotations

import pytest

from conveyor.kernel.orchestration.events import (
    BatchCompleted,
    Event,
    EventBus,
    LoggingObserver,
    RunCompleted,
    RunStarted,
    StageFailed,
    StageSkipped,
)


class TestEventMessages:
    def test_run_started(self) -> None:
        event = RunStarted(run_id="r1", pipeline="app", commit="ab12cd34ef", total_stages=6)
        assert event.log_message() == "Run 'r1' of 'app' started for ab12cd3 with 6 stages"

    def test_run_started_retry(self) -> None:
        event = RunStarted(run_id="r1", pipeline="app", commit="ab12cd3", total_stages=2, attempt=2)
        assert event.log_message().endswith("(attempt 2)")

    def test_run_completed(self) -> None:
        event = RunCompleted(
            run_id="r1", status="failure", duration_ms=1500, failed_stages=("analyze",)
        )
        assert event.log_message() == (
            "Run 'r1' finished with status failure in 1.50s (failed: analyze)"
        )

    def test_batch_completed_halted(self) -> None:
        event = BatchCompleted(batch_index=1, stages=("analyze",), duration_ms=10, halted=True)
        assert "downstream halted" in event.log_message()

    def test_stage_failed_gating(self) -> None:
        event = StageFailed(
            name="analyze", error_kind="QualityGateFailed", message="coverage < 80", gating=True
        )
        assert event.log_message() == (
            "Stage 'analyze' failed [gating]: QualityGateFailed: coverage < 80"
        )

    def test_timestamp_set(self) -> None:
        assert StageSkipped(name="deploy").timestamp is not None


class TestEventBus:
    @pytest.mark.asyncio
    async def test_sync_and_async_observers(self) -> None:
        seen: list[str] = []

        def sync_observer(event: Event) -> None:
            seen.append(f"sync:{type(event).__name__}")

        async def async_observer(event: Event) -> None:
            seen.append(f"async:{type(event).__name__}")

        bus = EventBus([sync_observer])
        bus.register(async_observer)
        await bus.notify(StageSkipped(name="deploy"))

        assert seen == ["sync:StageSkipped", "async:StageSkipped"]
        assert len(bus) == 2

    @pytest.mark.asyncio
    async def test_failing_observer_isolated(self) -> None:
        seen: list[Event] = []

        def broken(event: Event) -> None:
            raise RuntimeError("observer bug")

        bus = EventBus([broken, seen.append])
        await bus.notify(StageSkipped(name="deploy"))

        assert len(seen) == 1

    def test_unregister(self) -> None:
        def observer(event: Event) -> None:
            pass

        bus = EventBus([observer])
        assert bus.unregister(observer) is True
        assert bus.unregister(observer) is False
        assert len(bus) == 0

    def test_logging_observer_accepts_every_event(self) -> None:
        observer = LoggingObserver()
        observer(StageFailed(name="a", error_kind="BuildFailed", message="x"))
        observer(StageSkipped(name="b", reason="upstream"))
        observer(RunStarted(run_id="r", pipeline="p", commit="c", total_stages=1))
