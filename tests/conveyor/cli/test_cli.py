"""Tests for the conveyor command line interface."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path

import pytest
from typer.testing import CliRunner

from conveyor.cli.main import app
from conveyor.cli.utils import _details
from conveyor.kernel.ports.ledger import RunRecord
from conveyor.stdlib.ledger import SqliteRunLedger

PIPELINE = """
apiVersion: conveyor/v1
kind: Pipeline
metadata:
  name: webcarrental
spec:
  stages:
    - name: checkout
      adapter: mock
      params:
        metrics: {commit_hash: ab12cd34ef56}
    - name: analyze
      adapter: mock
      gating: true
      depends_on: [checkout]
    - name: build
      adapter: mock
      depends_on: [analyze]
      params:
        artifact: {group: ua.sergiishapoval.webcarrental, name: WebCarRental, version: 1.0-SNAPSHOT}
    - name: publish
      adapter: memory_artifact_store
      depends_on: [build]
    - name: image
      adapter: memory_image_builder
      depends_on: [publish]
      params:
        image: webcarrental
"""

GATE_FAILURE = """
apiVersion: conveyor/v1
kind: Pipeline
metadata:
  name: gated
spec:
  stages:
    - name: analyze
      adapter: mock
      params:
        outcome: failure
        error_kind: QualityGateFailed
        message: coverage below 80
    - name: build
      adapter: mock
      depends_on: [analyze]
"""

BUILD_FAILURE = """
apiVersion: conveyor/v1
kind: Pipeline
metadata:
  name: broken
spec:
  stages:
    - name: checkout
      adapter: mock
    - name: build
      adapter: mock
      depends_on: [checkout]
      params:
        outcome: failure
        error_kind: BuildFailed
    - name: publish
      adapter: mock
      depends_on: [build]
"""

CYCLE = """
kind: Pipeline
metadata:
  name: cyclic
spec:
  stages:
    - {name: a, adapter: mock, depends_on: [b]}
    - {name: b, adapter: mock, depends_on: [a]}
"""


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture
def workdir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    for var in ("CONVEYOR_LOG_LEVEL", "CONVEYOR_LOG_FORMAT", "CONVEYOR_CONFIG_PATH"):
        monkeypatch.delenv(var, raising=False)
    (tmp_path / "conveyor.yaml").write_text(
        f"""
kind: Config
spec:
  logging:
    level: CRITICAL
    format: console
  executor:
    max_concurrency: 2
    stage_timeout: 30
    abort_poll_interval: 0.01
    retry:
      max_attempts: 2
      initial_delay: 0
  watch_branches: [main]
  ledger_path: {tmp_path / "ledger.db"}
  workspace_root: {tmp_path / "workspaces"}
  logs_dir: {tmp_path / "logs"}
"""
    )
    for name, content in {
        "pipeline.yaml": PIPELINE,
        "gate.yaml": GATE_FAILURE,
        "broken.yaml": BUILD_FAILURE,
        "cycle.yaml": CYCLE,
    }.items():
        (tmp_path / name).write_text(content)
    return tmp_path


def invoke(runner: CliRunner, workdir: Path, *args: str):
    return runner.invoke(app, ["--config", str(workdir / "conveyor.yaml"), "--json", *args])


def stages_by_name(payload: dict) -> dict[str, dict]:
    return {stage["stage"]: stage for stage in payload["stages"]}


class TestRun:
    def test_successful_run(self, runner: CliRunner, workdir: Path) -> None:
        result = invoke(
            runner, workdir, "run", str(workdir / "pipeline.yaml"), "--commit", "ab12cd34ef56"
        )

        assert result.exit_code == 0, result.output
        payload = json.loads(result.stdout)
        assert payload["status"] == "success"
        assert payload["build_number"] == 1
        stages = stages_by_name(payload)
        assert list(stages) == ["checkout", "analyze", "build", "publish", "image"]
        assert stages["image"]["image"]["tag"] == "1-ab12cd3"
        assert stages["publish"]["artifact"]["resolved_version"].startswith("1.0-")

    def test_build_numbers_increase(self, runner: CliRunner, workdir: Path) -> None:
        pipeline = str(workdir / "pipeline.yaml")
        invoke(runner, workdir, "run", pipeline, "--commit", "1111111")
        result = invoke(runner, workdir, "run", pipeline, "--commit", "2222222")
        assert json.loads(result.stdout)["build_number"] == 2

    def test_quality_gate_exit_code(self, runner: CliRunner, workdir: Path) -> None:
        result = invoke(runner, workdir, "run", str(workdir / "gate.yaml"), "--commit", "abc1234")

        assert result.exit_code == 2
        stages = stages_by_name(json.loads(result.stdout))
        assert stages["analyze"]["error_kind"] == "QualityGateFailed"
        assert stages["build"]["status"] == "skipped"

    def test_build_failure_exit_code(self, runner: CliRunner, workdir: Path) -> None:
        result = invoke(runner, workdir, "run", str(workdir / "broken.yaml"), "--commit", "abc1234")
        assert result.exit_code == 1
        assert json.loads(result.stdout)["status"] == "failure"

    def test_invalid_pipeline(self, runner: CliRunner, workdir: Path) -> None:
        result = invoke(runner, workdir, "run", str(workdir / "cycle.yaml"), "--commit", "abc1234")
        assert result.exit_code == 4
        assert "cycle" in json.loads(result.stdout)["error"].lower()

    def test_invalid_config(self, runner: CliRunner, workdir: Path) -> None:
        (workdir / "conveyor.yaml").write_text("kind: Pipeline\nspec: {}\n")
        result = invoke(
            runner, workdir, "run", str(workdir / "pipeline.yaml"), "--commit", "abc1234"
        )
        assert result.exit_code == 4


class TestTrigger:
    def test_watched_branch(self, runner: CliRunner, workdir: Path) -> None:
        result = invoke(
            runner,
            workdir,
            "trigger",
            str(workdir / "pipeline.yaml"),
            "--branch",
            "refs/heads/main",
            "--commit",
            "ab12cd34ef56",
        )
        assert result.exit_code == 0, result.output
        payload = json.loads(result.stdout)
        assert payload["branch"] == "main"
        assert payload["status"] == "success"

    def test_unwatched_branch(self, runner: CliRunner, workdir: Path) -> None:
        result = invoke(
            runner,
            workdir,
            "trigger",
            str(workdir / "pipeline.yaml"),
            "--branch",
            "feature/login",
            "--commit",
            "ab12cd34ef56",
        )
        assert result.exit_code == 0
        assert json.loads(result.stdout) == {"triggered": False, "branch": "feature/login"}


class TestRunOperations:
    def _run(self, runner: CliRunner, workdir: Path, pipeline: str) -> dict:
        result = invoke(runner, workdir, "run", str(workdir / pipeline), "--commit", "abc1234")
        return json.loads(result.stdout)

    def test_status(self, runner: CliRunner, workdir: Path) -> None:
        run_id = self._run(runner, workdir, "gate.yaml")["run_id"]

        result = invoke(runner, workdir, "status", run_id)

        assert result.exit_code == 2
        payload = json.loads(result.stdout)
        assert payload["run_id"] == run_id
        assert payload["status"] == "failure"

    def test_status_table_shows_failed_stage_log(self, runner: CliRunner, workdir: Path) -> None:
        run_id = self._run(runner, workdir, "broken.yaml")["run_id"]

        result = runner.invoke(app, ["--config", str(workdir / "conveyor.yaml"), "status", run_id])

        assert result.exit_code == 1
        assert "BuildFailed" in result.stdout
        assert "log:" in result.stdout

    def test_status_unknown_run(self, runner: CliRunner, workdir: Path) -> None:
        result = invoke(runner, workdir, "status", "no-such-run")
        assert result.exit_code == 1
        assert "no-such-run" in json.loads(result.stdout)["error"]

    def test_retry_creates_new_generations(self, runner: CliRunner, workdir: Path) -> None:
        run_id = self._run(runner, workdir, "broken.yaml")["run_id"]

        result = invoke(runner, workdir, "retry", run_id, "--from-stage", "build")

        assert result.exit_code == 1
        payload = json.loads(result.stdout)
        assert payload["attempt"] == 2
        stages = stages_by_name(payload)
        assert stages["checkout"]["generation"] == 1
        assert stages["build"]["generation"] == 2
        assert stages["publish"]["generation"] == 2
        assert stages["publish"]["status"] == "skipped"

    def test_retry_unknown_stage(self, runner: CliRunner, workdir: Path) -> None:
        run_id = self._run(runner, workdir, "broken.yaml")["run_id"]
        result = invoke(runner, workdir, "retry", run_id, "--from-stage", "nope")
        assert result.exit_code == 1

    def test_abort_finished_run_rejected(self, runner: CliRunner, workdir: Path) -> None:
        run_id = self._run(runner, workdir, "pipeline.yaml")["run_id"]
        result = invoke(runner, workdir, "abort", run_id)
        assert result.exit_code == 1
        assert "already finished" in json.loads(result.stdout)["error"]

    def test_abort_and_status_of_running_run(self, runner: CliRunner, workdir: Path) -> None:
        async def create_running_run() -> None:
            ledger = SqliteRunLedger(workdir / "ledger.db")
            try:
                await ledger.acreate_run(
                    RunRecord(run_id="live", pipeline_name="webcarrental", commit="abc1234")
                )
            finally:
                await ledger.aclose()

        asyncio.run(create_running_run())

        status = invoke(runner, workdir, "status", "live")
        assert status.exit_code == 0
        assert json.loads(status.stdout)["status"] == "running"

        aborted = invoke(runner, workdir, "abort", "live")
        assert aborted.exit_code == 0
        assert json.loads(aborted.stdout) == {"run_id": "live", "abort_requested": True}
        assert json.loads(invoke(runner, workdir, "status", "live").stdout)["aborted"] is True


class TestValidate:
    def test_valid(self, runner: CliRunner, workdir: Path) -> None:
        result = invoke(runner, workdir, "validate", str(workdir / "pipeline.yaml"))
        assert result.exit_code == 0
        payload = json.loads(result.stdout)
        assert payload["valid"] is True
        assert payload["batches"] == [["checkout"], ["analyze"], ["build"], ["publish"], ["image"]]

    def test_invalid(self, runner: CliRunner, workdir: Path) -> None:
        result = invoke(runner, workdir, "validate", str(workdir / "cycle.yaml"))
        assert result.exit_code == 4

    def test_table_output(self, runner: CliRunner, workdir: Path) -> None:
        result = runner.invoke(app, ["validate", str(workdir / "pipeline.yaml")])
        assert result.exit_code == 0
        assert "is valid" in result.stdout


def test_version(runner: CliRunner) -> None:
    result = runner.invoke(app, ["--version"])
    assert result.exit_code == 0
    assert "conveyor" in result.stdout


def test_no_args_shows_help(runner: CliRunner) -> None:
    result = runner.invoke(app, [])
    assert "run" in result.output


class TestStageDetails:
    def test_failed_stage_points_at_log(self) -> None:
        stage = {
            "stage": "build",
            "status": "failure",
            "error_kind": "BuildFailed",
            "message": "mvn exited 1",
            "log_ref": "/var/conveyor/logs/run-1/build.1.log",
        }
        assert _details(stage) == (
            "BuildFailed: mvn exited 1\nlog: /var/conveyor/logs/run-1/build.1.log"
        )

    def test_failed_stage_without_log(self) -> None:
        stage = {"stage": "build", "status": "failure", "error_kind": "Timeout", "message": "x"}
        assert _details(stage) == "Timeout: x"

    def test_skipped_stage_shows_reason(self) -> None:
        stage = {"stage": "push", "status": "skipped", "skipped_reason": "upstream failed"}
        assert _details(stage) == "upstream failed"
