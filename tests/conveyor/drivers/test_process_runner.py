"""Tests for the subprocess driver."""

from __future__ import annotations

import asyncio
import sys

import pytest

from conveyor.drivers.process import ProcessResult, ProcessRunner
from conveyor.kernel.exceptions import StageAbortedError, ToolUnavailableError


def python(code: str) -> list[str]:
    return [sys.executable, "-c", code]


class TestProcessResult:
    def test_ok(self) -> None:
        assert ProcessResult(("true",), 0).ok
        assert not ProcessResult(("false",), 1).ok

    def test_tail(self) -> None:
        result = ProcessResult(("x",), 1, "one\ntwo\nthree\n")
        assert result.tail(2) == "two\nthree"


class TestProcessRunner:
    async def test_captures_stdout_and_stderr(self) -> None:
        result = await ProcessRunner().run(
            python("import sys; print('out'); print('err', file=sys.stderr); sys.exit(3)")
        )
        assert result.returncode == 3
        assert "out" in result.output
        assert "err" in result.output

    async def test_env_and_cwd(self, tmp_path) -> None:
        runner = ProcessRunner(env={"CONVEYOR_BASE": "base"})
        result = await runner.run(
            python("import os; e = os.environ; print(e['CONVEYOR_BASE'], e['EXTRA'], os.getcwd())"),
            cwd=tmp_path,
            env={"EXTRA": "extra"},
        )
        assert result.ok
        base, extra, cwd = result.output.split()
        assert (base, extra) == ("base", "extra")
        assert cwd == str(tmp_path.resolve())

    async def test_stdin(self) -> None:
        result = await ProcessRunner().run(
            python("import sys; print(sys.stdin.read().upper())"), stdin="pa55"
        )
        assert result.output.strip() == "PA55"

    async def test_missing_executable(self) -> None:
        with pytest.raises(ToolUnavailableError, match="not installed"):
            await ProcessRunner().run(["conveyor-no-such-tool", "--version"])

    async def test_output_written_to_redacted_log(self, make_context) -> None:
        context = make_context("build", redact=lambda text: text.replace("s3cret", "***"))
        await ProcessRunner().run(python("print('token s3cret')"), context=context)

        log = context.log_path.read_text()
        assert "s3cret" not in log
        assert "token ***" in log
        assert log.startswith("$ ")

    async def test_abort_terminates_process(self, make_context) -> None:
        context = make_context("deploy")
        task = asyncio.create_task(
            ProcessRunner().run(python("import time; time.sleep(30)"), context=context)
        )
        await asyncio.sleep(0.2)
        context.cancel_event.set()
        with pytest.raises(StageAbortedError, match="run aborted"):
            await asyncio.wait_for(task, 10)

    async def test_task_cancellation_terminates_process(self) -> None:
        task = asyncio.create_task(ProcessRunner().run(python("import time; time.sleep(30)")))
        await asyncio.sleep(0.2)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
