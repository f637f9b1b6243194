"""Commands that start runs: ``run`` and ``trigger``."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Annotated

import typer

from conveyor.cli.console_observer import ConsoleObserver
from conveyor.cli.utils import (
    CliState,
    console,
    fail,
    get_state,
    open_runtime,
    print_run,
    run_summary,
)
from conveyor.kernel.domain.run import Run
from conveyor.kernel.exceptions import ConfigurationError, ExitCode, PipelineDefinitionError
from conveyor.kernel.ports.ledger import RunLedger
from conveyor.kernel.trigger import PushTrigger, normalize_branch

PipelineArg = Annotated[
    Path,
    typer.Argument(
        help="Path to the pipeline YAML document", exists=True, dir_okay=False, readable=True
    ),
]
CommitOpt = Annotated[str, typer.Option("--commit", help="Commit hash to build")]


def run(
    ctx: typer.Context,
    pipeline: PipelineArg,
    commit: CommitOpt,
    branch: Annotated[str | None, typer.Option("--branch", help="Branch the commit is on")] = None,
    build_number: Annotated[
        int | None,
        typer.Option("--build-number", min=1, help="Build number (allocated when omitted)"),
    ] = None,
) -> None:
    """Run a pipeline for one commit and exit with the run's outcome.

    Examples
    --------
    conveyor run pipeline.yaml --commit ab12cd34 --branch main
    """
    state = get_state(ctx)
    code = asyncio.run(_run(state, pipeline, commit, branch, build_number))
    raise typer.Exit(code=code)


async def _run(
    state: CliState, pipeline: Path, commit: str, branch: str | None, build_number: int | None
) -> int:
    observers = [] if state.json_output else [ConsoleObserver(console)]
    try:
        async with open_runtime(state, observers) as rt:
            try:
                definition, document = rt.loader.load_file(pipeline)
                result = await rt.executor.run(
                    definition,
                    commit,
                    branch=normalize_branch(branch) if branch else None,
                    build_number=build_number,
                    document=document,
                )
            except PipelineDefinitionError as e:
                fail(str(e), ExitCode.INVALID_DEFINITION, state)
            return await _report(rt.ledger, result, state)
    except (ConfigurationError, FileNotFoundError) as e:
        fail(str(e), ExitCode.INVALID_DEFINITION, state)


def trigger(
    ctx: typer.Context,
    pipeline: PipelineArg,
    branch: Annotated[str, typer.Option("--branch", help="Branch that received the push")],
    commit: CommitOpt,
) -> None:
    """Handle a push: run the pipeline only if the branch is watched.

    Examples
    --------
    conveyor trigger pipeline.yaml --branch refs/heads/main --commit ab12cd34
    """
    state = get_state(ctx)
    code = asyncio.run(_trigger(state, pipeline, branch, commit))
    raise typer.Exit(code=code)


async def _trigger(state: CliState, pipeline: Path, branch: str, commit: str) -> int:
    observers = [] if state.json_output else [ConsoleObserver(console)]
    try:
        async with open_runtime(state, observers) as rt:
            try:
                definition, document = rt.loader.load_file(pipeline)
                push = PushTrigger(rt.executor, definition, rt.config.watch_branches, document)
                result = await push.on_push(branch, commit)
            except PipelineDefinitionError as e:
                fail(str(e), ExitCode.INVALID_DEFINITION, state)
            if result is None:
                name = normalize_branch(branch)
                if state.json_output:
                    typer.echo(json.dumps({"triggered": False, "branch": name}, indent=2))
                else:
                    console.print(f"[yellow]Branch '{name}' is not watched[/yellow]")
                return int(ExitCode.SUCCESS)
            return await _report(rt.ledger, result, state)
    except (ConfigurationError, FileNotFoundError) as e:
        fail(str(e), ExitCode.INVALID_DEFINITION, state)


async def _report(ledger: RunLedger, result: Run, state: CliState) -> int:
    record = await ledger.aget_run(result.run_id)
    summary = run_summary(record, result.results, str(result.status), int(result.exit_code))
    print_run(summary, state)
    return int(result.exit_code)
