"""Commands that act on an existing run: ``status``, ``retry`` and ``abort``."""

from __future__ import annotations

import asyncio
import json
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
from conveyor.kernel.domain.run import RunStatus, compute_run_status, exit_code_for
from conveyor.kernel.exceptions import (
    ConfigurationError,
    ExitCode,
    PipelineDefinitionError,
    RunNotFoundError,
    RunStateError,
)

RunIdArg = Annotated[str, typer.Argument(help="Run id printed when the run started")]


def status(ctx: typer.Context, run_id: RunIdArg) -> None:
    """Show a run's stages and exit with the code its outcome maps to.

    A run that is still in progress exits 0.
    """
    state = get_state(ctx)
    raise typer.Exit(code=asyncio.run(_status(state, run_id)))


async def _status(state: CliState, run_id: str) -> int:
    try:
        async with open_runtime(state) as rt:
            try:
                record = await rt.ledger.aget_run(run_id)
            except RunNotFoundError as e:
                fail(str(e), ExitCode.STAGE_FAILURE, state)
            latest = await rt.ledger.alatest(run_id)
    except (ConfigurationError, FileNotFoundError) as e:
        fail(str(e), ExitCode.INVALID_DEFINITION, state)

    if record.finished:
        run_status = compute_run_status(latest.values(), record.aborted)
        code = exit_code_for(latest.values(), record.aborted)
    else:
        run_status, code = RunStatus.RUNNING, ExitCode.SUCCESS
    print_run(run_summary(record, latest, str(run_status), int(code)), state)
    return int(code)


def retry(
    ctx: typer.Context,
    run_id: RunIdArg,
    from_stage: Annotated[str, typer.Option("--from-stage", help="First stage to re-execute")],
) -> None:
    """Re-execute a stage and everything downstream of it within the same run.

    Earlier results stay in the ledger; retried stages get a new generation.
    """
    state = get_state(ctx)
    raise typer.Exit(code=asyncio.run(_retry(state, run_id, from_stage)))


async def _retry(state: CliState, run_id: str, from_stage: str) -> int:
    observers = [] if state.json_output else [ConsoleObserver(console)]
    try:
        async with open_runtime(state, observers) as rt:
            try:
                record = await rt.ledger.aget_run(run_id)
                if not record.definition:
                    fail(
                        f"Run '{run_id}' has no stored pipeline document",
                        ExitCode.INVALID_DEFINITION,
                        state,
                    )
                definition, _ = rt.loader.load_document(record.definition)
                result = await rt.executor.retry(definition, run_id, from_stage)
            except PipelineDefinitionError as e:
                fail(str(e), ExitCode.INVALID_DEFINITION, state)
            except (RunNotFoundError, RunStateError) as e:
                fail(str(e), ExitCode.STAGE_FAILURE, state)
            record = await rt.ledger.aget_run(run_id)
    except (ConfigurationError, FileNotFoundError) as e:
        fail(str(e), ExitCode.INVALID_DEFINITION, state)

    print_run(
        run_summary(record, result.results, str(result.status), int(result.exit_code)), state
    )
    return int(result.exit_code)


def abort(ctx: typer.Context, run_id: RunIdArg) -> None:
    """Ask the executor driving a run to stop.

    Stages already running are signalled to stop; no further stage starts.
    """
    state = get_state(ctx)
    raise typer.Exit(code=asyncio.run(_abort(state, run_id)))


async def _abort(state: CliState, run_id: str) -> int:
    try:
        async with open_runtime(state) as rt:
            try:
                await rt.executor.abort(run_id)
            except (RunNotFoundError, RunStateError) as e:
                fail(str(e), ExitCode.STAGE_FAILURE, state)
    except (ConfigurationError, FileNotFoundError) as e:
        fail(str(e), ExitCode.INVALID_DEFINITION, state)

    if state.json_output:
        typer.echo(json.dumps({"run_id": run_id, "abort_requested": True}, indent=2))
    else:
        console.print(f"[magenta]Abort requested for run {run_id}[/magenta]")
    return int(ExitCode.SUCCESS)
