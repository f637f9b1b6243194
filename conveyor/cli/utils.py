"""CLI helper utilities shared by conveyor commands."""

from __future__ import annotations

import json
from collections.abc import AsyncIterator, Iterable
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Any, NoReturn

import typer
from rich.console import Console
from rich.table import Table

from conveyor.compiler.pipeline_loader import PipelineLoader
from conveyor.kernel.config import ConveyorConfig, load_config
from conveyor.kernel.domain.run import StageResult, StageStatus
from conveyor.kernel.exceptions import ExitCode
from conveyor.kernel.logging import configure_logging
from conveyor.kernel.orchestration.events import EventBus, LoggingObserver, ObserverFunc
from conveyor.kernel.orchestration.executor import PipelineExecutor
from conveyor.kernel.ports.ledger import RunLedger, RunRecord
from conveyor.stdlib.adapters import AdapterRegistry, default_registry
from conveyor.stdlib.ledger import open_ledger
from conveyor.stdlib.secrets import EnvSecretStore

console = Console()

STATUS_STYLES = {
    "success": "green",
    "failure": "red",
    "unstable": "yellow",
    "aborted": "magenta",
    "running": "cyan",
    "pending": "dim",
    "skipped": "dim",
}


@dataclass(slots=True)
class CliState:
    """Global options parsed by the root callback, stored on ``ctx.obj``."""

    config_path: str | None = None
    log_level: str | None = None
    json_output: bool = False
    _config: ConveyorConfig | None = None

    @property
    def config(self) -> ConveyorConfig:
        if self._config is None:
            self._config = load_config(self.config_path)
            logging_config = self._config.logging
            configure_logging(
                level=(self.log_level or logging_config.level).upper(),  # type: ignore[arg-type]
                format=logging_config.format,
                output_file=logging_config.output_file,
                use_color=logging_config.use_color,
                include_timestamp=logging_config.include_timestamp,
            )
        return self._config


def get_state(ctx: typer.Context) -> CliState:
    if not isinstance(ctx.obj, CliState):
        ctx.obj = CliState()
    return ctx.obj


@dataclass(slots=True)
class Runtime:
    """Everything a command needs to drive runs."""

    config: ConveyorConfig
    registry: AdapterRegistry
    ledger: RunLedger
    executor: PipelineExecutor
    loader: PipelineLoader


@asynccontextmanager
async def open_runtime(
    state: CliState, observers: Iterable[ObserverFunc] = ()
) -> AsyncIterator[Runtime]:
    """Build the executor from configuration and close the ledger afterwards."""
    config = state.config
    registry = default_registry()
    ledger = open_ledger(config.ledger_path)
    bus = EventBus(list(observers) or [LoggingObserver()])
    executor = PipelineExecutor(
        registry,
        ledger,
        secrets=EnvSecretStore(env_prefix=config.secret_env_prefix),
        grants=config.grants(),
        max_concurrency=config.executor.max_concurrency,
        stage_timeout=config.executor.stage_timeout,
        retry=config.executor.retry.to_retry_config(),
        endpoints=config.endpoints,
        workspace_root=config.workspace_root,
        logs_dir=config.logs_dir,
        event_bus=bus,
        abort_poll_interval=config.executor.abort_poll_interval,
    )
    try:
        yield Runtime(config, registry, ledger, executor, PipelineLoader(registry))
    finally:
        await ledger.aclose()


def fail(message: str, code: ExitCode, state: CliState | None = None) -> NoReturn:
    """Report an error and exit with ``code``."""
    if state is not None and state.json_output:
        typer.echo(json.dumps({"error": message, "exit_code": int(code)}, indent=2))
    else:
        console.print(f"[red]Error:[/red] {message}")
    raise typer.Exit(code=int(code))


def result_to_dict(result: StageResult) -> dict[str, Any]:
    return result.model_dump(mode="json", exclude_none=True)


def run_summary(
    record: RunRecord, results: dict[str, StageResult], status: str, exit_code: int
) -> dict[str, Any]:
    """JSON-ready description of a run and its latest stage results."""
    return {
        "run_id": record.run_id,
        "pipeline": record.pipeline_name,
        "commit": record.commit,
        "branch": record.branch,
        "build_number": record.build_number,
        "attempt": record.attempt,
        "status": status,
        "exit_code": exit_code,
        "aborted": record.aborted,
        "stages": [result_to_dict(r) for r in results.values()],
    }


def print_run(summary: dict[str, Any], state: CliState) -> None:
    """Print a run summary as JSON or as a rich table."""
    if state.json_output:
        typer.echo(json.dumps(summary, default=str, indent=2))
        return

    status = summary["status"]
    style = STATUS_STYLES.get(status, "white")
    console.print(
        f"[bold]Run {summary['run_id']}[/bold] {summary['pipeline']} "
        f"#{summary['build_number']} ({summary['commit'][:7]}): [{style}]{status}[/{style}]"
    )
    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Stage")
    table.add_column("Status")
    table.add_column("Gen", justify="right")
    table.add_column("Duration", justify="right")
    table.add_column("Details")
    for stage in summary["stages"]:
        stage_status = stage["status"]
        stage_style = STATUS_STYLES.get(stage_status, "white")
        table.add_row(
            stage["stage"],
            f"[{stage_style}]{stage_status}[/{stage_style}]",
            str(stage.get("generation", 1)),
            _duration(stage),
            _details(stage),
        )
    console.print(table)


def _duration(stage: dict[str, Any]) -> str:
    if stage["status"] in (StageStatus.PENDING, StageStatus.SKIPPED):
        return "-"
    started, finished = stage.get("started_at"), stage.get("finished_at")
    if not started or not finished:
        return "-"
    seconds = (datetime.fromisoformat(finished) - datetime.fromisoformat(started)).total_seconds()
    return f"{seconds:.1f}s"


def _details(stage: dict[str, Any]) -> str:
    if stage.get("error_kind"):
        details = f"{stage['error_kind']}: {stage.get('message', '')}"
        if log_ref := stage.get("log_ref"):
            details += f"\nlog: {log_ref}"
        return details
    if stage.get("skipped_reason"):
        return str(stage["skipped_reason"])
    if image := stage.get("image"):
        return f"{image['repository']}:{image['tag']}"
    if artifact := stage.get("artifact"):
        version = artifact.get("resolved_version") or artifact["version"]
        return f"{artifact['group']}:{artifact['name']}:{version}"
    return ""
