"""Pipeline validation command."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Annotated

import typer
from rich.table import Table

from conveyor.cli.utils import console, fail, get_state
from conveyor.compiler.pipeline_loader import PipelineLoader
from conveyor.kernel.exceptions import ExitCode, PipelineDefinitionError
from conveyor.stdlib.adapters import default_registry


def validate(
    ctx: typer.Context,
    pipeline: Annotated[
        Path,
        typer.Argument(
            help="Path to the pipeline YAML document", exists=True, dir_okay=False, readable=True
        ),
    ],
) -> None:
    """Validate a pipeline document without running it.

    Checks the document schema, adapter ids and parameters, duplicate
    stages, unknown dependencies and cycles. Exits 4 when invalid.
    """
    state = get_state(ctx)
    registry = default_registry()
    try:
        definition, _ = PipelineLoader(registry).load_file(pipeline)
    except PipelineDefinitionError as e:
        fail(str(e), ExitCode.INVALID_DEFINITION, state)

    batches = definition.batch_names()
    if state.json_output:
        payload = {"valid": True, "pipeline": definition.name, "batches": batches}
        typer.echo(json.dumps(payload, indent=2))
        return

    console.print(f"[green]Pipeline '{definition.name}' is valid[/green]")
    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Batch", justify="right")
    table.add_column("Stage")
    table.add_column("Adapter")
    table.add_column("Depends on")
    table.add_column("Gating")
    for index, names in enumerate(batches):
        for name in names:
            spec = definition[name]
            table.add_row(
                str(index),
                name,
                spec.invocation.tool_id,
                ", ".join(sorted(spec.deps)) or "-",
                "yes" if spec.gating else "",
            )
    console.print(table)
