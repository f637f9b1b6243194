"""conveyor CLI - main entrypoint."""

import typer
from rich.console import Console

from conveyor.cli.commands import run_cmd, runs_cmd, validate_cmd
from conveyor.cli.utils import CliState

app = typer.Typer(
    name="conveyor",
    help="conveyor - run CI/CD pipelines of build, analysis, publish and image stages.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    pretty_exceptions_enable=False,
)

console = Console()

app.command("run")(run_cmd.run)
app.command("trigger")(run_cmd.trigger)
app.command("status")(runs_cmd.status)
app.command("retry")(runs_cmd.retry)
app.command("abort")(runs_cmd.abort)
app.command("validate")(validate_cmd.validate)


def _version_callback(value: bool) -> None:
    if value:
        from conveyor import __version__

        console.print(f"[bold blue]conveyor[/bold blue] version [green]{__version__}[/green]")
        raise typer.Exit()


@app.callback()
def callback(
    ctx: typer.Context,
    *,
    config: str | None = typer.Option(
        None, "--config", "-c", help="kind: Config YAML or pyproject.toml to load"
    ),
    log_level: str | None = typer.Option(
        None, "--log-level", help="Log level: debug|info|warning|error"
    ),
    json_out: bool = typer.Option(False, "--json", help="Output machine-readable JSON"),
    version: bool = typer.Option(
        False,
        "--version",
        "-v",
        help="Show version and exit",
        callback=_version_callback,
        is_eager=True,
    ),
) -> None:
    """conveyor - CI/CD pipeline orchestration.

    Global flags are parsed here and stored on ``ctx.obj`` for subcommands.
    """
    ctx.obj = CliState(config_path=config, log_level=log_level, json_output=json_out)


def main() -> None:
    """Main CLI entrypoint."""
    app()


if __name__ == "__main__":
    main()
