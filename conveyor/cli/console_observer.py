"""Rich console rendering of run lifecycle events."""

from __future__ import annotations

from rich.console import Console

from conveyor.kernel.orchestration.events import (
    BatchStarted,
    Event,
    RunCompleted,
    RunStarted,
    StageFailed,
    StageSkipped,
    StageStarted,
    StageSucceeded,
)


class ConsoleObserver:
    """Prints one line per stage transition while a run executes."""

    __name__ = "ConsoleObserver"

    def __init__(self, console: Console) -> None:
        self.console = console

    def __call__(self, event: Event) -> None:
        match event:
            case RunStarted():
                self.console.print(
                    f"[bold]Run {event.run_id}[/bold] {event.pipeline} @ {event.commit[:7]} "
                    f"({event.total_stages} stages, attempt {event.attempt})"
                )
            case BatchStarted():
                stages = ", ".join(event.stages)
                self.console.print(f"[dim]batch {event.batch_index}: {stages}[/dim]")
            case StageStarted():
                self.console.print(f"  [cyan]>[/cyan] {event.name} [dim]({event.tool_id})[/dim]")
            case StageSucceeded():
                self.console.print(
                    f"  [green]ok[/green] {event.name} [dim]{event.duration_ms / 1000:.1f}s[/dim]"
                )
            case StageFailed():
                gate = " [bold](gating)[/bold]" if event.gating else ""
                self.console.print(
                    f"  [red]x[/red] {event.name}{gate} {event.error_kind}: {event.message}"
                )
            case StageSkipped():
                self.console.print(f"  [dim]- {event.name} skipped: {event.reason}[/dim]")
            case RunCompleted():
                self.console.print(
                    f"[bold]Run {event.run_id}[/bold] finished {event.status} "
                    f"in {event.duration_ms / 1000:.1f}s"
                )
