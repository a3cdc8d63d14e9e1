# src/gpinstall/observers/console.py
import typer

from .events import BaseEvent, PhaseStarted, StepStarted, PhaseCompleted, PhaseSkipped, PhaseFailed


class ConsoleObserver:
    """Operator-facing progress lines ("Phase 3 Step 2/4: ...")."""

    def notify(self, event: BaseEvent) -> None:
        prefix = "[DRY-RUN] " if event.dry_run else ""
        if isinstance(event, PhaseStarted):
            typer.secho(f"\n{prefix}=== Phase {event.index}: {event.name} ===", bold=True)
        elif isinstance(event, StepStarted):
            typer.echo(f"{prefix}{event.phase} Step {event.step}/{event.total}: {event.description}")
        elif isinstance(event, PhaseCompleted):
            typer.secho(f"{prefix}{event.name} completed", fg=typer.colors.GREEN)
        elif isinstance(event, PhaseSkipped):
            typer.echo(f"{prefix}{event.name}: {event.reason}, skipping")
        elif isinstance(event, PhaseFailed):
            typer.secho(f"{prefix}{event.name} failed at '{event.step}': {event.error}", fg=typer.colors.RED, err=True)
