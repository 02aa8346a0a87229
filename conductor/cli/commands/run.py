"""Conductor run command."""

import click

from conductor.cli.context import orchestrator_from_context
from conductor.cli.output import console, percent
from conductor.orchestrator.events import (
    ConflictDetected,
    MilestoneCompleted,
    PhaseAdvanced,
    TaskCompleted,
    TaskFailed,
)

ECHOED_EVENTS = (TaskCompleted, TaskFailed, ConflictDetected, MilestoneCompleted, PhaseAdvanced)


@click.command()
@click.option("--once", is_flag=True, help="Run a single tick and exit")
@click.pass_context
def run_command(ctx: click.Context, once: bool) -> None:
    """Run the orchestrator.

    Without --once the dispatch loop runs in the foreground until Ctrl+C.
    When a conflict pauses the workflow you are asked whether to resume.

    Examples:
        conductor run               # Run until interrupted
        conductor run --once        # Dispatch one batch and exit
    """
    orchestrator = orchestrator_from_context(ctx)
    engine = orchestrator.engine

    for event_type in ECHOED_EVENTS:
        orchestrator.bus.subscribe(
            event_type, lambda event: console.print(f"[dim]•[/dim] {event.summary()}")
        )

    if once:
        engine.tick()
        _print_summary(orchestrator)
        return

    result = orchestrator.control.start()
    if not result.success:
        raise click.ClickException(result.error or result.message)
    console.print(f"[green]✓[/green] {result.message}. Press Ctrl+C to stop")

    try:
        while engine.running:
            engine.wait(engine.tick_interval)
            if engine.paused:
                if click.confirm("Workflow paused by a conflict. Resume dispatching?"):
                    orchestrator.control.resume()
                else:
                    break
    except KeyboardInterrupt:
        console.print("\n[yellow]Stopping orchestrator[/yellow]")
    finally:
        orchestrator.control.stop()
        _print_summary(orchestrator)


def _print_summary(orchestrator) -> None:
    state = orchestrator.store.snapshot()
    phase = orchestrator.phases.get_phase(state.current_phase)
    console.print(
        f"Phase {phase.number} ({phase.name}): "
        f"{percent(orchestrator.phases.get_phase_progress(phase.number, state))} complete, "
        f"overall {percent(orchestrator.phases.get_overall_progress(state))}"
    )
    if orchestrator.engine.paused:
        console.print("[yellow]Workflow is paused[/yellow]")
