"""Conductor logs command."""

from typing import Optional

import click
from rich.table import Table

from conductor.cli.context import orchestrator_from_context
from conductor.cli.output import console


@click.command()
@click.argument("task_id", required=False)
@click.option(
    "--lines", "-n", type=int, default=50, help="Number of events to show (default: 50)"
)
@click.pass_context
def logs_command(ctx: click.Context, task_id: Optional[str], lines: int) -> None:
    """View the activity log.

    Shows recent orchestrator notifications, or every notification for one
    task.

    Examples:
        conductor logs                  # Recent activity
        conductor logs 0-phase-0-health-agent-api   # One task's events
    """
    orchestrator = orchestrator_from_context(ctx)
    activity = orchestrator.activity
    if task_id:
        events = activity.get_task_events(task_id)[-lines:]
    else:
        events = activity.get_recent_events(lines)

    if not events:
        console.print("[yellow]No activity recorded[/yellow]")
        return

    table = Table(title=f"Activity for {task_id}" if task_id else "Recent Activity")
    table.add_column("Time", style="dim", no_wrap=True)
    table.add_column("Event", style="cyan")
    table.add_column("Message", style="white")
    for event in events:
        table.add_row(event.timestamp.strftime("%Y-%m-%d %H:%M:%S"), event.event_type, event.message)
    console.print(table)
