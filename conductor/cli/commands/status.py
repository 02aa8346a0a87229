"""Conductor status and report commands."""

import json
from pathlib import Path
from typing import Any, Dict, Optional

import click
from rich.panel import Panel
from rich.table import Table

from conductor.cli.context import orchestrator_from_context
from conductor.cli.output import console, percent, print_json
from conductor.core.models import MilestoneStatus

STATUS_STYLES = {
    MilestoneStatus.COMPLETED: "green",
    MilestoneStatus.IN_PROGRESS: "yellow",
    MilestoneStatus.PENDING: "dim",
}


@click.command()
@click.option("--json", "as_json", is_flag=True, help="Print raw status as JSON")
@click.pass_context
def status_command(ctx: click.Context, as_json: bool) -> None:
    """Show current phase, milestones and task counts.

    Examples:
        conductor status          # Show current status
        conductor status --json   # Machine-readable status
    """
    orchestrator = orchestrator_from_context(ctx)
    result = orchestrator.control.status()
    if not result.success:
        raise click.ClickException(result.error or result.message)

    if as_json:
        print_json(result.data)
        return

    data = result.data
    phase = data["current_phase"]
    text = (
        f"[bold]Phase {phase['number']}:[/bold] {phase['name']} "
        f"({percent(phase['progress'])})\n"
        f"[bold]Overall:[/bold] {percent(data['overall_progress'])}\n"
        f"[bold]Completed phases:[/bold] "
        f"{', '.join(str(p) for p in data['completed_phases']) or 'none'}\n\n"
        f"[bold]Tasks:[/bold]\n"
        f"• Waiting: {data['waiting_tasks']}\n"
        f"• Active: {data['active_tasks']}\n"
        f"• Completed: {data['completed_tasks']}\n"
        f"• Failed: {data['failed_tasks']}"
    )
    console.print(Panel(text, title="Conductor Status", border_style="blue"))
    _display_milestones(orchestrator, phase["number"])


def _display_milestones(orchestrator, phase_number: int) -> None:
    state = orchestrator.store.snapshot()
    milestones = state.milestones_for_phase(phase_number)
    if not milestones:
        return

    table = Table(title="Milestones")
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Name", style="white")
    table.add_column("Status")
    table.add_column("Tasks", style="magenta")

    for milestone in milestones:
        style = STATUS_STYLES.get(milestone.status, "white")
        table.add_row(
            milestone.id,
            milestone.name,
            f"[{style}]{milestone.status.value}[/{style}]",
            str(len(state.tasks_for_milestone(milestone.id))),
        )
    console.print(table)


@click.command()
@click.option("--json", "as_json", is_flag=True, help="Print the full report as JSON")
@click.option(
    "--output",
    "-o",
    type=click.Path(dir_okay=False, path_type=Path),
    help="Write the JSON report to a file",
)
@click.pass_context
def report_command(ctx: click.Context, as_json: bool, output: Optional[Path]) -> None:
    """Generate a progress report.

    Examples:
        conductor report                  # Summary tables
        conductor report --json           # Full report as JSON
        conductor report -o report.json   # Save the report
    """
    orchestrator = orchestrator_from_context(ctx)
    result = orchestrator.control.generate_report()
    if not result.success:
        raise click.ClickException(result.error or result.message)

    report: Dict[str, Any] = result.data
    if output is not None:
        output.write_text(json.dumps(report, indent=2, default=str), encoding="utf-8")
        console.print(f"[green]✓[/green] Report written to {output}")
    if as_json:
        print_json(report)
        return

    phase = report["current_phase"]
    console.print(
        Panel(
            f"[bold]Phase {phase['number']}:[/bold] {phase['name']}\n"
            f"{phase['description']}\n\n"
            f"Phase progress: {percent(phase['progress'])}\n"
            f"Overall progress: {percent(report['overall_progress'])}\n"
            f"Estimated completion: {report['estimated_completion'] or 'unknown'}",
            title="Conductor Report",
            border_style="blue",
        )
    )

    counts = Table(title="Counts")
    counts.add_column("Kind", style="cyan")
    for column in ("total", "completed", "in progress", "waiting", "failed"):
        counts.add_column(column.title(), justify="right")
    milestones, tasks = report["milestones"], report["tasks"]
    counts.add_row(
        "Milestones",
        str(milestones["total"]),
        str(milestones["completed"]),
        str(milestones["in_progress"]),
        str(milestones["pending"]),
        "-",
    )
    counts.add_row(
        "Tasks",
        str(tasks["total"]),
        str(tasks["completed"]),
        str(tasks["active"]),
        str(tasks["waiting"]),
        str(tasks["failed"]),
    )
    console.print(counts)

    agents = Table(title="Agents")
    agents.add_column("Role", style="cyan")
    agents.add_column("Active")
    agents.add_column("Completed", justify="right")
    agents.add_column("Failed", justify="right")
    for agent in report["agents"]:
        metrics = agent["metrics"] or {}
        agents.add_row(
            agent["role"],
            "yes" if agent["active"] else "no",
            str(metrics.get("tasks_completed", 0)),
            str(metrics.get("tasks_failed", 0)),
        )
    console.print(agents)

    if report["recent_errors"]:
        console.print("\n[bold]Recent errors:[/bold]")
        for error in report["recent_errors"]:
            console.print(f"  [red]{error['severity']}[/red] {error['message']}")
