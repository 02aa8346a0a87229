"""Conductor dashboard command."""

import click
from rich.markdown import Markdown

from conductor.cli.context import orchestrator_from_context
from conductor.cli.output import console, print_json
from conductor.orchestrator.dashboard import DashboardGenerator


@click.command()
@click.option("--json", "as_json", is_flag=True, help="Print dashboard data as JSON")
@click.option("--write/--no-write", default=True, help="Also write dashboard.md")
@click.pass_context
def dashboard_command(ctx: click.Context, as_json: bool, write: bool) -> None:
    """Render the dashboard: health, phase, agents, milestones and errors.

    Examples:
        conductor dashboard            # Render in the terminal and write dashboard.md
        conductor dashboard --json     # Raw dashboard data
    """
    orchestrator = orchestrator_from_context(ctx)
    data = orchestrator.engine.get_dashboard_data()

    if as_json:
        print_json(data.model_dump(mode="json"))
        return

    generator = orchestrator.engine.dashboard or DashboardGenerator(
        orchestrator.store.state_dir, orchestrator.phases
    )
    state = orchestrator.store.snapshot()
    console.print(Markdown(generator.render(data, state)))
    if write:
        path = generator.generate(data, state)
        console.print(f"[dim]Written to {path}[/dim]")
