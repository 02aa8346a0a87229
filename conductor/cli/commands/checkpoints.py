"""Conductor checkpoints command."""

import click

from conductor.cli.context import orchestrator_from_context
from conductor.cli.output import console, key_value_table, print_result


@click.command()
@click.option("--clear", is_flag=True, help="Delete all checkpoints")
@click.pass_context
def checkpoints_command(ctx: click.Context, clear: bool) -> None:
    """List state checkpoints, or clear them.

    Examples:
        conductor checkpoints           # List checkpoints
        conductor checkpoints --clear   # Delete all checkpoints
    """
    orchestrator = orchestrator_from_context(ctx)
    if clear:
        print_result(orchestrator.control.clear_checkpoints())
        return

    result = orchestrator.control.get_checkpoint_statistics()
    if not result.success:
        raise click.ClickException(result.error or result.message)

    checkpoints = result.data.pop("checkpoints")
    console.print(key_value_table("Checkpoint Statistics", result.data))
    if not checkpoints:
        console.print("[dim]No checkpoints[/dim]")
        return

    console.print("\n[bold]Checkpoints:[/bold]")
    for summary in checkpoints:
        console.print(f"  {summary}", markup=False)
