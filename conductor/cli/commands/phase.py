"""Conductor phase control commands: advance, rollback and test."""

import click

from conductor.cli.context import orchestrator_from_context
from conductor.cli.output import console, print_result


@click.command()
@click.pass_context
def advance_command(ctx: click.Context) -> None:
    """Advance to the next phase.

    The current phase must be complete and its exit test must pass.
    """
    orchestrator = orchestrator_from_context(ctx)
    print_result(orchestrator.control.advance())


@click.command()
@click.option("--yes", "-y", is_flag=True, help="Do not ask for confirmation")
@click.pass_context
def rollback_command(ctx: click.Context, yes: bool) -> None:
    """Roll back to the previous phase.

    The previous phase's milestones are reset and its tasks are recreated.
    A checkpoint is taken first.
    """
    if not yes:
        click.confirm("Roll back to the previous phase?", abort=True)
    orchestrator = orchestrator_from_context(ctx)
    print_result(orchestrator.control.rollback())


@click.command()
@click.pass_context
def test_command(ctx: click.Context) -> None:
    """Run the current phase's exit test."""
    orchestrator = orchestrator_from_context(ctx)
    result = orchestrator.control.run_tests()
    data = result.data or {}
    if data.get("output"):
        console.print(data["output"].rstrip(), markup=False, highlight=False)
    print_result(result)
