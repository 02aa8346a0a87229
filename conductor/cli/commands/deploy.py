"""Conductor deploy command."""

import click

from conductor.cli.context import orchestrator_from_context
from conductor.cli.output import console, print_result
from conductor.core.models import AgentRole

ROLE_CHOICES = [role.short_name for role in AgentRole] + [role.value for role in AgentRole]


@click.command()
@click.argument("role", type=click.Choice(ROLE_CHOICES, case_sensitive=False))
@click.pass_context
def deploy_command(ctx: click.Context, role: str) -> None:
    """Run the next waiting task of ROLE in the current phase now.

    Dependencies on other roles are not checked.

    Examples:
        conductor deploy models
        conductor deploy agent-security
    """
    orchestrator = orchestrator_from_context(ctx)
    result = orchestrator.control.deploy(role)
    print_result(result)
    console.print(f"[dim]Task finished as {result.data['status']}[/dim]")
