"""Main CLI entry point for Conductor."""

import sys
from pathlib import Path
from typing import Optional

import click

from conductor.cli.commands.checkpoints import checkpoints_command
from conductor.cli.commands.config import config_group
from conductor.cli.commands.dashboard import dashboard_command
from conductor.cli.commands.deploy import deploy_command
from conductor.cli.commands.init import init_command
from conductor.cli.commands.logs import logs_command
from conductor.cli.commands.phase import advance_command, rollback_command, test_command
from conductor.cli.commands.run import run_command
from conductor.cli.commands.status import report_command, status_command
from conductor.cli.output import console
from conductor.core.exceptions import ConductorError


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output")
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True, path_type=Path),
    help="Path to configuration file",
)
@click.pass_context
def cli(ctx: click.Context, verbose: bool, config: Optional[Path]) -> None:
    """Conductor: Phase-Gated Build Orchestrator.

    Drives a build through numbered phases. Each phase's milestones are
    backed by tasks that role-specific agents execute; a phase advances
    once its milestones validate and its exit test passes.

    \b
    Examples:
        conductor init              # Initialize Conductor in current project
        conductor run --once        # Dispatch one batch of tasks
        conductor run               # Run the loop until Ctrl+C
        conductor status            # Current phase and milestones
        conductor report --json     # Full progress report
        conductor advance           # Advance to the next phase
    """
    ctx.ensure_object(dict)

    ctx.obj["verbose"] = verbose
    ctx.obj["config"] = config

    if verbose:
        console.print("[dim]Conductor CLI starting with verbose output enabled[/dim]")


cli.add_command(init_command, name="init")
cli.add_command(run_command, name="run")
cli.add_command(status_command, name="status")
cli.add_command(report_command, name="report")
cli.add_command(dashboard_command, name="dashboard")
cli.add_command(advance_command, name="advance")
cli.add_command(rollback_command, name="rollback")
cli.add_command(test_command, name="test")
cli.add_command(deploy_command, name="deploy")
cli.add_command(checkpoints_command, name="checkpoints")
cli.add_command(logs_command, name="logs")
cli.add_command(config_group, name="config")


def main() -> None:
    """Main entry point for the CLI."""
    try:
        cli(standalone_mode=False)
    except click.exceptions.Abort as e:
        if isinstance(e.__cause__, KeyboardInterrupt):
            console.print("\n[yellow]Operation cancelled by user[/yellow]")
            sys.exit(130)
        console.print("[yellow]Aborted[/yellow]")
        sys.exit(1)
    except click.ClickException as e:
        e.show()
        sys.exit(e.exit_code)
    except ConductorError as e:
        console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)
    except KeyboardInterrupt:
        console.print("\n[yellow]Operation cancelled by user[/yellow]")
        sys.exit(130)
    except Exception as e:
        console.print(f"[red]Unexpected error:[/red] {e}")
        if "--verbose" in sys.argv or "-v" in sys.argv:
            console.print_exception()
        sys.exit(1)


if __name__ == "__main__":
    main()
