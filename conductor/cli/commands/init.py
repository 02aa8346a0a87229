"""Conductor init command."""

from pathlib import Path

import click

from conductor.cli.output import console
from conductor.config.loader import CONFIG_DIR_NAME, CONFIG_FILE_NAME, create_default_config, save_config

GITIGNORE = """# Conductor generated files
logs/
checkpoints/
state-backup-*.json
*.tmp
"""


@click.command()
@click.option(
    "--force",
    "-f",
    is_flag=True,
    help="Force initialization even if .conductor directory already exists",
)
def init_command(force: bool) -> None:
    """Initialize Conductor in the current project.

    Creates a .conductor directory with a default configuration. State,
    progress, error and lesson files are written there as the orchestrator
    runs.

    Examples:
        conductor init                # Initialize with default settings
        conductor init --force        # Rewrite the default configuration
    """
    project_root = Path.cwd()
    conductor_dir = project_root / CONFIG_DIR_NAME

    if conductor_dir.exists() and not force:
        console.print(
            f"[yellow]Conductor already initialized in {project_root}[/yellow]\n"
            "Use --force to reinitialize"
        )
        return

    try:
        conductor_dir.mkdir(exist_ok=True)
        (conductor_dir / "logs").mkdir(exist_ok=True)

        config_path = conductor_dir / CONFIG_FILE_NAME
        if not config_path.exists() or force:
            save_config(create_default_config(), config_path)

        gitignore_path = conductor_dir / ".gitignore"
        if not gitignore_path.exists() or force:
            gitignore_path.write_text(GITIGNORE, encoding="utf-8")

        console.print(f"[green]✓[/green] Conductor initialized in {project_root}")
        console.print(f"[dim]Configuration:[/dim] {config_path}")
        console.print("\n[bold]Next steps:[/bold]")
        console.print("1. Review agent commands and probes in .conductor/config.yaml")
        console.print("2. Run one pass: conductor run --once")
        console.print("3. Start the loop: conductor run")

    except Exception as e:
        console.print(f"[red]Failed to initialize Conductor:[/red] {e}")
        raise click.ClickException(f"Initialization failed: {e}")
