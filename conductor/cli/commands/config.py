"""Conductor config commands."""

from pathlib import Path
from typing import Optional

import click
import yaml

from conductor.cli.output import console
from conductor.config.loader import get_config_paths, load_config, validate_config_file


@click.group(invoke_without_command=True)
@click.pass_context
def config_group(ctx: click.Context) -> None:
    """Show and validate configuration."""
    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


@config_group.command("show")
@click.pass_context
def show_command(ctx: click.Context) -> None:
    """Print the merged configuration as YAML."""
    config = load_config(project_config_path=ctx.find_object(dict).get("config"))
    paths = get_config_paths()
    for name, path in paths.items():
        marker = "[green]found[/green]" if path and path.exists() else "[dim]absent[/dim]"
        console.print(f"[dim]{name}:[/dim] {path} ({marker})")
    click.echo(yaml.dump(config.model_dump(mode="json"), default_flow_style=False, sort_keys=False))


@config_group.command("validate")
@click.argument("path", required=False, type=click.Path(exists=True, path_type=Path))
def validate_command(path: Optional[Path]) -> None:
    """Validate a configuration file (default: the project configuration)."""
    path = path or get_config_paths()["project"]
    if path is None or not path.exists():
        raise click.ClickException("No project configuration found; run 'conductor init'")

    result = validate_config_file(path)
    for warning in result["warnings"]:
        console.print(f"[yellow]Warning:[/yellow] {warning}")
    if not result["valid"]:
        for error in result["errors"]:
            console.print(f"[red]Error:[/red] {error}")
        raise click.ClickException(f"Invalid configuration: {path}")
    console.print(f"[green]✓[/green] {path} is valid")
