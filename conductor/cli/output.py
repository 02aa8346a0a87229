"""Shared rendering helpers for CLI commands."""

import json
from typing import Any, Dict

import click
from rich.console import Console
from rich.table import Table

from conductor.core.models import CommandResult

console = Console()


def print_result(result: CommandResult) -> None:
    """Print a successful result or raise its error as a click failure."""
    if not result.success:
        raise click.ClickException(result.error or result.message)
    console.print(f"[green]✓[/green] {result.message}")


def print_json(data: Any) -> None:
    click.echo(json.dumps(data, indent=2, default=str))


def percent(fraction: float) -> str:
    return f"{fraction * 100:.0f}%"


def key_value_table(title: str, rows: Dict[str, Any]) -> Table:
    table = Table(title=title, show_header=False)
    table.add_column("Key", style="cyan", no_wrap=True)
    table.add_column("Value", style="white")
    for key, value in rows.items():
        table.add_row(key, str(value))
    return table
