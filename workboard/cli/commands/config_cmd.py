"""Configuration management commands."""

from __future__ import annotations

import dataclasses
from pathlib import Path
from typing import Annotated, Any

import typer
from rich.console import Console

from workboard.cli.utils import global_option, print_output
from workboard.kernel.config import ConfigLoader, load_config
from workboard.kernel.exceptions import ConfigurationError

app = typer.Typer(help="Configuration management commands")
console = Console()


def _load(ctx: typer.Context) -> dict[str, Any]:
    path = global_option(ctx, "config_path")
    try:
        config = load_config(path)
    except (FileNotFoundError, ConfigurationError) as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1) from e
    return dataclasses.asdict(config)


@app.command("show")
def show_config(
    ctx: typer.Context,
    key: Annotated[str | None, typer.Argument(help="Top-level key, e.g. 'polling'")] = None,
) -> None:
    """Show the effective configuration or a single top-level key."""
    config = _load(ctx)
    if key is None:
        print_output(config, ctx)
        return
    if key not in config:
        console.print(f"[red]Unknown configuration key '{key}'[/red]")
        console.print(f"Available keys: {', '.join(config)}")
        raise typer.Exit(1)
    print_output(config[key], ctx)


@app.command("validate")
def validate_config(
    path: Annotated[Path, typer.Argument(help="YAML manifest or pyproject.toml")],
) -> None:
    """Check that a configuration file parses into a valid workboard config."""
    if not path.exists():
        console.print(f"[red]Error: Config file not found: {path}[/red]")
        raise typer.Exit(1)
    try:
        ConfigLoader().load_config_file(path)
    except ConfigurationError as e:
        console.print(f"[red]✗ {e}[/red]")
        raise typer.Exit(1) from e
    console.print(f"[green]✓ {path} is a valid configuration[/green]")
