"""``workboard`` command line: inspect persisted canvases and run the demo."""

from __future__ import annotations

import typer
from rich.console import Console

from workboard.cli.commands import config_cmd, demo_cmd, nodes_cmd
from workboard.kernel.logging import configure_logging

app = typer.Typer(
    name="workboard",
    help="Scheduler-backed dataset, network and evaluation nodes of an ML canvas.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    pretty_exceptions_enable=False,
)
app.add_typer(config_cmd.app, name="config", help="Show or validate the effective settings")
app.add_typer(nodes_cmd.app, name="nodes", help="Inspect nodes stored for a workspace")
app.command(
    "demo", help="Drive a dataset -> network -> evaluation canvas against a mock scheduler"
)(demo_cmd.run_demo)

console = Console()


def _print_version(requested: bool) -> None:
    if not requested:
        return
    from workboard import __version__

    console.print(f"workboard version [green]{__version__}[/green]")
    raise typer.Exit()


def _output_format(json_out: bool, yaml_out: bool) -> str:
    if json_out and yaml_out:
        raise typer.BadParameter("--json and --yaml cannot be combined")
    if json_out:
        return "json"
    return "yaml" if yaml_out else "pretty"


@app.callback()
def callback(
    ctx: typer.Context,
    *,
    quiet: bool = typer.Option(False, "-q", "--quiet", help="Only log errors"),
    verbose: bool = typer.Option(False, "-V", "--verbose", help="Log debug messages"),
    json_out: bool = typer.Option(False, "--json", help="Print results as JSON"),
    yaml_out: bool = typer.Option(False, "--yaml", help="Print results as YAML"),
    config: str | None = typer.Option(None, "--config", "-c", help="Settings file to load"),
    version: bool = typer.Option(
        False,
        "--version",
        "-v",
        help="Print the version and exit",
        callback=_print_version,
        is_eager=True,
    ),
) -> None:
    """Store global flags on ``ctx.obj`` and set up logging for the subcommand."""
    level = "ERROR" if quiet else "DEBUG" if verbose else "WARNING"
    ctx.ensure_object(dict)
    ctx.obj.update(
        quiet=quiet,
        verbose=verbose,
        output_format=_output_format(json_out, yaml_out),
        config_path=config,
        log_level=level,
    )
    configure_logging(level=level, format="rich", force_reconfigure=True)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
