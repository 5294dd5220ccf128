"""CLI helper utilities for workboard commands."""

from __future__ import annotations

import dataclasses
import json
from typing import TYPE_CHECKING, Any, Protocol

import typer
import yaml
from rich.console import Console
from rich.table import Table

from workboard.kernel.domain.node_state import NodeStatus
from workboard.kernel.logging import configure_logging

if TYPE_CHECKING:
    from workboard.kernel.config.models import LoggingConfig
    from workboard.kernel.domain.graph import NodeRecord


class ContextProtocol(Protocol):
    """Protocol for common interface between Click and Typer contexts."""

    @property
    def obj(self) -> dict[str, Any] | None: ...


console = Console()

STATUS_STYLES = {
    NodeStatus.INACTIVE: "dim",
    NodeStatus.ACTIVE: "cyan",
    NodeStatus.BUSY: "yellow",
    NodeStatus.SUCCESS: "green",
    NodeStatus.ERROR: "red",
}


def global_option(ctx: ContextProtocol | None, key: str, default: Any = None) -> Any:
    """Read a global flag stored on ``ctx.obj`` by the main callback."""
    obj = getattr(ctx, "obj", None)
    if isinstance(obj, dict):
        return obj.get(key, default)
    return default


def print_output(data: Any, ctx: ContextProtocol | None = None) -> None:
    """Print *data* according to ``ctx.obj['output_format']``.

    If ctx is None or no format is specified, pretty-print using rich.
    """
    fmt = global_option(ctx, "output_format")
    if fmt == "json":
        typer.echo(json.dumps(data, default=str, indent=2))
    elif fmt == "yaml":
        typer.echo(yaml.safe_dump(data, sort_keys=False))
    elif isinstance(data, (str, int, float)):
        typer.echo(str(data))
    else:
        console.print(data)


def node_summary(record: NodeRecord) -> dict[str, Any]:
    """Flat, JSON-friendly view of one node."""
    context = record.machine_state.context
    return {
        "node_id": record.node_id,
        "type": record.node_type.value,
        "state": str(record.machine_state.value),
        "status": record.status.value,
        "job_id": context.job_id,
        "job_status": context.job_status.value if context.job_status else None,
        "message": context.message,
    }


def nodes_table(records: list[NodeRecord], title: str = "Nodes") -> Table:
    table = Table(title=title, show_header=True, header_style="bold magenta")
    table.add_column("Node", style="cyan", no_wrap=True)
    table.add_column("Type")
    table.add_column("State")
    table.add_column("Job")
    table.add_column("Message", overflow="fold")
    for record in records:
        summary = node_summary(record)
        style = STATUS_STYLES.get(record.status, "")
        table.add_row(
            summary["node_id"],
            summary["type"],
            f"[{style}]{summary['state']}[/{style}]" if style else summary["state"],
            summary["job_id"] or "-",
            summary["message"],
        )
    return table


def apply_logging_settings(ctx: ContextProtocol | None, settings: LoggingConfig) -> None:
    """Honour a config file's ``logging`` section, keeping the CLI's level and console."""
    options = dataclasses.asdict(settings)
    options.update(level=global_option(ctx, "log_level", "WARNING"), format="rich")
    configure_logging(**options)
