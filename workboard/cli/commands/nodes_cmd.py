"""Node commands for the workboard CLI."""

from __future__ import annotations

import asyncio
from typing import Annotated

import typer
from rich.console import Console

from workboard.cli.utils import (
    apply_logging_settings,
    global_option,
    node_summary,
    nodes_table,
    print_output,
)
from workboard.kernel.config import load_config
from workboard.kernel.domain.graph import NodeRecord, node_record_to_storage
from workboard.kernel.domain.node_state import NodeType
from workboard.kernel.exceptions import WorkboardError
from workboard.stdlib.adapters.sql import SQLCollectionStorage
from workboard.stdlib.lib.graph_store import GraphStore

app = typer.Typer()
console = Console()


def _store_url(ctx: typer.Context, store: str | None) -> str:
    if store:
        return store
    config = load_config(global_option(ctx, "config_path"))
    apply_logging_settings(ctx, config.logging)
    url = config.storage_url
    if not url:
        console.print("[red]Error: no node store given (use --store or set storage_url)[/red]")
        raise typer.Exit(1)
    return url


async def _load_nodes(url: str, workspace: str) -> list[NodeRecord]:
    async with SQLCollectionStorage(url) as storage:
        store = GraphStore(workspace, storage=storage)
        await store.asetup()
        return await store.alist_nodes()


def _read(url: str, workspace: str) -> list[NodeRecord]:
    try:
        return asyncio.run(_load_nodes(url, workspace))
    except WorkboardError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1) from e


@app.command("list")
def list_nodes(
    ctx: typer.Context,
    store: Annotated[
        str | None, typer.Option("--store", help="SQLAlchemy URL of the node store")
    ] = None,
    workspace: Annotated[str, typer.Option("--workspace", "-w", help="Workspace id")] = "default",
    node_type: Annotated[
        NodeType | None, typer.Option("--type", "-t", help="Only nodes of this type")
    ] = None,
) -> None:
    """List the persisted nodes of a workspace with their state."""
    records = _read(_store_url(ctx, store), workspace)
    if node_type is not None:
        records = [r for r in records if r.node_type == node_type]

    if global_option(ctx, "output_format", "pretty") != "pretty":
        print_output([node_summary(r) for r in records], ctx)
        return
    if not records:
        console.print(f"[yellow]No nodes found in workspace '{workspace}'[/yellow]")
        raise typer.Exit()
    console.print(nodes_table(records, title=f"Workspace {workspace}"))


@app.command("show")
def show_node(
    ctx: typer.Context,
    node_id: Annotated[str, typer.Argument(help="Node id")],
    store: Annotated[
        str | None, typer.Option("--store", help="SQLAlchemy URL of the node store")
    ] = None,
    workspace: Annotated[str, typer.Option("--workspace", "-w", help="Workspace id")] = "default",
) -> None:
    """Show the stored record of one node, including its machine snapshot."""
    records = {r.node_id: r for r in _read(_store_url(ctx, store), workspace)}
    record = records.get(node_id)
    if record is None:
        console.print(f"[red]Node '{node_id}' not found[/red]")
        raise typer.Exit(1)
    data = node_record_to_storage(record)
    if global_option(ctx, "output_format", "pretty") == "pretty":
        console.print(data)
    else:
        print_output(data, ctx)
