"""Demo command: a dataset feeding a network, run against the mock scheduler."""

from __future__ import annotations

import asyncio
from typing import Annotated

import typer
from rich.console import Console

from workboard.cli.utils import global_option, node_summary, nodes_table, print_output
from workboard.drivers.observer_manager import LocalObserverManager
from workboard.kernel.config.models import PollingConfig, WorkboardConfig
from workboard.kernel.domain.graph import NodeRecord, Position
from workboard.kernel.domain.node_state import NodeMachineState, NodeStatus
from workboard.kernel.events.events import Event
from workboard.kernel.exceptions import WorkboardError
from workboard.stdlib.adapters.memory import InMemoryCollectionStorage
from workboard.stdlib.adapters.mock import MockScheduler
from workboard.stdlib.adapters.sql import SQLCollectionStorage
from workboard.stdlib.lib.graph_store import GraphStore
from workboard.stdlib.lib.workboard import Workboard

console = Console()

DEMO_WORKSPACE_PATH = "/remote/workboard"
DATASET_JOB = "1001"
NETWORK_JOB = "1002"
FINETUNE_JOB = "1003"


def _is_settled(state: NodeMachineState) -> bool:
    return state.status in (NodeStatus.SUCCESS, NodeStatus.ERROR)


async def _wait_settled(board: Workboard, node_id: str, timeout: float) -> NodeMachineState:
    machine = board.machine(node_id)
    if machine is None:
        return await board.aget_state(node_id)
    return await machine.wait_for(_is_settled, timeout)


async def _run_scenario(
    board: Workboard, timeout: float, fail_network: bool
) -> list[NodeRecord]:
    dataset = await board.aadd_node("dataset", Position(0, 0), node_id="dataset-1")
    network = await board.aadd_node("network", Position(300, 0), node_id="network-1")
    await board.aconnect(dataset.node_id, network.node_id)

    await board.astart(dataset.node_id, {"dataset_name": "cells"})
    await _wait_settled(board, dataset.node_id, timeout)

    await board.aactivate(network.node_id)
    await board.astart(
        network.node_id,
        {"network_label": "cellnet", "network_type": "unet2d", "slurm_options": {"n_gpu": 1}},
    )
    trained = await _wait_settled(board, network.node_id, timeout)
    if trained.status == NodeStatus.SUCCESS:
        await board.afinetune(network.node_id, {"epochs": 5})
        await _wait_settled(board, network.node_id, timeout)
    return await board.store.alist_nodes()


async def _demo(
    storage_url: str | None,
    workspace: str,
    poll_interval: float,
    timeout: float,
    fail_network: bool,
    echo_events: bool,
) -> list[NodeRecord]:
    scheduler = MockScheduler(job_ids=[DATASET_JOB, NETWORK_JOB, FINETUNE_JOB])
    scheduler.script(DATASET_JOB, "PENDING", "RUNNING", "RUNNING", "COMPLETED")
    scheduler.script(NETWORK_JOB, "RUNNING", "FAILED" if fail_network else "COMPLETED")
    scheduler.script(FINETUNE_JOB, "RUNNING", "COMPLETED")

    config = WorkboardConfig(
        workspace_path=DEMO_WORKSPACE_PATH,
        storage_url=storage_url,
        polling=PollingConfig(interval_seconds=poll_interval),
    )
    storage = SQLCollectionStorage(storage_url) if storage_url else InMemoryCollectionStorage()
    if isinstance(storage, SQLCollectionStorage):
        await storage.asetup()

    try:
        async with LocalObserverManager() as observers:
            if echo_events:

                def echo(event: Event) -> None:
                    console.print(f"[dim]•[/dim] {event.log_message()}")

                observers.register(echo, observer_id="console")

            board = Workboard(GraphStore(workspace, storage), scheduler, config, observers)
            await board.asetup()
            try:
                return await _run_scenario(board, timeout, fail_network)
            finally:
                await board.ateardown()
    finally:
        if isinstance(storage, SQLCollectionStorage):
            await storage.aclose()


def run_demo(
    ctx: typer.Context,
    store: Annotated[
        str | None, typer.Option("--store", help="Persist nodes to this SQLAlchemy URL")
    ] = None,
    workspace: Annotated[str, typer.Option("--workspace", "-w", help="Workspace id")] = "demo",
    poll_interval: Annotated[
        float, typer.Option("--poll-interval", min=0.001, help="Seconds between polls")
    ] = 0.05,
    timeout: Annotated[
        float, typer.Option("--timeout", help="Seconds to wait for each job")
    ] = 30.0,
    fail_network: Annotated[
        bool, typer.Option("--fail-network", help="Make the training job fail")
    ] = False,
) -> None:
    """Train a network on a dataset, both jobs run by a scripted mock scheduler."""
    pretty = global_option(ctx, "output_format", "pretty") == "pretty"
    echo_events = pretty and not global_option(ctx, "quiet", False)
    try:
        records = asyncio.run(
            _demo(store, workspace, poll_interval, timeout, fail_network, echo_events)
        )
    except TimeoutError as e:
        console.print(f"[red]Error: a job did not finish within {timeout}s[/red]")
        raise typer.Exit(1) from e
    except WorkboardError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1) from e

    if pretty:
        console.print(nodes_table(records, title="Demo workspace"))
    else:
        print_output([node_summary(r) for r in records], ctx)
