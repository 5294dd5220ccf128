"""Reconciler lib - keeps one live node machine per persisted node.

Machines are built from the stored snapshot, never from a node type's
initial state, so a restart resumes where the workspace left off: running
jobs are polled again and interrupted submissions end up in error.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from workboard.kernel.logging import get_logger
from workboard.kernel.service import Service, tool

if TYPE_CHECKING:
    from collections.abc import Callable

    from workboard.kernel.domain.graph import NodeRecord
    from workboard.kernel.machine.actor import NodeMachine
    from workboard.stdlib.lib.graph_store import GraphStore

    MachineFactory = Callable[[NodeRecord], NodeMachine]

logger = get_logger(__name__)


class Reconciler(Service):
    """Mounts and unmounts node machines for a :class:`GraphStore`.

    Parameters
    ----------
    store : GraphStore
        Source of the persisted snapshots.
    machine_factory : Callable[[NodeRecord], NodeMachine]
        Builds an unstarted machine for one record.
    """

    def __init__(self, store: GraphStore, machine_factory: MachineFactory) -> None:
        self._store = store
        self._factory = machine_factory
        self._machines: dict[str, NodeMachine] = {}

    async def ateardown(self) -> None:
        await self.aunmount()

    @property
    def machines(self) -> dict[str, NodeMachine]:
        return dict(self._machines)

    def get(self, node_id: str) -> NodeMachine | None:
        return self._machines.get(node_id)

    @tool
    async def amount(self) -> dict[str, NodeMachine]:
        """Start a machine for every stored node that has none yet."""
        for record in await self._store.alist_nodes():
            await self.amount_node(record)
        logger.info("Mounted {count} node machines", count=len(self._machines))
        return self.machines

    @tool
    async def amount_node(self, record: NodeRecord) -> NodeMachine:
        """Start the machine of one node; an already mounted machine is returned."""
        machine = self._machines.get(record.node_id)
        if machine is not None:
            return machine
        machine = self._factory(record)
        self._machines[record.node_id] = machine
        await machine.start()
        logger.debug(
            "Mounted node {node} at {state}", node=record.node_id, state=record.machine_state.value
        )
        return machine

    @tool
    async def aunmount_node(self, node_id: str) -> bool:
        """Stop the machine of one node.  Returns False when none was mounted."""
        machine = self._machines.pop(node_id, None)
        if machine is None:
            return False
        await machine.stop()
        return True

    @tool
    async def aunmount(self) -> None:
        """Stop every machine and its poller; remote jobs keep running."""
        for node_id in list(self._machines):
            await self.aunmount_node(node_id)
