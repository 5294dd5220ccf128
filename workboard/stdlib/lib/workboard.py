"""Workboard lib - the caller layer over the graph store and node machines.

The controller resolves upstream data from the graph before any event
reaches a machine, and writes every snapshot change back to the store.

Usage::

    from workboard.stdlib.lib.workboard import Workboard

    board = Workboard(GraphStore("ws-1"), MockScheduler())
    await board.asetup()
    dataset = await board.aadd_node("dataset")
    await board.astart(dataset.node_id, {"dataset_name": "cells"})
"""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING, Any

from workboard.kernel.config.models import WorkboardConfig
from workboard.kernel.domain.graph import NodeRecord, Position, upstream_data_for
from workboard.kernel.domain.node_state import NodeContext, NodeMachineState, NodeType
from workboard.kernel.events.events import UpstreamAmbiguous, UpstreamMissing
from workboard.kernel.exceptions import ResourceNotFoundError
from workboard.kernel.logging import get_logger, set_correlation_id
from workboard.kernel.machine.actor import NodeMachine
from workboard.kernel.machine.policies import get_policy
from workboard.kernel.machine.transitions import Activate, Cancel, Finetune, Retry, Start
from workboard.kernel.service import Service, tool
from workboard.stdlib.lib.reconciler import Reconciler

if TYPE_CHECKING:
    from workboard.kernel.domain.graph import Edge
    from workboard.kernel.events.events import Event
    from workboard.kernel.machine.policies import NodePolicy
    from workboard.kernel.machine.transitions import MachineEvent
    from workboard.kernel.ports.observer_manager import ObserverManager
    from workboard.kernel.ports.scheduler import JobScheduler
    from workboard.stdlib.lib.graph_store import GraphStore

logger = get_logger(__name__)

CLONE_OFFSET = 50.0


class Workboard(Service):
    """Graph editing and job control for one workspace.

    Exposed tools
    -------------
    - ``aadd_node`` / ``aclone_node`` / ``adelete_node``
    - ``aconnect`` / ``adisconnect``
    - ``aactivate`` / ``astart`` / ``aretry`` / ``afinetune`` / ``acancel``
    - ``amount`` / ``aunmount`` / ``aget_state``

    User operations return ``False`` instead of raising when an upstream
    check fails or the node's current state does not accept the event;
    observers receive the matching notification.
    """

    def __init__(
        self,
        store: GraphStore,
        scheduler: JobScheduler,
        config: WorkboardConfig | None = None,
        observers: ObserverManager | None = None,
    ) -> None:
        """Initialise the controller.

        Args
        ----
            store: Graph store of the workspace.
            scheduler: Scheduler adapter shared by every node machine.
            config: Polling, resource and workspace defaults.
            observers: Optional observer manager receiving notifications.
        """
        self.store = store
        self._scheduler = scheduler
        self.config = config or WorkboardConfig()
        self._observers = observers
        self.reconciler = Reconciler(store, self._build_machine)

    async def asetup(self) -> None:
        set_correlation_id(self.store.workspace_id)
        await self.store.asetup()
        await self.reconciler.amount()

    async def ateardown(self) -> None:
        await self.reconciler.aunmount()

    # ------------------------------------------------------------------
    # Graph editing
    # ------------------------------------------------------------------

    @tool
    async def aadd_node(
        self,
        node_type: NodeType | str,
        position: Position | None = None,
        node_id: str | None = None,
        workspace_path: str | None = None,
    ) -> NodeRecord:
        """Create a node at its type's initial state and mount its machine.

        Raises
        ------
        ValidationError
            If the node type is unknown or the id is taken
        """
        policy = get_policy(node_type)
        state = NodeMachineState(node_type=policy.node_type, value=policy.initial_state)
        return await self._add(policy, state, position, node_id, workspace_path)

    @tool
    async def aclone_node(
        self, node_type: NodeType | str, position: Position | None = None
    ) -> NodeRecord:
        """Create a node pre-filled from the last node of the same type.

        The copy takes the source's form and derived fields but starts at the
        policy's initial state with no job. Without a source node this is
        :meth:`aadd_node`.
        """
        policy = get_policy(node_type)
        existing = await self.store.alist_nodes(policy.node_type)
        if not existing:
            return await self.aadd_node(policy.node_type, position)

        source = existing[-1]
        context = NodeContext(
            form=dict(source.machine_state.context.form),
            derived=dict(source.derived),
        )
        state = NodeMachineState(
            node_type=policy.node_type, value=policy.initial_state, context=context
        )
        if position is None:
            position = Position(source.position.x + CLONE_OFFSET, source.position.y + CLONE_OFFSET)
        return await self._add(policy, state, position, None, source.workspace_path)

    @tool
    async def adelete_node(self, node_id: str) -> NodeRecord:
        """Stop the node's machine and delete it; a running remote job is left alone."""
        await self.reconciler.aunmount_node(node_id)
        return await self.store.adelete_node(node_id)

    @tool
    async def aconnect(self, source: str, target: str) -> Edge:
        return await self.store.aconnect(source, target)

    @tool
    async def adisconnect(self, source: str, target: str) -> bool:
        return await self.store.adisconnect(source, target)

    # ------------------------------------------------------------------
    # Job control
    # ------------------------------------------------------------------

    @tool
    async def aactivate(self, node_id: str) -> bool:
        """Activate a node once an upstream node of every required type is connected."""
        machine = await self._machine(node_id)
        for required in machine.policy.required_upstream:
            if not await self.store.aupstream_candidates(node_id, required):
                await self._notify(UpstreamMissing(node_id=node_id, required_type=required.value))
                return False
        return await machine.asend(Activate())

    @tool
    async def astart(self, node_id: str, form: dict[str, Any] | None = None) -> bool:
        """Submit the node's first job with *form*."""
        return await self._submit_with_upstream(node_id, form, Start)

    @tool
    async def aretry(self, node_id: str, form: dict[str, Any] | None = None) -> bool:
        """Resubmit a node in an error state with *form*."""
        return await self._submit_with_upstream(node_id, form, Retry)

    @tool
    async def afinetune(self, node_id: str, form: dict[str, Any] | None = None) -> bool:
        """Submit a finetuning job for a successfully trained network."""
        return await self._submit_with_upstream(node_id, form, Finetune)

    @tool
    async def acancel(self, node_id: str) -> bool:
        """Ask the scheduler to cancel the node's running job."""
        machine = await self._machine(node_id)
        return await machine.asend(Cancel())

    @tool
    async def aget_state(self, node_id: str) -> NodeMachineState:
        """Current snapshot of a node, from its machine when one is mounted."""
        machine = self.reconciler.get(node_id)
        if machine is not None:
            return machine.state
        return self._require(await self.store.aget_node(node_id), node_id).machine_state

    @tool
    async def amount(self) -> dict[str, NodeMachine]:
        return await self.reconciler.amount()

    @tool
    async def aunmount(self) -> None:
        await self.reconciler.aunmount()

    def machine(self, node_id: str) -> NodeMachine | None:
        """Mounted machine of a node, if any."""
        return self.reconciler.get(node_id)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _add(
        self,
        policy: NodePolicy,
        state: NodeMachineState,
        position: Position | None,
        node_id: str | None,
        workspace_path: str | None,
    ) -> NodeRecord:
        record = NodeRecord(
            node_id=node_id or uuid.uuid4().hex,
            machine_state=state,
            position=position or Position(),
            workspace_path=(
                workspace_path if workspace_path is not None else self.config.workspace_path
            ),
        )
        await self.store.aadd_node(record)
        await self.reconciler.amount_node(record)
        logger.info(
            "Created {type} node {node} at {state}",
            type=policy.node_type,
            node=record.node_id,
            state=state.value,
        )
        return record

    async def _submit_with_upstream(
        self,
        node_id: str,
        form: dict[str, Any] | None,
        event_type: type[Start] | type[Retry] | type[Finetune],
    ) -> bool:
        machine = await self._machine(node_id)
        upstream = await self._resolve_upstream(node_id, machine.policy)
        if upstream is None:
            return False
        event: MachineEvent = event_type(form=dict(form or {}), upstream=upstream)
        return await machine.asend(event)

    async def _resolve_upstream(
        self, node_id: str, policy: NodePolicy
    ) -> dict[str, dict[str, Any]] | None:
        """Upstream data keyed by required type, or None after notifying why not."""
        upstream: dict[str, dict[str, Any]] = {}
        for required in policy.required_upstream:
            candidates = await self.store.aupstream_candidates(node_id, required)
            if len(candidates) > 1:
                logger.warning(
                    "Node {node}: {count} {type} nodes connected",
                    node=node_id,
                    count=len(candidates),
                    type=required,
                )
                await self._notify(
                    UpstreamAmbiguous(
                        node_id=node_id,
                        required_type=required.value,
                        candidates=tuple(c.node_id for c in candidates),
                    )
                )
                return None
            data = upstream_data_for(candidates[0], required) if candidates else None
            if data is None:
                logger.warning(
                    "Node {node}: no usable {type} upstream", node=node_id, type=required
                )
                await self._notify(UpstreamMissing(node_id=node_id, required_type=required.value))
                return None
            upstream[required.value] = data.data
        return upstream

    async def _machine(self, node_id: str) -> NodeMachine:
        machine = self.reconciler.get(node_id)
        if machine is not None:
            return machine
        record = self._require(await self.store.aget_node(node_id), node_id)
        return await self.reconciler.amount_node(record)

    def _build_machine(self, record: NodeRecord) -> NodeMachine:
        return NodeMachine(
            record.node_id,
            record.machine_state,
            self._scheduler,
            polling=self.config.polling,
            scheduler_defaults=self.config.scheduler,
            workspace_path=record.workspace_path or self.config.workspace_path,
            observers=self._observers,
            on_change=self._persist,
        )

    async def _persist(self, node_id: str, state: NodeMachineState) -> None:
        if await self.store.aget_node(node_id) is None:
            logger.debug("Node {node} was deleted, snapshot not saved", node=node_id)
            return
        await self.store.aupdate_node(node_id, {"machine_state": state})

    def _require(self, record: NodeRecord | None, node_id: str) -> NodeRecord:
        if record is None:
            raise ResourceNotFoundError("node", node_id)
        return record

    async def _notify(self, event: Event) -> None:
        if self._observers is not None:
            await self._observers.notify(event)
