"""GraphStore lib - authoritative nodes and edges of one workspace.

Nodes carry their serialized machine snapshot; a live
:class:`~workboard.kernel.machine.actor.NodeMachine` is only a view over it.
Every mutation is written through to the optional collection storage.

Usage::

    from workboard.stdlib.lib.graph_store import GraphStore

    store = GraphStore("ws-1", storage=my_storage)
    await store.asetup()
    await store.aconnect("dataset-1", "network-1")
    upstream = await store.aresolve_upstream("network-1", NodeType.DATASET)
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from workboard.kernel.domain.graph import (
    Edge,
    NodeRecord,
    Position,
    edge_from_storage,
    edge_to_storage,
    is_compatible_upstream,
    node_record_from_storage,
    node_record_to_storage,
    upstream_data_for,
)
from workboard.kernel.domain.node_state import (
    NodeMachineState,
    NodeType,
    machine_state_from_storage,
)
from workboard.kernel.exceptions import ResourceNotFoundError, ValidationError
from workboard.kernel.logging import get_logger
from workboard.kernel.service import Service, tool

if TYPE_CHECKING:
    from workboard.kernel.domain.graph import UpstreamData
    from workboard.kernel.ports.data_store import SupportsCollectionStorage

logger = get_logger(__name__)

NODES_COLLECTION = "workboard_nodes"
EDGES_COLLECTION = "workboard_edges"


class GraphStore(Service):
    """Nodes and edges of one workspace, with optional persistent storage.

    Exposed tools
    -------------
    - ``aadd_node(record)`` / ``adelete_node(node_id)`` / ``aupdate_node(node_id, data)``
    - ``aget_node(node_id)`` / ``alist_nodes(node_type?)`` / ``alist_edges()``
    - ``aconnect(source, target)`` / ``adisconnect(source, target)``
    - ``aresolve_upstream(node_id, required_type)`` - first usable upstream or None
    - ``aupstream_candidates(node_id, required_type)`` - all compatible upstream nodes
    """

    def __init__(
        self,
        workspace_id: str,
        storage: SupportsCollectionStorage | None = None,
    ) -> None:
        """Initialise the store.

        Args
        ----
            workspace_id: Workspace whose graph this store holds; prefixes
                every storage key.
            storage: Optional persistent backend.  When ``None`` (default),
                all data lives only in memory.
        """
        self.workspace_id = workspace_id
        self._storage = storage
        self._nodes: dict[str, NodeRecord] = {}
        self._edges: dict[str, Edge] = {}

    async def asetup(self) -> None:
        """Load the workspace's nodes and edges from storage."""
        if self._storage is None:
            return

        filters = {"workspace_id": self.workspace_id}
        node_docs = await self._storage.aquery(NODES_COLLECTION, filters)
        records = sorted(
            (node_record_from_storage(doc) for doc in node_docs), key=lambda r: r.created_at
        )
        self._nodes = {record.node_id: record for record in records}

        edge_docs = await self._storage.aquery(EDGES_COLLECTION, filters)
        edges = sorted((edge_from_storage(doc) for doc in edge_docs), key=lambda e: e.created_at)
        self._edges = {edge.edge_id: edge for edge in edges}

        logger.info(
            "Loaded workspace {ws}: {nodes} nodes, {edges} edges",
            ws=self.workspace_id,
            nodes=len(self._nodes),
            edges=len(self._edges),
        )

    # ------------------------------------------------------------------
    # Nodes
    # ------------------------------------------------------------------

    @tool
    async def aadd_node(self, record: NodeRecord) -> NodeRecord:
        """Add a node.

        Raises
        ------
        ValidationError
            If a node with the same id already exists
        """
        if record.node_id in self._nodes:
            raise ValidationError("node_id", "already exists", record.node_id)
        self._nodes[record.node_id] = record
        await self._save_node(record)
        logger.debug("Added {type} node {node}", type=record.node_type, node=record.node_id)
        return record

    @tool
    async def adelete_node(self, node_id: str) -> NodeRecord:
        """Delete a node and its incident edges.

        A job the node has in flight is not cancelled.

        Raises
        ------
        ResourceNotFoundError
            If the node does not exist
        """
        record = self._require(node_id)
        for edge in [e for e in self._edges.values() if node_id in (e.source, e.target)]:
            await self._remove_edge(edge)
        del self._nodes[node_id]
        if self._storage is not None:
            await self._storage.adelete(NODES_COLLECTION, self._key(node_id))
        logger.debug("Deleted node {node}", node=node_id)
        return record

    @tool
    async def aupdate_node(self, node_id: str, data: dict[str, Any]) -> NodeRecord:
        """Replace parts of a node's persisted data.

        Args
        ----
            node_id: Node to update.
            data: Any of ``machine_state`` (snapshot or storage dict),
                ``position`` (Position or ``{x, y}``) and ``workspace_path``.

        Raises
        ------
        ResourceNotFoundError
            If the node does not exist
        ValidationError
            If *data* contains unknown keys
        """
        record = self._require(node_id)
        unknown = set(data) - {"machine_state", "position", "workspace_path"}
        if unknown:
            raise ValidationError("data", "unknown node fields", sorted(unknown))

        if "machine_state" in data:
            state = data["machine_state"]
            if not isinstance(state, NodeMachineState):
                state = machine_state_from_storage(state)
            if state.node_type != record.node_type:
                raise ValidationError("machine_state", "node type cannot change", state.node_type)
            record.machine_state = state
        if "position" in data:
            position = data["position"]
            record.position = position if isinstance(position, Position) else Position(**position)
        if "workspace_path" in data:
            record.workspace_path = str(data["workspace_path"])

        await self._save_node(record)
        return record

    @tool
    async def aget_node(self, node_id: str) -> NodeRecord | None:
        """Return a node, or None when it does not exist."""
        return self._nodes.get(node_id)

    @tool
    async def alist_nodes(self, node_type: NodeType | str | None = None) -> list[NodeRecord]:
        """List nodes in creation order, optionally of one type."""
        records = list(self._nodes.values())
        if node_type is not None:
            records = [r for r in records if r.node_type == NodeType(node_type)]
        return records

    # ------------------------------------------------------------------
    # Edges
    # ------------------------------------------------------------------

    @tool
    async def alist_edges(self) -> list[Edge]:
        """List edges in insertion order."""
        return list(self._edges.values())

    @tool
    async def aconnect(self, source: str, target: str) -> Edge:
        """Add the edge ``source -> target``; an existing edge is returned as is.

        Raises
        ------
        ResourceNotFoundError
            If either node does not exist
        ValidationError
            If source and target are the same node
        """
        if source == target:
            raise ValidationError("edge", "a node cannot feed itself", source)
        self._require(source)
        self._require(target)

        edge = Edge(source=source, target=target)
        existing = self._edges.get(edge.edge_id)
        if existing is not None:
            return existing

        self._edges[edge.edge_id] = edge
        if self._storage is not None:
            doc = edge_to_storage(edge)
            doc["workspace_id"] = self.workspace_id
            await self._storage.asave(EDGES_COLLECTION, self._key(edge.edge_id), doc)
        logger.debug("Connected {source} -> {target}", source=source, target=target)
        return edge

    @tool
    async def adisconnect(self, source: str, target: str) -> bool:
        """Remove the edge ``source -> target``.  Returns True if it existed."""
        edge = self._edges.get(Edge(source=source, target=target).edge_id)
        if edge is None:
            return False
        await self._remove_edge(edge)
        return True

    # ------------------------------------------------------------------
    # Upstream queries
    # ------------------------------------------------------------------

    @tool
    async def aincoming(self, node_id: str) -> list[NodeRecord]:
        """Nodes feeding *node_id*, in edge insertion order."""
        return [
            self._nodes[edge.source]
            for edge in self._edges.values()
            if edge.target == node_id and edge.source in self._nodes
        ]

    @tool
    async def aupstream_candidates(
        self, node_id: str, required_type: NodeType | str
    ) -> list[NodeRecord]:
        """Connected upstream nodes whose type can satisfy *required_type*."""
        required = NodeType(required_type)
        return [
            record
            for record in await self.aincoming(node_id)
            if is_compatible_upstream(record.node_type, required)
        ]

    @tool
    async def aresolve_upstream(
        self, node_id: str, required_type: NodeType | str
    ) -> UpstreamData | None:
        """First connected node able to supply *required_type* data.

        An ``augmentation`` node satisfies ``dataset`` through its recorded
        source dataset name; a ``finetune`` node satisfies ``network``
        through its recorded source network. Nodes that have not recorded
        the needed fields are skipped. Returns None, never raises, when
        nothing matches.
        """
        required = NodeType(required_type)
        for record in await self.aincoming(node_id):
            data = upstream_data_for(record, required)
            if data is not None:
                return data
        return None

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _key(self, item_id: str) -> str:
        return f"{self.workspace_id}:{item_id}"

    def _require(self, node_id: str) -> NodeRecord:
        record = self._nodes.get(node_id)
        if record is None:
            raise ResourceNotFoundError("node", node_id, list(self._nodes))
        return record

    async def _save_node(self, record: NodeRecord) -> None:
        if self._storage is None:
            return
        doc = node_record_to_storage(record)
        doc["workspace_id"] = self.workspace_id
        await self._storage.asave(NODES_COLLECTION, self._key(record.node_id), doc)

    async def _remove_edge(self, edge: Edge) -> None:
        self._edges.pop(edge.edge_id, None)
        if self._storage is not None:
            await self._storage.adelete(EDGES_COLLECTION, self._key(edge.edge_id))
