"""Domain model for the workspace graph: node records, edges, upstream data.

Used by :class:`~workboard.stdlib.lib.graph_store.GraphStore`.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any

from workboard.kernel.domain.node_state import (
    NodeMachineState,
    NodeStatus,
    NodeType,
    machine_state_from_storage,
    machine_state_to_storage,
)

# Node types that can stand in for a required upstream type, with the
# derived-field mapping that turns their data into the required shape.
UPSTREAM_COMPATIBILITY: dict[NodeType, dict[NodeType, dict[str, str]]] = {
    NodeType.DATASET: {
        NodeType.DATASET: {"dataset_name": "dataset_name", "remote_path": "remote_path"},
        NodeType.AUGMENTATION: {
            "dataset_name": "source_dataset_name",
            "augmented_dataset_name": "dataset_name",
        },
    },
    NodeType.NETWORK: {
        NodeType.NETWORK: {"network_label": "network_label", "network_type": "network_type"},
        NodeType.FINETUNE: {
            "network_label": "source_network_label",
            "network_type": "source_network_type",
        },
    },
}

# Fields an upstream node must have recorded before it can feed another node
REQUIRED_UPSTREAM_FIELDS: dict[NodeType, tuple[str, ...]] = {
    NodeType.DATASET: ("dataset_name",),
    NodeType.NETWORK: ("network_label", "network_type"),
}


@dataclass(frozen=True, slots=True)
class Position:
    """Canvas position of a node."""

    x: float = 0.0
    y: float = 0.0


@dataclass(slots=True)
class NodeRecord:
    """Persisted form of one graph node."""

    node_id: str
    machine_state: NodeMachineState
    position: Position = field(default_factory=Position)
    workspace_path: str = ""
    created_at: float = field(default_factory=time.time)

    @property
    def node_type(self) -> NodeType:
        return self.machine_state.node_type

    @property
    def status(self) -> NodeStatus:
        return self.machine_state.status

    @property
    def derived(self) -> dict[str, Any]:
        return self.machine_state.context.derived


@dataclass(frozen=True, slots=True)
class Edge:
    """Directed relation from an upstream node to a downstream node."""

    source: str
    target: str
    created_at: float = field(default_factory=time.time, compare=False)

    @property
    def edge_id(self) -> str:
        return f"{self.source}->{self.target}"


@dataclass(frozen=True, slots=True)
class UpstreamData:
    """Data contributed by an upstream node to a required input slot."""

    node_id: str
    node_type: NodeType
    required_type: NodeType
    data: dict[str, Any] = field(default_factory=dict)


def upstream_data_for(record: NodeRecord, required_type: NodeType) -> UpstreamData | None:
    """Translate *record* into upstream data for *required_type*.

    Returns None when the node's type is not compatible or it has not yet
    recorded the fields the downstream node needs.
    """
    mapping = UPSTREAM_COMPATIBILITY.get(required_type, {}).get(record.node_type)
    if mapping is None:
        return None
    derived = record.derived
    data = {key: derived.get(source) for key, source in mapping.items()}
    if any(not data.get(name) for name in REQUIRED_UPSTREAM_FIELDS.get(required_type, ())):
        return None
    return UpstreamData(
        node_id=record.node_id,
        node_type=record.node_type,
        required_type=required_type,
        data={k: v for k, v in data.items() if v is not None},
    )


def is_compatible_upstream(node_type: NodeType, required_type: NodeType) -> bool:
    return node_type in UPSTREAM_COMPATIBILITY.get(required_type, {})


# ---------------------------------------------------------------------------
# Storage converters
# ---------------------------------------------------------------------------


def node_record_to_storage(record: NodeRecord) -> dict[str, Any]:
    """Serialise a node record; derived fields are flattened alongside."""
    data: dict[str, Any] = dict(record.derived)
    data.update(
        {
            "node_id": record.node_id,
            "type": record.node_type.value,
            "position": {"x": record.position.x, "y": record.position.y},
            "status": record.status.value,
            "machine_state": machine_state_to_storage(record.machine_state),
            "workspace_path": record.workspace_path,
            "created_at": record.created_at,
        }
    )
    return data


def node_record_from_storage(data: dict[str, Any]) -> NodeRecord:
    """Reconstruct a node record; ``machine_state`` is authoritative."""
    position = data.get("position") or {}
    return NodeRecord(
        node_id=data["node_id"],
        machine_state=machine_state_from_storage(data["machine_state"]),
        position=Position(x=float(position.get("x", 0.0)), y=float(position.get("y", 0.0))),
        workspace_path=data.get("workspace_path", ""),
        created_at=float(data.get("created_at", 0.0)),
    )


def edge_to_storage(edge: Edge) -> dict[str, Any]:
    return {
        "edge_id": edge.edge_id,
        "source": edge.source,
        "target": edge.target,
        "created_at": edge.created_at,
    }


def edge_from_storage(data: dict[str, Any]) -> Edge:
    return Edge(
        source=data["source"],
        target=data["target"],
        created_at=float(data.get("created_at", 0.0)),
    )
