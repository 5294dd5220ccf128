"""Domain model for node machine snapshots.

A machine's position is an explicit tagged union:

- :class:`Settled` for the flat states ``inactive``, ``active``, ``success``
  and ``error``;
- :class:`InPhase` for a job in flight, e.g. ``busy.running`` or
  ``tuning.error``.

:func:`define_status` projects either variant onto the canonical
:class:`NodeStatus` that the graph store persists and the UI displays.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from workboard.kernel.domain.job import JobStatus
from workboard.kernel.exceptions import ValidationError


class NodeType(StrEnum):
    """Pipeline stage kinds."""

    DATASET = "dataset"
    AUGMENTATION = "augmentation"
    NETWORK = "network"
    FINETUNE = "finetune"
    INFERENCE = "inference"


class NodeStatus(StrEnum):
    """Canonical lifecycle status exposed to the UI and persisted."""

    INACTIVE = "inactive"
    ACTIVE = "active"
    BUSY = "busy"
    SUCCESS = "success"
    ERROR = "error"


class Phase(StrEnum):
    """Compound states that wrap a job in flight."""

    BUSY = "busy"
    TRAINING = "training"
    TUNING = "tuning"


class Step(StrEnum):
    """Sub-states of a phase."""

    PENDING = "pending"
    RUNNING = "running"
    ERROR = "error"


@dataclass(frozen=True, slots=True)
class Settled:
    """A flat machine state."""

    status: NodeStatus

    def __post_init__(self) -> None:
        if self.status == NodeStatus.BUSY:
            raise ValidationError("state", "'busy' is a phase and needs a step", self.status)

    def __str__(self) -> str:
        return self.status.value


@dataclass(frozen=True, slots=True)
class InPhase:
    """A compound state: ``phase.step``."""

    phase: Phase
    step: Step

    def with_step(self, step: Step) -> InPhase:
        return InPhase(self.phase, step)

    def __str__(self) -> str:
        return f"{self.phase.value}.{self.step.value}"


type StatePath = Settled | InPhase

# Phases a node type can hold a job in
NODE_PHASES: dict[NodeType, frozenset[Phase]] = {
    NodeType.DATASET: frozenset({Phase.BUSY}),
    NodeType.AUGMENTATION: frozenset({Phase.BUSY}),
    NodeType.NETWORK: frozenset({Phase.TRAINING, Phase.TUNING}),
    NodeType.FINETUNE: frozenset({Phase.BUSY}),
    NodeType.INFERENCE: frozenset({Phase.BUSY}),
}


def parse_state_path(value: str) -> StatePath:
    """Parse a dotted state string such as ``"training.running"``.

    Raises
    ------
    ValidationError
        If the string names no known state
    """
    head, sep, tail = value.partition(".")
    try:
        if not sep:
            return Settled(NodeStatus(head))
        return InPhase(Phase(head), Step(tail))
    except ValueError as e:
        raise ValidationError("state", "unknown state path", value) from e


def define_status(path: StatePath) -> NodeStatus:
    """Project a state path onto its canonical :class:`NodeStatus`."""
    match path:
        case Settled(status=status):
            return status
        case InPhase(step=Step.ERROR):
            return NodeStatus.ERROR
        case InPhase():
            return NodeStatus.BUSY


def is_running(path: StatePath) -> bool:
    return isinstance(path, InPhase) and path.step == Step.RUNNING


def is_pending(path: StatePath) -> bool:
    return isinstance(path, InPhase) and path.step == Step.PENDING


# ---------------------------------------------------------------------------
# Machine snapshot
# ---------------------------------------------------------------------------


@dataclass(slots=True)
class NodeContext:
    """Extended state carried by a node machine.

    Attributes
    ----------
    job_id : str
        Scheduler job id, ``""`` before the first successful submission
    job_status : JobStatus | None
        Last status seen while polling
    form : dict[str, Any]
        Last submitted form payload
    derived : dict[str, Any]
        Type-specific fields (dataset name, remote path, network label, ...)
    upstream : dict[str, Any]
        Upstream data resolved for the last submission, keyed by node type
    message : str
        User-facing status line
    updated_at : str | None
        Timestamp of the last transition, ``YYYY-MM-DD HH:MM:SS``
    """

    job_id: str = ""
    job_status: JobStatus | None = None
    form: dict[str, Any] = field(default_factory=dict)
    derived: dict[str, Any] = field(default_factory=dict)
    upstream: dict[str, Any] = field(default_factory=dict)
    message: str = ""
    updated_at: str | None = None


@dataclass(slots=True)
class NodeMachineState:
    """Serializable snapshot of one node's machine."""

    node_type: NodeType
    value: StatePath
    context: NodeContext = field(default_factory=NodeContext)

    @property
    def status(self) -> NodeStatus:
        return define_status(self.value)


def machine_state_to_storage(state: NodeMachineState) -> dict[str, Any]:
    """Serialise a snapshot to a JSON-compatible dict."""
    context = dataclasses.asdict(state.context)
    context["job_status"] = state.context.job_status.value if state.context.job_status else None
    return {
        "node_type": state.node_type.value,
        "value": str(state.value),
        "context": context,
    }


def machine_state_from_storage(data: dict[str, Any]) -> NodeMachineState:
    """Reconstruct a snapshot from a storage dict.

    Raises
    ------
    ValidationError
        If the node type or state path is unknown, or the path names a phase
        the node type never enters
    """
    try:
        node_type = NodeType(data["node_type"])
    except (KeyError, ValueError) as e:
        raise ValidationError("node_type", "unknown node type", data.get("node_type")) from e

    context_data = dict(data.get("context") or {})
    raw_status = context_data.get("job_status")
    context_data["job_status"] = JobStatus(raw_status) if raw_status else None
    known = {f.name for f in dataclasses.fields(NodeContext)}
    context = NodeContext(**{k: v for k, v in context_data.items() if k in known})

    value = parse_state_path(str(data.get("value", "")))
    if isinstance(value, InPhase) and value.phase not in NODE_PHASES[node_type]:
        raise ValidationError(
            "value", f"{node_type.value} nodes have no {value.phase} phase", str(value)
        )

    return NodeMachineState(
        node_type=node_type,
        value=value,
        context=context,
    )
