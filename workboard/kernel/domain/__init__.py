"""Domain models for jobs, node machine snapshots and the workspace graph."""

from workboard.kernel.domain.graph import Edge, NodeRecord, Position, UpstreamData
from workboard.kernel.domain.job import (
    JobSpec,
    JobStatus,
    JobStatusReport,
    ResourceRequest,
    parse_job_status,
)
from workboard.kernel.domain.node_state import (
    InPhase,
    NodeContext,
    NodeMachineState,
    NodeStatus,
    NodeType,
    Phase,
    Settled,
    Step,
    define_status,
    parse_state_path,
)

__all__ = [
    "Edge",
    "InPhase",
    "JobSpec",
    "JobStatus",
    "JobStatusReport",
    "NodeContext",
    "NodeMachineState",
    "NodeRecord",
    "NodeStatus",
    "NodeType",
    "Phase",
    "Position",
    "ResourceRequest",
    "Settled",
    "Step",
    "UpstreamData",
    "define_status",
    "parse_job_status",
    "parse_state_path",
]
