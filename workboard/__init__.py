"""Workboard - stateful job nodes of an ML pipeline canvas.

Each canvas node (dataset, augmentation, network, finetune, inference) is a
rehydratable state machine that submits a batch job to a cluster scheduler,
polls it to completion and persists every snapshot.
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("workboard")
except PackageNotFoundError:
    __version__ = "0.0.0.dev0"  # Source checkout without an install

from workboard.kernel.config import WorkboardConfig, load_config
from workboard.kernel.domain import JobSpec, NodeMachineState, NodeStatus, NodeType
from workboard.kernel.machine import NodeMachine
from workboard.stdlib.lib import GraphStore, Reconciler, Workboard

__all__ = [
    "GraphStore",
    "JobSpec",
    "NodeMachine",
    "NodeMachineState",
    "NodeStatus",
    "NodeType",
    "Reconciler",
    "Workboard",
    "WorkboardConfig",
    "__version__",
    "load_config",
]
