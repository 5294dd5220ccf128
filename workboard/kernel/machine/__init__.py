"""Generic node machine: policies, pure transitions, poller and actor."""

from workboard.kernel.machine.actor import NodeMachine
from workboard.kernel.machine.policies import POLICIES, NodePolicy, get_policy
from workboard.kernel.machine.poller import JobStatusPoller
from workboard.kernel.machine.transitions import (
    Activate,
    Cancel,
    Finetune,
    Retry,
    Start,
    Transition,
    transition,
)

__all__ = [
    "POLICIES",
    "Activate",
    "Cancel",
    "Finetune",
    "JobStatusPoller",
    "NodeMachine",
    "NodePolicy",
    "Retry",
    "Start",
    "Transition",
    "get_policy",
    "transition",
]
