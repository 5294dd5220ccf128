"""Node-type policies for the generic node machine.

The five pipeline stages share one control skeleton; a :class:`NodePolicy`
supplies what differs between them: the initial state, the upstream types
a node needs, the phase a job runs in, follow-up events offered on success,
and how a form plus upstream data become derived context and a
:class:`~workboard.kernel.domain.job.JobSpec`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from workboard.kernel.config.models import SchedulerDefaults
from workboard.kernel.domain.job import JobSpec, JobTrigger, ResourceRequest
from workboard.kernel.domain.node_state import (
    InPhase,
    NodeStatus,
    NodeType,
    Phase,
    Settled,
    Step,
)
from workboard.kernel.exceptions import MissingUpstreamDataError, ValidationError

if TYPE_CHECKING:
    from collections.abc import Callable

    from workboard.kernel.domain.node_state import StatePath

    DeriveFunc = Callable[[dict[str, Any], dict[str, dict[str, Any]], str], dict[str, Any]]

NETWORK_TYPES = frozenset({"unet2d", "unet3d", "vnet"})

FINETUNE = "finetune"


def dataset_remote_path(workspace_path: str, dataset_name: str) -> str:
    return f"{workspace_path}/datasets/{dataset_name}.h5"


def _upstream_field(
    upstream: dict[str, dict[str, Any]], required_type: NodeType, key: str
) -> Any:
    value = upstream.get(required_type.value, {}).get(key)
    if not value:
        raise MissingUpstreamDataError(required_type.value, f"upstream has no {key}")
    return value


# ---------------------------------------------------------------------------
# Derived context per node type
# ---------------------------------------------------------------------------


def _derive_dataset(
    form: dict[str, Any], upstream: dict[str, dict[str, Any]], workspace_path: str
) -> dict[str, Any]:
    name = form.get("dataset_name") or form.get("name")
    if not name:
        raise ValidationError("dataset_name", "is required")
    return {"dataset_name": name, "remote_path": dataset_remote_path(workspace_path, name)}


def _derive_augmentation(
    form: dict[str, Any], upstream: dict[str, dict[str, Any]], workspace_path: str
) -> dict[str, Any]:
    source = _upstream_field(upstream, NodeType.DATASET, "dataset_name")
    name = form.get("augmented_dataset_name") or f"{source}_augmented"
    return {
        "source_dataset_name": source,
        "dataset_name": name,
        "remote_path": dataset_remote_path(workspace_path, name),
    }


def _derive_network(
    form: dict[str, Any], upstream: dict[str, dict[str, Any]], workspace_path: str
) -> dict[str, Any]:
    dataset_name = _upstream_field(upstream, NodeType.DATASET, "dataset_name")
    network_type = form.get("network_type") or "unet2d"
    if network_type not in NETWORK_TYPES:
        raise ValidationError(
            "network_type", f"must be one of {sorted(NETWORK_TYPES)}", network_type
        )
    dataset_path = upstream[NodeType.DATASET.value].get("remote_path") or dataset_remote_path(
        workspace_path, dataset_name
    )
    return {
        "network_label": form.get("network_label") or "network",
        "network_type": network_type,
        "dataset_path": dataset_path,
    }


def _derive_finetune(
    form: dict[str, Any], upstream: dict[str, dict[str, Any]], workspace_path: str
) -> dict[str, Any]:
    return {
        "source_dataset_name": _upstream_field(upstream, NodeType.DATASET, "dataset_name"),
        "source_network_label": _upstream_field(upstream, NodeType.NETWORK, "network_label"),
        "source_network_type": _upstream_field(upstream, NodeType.NETWORK, "network_type"),
    }


def _derive_inference(
    form: dict[str, Any], upstream: dict[str, dict[str, Any]], workspace_path: str
) -> dict[str, Any]:
    label = _upstream_field(upstream, NodeType.NETWORK, "network_label")
    return {
        "network_label": label,
        "input_images": list(form.get("input_images", [])),
        "output_dir": form.get("output_dir") or f"{workspace_path}/inference/{label}",
    }


# ---------------------------------------------------------------------------
# Policy
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class NodePolicy:
    """Everything that distinguishes one node type's machine from another."""

    node_type: NodeType
    initial_state: StatePath
    derive: DeriveFunc
    default_partition: str
    required_upstream: tuple[NodeType, ...] = ()
    start_phase: Phase = Phase.BUSY
    success_followups: frozenset[str] = field(default_factory=frozenset)
    retry_clears_job_id: bool = True

    @property
    def phased(self) -> bool:
        """True when jobs run in named phases (``training``/``tuning``)."""
        return self.start_phase != Phase.BUSY

    def pending_state(self, phase: Phase | None = None) -> InPhase:
        return InPhase(phase or self.start_phase, Step.PENDING)

    def error_state(self, phase: Phase) -> StatePath:
        """Error target for a job in *phase*: flat for ``busy``, nested otherwise."""
        if phase == Phase.BUSY:
            return Settled(NodeStatus.ERROR)
        return InPhase(phase, Step.ERROR)

    def retry_phase(self, current: StatePath) -> Phase:
        if isinstance(current, InPhase):
            return current.phase
        return self.start_phase

    def prefill_finetune(self, form: dict[str, Any], derived: dict[str, Any]) -> dict[str, Any]:
        """Seed a finetune form with the trained network's label and type.

        Keys present in *form* win.
        """
        prefilled = {
            "network_label": derived.get("network_label"),
            "network_type": derived.get("network_type"),
        }
        return {**{k: v for k, v in prefilled.items() if v}, **form}

    def resources(
        self, form: dict[str, Any], defaults: SchedulerDefaults | None = None
    ) -> ResourceRequest:
        """Resource request from the form's ``slurm_options`` or configured defaults."""
        defaults = defaults or SchedulerDefaults()
        options = form.get("slurm_options") or {}
        return ResourceRequest(
            partition=options.get("partition") or defaults.partition or self.default_partition,
            ntasks=options.get("ntasks", defaults.ntasks),
            gpus=options.get("n_gpu", defaults.gpus),
        )

    def build_job_spec(
        self,
        form: dict[str, Any],
        upstream: dict[str, dict[str, Any]],
        trigger: JobTrigger = "create",
        *,
        workspace_path: str = "",
        defaults: SchedulerDefaults | None = None,
    ) -> tuple[JobSpec, dict[str, Any]]:
        """Build the job spec and the derived context for one submission.

        Raises
        ------
        ValidationError
            If the form is missing required fields
        MissingUpstreamDataError
            If upstream data required by this node type is absent
        """
        derived = self.derive(form, upstream, workspace_path)
        payload = {k: v for k, v in form.items() if k != "slurm_options"}
        payload.update(derived)
        payload["workspace_path"] = workspace_path
        spec = JobSpec.build(
            self.node_type.value, payload, self.resources(form, defaults), trigger=trigger
        )
        return spec, derived


POLICIES: dict[NodeType, NodePolicy] = {
    NodeType.DATASET: NodePolicy(
        node_type=NodeType.DATASET,
        initial_state=Settled(NodeStatus.ACTIVE),
        derive=_derive_dataset,
        default_partition="proc2",
    ),
    NodeType.AUGMENTATION: NodePolicy(
        node_type=NodeType.AUGMENTATION,
        initial_state=Settled(NodeStatus.INACTIVE),
        derive=_derive_augmentation,
        default_partition="proc2",
        required_upstream=(NodeType.DATASET,),
    ),
    NodeType.NETWORK: NodePolicy(
        node_type=NodeType.NETWORK,
        initial_state=Settled(NodeStatus.INACTIVE),
        derive=_derive_network,
        default_partition="dev-gcd",
        required_upstream=(NodeType.DATASET,),
        start_phase=Phase.TRAINING,
        success_followups=frozenset({FINETUNE}),
    ),
    NodeType.FINETUNE: NodePolicy(
        node_type=NodeType.FINETUNE,
        initial_state=Settled(NodeStatus.INACTIVE),
        derive=_derive_finetune,
        default_partition="dev-gcd",
        required_upstream=(NodeType.DATASET, NodeType.NETWORK),
    ),
    NodeType.INFERENCE: NodePolicy(
        node_type=NodeType.INFERENCE,
        initial_state=Settled(NodeStatus.INACTIVE),
        derive=_derive_inference,
        default_partition="proc2",
        required_upstream=(NodeType.NETWORK,),
        retry_clears_job_id=False,
    ),
}


def get_policy(node_type: NodeType | str) -> NodePolicy:
    """Return the policy for *node_type*.

    Raises
    ------
    ValidationError
        If the node type is unknown
    """
    try:
        return POLICIES[NodeType(node_type)]
    except ValueError as e:
        raise ValidationError("node_type", "unknown node type", node_type) from e
