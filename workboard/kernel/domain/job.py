"""Domain model for remote scheduler jobs.

Raw scheduler answers are translated into the canonical :class:`JobStatus`
vocabulary here, so the node machines never see Slurm-specific strings.
A single answer may carry several lines (one per job step, as ``sacct``
prints them); every line contributes one signal to a
:class:`JobStatusReport`.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from enum import StrEnum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


class JobStatus(StrEnum):
    """Canonical job status reported by a scheduler adapter."""

    PENDING = "PENDING"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"
    UNKNOWN = "UNKNOWN"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL


_TERMINAL = frozenset({JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED})

# Slurm job state codes, see ``man sacct`` (JOB STATE CODES)
SLURM_STATE_TO_STATUS: dict[str, JobStatus] = {
    "PENDING": JobStatus.PENDING,
    "REQUEUED": JobStatus.PENDING,
    "CONFIGURING": JobStatus.PENDING,
    "RUNNING": JobStatus.RUNNING,
    "COMPLETING": JobStatus.RUNNING,
    "SUSPENDED": JobStatus.RUNNING,
    "PREEMPTED": JobStatus.RUNNING,
    "RESIZING": JobStatus.RUNNING,
    "STAGE_OUT": JobStatus.RUNNING,
    "SIGNALING": JobStatus.RUNNING,
    "COMPLETED": JobStatus.COMPLETED,
    "FAILED": JobStatus.FAILED,
    "BOOT_FAIL": JobStatus.FAILED,
    "DEADLINE": JobStatus.FAILED,
    "NODE_FAIL": JobStatus.FAILED,
    "OUT_OF_MEMORY": JobStatus.FAILED,
    "TIMEOUT": JobStatus.FAILED,
    "REVOKED": JobStatus.FAILED,
    "CANCELLED": JobStatus.CANCELLED,
}

# Order in which the running-state guards are evaluated
STATUS_PRECEDENCE: tuple[JobStatus, ...] = (
    JobStatus.COMPLETED,
    JobStatus.FAILED,
    JobStatus.CANCELLED,
    JobStatus.RUNNING,
    JobStatus.PENDING,
    JobStatus.UNKNOWN,
)


def classify_raw_state(token: str) -> JobStatus:
    """Map one raw scheduler state token to a :class:`JobStatus`.

    ``"CANCELLED by 1234"`` and ``"RUNNING+"`` are accepted; anything the
    table does not know becomes ``UNKNOWN``.
    """
    words = token.strip().split()
    if not words:
        return JobStatus.UNKNOWN
    code = words[0].rstrip("+").upper()
    return SLURM_STATE_TO_STATUS.get(code, JobStatus.UNKNOWN)


def parse_job_status(raw: str | JobStatus) -> frozenset[JobStatus]:
    """Translate a raw (possibly multi-line) scheduler answer into signals."""
    if isinstance(raw, JobStatus):
        return frozenset({raw})
    signals = {classify_raw_state(line) for line in raw.splitlines() if line.strip()}
    return frozenset(signals) or frozenset({JobStatus.UNKNOWN})


@dataclass(frozen=True, slots=True)
class JobStatusReport:
    """Result of one poll: every canonical signal found in the raw answer."""

    job_id: str
    signals: frozenset[JobStatus]
    raw: str = ""

    @classmethod
    def from_raw(cls, job_id: str, raw: str | JobStatus) -> JobStatusReport:
        return cls(job_id=job_id, signals=parse_job_status(raw), raw=str(raw))

    @property
    def is_completed(self) -> bool:
        return JobStatus.COMPLETED in self.signals

    @property
    def is_failed(self) -> bool:
        return JobStatus.FAILED in self.signals

    @property
    def is_cancelled(self) -> bool:
        return JobStatus.CANCELLED in self.signals

    @property
    def status(self) -> JobStatus:
        """Primary status following guard precedence."""
        for candidate in STATUS_PRECEDENCE:
            if candidate in self.signals:
                return candidate
        return JobStatus.UNKNOWN


# ---------------------------------------------------------------------------
# Job submission
# ---------------------------------------------------------------------------

JobTrigger = Literal["create", "retry", "finetune"]


class ResourceRequest(BaseModel):
    """Scheduler resources requested for one job."""

    model_config = ConfigDict(frozen=True)

    partition: str
    ntasks: int = Field(default=1, ge=1)
    gpus: int = Field(default=0, ge=0)


class JobSpec(BaseModel):
    """Everything a scheduler adapter needs to submit one job.

    ``command`` is opaque to the core: it is the JSON encoding of
    ``payload`` and is handed to the adapter unchanged.
    """

    model_config = ConfigDict(frozen=True)

    job_name: str
    partition: str
    ntasks: int = Field(default=1, ge=1)
    gpus: int = Field(default=0, ge=0)
    output: str
    error: str
    trigger: JobTrigger = "create"
    payload: dict[str, Any] = Field(default_factory=dict)
    command: str = ""

    @classmethod
    def build(
        cls,
        node_type: str,
        payload: dict[str, Any],
        resources: ResourceRequest,
        trigger: JobTrigger = "create",
    ) -> JobSpec:
        """Build a spec named after the node type with a JSON command."""
        job_name = f"workboard-{node_type}"
        return cls(
            job_name=job_name,
            partition=resources.partition,
            ntasks=resources.ntasks,
            gpus=resources.gpus,
            output=f"{job_name}-output.txt",
            error=f"{job_name}-error.txt",
            trigger=trigger,
            payload=payload,
            command=json.dumps(payload, sort_keys=True, default=str),
        )
