"""Scheduler port - the three operations the core consumes from a batch scheduler.

The transport (SSH, REST, a local ``sbatch``) is up to the adapter.

Contract
--------
- ``asubmit_job`` may be retried after a failure; it returns the job id.
- ``apoll_job_status`` only observes; it returns the raw status text (one
  line per job step is fine) and raises for a job the scheduler does not know.
- ``acancel_job`` is advisory; success does not mean the job stopped yet.

All three raise :class:`~workboard.kernel.exceptions.SchedulerError`
subclasses for transport or validation failures.
"""

from __future__ import annotations

from abc import abstractmethod
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from workboard.kernel.domain.job import JobSpec


@runtime_checkable
class JobScheduler(Protocol):
    """Port interface for remote batch schedulers."""

    @abstractmethod
    async def asubmit_job(self, spec: JobSpec) -> str:
        """Submit a job and return its scheduler job id."""
        ...

    @abstractmethod
    async def apoll_job_status(self, job_id: str) -> str:
        """Return the raw scheduler status of *job_id*."""
        ...

    @abstractmethod
    async def acancel_job(self, job_id: str) -> None:
        """Ask the scheduler to cancel *job_id*."""
        ...


__all__ = ["JobScheduler"]
