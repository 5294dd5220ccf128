"""Mock scheduler implementation for testing and the demo CLI."""

from __future__ import annotations

import asyncio
import itertools
from collections import deque
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from workboard.kernel.exceptions import (
    CancellationError,
    PollingTransportError,
    SchedulerError,
    SubmissionError,
)

if TYPE_CHECKING:
    from collections.abc import Iterable

    from workboard.kernel.domain.job import JobSpec


@dataclass
class MockJob:
    """A job known to the mock scheduler."""

    job_id: str
    spec: JobSpec | None = None
    statuses: deque[str] = field(default_factory=deque)
    last_status: str = "PENDING"
    cancelled: bool = False


class MockScheduler:
    """Mock ``JobScheduler`` adapter.

    Records every call and answers polls from per-job scripts. When a
    job's script is exhausted, the last status is repeated. A cancelled
    job reports ``CANCELLED by 0`` on every later poll, like Slurm.

    Parameters
    ----------
    default_statuses : Iterable[str] | None
        Script given to every newly submitted job (default: ``["RUNNING"]``).
    job_ids : Iterable[str] | None
        Job ids handed out in order; afterwards ids count up from 1000.
    delay : float
        Seconds each call sleeps before answering.

    Examples
    --------
    Scripted poll results::

        scheduler = MockScheduler(job_ids=["123"])
        scheduler.script("123", "RUNNING", "RUNNING", "COMPLETED")
        job_id = await scheduler.asubmit_job(spec)
        assert await scheduler.apoll_job_status(job_id) == "RUNNING"

    Injected failures::

        scheduler.fail_next_submit("partition unavailable")
        scheduler.fail_polls(2)
    """

    def __init__(
        self,
        default_statuses: Iterable[str] | None = None,
        job_ids: Iterable[str] | None = None,
        delay: float = 0.0,
    ) -> None:
        self._default_statuses = list(default_statuses or ["RUNNING"])
        self._job_ids = iter(job_ids or ())
        self._counter = itertools.count(1000)
        self._delay = delay
        self._submit_failures: deque[str] = deque()
        self._cancel_failures: deque[str] = deque()
        self._poll_failures = 0
        self._poll_failure_reason = "connection reset by peer"

        self.jobs: dict[str, MockJob] = {}
        self.submitted: list[JobSpec] = []
        self.poll_calls: list[str] = []
        self.cancel_calls: list[str] = []

    # ------------------------------------------------------------------
    # Scripting
    # ------------------------------------------------------------------

    def script(self, job_id: str, *statuses: str) -> None:
        """Queue raw statuses returned by successive polls of *job_id*.

        The job does not need to be submitted first; this is how restored
        jobs are simulated.
        """
        job = self.jobs.setdefault(job_id, MockJob(job_id=job_id))
        job.statuses.extend(statuses)

    def fail_next_submit(self, reason: str = "submission rejected") -> None:
        self._submit_failures.append(reason)

    def fail_polls(self, count: int, reason: str = "connection reset by peer") -> None:
        """Make the next *count* polls raise :class:`PollingTransportError`."""
        self._poll_failures = count
        self._poll_failure_reason = reason

    def fail_next_cancel(self, reason: str = "scheduler unreachable") -> None:
        self._cancel_failures.append(reason)

    # ------------------------------------------------------------------
    # JobScheduler implementation
    # ------------------------------------------------------------------

    async def asubmit_job(self, spec: JobSpec) -> str:
        """Record the spec and return the next job id."""
        await self._sleep()
        self.submitted.append(spec)
        if self._submit_failures:
            raise SubmissionError(self._submit_failures.popleft())

        job_id = next(self._job_ids, None) or str(next(self._counter))
        job = self.jobs.setdefault(job_id, MockJob(job_id=job_id))
        job.spec = spec
        job.cancelled = False
        if not job.statuses:
            job.statuses.extend(self._default_statuses)
        return job_id

    async def apoll_job_status(self, job_id: str) -> str:
        """Return the next scripted status of *job_id*."""
        await self._sleep()
        self.poll_calls.append(job_id)
        if self._poll_failures > 0:
            self._poll_failures -= 1
            raise PollingTransportError(job_id, self._poll_failure_reason)

        job = self.jobs.get(job_id)
        if job is None:
            raise SchedulerError(f"Invalid job id specified: {job_id}")
        if job.cancelled:
            return "CANCELLED by 0"
        if job.statuses:
            job.last_status = job.statuses.popleft()
        return job.last_status

    async def acancel_job(self, job_id: str) -> None:
        """Record the request and mark the job cancelled."""
        await self._sleep()
        self.cancel_calls.append(job_id)
        if self._cancel_failures:
            raise CancellationError(job_id, self._cancel_failures.popleft())
        job = self.jobs.get(job_id)
        if job is not None:
            job.cancelled = True

    async def _sleep(self) -> None:
        if self._delay:
            await asyncio.sleep(self._delay)
