"""JobStatus poller - samples the scheduler for one node's running job.

At most one poll is scheduled or in flight per node. Each scheduled poll
sleeps for the configured interval (plus optional jitter), queries the
scheduler once and hands the translated :class:`JobStatusReport` back to the
owning machine; the machine decides whether to schedule the next one.

Transport errors never reach the machine: they are logged, reported as a
:class:`~workboard.kernel.events.events.PollingFailed` event, and the same
job is polled again after another interval.
"""

from __future__ import annotations

import asyncio
import random
from typing import TYPE_CHECKING

from workboard.kernel.config.models import PollingConfig
from workboard.kernel.domain.job import JobStatusReport
from workboard.kernel.events.events import PollingFailed
from workboard.kernel.logging import get_logger

if TYPE_CHECKING:
    from collections.abc import Callable

    from workboard.kernel.ports.observer_manager import ObserverManager
    from workboard.kernel.ports.scheduler import JobScheduler

logger = get_logger(__name__)


class JobStatusPoller:
    """One-shot, re-armable poll timer for a single node."""

    def __init__(
        self,
        node_id: str,
        scheduler: JobScheduler,
        deliver: Callable[[JobStatusReport], None],
        config: PollingConfig | None = None,
        observers: ObserverManager | None = None,
        request_timeout: float | None = None,
    ) -> None:
        """Initialise the poller.

        Args
        ----
            node_id: Node whose job is polled, used in logs and events.
            scheduler: Scheduler adapter to query.
            deliver: Callback receiving each successful poll result.
            config: Interval and jitter; defaults to a 5 second interval.
            observers: Optional observer manager for ``PollingFailed`` events.
            request_timeout: Timeout for each scheduler call; ``None`` disables it.
        """
        self._node_id = node_id
        self._scheduler = scheduler
        self._deliver = deliver
        self._config = config or PollingConfig()
        self._observers = observers
        self._request_timeout = request_timeout
        self._task: asyncio.Task[None] | None = None
        self._job_id: str | None = None

    @property
    def active(self) -> bool:
        """True while a poll is scheduled or in flight."""
        return self._task is not None and not self._task.done()

    @property
    def job_id(self) -> str | None:
        return self._job_id if self.active else None

    def schedule(self, job_id: str) -> bool:
        """Schedule the next poll of *job_id*.

        Returns False, and does nothing, when a poll is already pending or
        when *job_id* is empty.
        """
        if not job_id:
            logger.debug("Node {node}: not polling without a job id", node=self._node_id)
            return False
        if self.active:
            logger.debug(
                "Node {node}: poll of job {job} already pending", node=self._node_id, job=job_id
            )
            return False
        self._job_id = job_id
        self._task = asyncio.create_task(
            self._poll_after_interval(job_id), name=f"poll-{self._node_id}-{job_id}"
        )
        return True

    def stop(self) -> None:
        """Cancel the pending timer or in-flight poll immediately."""
        if self._task is not None and not self._task.done():
            self._task.cancel()
            logger.debug("Node {node}: polling stopped", node=self._node_id)
        self._task = None
        self._job_id = None

    def _delay(self) -> float:
        jitter = self._config.jitter_seconds
        return self._config.interval_seconds + (random.uniform(0, jitter) if jitter else 0.0)

    async def _poll_after_interval(self, job_id: str) -> None:
        attempt = 0
        while True:
            await asyncio.sleep(self._delay())
            attempt += 1
            try:
                async with asyncio.timeout(self._request_timeout):
                    raw = await self._scheduler.apoll_job_status(job_id)
            except Exception as exc:  # noqa: BLE001
                reason = str(exc) or type(exc).__name__
                logger.warning(
                    "Node {node}: polling job {job} failed (attempt {attempt}): {reason}",
                    node=self._node_id,
                    job=job_id,
                    attempt=attempt,
                    reason=reason,
                )
                if self._observers is not None:
                    await self._observers.notify(
                        PollingFailed(
                            node_id=self._node_id, job_id=job_id, reason=reason, attempt=attempt
                        )
                    )
                continue

            report = JobStatusReport.from_raw(job_id, raw)
            logger.debug(
                "Node {node}: job {job} reported {status}",
                node=self._node_id,
                job=job_id,
                status=report.status,
            )
            # Free the slot before handing over so the machine can re-arm it
            self._task = None
            self._deliver(report)
            return
