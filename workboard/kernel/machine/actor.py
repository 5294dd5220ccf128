"""Node machine actor - runs the pure transition function against real I/O.

Each :class:`NodeMachine` owns an ``asyncio.Queue`` mailbox consumed by a
single task, so events for one node are processed strictly one at a time.
Submissions and cancels run as separate tasks and report back through the
mailbox; polls are driven by a :class:`JobStatusPoller`.

Failure handling
----------------
- A rejected submission becomes a ``SubmitFailed`` event (node -> error).
- A failed cancel request is logged and published as ``CancelFailed``; the
  state is untouched.
- An event the current state does not accept is logged, published as
  ``TransitionRejected`` and dropped.

Nothing raised by a scheduler adapter escapes the actor.
"""

from __future__ import annotations

import asyncio
from contextlib import suppress
from datetime import datetime
from typing import TYPE_CHECKING, Any

from workboard.kernel.config.models import PollingConfig, SchedulerDefaults
from workboard.kernel.domain.node_state import is_pending, is_running
from workboard.kernel.events.events import (
    CancelFailed,
    CancelRequested,
    NodeStateChanged,
    PersistenceFailed,
    TransitionRejected,
)
from workboard.kernel.exceptions import InvalidTransitionError
from workboard.kernel.logging import get_logger
from workboard.kernel.machine.policies import get_policy
from workboard.kernel.machine.poller import JobStatusPoller
from workboard.kernel.machine.transitions import (
    CancelJob,
    Interrupted,
    PollDone,
    SchedulePoll,
    StopPolling,
    SubmitDone,
    SubmitFailed,
    SubmitJob,
    event_name,
    transition,
)

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Coroutine

    from workboard.kernel.domain.job import JobStatusReport
    from workboard.kernel.domain.node_state import NodeMachineState
    from workboard.kernel.events.events import Event
    from workboard.kernel.machine.policies import NodePolicy
    from workboard.kernel.machine.transitions import Effect, MachineEvent
    from workboard.kernel.ports.observer_manager import ObserverManager
    from workboard.kernel.ports.scheduler import JobScheduler

    ChangeCallback = Callable[[str, NodeMachineState], Awaitable[None]]

logger = get_logger(__name__)


class NodeMachine:
    """Live, rehydratable view over one node's persisted machine snapshot."""

    def __init__(
        self,
        node_id: str,
        state: NodeMachineState,
        scheduler: JobScheduler,
        *,
        policy: NodePolicy | None = None,
        polling: PollingConfig | None = None,
        scheduler_defaults: SchedulerDefaults | None = None,
        workspace_path: str = "",
        observers: ObserverManager | None = None,
        on_change: ChangeCallback | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        """Initialise the machine at *state*, never at the policy's initial state.

        Args
        ----
            node_id: Graph node this machine belongs to.
            state: Snapshot to start from (fresh or restored from storage).
            scheduler: Scheduler adapter used for submit/poll/cancel.
            policy: Node-type policy; looked up from ``state.node_type`` if omitted.
            polling: Poll interval settings.
            scheduler_defaults: Default resources and per-call timeout.
            workspace_path: Remote workspace root used in derived paths.
            observers: Optional observer manager receiving notifications.
            on_change: Awaited with every snapshot that differs from the previous one.
            clock: Source of transition timestamps.
        """
        self.node_id = node_id
        self.policy = policy or get_policy(state.node_type)
        self._state = state
        self._scheduler = scheduler
        self._defaults = scheduler_defaults or SchedulerDefaults()
        self._workspace_path = workspace_path
        self._observers = observers
        self._on_change = on_change
        self._clock = clock

        self._mailbox: asyncio.Queue[tuple[MachineEvent, asyncio.Future[bool] | None]] = (
            asyncio.Queue()
        )
        self._consumer: asyncio.Task[None] | None = None
        self._effects: set[asyncio.Task[Any]] = set()
        self._changed = asyncio.Condition()
        self.poller = JobStatusPoller(
            node_id,
            scheduler,
            self._deliver_poll,
            config=polling,
            observers=observers,
            request_timeout=self._defaults.request_timeout_seconds,
        )

    @property
    def state(self) -> NodeMachineState:
        return self._state

    @property
    def running(self) -> bool:
        return self._consumer is not None and not self._consumer.done()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Start consuming events and reconcile the restored snapshot.

        A snapshot in ``*.running`` resumes polling; one in ``*.pending``
        is moved to its error state because the interrupted submission's
        outcome is unknown.
        """
        if self.running:
            return
        self._consumer = asyncio.create_task(self._run(), name=f"machine-{self.node_id}")

        value = self._state.value
        if is_running(value) and self._state.context.job_id:
            logger.info(
                "Node {node}: resuming polling of job {job}",
                node=self.node_id,
                job=self._state.context.job_id,
            )
            self.poller.schedule(self._state.context.job_id)
        elif is_pending(value):
            logger.warning(
                "Node {node}: submission was interrupted, moving to error", node=self.node_id
            )
            self.send(Interrupted())

    async def stop(self) -> None:
        """Stop polling and event processing; in-flight remote jobs are not cancelled."""
        self.poller.stop()
        for task in list(self._effects):
            task.cancel()
        self._effects.clear()
        if self._consumer is not None:
            self._consumer.cancel()
            with suppress(asyncio.CancelledError):
                await self._consumer
            self._consumer = None
        while not self._mailbox.empty():
            _, done = self._mailbox.get_nowait()
            if done is not None and not done.done():
                done.set_result(False)

    # ------------------------------------------------------------------
    # Mailbox
    # ------------------------------------------------------------------

    def send(self, event: MachineEvent) -> asyncio.Future[bool]:
        """Queue *event*; the future resolves to whether it was accepted."""
        done: asyncio.Future[bool] = asyncio.get_running_loop().create_future()
        self._mailbox.put_nowait((event, done))
        return done

    async def asend(self, event: MachineEvent) -> bool:
        """Queue *event* and wait until it has been processed."""
        return await self.send(event)

    async def wait_for(
        self,
        predicate: Callable[[NodeMachineState], bool],
        timeout: float | None = None,
    ) -> NodeMachineState:
        """Wait until *predicate* holds for the current snapshot.

        Raises
        ------
        TimeoutError
            If the predicate does not hold within *timeout* seconds
        """
        async with asyncio.timeout(timeout):
            async with self._changed:
                await self._changed.wait_for(lambda: predicate(self._state))
        return self._state

    def _deliver_poll(self, report: JobStatusReport) -> None:
        self._mailbox.put_nowait((PollDone(report), None))

    async def _run(self) -> None:
        while True:
            event, done = await self._mailbox.get()
            accepted = False
            try:
                accepted = await self._process(event)
            except Exception:  # noqa: BLE001
                logger.exception(
                    "Node {node}: failed to process {event}",
                    node=self.node_id,
                    event=event_name(event),
                )
            finally:
                self._mailbox.task_done()
                if done is not None and not done.done():
                    done.set_result(accepted)

    async def _process(self, event: MachineEvent) -> bool:
        old = self._state
        try:
            result = transition(self.policy, old, event, node_id=self.node_id, now=self._clock())
        except InvalidTransitionError as e:
            logger.warning("Node {node}: {error}", node=self.node_id, error=e)
            await self._notify(
                TransitionRejected(node_id=self.node_id, state=e.state, event=e.event)
            )
            return False

        if result.dropped is not None:
            logger.debug(
                "Node {node}: dropped {event}: {reason}",
                node=self.node_id,
                event=event_name(event),
                reason=result.dropped,
            )
            return False

        new = result.state
        if new != old:
            self._state = new
            if new.value != old.value:
                logger.info(
                    "Node {node}: {old} -> {new}", node=self.node_id, old=old.value, new=new.value
                )
                await self._notify(
                    NodeStateChanged(
                        node_id=self.node_id,
                        node_type=new.node_type.value,
                        old_state=str(old.value),
                        new_state=str(new.value),
                        status=new.status.value,
                    )
                )
            await self._persist(new)
            async with self._changed:
                self._changed.notify_all()

        for notice in result.notices:
            await self._notify(notice)
        for effect in result.effects:
            self._execute(effect)
        return True

    async def _persist(self, state: NodeMachineState) -> None:
        if self._on_change is None:
            return
        try:
            await self._on_change(self.node_id, state)
        except Exception as exc:  # noqa: BLE001
            logger.opt(exception=exc).error(
                "Node {node}: could not persist {state}", node=self.node_id, state=state.value
            )
            await self._notify(
                PersistenceFailed(node_id=self.node_id, state=str(state.value), reason=str(exc))
            )

    # ------------------------------------------------------------------
    # Effects
    # ------------------------------------------------------------------

    def _execute(self, effect: Effect) -> None:
        match effect:
            case SubmitJob():
                self._spawn(self._submit(effect), "submit")
            case CancelJob(job_id=job_id):
                self._spawn(self._cancel(job_id), "cancel")
            case SchedulePoll(job_id=job_id):
                self.poller.schedule(job_id)
            case StopPolling():
                self.poller.stop()

    def _spawn(self, coro: Coroutine[Any, Any, None], kind: str) -> None:
        task = asyncio.create_task(coro, name=f"{kind}-{self.node_id}")
        self._effects.add(task)
        task.add_done_callback(self._effects.discard)

    async def _submit(self, effect: SubmitJob) -> None:
        try:
            spec, derived = self.policy.build_job_spec(
                effect.form,
                effect.upstream,
                effect.trigger,
                workspace_path=self._workspace_path,
                defaults=self._defaults,
            )
            async with asyncio.timeout(self._defaults.request_timeout_seconds):
                job_id = await self._scheduler.asubmit_job(spec)
        except Exception as exc:  # noqa: BLE001
            reason = str(exc) or type(exc).__name__
            logger.warning(
                "Node {node}: job submission failed: {reason}", node=self.node_id, reason=reason
            )
            self._mailbox.put_nowait((SubmitFailed(reason), None))
            return

        logger.info("Node {node}: submitted job {job}", node=self.node_id, job=job_id)
        self._mailbox.put_nowait(
            (
                SubmitDone(
                    job_id=str(job_id or ""),
                    form=dict(effect.form),
                    derived=derived,
                    upstream=dict(effect.upstream),
                    trigger=effect.trigger,
                ),
                None,
            )
        )

    async def _cancel(self, job_id: str) -> None:
        try:
            async with asyncio.timeout(self._defaults.request_timeout_seconds):
                await self._scheduler.acancel_job(job_id)
        except Exception as exc:  # noqa: BLE001
            reason = str(exc) or type(exc).__name__
            logger.warning(
                "Node {node}: cancel of job {job} failed: {reason}",
                node=self.node_id,
                job=job_id,
                reason=reason,
            )
            await self._notify(CancelFailed(node_id=self.node_id, job_id=job_id, reason=reason))
            return
        logger.info("Node {node}: cancel requested for job {job}", node=self.node_id, job=job_id)
        await self._notify(CancelRequested(node_id=self.node_id, job_id=job_id))

    async def _notify(self, event: Event) -> None:
        if self._observers is not None:
            await self._observers.notify(event)

    def __repr__(self) -> str:
        return f"NodeMachine(node_id={self.node_id!r}, state={str(self._state.value)!r})"
