"""Pure transition function of the generic node machine.

``transition(policy, state, event, ...)`` returns the next snapshot, the side
effects the actor must run and the notifications to publish. It never
performs I/O and never mutates its input, so every rule below is testable
without an event loop.

User events
-----------
``Activate``   inactive -> active
``Start``      active -> <start phase>.pending, submits a job
``Retry``      any error state -> <phase>.pending, submits a job
``Finetune``   success -> tuning.pending (policies offering it), submits a job
``Cancel``     *.running, asks the scheduler to cancel; no state change

Internal events
---------------
``SubmitDone`` / ``SubmitFailed``   result of a submission, accepted in *.pending
``PollDone``                        result of a poll, accepted in *.running
``Interrupted``                     a pending submission lost on rehydration
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from workboard.kernel.domain.job import JobStatus, JobStatusReport, JobTrigger
from workboard.kernel.domain.node_state import (
    InPhase,
    NodeContext,
    NodeMachineState,
    NodeStatus,
    Phase,
    Settled,
    Step,
    is_pending,
    is_running,
)
from workboard.kernel.events.events import (
    Event,
    JobCancelled,
    JobCompleted,
    JobFailed,
    JobStatusUpdated,
    JobSubmissionFailed,
    JobSubmitted,
)
from workboard.kernel.exceptions import InvalidTransitionError
from workboard.kernel.machine.policies import FINETUNE

if TYPE_CHECKING:
    from datetime import datetime

    from workboard.kernel.domain.node_state import StatePath
    from workboard.kernel.machine.policies import NodePolicy

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"

INTERRUPTED_MESSAGE = "Submission interrupted before a job id was recorded"


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class Activate:
    pass


@dataclass(frozen=True, slots=True)
class Start:
    form: dict[str, Any] = field(default_factory=dict)
    upstream: dict[str, dict[str, Any]] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class Retry:
    form: dict[str, Any] = field(default_factory=dict)
    upstream: dict[str, dict[str, Any]] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class Finetune:
    form: dict[str, Any] = field(default_factory=dict)
    upstream: dict[str, dict[str, Any]] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class Cancel:
    pass


@dataclass(frozen=True, slots=True)
class SubmitDone:
    job_id: str
    form: dict[str, Any] = field(default_factory=dict)
    derived: dict[str, Any] = field(default_factory=dict)
    upstream: dict[str, dict[str, Any]] = field(default_factory=dict)
    trigger: JobTrigger = "create"


@dataclass(frozen=True, slots=True)
class SubmitFailed:
    reason: str


@dataclass(frozen=True, slots=True)
class PollDone:
    report: JobStatusReport


@dataclass(frozen=True, slots=True)
class Interrupted:
    pass


type MachineEvent = (
    Activate
    | Start
    | Retry
    | Finetune
    | Cancel
    | SubmitDone
    | SubmitFailed
    | PollDone
    | Interrupted
)


def event_name(event: MachineEvent) -> str:
    """Snake-case name of an event, e.g. ``submit_done``."""
    name = type(event).__name__
    return "".join(f"_{c.lower()}" if c.isupper() else c for c in name).lstrip("_")


# ---------------------------------------------------------------------------
# Effects
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class SubmitJob:
    form: dict[str, Any]
    upstream: dict[str, dict[str, Any]]
    trigger: JobTrigger = "create"


@dataclass(frozen=True, slots=True)
class SchedulePoll:
    job_id: str


@dataclass(frozen=True, slots=True)
class StopPolling:
    pass


@dataclass(frozen=True, slots=True)
class CancelJob:
    job_id: str


type Effect = SubmitJob | SchedulePoll | StopPolling | CancelJob


@dataclass(frozen=True, slots=True)
class Transition:
    """Outcome of one event.

    ``dropped`` is set, and ``state`` is the input snapshot, when a stale
    internal event was ignored.
    """

    state: NodeMachineState
    effects: tuple[Effect, ...] = ()
    notices: tuple[Event, ...] = ()
    dropped: str | None = None


# ---------------------------------------------------------------------------
# Transition function
# ---------------------------------------------------------------------------


def _with(
    state: NodeMachineState, value: StatePath, now: datetime, **changes: Any
) -> NodeMachineState:
    context: NodeContext = dataclasses.replace(
        state.context, updated_at=now.strftime(TIMESTAMP_FORMAT), **changes
    )
    return NodeMachineState(node_type=state.node_type, value=value, context=context)


def _is_error(value: StatePath) -> bool:
    if isinstance(value, InPhase):
        return value.step == Step.ERROR
    return value.status == NodeStatus.ERROR


def _reject(state: NodeMachineState, event: MachineEvent) -> InvalidTransitionError:
    return InvalidTransitionError(str(state.value), event_name(event))


def transition(
    policy: NodePolicy,
    state: NodeMachineState,
    event: MachineEvent,
    *,
    node_id: str,
    now: datetime,
) -> Transition:
    """Compute the next snapshot of a node machine.

    Raises
    ------
    InvalidTransitionError
        If a user event is not accepted in the current state
    """
    value = state.value
    ctx = state.context
    ts = now.strftime(TIMESTAMP_FORMAT)

    match event:
        case Activate():
            if value != Settled(NodeStatus.INACTIVE):
                raise _reject(state, event)
            return Transition(_with(state, Settled(NodeStatus.ACTIVE), now))

        case Start(form=form, upstream=upstream):
            if value != Settled(NodeStatus.ACTIVE):
                raise _reject(state, event)
            return Transition(
                _with(state, policy.pending_state(), now),
                effects=(SubmitJob(form, upstream, "create"),),
            )

        case Retry(form=form, upstream=upstream):
            if not _is_error(value):
                raise _reject(state, event)
            changes: dict[str, Any] = {"job_status": None}
            if policy.retry_clears_job_id:
                changes["job_id"] = ""
            return Transition(
                _with(state, policy.pending_state(policy.retry_phase(value)), now, **changes),
                effects=(SubmitJob(form, upstream, "retry"),),
            )

        case Finetune(form=form, upstream=upstream):
            if value != Settled(NodeStatus.SUCCESS) or FINETUNE not in policy.success_followups:
                raise _reject(state, event)
            prefilled = policy.prefill_finetune(form, ctx.derived)
            return Transition(
                _with(
                    state, InPhase(Phase.TUNING, Step.PENDING), now, job_id="", job_status=None
                ),
                effects=(SubmitJob(prefilled, upstream, "finetune"),),
            )

        case Cancel():
            if not is_running(value) or not ctx.job_id:
                raise _reject(state, event)
            return Transition(state, effects=(CancelJob(ctx.job_id),))

        case SubmitDone() if not is_pending(value):
            return Transition(state, dropped=f"submission result outside pending ({value})")

        case SubmitDone(job_id=""):
            return transition(
                policy,
                state,
                SubmitFailed("scheduler returned an empty job id"),
                node_id=node_id,
                now=now,
            )

        case SubmitDone(job_id=job_id, form=form, derived=derived, upstream=upstream):
            assert isinstance(value, InPhase)
            return Transition(
                _with(
                    state,
                    value.with_step(Step.RUNNING),
                    now,
                    job_id=job_id,
                    job_status=None,
                    form=dict(form),
                    derived={**ctx.derived, **derived},
                    upstream=dict(upstream),
                    message=f"Job {job_id} submitted in {ts}",
                ),
                effects=(SchedulePoll(job_id),),
                notices=(JobSubmitted(node_id=node_id, job_id=job_id, trigger=event.trigger),),
            )

        case SubmitFailed(reason=reason):
            if not is_pending(value):
                return Transition(state, dropped=f"submission failure outside pending ({value})")
            assert isinstance(value, InPhase)
            return Transition(
                _with(
                    state,
                    policy.error_state(value.phase),
                    now,
                    message=f"Error submitting job in {ts}: {reason}",
                ),
                notices=(JobSubmissionFailed(node_id=node_id, reason=reason),),
            )

        case PollDone(report=report):
            if not is_running(value):
                return Transition(state, dropped=f"poll result outside running ({value})")
            if report.job_id != ctx.job_id:
                return Transition(state, dropped=f"poll result for stale job {report.job_id}")
            return _poll_transition(policy, state, report, node_id=node_id, now=now)

        case Interrupted():
            if not is_pending(value):
                return Transition(state, dropped=f"nothing to interrupt in {value}")
            assert isinstance(value, InPhase)
            return Transition(
                _with(state, policy.error_state(value.phase), now, message=INTERRUPTED_MESSAGE)
            )

    raise _reject(state, event)


def _poll_transition(
    policy: NodePolicy,
    state: NodeMachineState,
    report: JobStatusReport,
    *,
    node_id: str,
    now: datetime,
) -> Transition:
    """Apply the running-state guards: completed, then failed, then cancelled."""
    value = state.value
    assert isinstance(value, InPhase)
    job_id = state.context.job_id
    ts = now.strftime(TIMESTAMP_FORMAT)

    if report.is_completed:
        return Transition(
            _with(
                state,
                Settled(NodeStatus.SUCCESS),
                now,
                job_status=JobStatus.COMPLETED,
                message=f"Job {job_id} finished successfully in {ts}",
            ),
            effects=(StopPolling(),),
            notices=(JobCompleted(node_id=node_id, job_id=job_id),),
        )

    if report.is_failed:
        return Transition(
            _with(
                state,
                policy.error_state(value.phase),
                now,
                job_status=JobStatus.FAILED,
                message=f"Job {job_id} failed in {ts}",
            ),
            effects=(StopPolling(),),
            notices=(JobFailed(node_id=node_id, job_id=job_id),),
        )

    if report.is_cancelled:
        return Transition(
            _with(
                state,
                policy.error_state(value.phase),
                now,
                job_status=JobStatus.CANCELLED,
                message=f"Job {job_id} was cancelled in {ts}",
            ),
            effects=(StopPolling(),),
            notices=(JobCancelled(node_id=node_id, job_id=job_id),),
        )

    status = report.status
    return Transition(
        _with(
            state,
            value,
            now,
            job_status=status,
            message=f"Job {job_id} is {status.value.lower()}, last checked at {ts}",
        ),
        effects=(SchedulePoll(job_id),),
        notices=(JobStatusUpdated(node_id=node_id, job_id=job_id, status=status.value),),
    )
