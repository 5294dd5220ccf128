"""Tests for the pure transition function."""

from __future__ import annotations

from datetime import datetime

import pytest

from workboard.kernel.domain.job import JobStatus, JobStatusReport
from workboard.kernel.domain.node_state import (
    InPhase,
    NodeContext,
    NodeMachineState,
    NodeStatus,
    NodeType,
    Phase,
    Settled,
    Step,
    parse_state_path,
)
from workboard.kernel.events import (
    JobCancelled,
    JobCompleted,
    JobFailed,
    JobStatusUpdated,
    JobSubmissionFailed,
    JobSubmitted,
)
from workboard.kernel.exceptions import InvalidTransitionError
from workboard.kernel.machine.policies import get_policy
from workboard.kernel.machine.transitions import (
    INTERRUPTED_MESSAGE,
    Activate,
    Cancel,
    CancelJob,
    Finetune,
    Interrupted,
    PollDone,
    Retry,
    SchedulePoll,
    Start,
    StopPolling,
    SubmitDone,
    SubmitFailed,
    SubmitJob,
    event_name,
    transition,
)

NOW = datetime(2024, 5, 17, 9, 30, 0)
TS = "2024-05-17 09:30:00"


def _state(node_type: str, value: str, **context) -> NodeMachineState:
    return NodeMachineState(
        node_type=NodeType(node_type),
        value=parse_state_path(value),
        context=NodeContext(**context),
    )


def _apply(node_type: str, state: NodeMachineState, event):
    return transition(get_policy(node_type), state, event, node_id="n1", now=NOW)


class TestUserEvents:
    def test_activate(self) -> None:
        result = _apply("network", _state("network", "inactive"), Activate())
        assert result.state.value == Settled(NodeStatus.ACTIVE)
        assert result.state.context.updated_at == TS
        assert result.effects == ()

    @pytest.mark.parametrize(
        ("node_type", "pending"),
        [
            ("dataset", "busy.pending"),
            ("augmentation", "busy.pending"),
            ("network", "training.pending"),
            ("finetune", "busy.pending"),
            ("inference", "busy.pending"),
        ],
    )
    def test_start_submits(self, node_type: str, pending: str) -> None:
        form = {"dataset_name": "cells"}
        upstream = {"dataset": {"dataset_name": "cells"}}
        result = _apply(node_type, _state(node_type, "active"), Start(form, upstream))
        assert str(result.state.value) == pending
        assert result.effects == (SubmitJob(form, upstream, "create"),)

    def test_start_outside_active_is_rejected(self) -> None:
        with pytest.raises(InvalidTransitionError) as exc_info:
            _apply("network", _state("network", "inactive"), Start())
        assert exc_info.value.state == "inactive"
        assert exc_info.value.event == "start"

    def test_retry_clears_job_id_and_status(self) -> None:
        state = _state("dataset", "error", job_id="10", job_status=JobStatus.FAILED)
        result = _apply("dataset", state, Retry({"dataset_name": "v2"}))
        assert result.state.value == InPhase(Phase.BUSY, Step.PENDING)
        assert result.state.context.job_id == ""
        assert result.state.context.job_status is None
        assert result.effects == (SubmitJob({"dataset_name": "v2"}, {}, "retry"),)

    def test_inference_retry_keeps_job_id(self) -> None:
        state = _state("inference", "error", job_id="10", job_status=JobStatus.FAILED)
        result = _apply("inference", state, Retry())
        assert result.state.context.job_id == "10"
        assert result.state.context.job_status is None

    def test_retry_from_tuning_error_stays_in_tuning(self) -> None:
        result = _apply("network", _state("network", "tuning.error"), Retry())
        assert result.state.value == InPhase(Phase.TUNING, Step.PENDING)

    def test_retry_outside_error_is_rejected(self) -> None:
        with pytest.raises(InvalidTransitionError):
            _apply("dataset", _state("dataset", "success"), Retry())

    def test_finetune_prefills_form(self) -> None:
        state = _state(
            "network",
            "success",
            job_id="10",
            job_status=JobStatus.COMPLETED,
            derived={"network_label": "net", "network_type": "vnet"},
        )
        result = _apply("network", state, Finetune({"epochs": 3}))
        assert result.state.value == InPhase(Phase.TUNING, Step.PENDING)
        assert result.state.context.job_id == ""
        assert result.state.context.job_status is None
        (effect,) = result.effects
        assert effect == SubmitJob(
            {"network_label": "net", "network_type": "vnet", "epochs": 3}, {}, "finetune"
        )

    def test_finetune_only_for_networks(self) -> None:
        with pytest.raises(InvalidTransitionError):
            _apply("dataset", _state("dataset", "success"), Finetune())

    def test_cancel_emits_effect_without_state_change(self) -> None:
        state = _state("dataset", "busy.running", job_id="10")
        result = _apply("dataset", state, Cancel())
        assert result.state is state
        assert result.effects == (CancelJob("10"),)

    def test_cancel_outside_running_is_rejected(self) -> None:
        with pytest.raises(InvalidTransitionError):
            _apply("dataset", _state("dataset", "busy.pending"), Cancel())


class TestSubmissionResults:
    def test_submit_done(self) -> None:
        state = _state("dataset", "busy.pending")
        event = SubmitDone(
            job_id="42",
            form={"dataset_name": "cells"},
            derived={"dataset_name": "cells", "remote_path": "/ws/datasets/cells.h5"},
        )
        result = _apply("dataset", state, event)
        ctx = result.state.context
        assert result.state.value == InPhase(Phase.BUSY, Step.RUNNING)
        assert ctx.job_id == "42"
        assert ctx.form == {"dataset_name": "cells"}
        assert ctx.derived["remote_path"] == "/ws/datasets/cells.h5"
        assert ctx.message == f"Job 42 submitted in {TS}"
        assert result.effects == (SchedulePoll("42"),)
        assert isinstance(result.notices[0], JobSubmitted)

    def test_submit_failed_goes_to_flat_error(self) -> None:
        state = _state("dataset", "busy.pending", form={"dataset_name": "old"})
        result = _apply("dataset", state, SubmitFailed("partition down"))
        assert result.state.value == Settled(NodeStatus.ERROR)
        assert result.state.context.job_id == ""
        assert result.state.context.form == {"dataset_name": "old"}
        assert result.state.context.message == f"Error submitting job in {TS}: partition down"
        assert isinstance(result.notices[0], JobSubmissionFailed)

    def test_submit_failed_goes_to_phase_error(self) -> None:
        result = _apply("network", _state("network", "training.pending"), SubmitFailed("x"))
        assert result.state.value == InPhase(Phase.TRAINING, Step.ERROR)
        assert result.state.status == NodeStatus.ERROR

    def test_empty_job_id_counts_as_rejection(self) -> None:
        result = _apply("dataset", _state("dataset", "busy.pending"), SubmitDone(job_id=""))
        assert result.state.value == Settled(NodeStatus.ERROR)
        assert result.state.context.job_id == ""
        assert "empty job id" in result.state.context.message

    def test_stale_submit_result_is_dropped(self) -> None:
        state = _state("dataset", "busy.running", job_id="1")
        result = _apply("dataset", state, SubmitDone(job_id="2"))
        assert result.dropped is not None
        assert result.state is state


class TestPollResults:
    def _poll(self, raw: str, node_type: str = "dataset", value: str = "busy.running"):
        state = _state(node_type, value, job_id="42")
        return _apply(node_type, state, PollDone(JobStatusReport.from_raw("42", raw)))

    def test_completed(self) -> None:
        result = self._poll("COMPLETED")
        assert result.state.value == Settled(NodeStatus.SUCCESS)
        assert result.state.context.job_status == JobStatus.COMPLETED
        assert result.state.context.message == f"Job 42 finished successfully in {TS}"
        assert result.effects == (StopPolling(),)
        assert isinstance(result.notices[0], JobCompleted)

    def test_completed_wins_over_failed(self) -> None:
        assert self._poll("COMPLETED\nFAILED").state.value == Settled(NodeStatus.SUCCESS)

    def test_failed(self) -> None:
        result = self._poll("FAILED")
        assert result.state.value == Settled(NodeStatus.ERROR)
        assert result.state.context.message == f"Job 42 failed in {TS}"
        assert isinstance(result.notices[0], JobFailed)

    def test_cancelled(self) -> None:
        result = self._poll("CANCELLED by 0", node_type="network", value="training.running")
        assert result.state.value == InPhase(Phase.TRAINING, Step.ERROR)
        assert result.state.context.message == f"Job 42 was cancelled in {TS}"
        assert isinstance(result.notices[0], JobCancelled)

    def test_non_terminal_status_keeps_polling(self) -> None:
        result = self._poll("PENDING")
        assert result.state.value == InPhase(Phase.BUSY, Step.RUNNING)
        assert result.state.context.job_status == JobStatus.PENDING
        assert result.state.context.message == f"Job 42 is pending, last checked at {TS}"
        assert result.effects == (SchedulePoll("42"),)
        assert isinstance(result.notices[0], JobStatusUpdated)

    def test_unknown_status_keeps_polling(self) -> None:
        result = self._poll("WEIRD")
        assert result.state.context.job_status == JobStatus.UNKNOWN
        assert result.effects == (SchedulePoll("42"),)

    def test_poll_for_other_job_is_dropped(self) -> None:
        state = _state("dataset", "busy.running", job_id="42")
        result = _apply("dataset", state, PollDone(JobStatusReport.from_raw("41", "COMPLETED")))
        assert result.dropped is not None
        assert result.state is state

    def test_poll_outside_running_is_dropped(self) -> None:
        state = _state("dataset", "success", job_id="42")
        result = _apply("dataset", state, PollDone(JobStatusReport.from_raw("42", "FAILED")))
        assert result.dropped is not None


class TestInterrupted:
    def test_pending_goes_to_error(self) -> None:
        result = _apply("network", _state("network", "tuning.pending"), Interrupted())
        assert result.state.value == InPhase(Phase.TUNING, Step.ERROR)
        assert result.state.context.message == INTERRUPTED_MESSAGE

    def test_outside_pending_is_dropped(self) -> None:
        assert _apply("dataset", _state("dataset", "active"), Interrupted()).dropped


class TestPurity:
    def test_input_snapshot_is_not_mutated(self) -> None:
        state = _state("dataset", "busy.running", job_id="42", message="before")
        _apply("dataset", state, PollDone(JobStatusReport.from_raw("42", "COMPLETED")))
        assert state.value == InPhase(Phase.BUSY, Step.RUNNING)
        assert state.context.message == "before"

    def test_event_names(self) -> None:
        assert event_name(SubmitDone(job_id="1")) == "submit_done"
        assert event_name(Activate()) == "activate"
