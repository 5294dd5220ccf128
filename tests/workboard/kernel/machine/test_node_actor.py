"""Tests for the node machine actor running against the mock scheduler."""

from __future__ import annotations

import asyncio
from collections.abc import Callable

import pytest

from workboard.kernel.domain.job import JobStatus
from workboard.kernel.domain.node_state import (
    InPhase,
    NodeMachineState,
    NodeStatus,
    NodeType,
    Phase,
    Settled,
    Step,
    is_running,
    machine_state_from_storage,
    machine_state_to_storage,
)
from workboard.kernel.events import (
    CancelFailed,
    CancelRequested,
    JobSubmissionFailed,
    PersistenceFailed,
    TransitionRejected,
)
from workboard.kernel.machine import NodeMachine
from workboard.kernel.machine.transitions import (
    INTERRUPTED_MESSAGE,
    Activate,
    Cancel,
    Finetune,
    Retry,
    Start,
)
from workboard.stdlib.adapters.mock import MockScheduler

WAIT = 5.0
TS = "2024-05-17 09:30:00"

DATASET = {"dataset_name": "cells", "remote_path": "/ws/datasets/cells.h5"}
NETWORK = {"network_label": "net", "network_type": "unet2d"}

START_INPUTS: dict[NodeType, tuple[dict, dict]] = {
    NodeType.DATASET: ({"dataset_name": "cells"}, {}),
    NodeType.AUGMENTATION: ({}, {"dataset": DATASET}),
    NodeType.NETWORK: ({"network_label": "net"}, {"dataset": DATASET}),
    NodeType.FINETUNE: ({}, {"dataset": DATASET, "network": NETWORK}),
    NodeType.INFERENCE: ({"input_images": ["a.tif"]}, {"network": NETWORK}),
}


def _active(node_type: NodeType) -> NodeMachineState:
    return NodeMachineState(node_type=node_type, value=Settled(NodeStatus.ACTIVE))


def _running(state: NodeMachineState) -> bool:
    return is_running(state.value)


def _status(status: NodeStatus) -> Callable[[NodeMachineState], bool]:
    return lambda state: state.status == status


class TestStart:
    @pytest.mark.asyncio()
    @pytest.mark.parametrize("node_type", list(NodeType))
    async def test_start_reaches_running_with_job_id(
        self, node_type: NodeType, make_machine, scheduler: MockScheduler
    ) -> None:
        machine: NodeMachine = make_machine(node_type, _active(node_type))
        await machine.start()
        try:
            form, upstream = START_INPUTS[node_type]
            assert await machine.asend(Start(form, upstream))
            state = await machine.wait_for(_running, WAIT)
        finally:
            await machine.stop()

        assert state.context.job_id == "1000"
        assert state.context.form == form
        assert state.context.message.startswith("Job 1000 ")
        assert scheduler.submitted[0].job_name == f"workboard-{node_type.value}"

    @pytest.mark.asyncio()
    async def test_rejected_submission_goes_to_error(
        self, make_machine, scheduler: MockScheduler, recorder
    ) -> None:
        scheduler.fail_next_submit("partition proc2 unavailable")
        machine = make_machine("dataset")
        await machine.start()
        try:
            await machine.asend(Start({"dataset_name": "cells"}))
            state = await machine.wait_for(_status(NodeStatus.ERROR), WAIT)
        finally:
            await machine.stop()

        assert state.value == Settled(NodeStatus.ERROR)
        assert state.context.job_id == ""
        assert state.context.message == (
            f"Error submitting job in {TS}: partition proc2 unavailable"
        )
        assert recorder.of_type(JobSubmissionFailed)[0].reason == "partition proc2 unavailable"
        assert scheduler.poll_calls == []

    @pytest.mark.asyncio()
    async def test_invalid_form_goes_to_error_without_submitting(
        self, make_machine, scheduler: MockScheduler
    ) -> None:
        machine = make_machine("network", _active(NodeType.NETWORK))
        await machine.start()
        try:
            await machine.asend(Start({"network_type": "resnet"}, {"dataset": DATASET}))
            state = await machine.wait_for(_status(NodeStatus.ERROR), WAIT)
        finally:
            await machine.stop()

        assert state.value == InPhase(Phase.TRAINING, Step.ERROR)
        assert "network_type" in state.context.message
        assert scheduler.submitted == []


class TestPolling:
    @pytest.mark.asyncio()
    async def test_dataset_end_to_end(self, make_machine, scheduler: MockScheduler) -> None:
        scheduler.script("1000", "RUNNING", "RUNNING", "RUNNING", "COMPLETED")
        machine = make_machine("dataset")
        await machine.start()
        try:
            await machine.asend(Start({"dataset_name": "cells"}))
            state = await machine.wait_for(_status(NodeStatus.SUCCESS), WAIT)
        finally:
            await machine.stop()

        assert state.value == Settled(NodeStatus.SUCCESS)
        assert state.context.job_status == JobStatus.COMPLETED
        assert state.context.derived["remote_path"] == "/ws/datasets/cells.h5"
        assert state.context.message == f"Job 1000 finished successfully in {TS}"
        assert scheduler.poll_calls == ["1000"] * 4
        assert not machine.poller.active

    @pytest.mark.asyncio()
    async def test_completed_and_failed_lines_mean_success(
        self, make_machine, scheduler: MockScheduler
    ) -> None:
        scheduler.script("1000", "COMPLETED\nFAILED")
        machine = make_machine("dataset")
        await machine.start()
        try:
            await machine.asend(Start({"dataset_name": "cells"}))
            state = await machine.wait_for(lambda s: s.context.job_status is not None, WAIT)
        finally:
            await machine.stop()
        assert state.status == NodeStatus.SUCCESS

    @pytest.mark.asyncio()
    async def test_polling_errors_do_not_change_state(
        self, make_machine, scheduler: MockScheduler
    ) -> None:
        scheduler.script("1000", "COMPLETED")
        scheduler.fail_polls(3)
        machine = make_machine("dataset")
        await machine.start()
        try:
            await machine.asend(Start({"dataset_name": "cells"}))
            state = await machine.wait_for(_status(NodeStatus.SUCCESS), WAIT)
        finally:
            await machine.stop()
        assert state.context.job_status == JobStatus.COMPLETED
        assert len(scheduler.poll_calls) == 4


class TestCancel:
    @pytest.mark.asyncio()
    async def test_cancel_is_one_call_then_poll_drives_error(
        self, make_machine, scheduler: MockScheduler, recorder
    ) -> None:
        machine = make_machine("dataset")
        await machine.start()
        try:
            await machine.asend(Start({"dataset_name": "cells"}))
            running = await machine.wait_for(_running, WAIT)
            assert await machine.asend(Cancel())
            assert machine.state.value == running.value
            state = await machine.wait_for(_status(NodeStatus.ERROR), WAIT)
        finally:
            await machine.stop()

        assert scheduler.cancel_calls == ["1000"]
        assert state.value == Settled(NodeStatus.ERROR)
        assert state.context.job_status == JobStatus.CANCELLED
        assert state.context.message == f"Job 1000 was cancelled in {TS}"
        assert recorder.of_type(CancelRequested)[0].job_id == "1000"

    @pytest.mark.asyncio()
    async def test_failed_cancel_is_notified_not_transitioned(
        self, make_machine, scheduler: MockScheduler, recorder
    ) -> None:
        scheduler.fail_next_cancel("scheduler unreachable")
        machine = make_machine("dataset")
        await machine.start()
        try:
            await machine.asend(Start({"dataset_name": "cells"}))
            await machine.wait_for(_running, WAIT)
            await machine.asend(Cancel())
            for _ in range(50):
                if recorder.of_type(CancelFailed):
                    break
                await asyncio.sleep(0.01)
            assert is_running(machine.state.value)
        finally:
            await machine.stop()

        assert "scheduler unreachable" in recorder.of_type(CancelFailed)[0].reason


class TestRetryAndFinetune:
    @pytest.mark.asyncio()
    async def test_retry_resubmits_once_with_new_form(
        self, scheduler: MockScheduler, fast_polling
    ) -> None:
        snapshots: list[NodeMachineState] = []

        async def on_change(node_id: str, state: NodeMachineState) -> None:
            snapshots.append(state)

        scheduler.script("1000", "FAILED")
        machine = NodeMachine(
            "n1",
            NodeMachineState(node_type=NodeType.DATASET, value=Settled(NodeStatus.ACTIVE)),
            scheduler,
            polling=fast_polling,
            on_change=on_change,
        )
        await machine.start()
        try:
            await machine.asend(Start({"dataset_name": "cells"}))
            failed = await machine.wait_for(_status(NodeStatus.ERROR), WAIT)
            assert failed.context.job_status == JobStatus.FAILED

            snapshots.clear()
            assert await machine.asend(Retry({"dataset_name": "cells_v2"}))
            await machine.wait_for(_running, WAIT)
        finally:
            await machine.stop()

        assert len(scheduler.submitted) == 2
        retry_spec = scheduler.submitted[1]
        assert retry_spec.trigger == "retry"
        assert retry_spec.payload["dataset_name"] == "cells_v2"

        pending, running = snapshots[0], snapshots[1]
        assert str(pending.value) == "busy.pending"
        assert pending.context.job_status is None
        assert pending.context.job_id == ""
        assert str(running.value) == "busy.running"
        assert running.context.job_id == "1001"
        assert running.context.job_status is None
        assert running.context.form == {"dataset_name": "cells_v2"}

    @pytest.mark.asyncio()
    async def test_network_finetune_failure_ends_in_tuning_error(
        self, make_machine, scheduler: MockScheduler
    ) -> None:
        scheduler.script("1000", "COMPLETED")
        scheduler.script("1001", "RUNNING", "FAILED")
        machine = make_machine("network", _active(NodeType.NETWORK))
        await machine.start()
        try:
            await machine.asend(Start({"network_label": "net"}, {"dataset": DATASET}))
            await machine.wait_for(_status(NodeStatus.SUCCESS), WAIT)
            assert await machine.asend(Finetune({}, {"dataset": DATASET}))
            state = await machine.wait_for(_status(NodeStatus.ERROR), WAIT)
        finally:
            await machine.stop()

        assert state.value == InPhase(Phase.TUNING, Step.ERROR)
        assert state.status == NodeStatus.ERROR
        finetune_spec = scheduler.submitted[1]
        assert finetune_spec.trigger == "finetune"
        assert finetune_spec.payload["network_label"] == "net"


class TestMailbox:
    @pytest.mark.asyncio()
    async def test_rejected_event_is_dropped_and_notified(self, make_machine, recorder) -> None:
        machine = make_machine("dataset")
        await machine.start()
        try:
            assert not await machine.asend(Activate())
        finally:
            await machine.stop()

        assert machine.state.value == Settled(NodeStatus.ACTIVE)
        (rejected,) = recorder.of_type(TransitionRejected)
        assert (rejected.state, rejected.event) == ("active", "activate")

    @pytest.mark.asyncio()
    async def test_on_change_receives_every_new_snapshot(
        self, scheduler: MockScheduler, fast_polling
    ) -> None:
        seen: list[str] = []

        async def on_change(node_id: str, state: NodeMachineState) -> None:
            seen.append(str(state.value))

        scheduler.script("1000", "COMPLETED")
        machine = NodeMachine(
            "n1",
            NodeMachineState(node_type=NodeType.DATASET, value=Settled(NodeStatus.ACTIVE)),
            scheduler,
            polling=fast_polling,
            on_change=on_change,
        )
        await machine.start()
        try:
            await machine.asend(Start({"dataset_name": "cells"}))
            await machine.wait_for(_status(NodeStatus.SUCCESS), WAIT)
        finally:
            await machine.stop()
        assert seen == ["busy.pending", "busy.running", "success"]

    @pytest.mark.asyncio()
    async def test_failed_save_keeps_polling(
        self, scheduler: MockScheduler, fast_polling, observers, recorder
    ) -> None:
        async def on_change(node_id: str, state: NodeMachineState) -> None:
            if is_running(state.value):
                raise OSError("database is locked")

        scheduler.script("1000", "RUNNING", "COMPLETED")
        machine = NodeMachine(
            "n1",
            NodeMachineState(node_type=NodeType.DATASET, value=Settled(NodeStatus.ACTIVE)),
            scheduler,
            polling=fast_polling,
            observers=observers,
            on_change=on_change,
        )
        await machine.start()
        try:
            assert await machine.asend(Start({"dataset_name": "ds1"}))
            await machine.wait_for(_status(NodeStatus.SUCCESS), WAIT)
        finally:
            await machine.stop()

        assert scheduler.poll_calls.count("1000") >= 2
        failures = recorder.of_type(PersistenceFailed)
        assert failures
        assert {f.state for f in failures} == {"busy.running"}
        assert "database is locked" in failures[0].reason

    @pytest.mark.asyncio()
    async def test_stop_resolves_queued_events(self, make_machine) -> None:
        machine = make_machine("dataset")
        pending = machine.send(Activate())
        await machine.stop()
        assert pending.done()
        assert pending.result() is False
        assert not machine.running


class TestRehydration:
    STORED = {
        "node_type": "network",
        "value": "training.running",
        "context": {
            "job_id": "123",
            "job_status": "RUNNING",
            "form": {"network_label": "net"},
            "derived": {"network_label": "net", "network_type": "unet2d"},
            "upstream": {"dataset": DATASET},
            "message": "Job 123 is running, last checked at 2024-05-17 09:00:00",
            "updated_at": "2024-05-17 09:00:00",
        },
    }

    @pytest.mark.asyncio()
    async def test_running_snapshot_resumes_polling_unchanged(
        self, make_machine, scheduler: MockScheduler
    ) -> None:
        scheduler.script("123", "RUNNING")
        machine = make_machine("network", machine_state_from_storage(self.STORED))
        await machine.start()
        try:
            assert machine_state_to_storage(machine.state) == self.STORED
            assert machine.poller.job_id == "123"
        finally:
            await machine.stop()

    @pytest.mark.asyncio()
    async def test_restored_job_completes(self, make_machine, scheduler: MockScheduler) -> None:
        scheduler.script("123", "RUNNING", "COMPLETED")
        machine = make_machine("network", machine_state_from_storage(self.STORED))
        await machine.start()
        try:
            state = await machine.wait_for(_status(NodeStatus.SUCCESS), WAIT)
        finally:
            await machine.stop()
        assert state.context.job_id == "123"
        assert state.context.derived == self.STORED["context"]["derived"]
        assert scheduler.submitted == []

    @pytest.mark.asyncio()
    async def test_same_snapshot_twice_behaves_the_same(self, fast_polling) -> None:
        results = []
        for _ in range(2):
            scheduler = MockScheduler()
            scheduler.script("123", "FAILED")
            machine = NodeMachine(
                "n1",
                machine_state_from_storage(self.STORED),
                scheduler,
                polling=fast_polling,
            )
            await machine.start()
            try:
                state = await machine.wait_for(_status(NodeStatus.ERROR), WAIT)
            finally:
                await machine.stop()
            results.append((str(state.value), state.context.job_status, scheduler.poll_calls))
        assert results[0] == results[1]
        assert results[0][0] == "training.error"

    @pytest.mark.asyncio()
    async def test_pending_snapshot_moves_to_error(
        self, make_machine, scheduler: MockScheduler
    ) -> None:
        stored = {"node_type": "dataset", "value": "busy.pending", "context": {}}
        machine = make_machine("dataset", machine_state_from_storage(stored))
        await machine.start()
        try:
            state = await machine.wait_for(_status(NodeStatus.ERROR), WAIT)
        finally:
            await machine.stop()
        assert state.value == Settled(NodeStatus.ERROR)
        assert state.context.message == INTERRUPTED_MESSAGE
        assert scheduler.submitted == []
