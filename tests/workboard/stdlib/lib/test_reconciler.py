"""Tests for the Reconciler lib."""

from __future__ import annotations

import pytest

from workboard.kernel.config.models import PollingConfig
from workboard.kernel.domain.graph import NodeRecord
from workboard.kernel.domain.node_state import (
    NodeMachineState,
    NodeStatus,
    machine_state_from_storage,
)
from workboard.kernel.machine import NodeMachine
from workboard.kernel.machine.transitions import INTERRUPTED_MESSAGE
from workboard.stdlib.adapters.mock import MockScheduler
from workboard.stdlib.lib.graph_store import GraphStore
from workboard.stdlib.lib.reconciler import Reconciler

WAIT = 5.0


def _record(node_id: str, value: str, job_id: str = "") -> NodeRecord:
    state = machine_state_from_storage(
        {"node_type": "dataset", "value": value, "context": {"job_id": job_id}}
    )
    return NodeRecord(node_id=node_id, machine_state=state)


def _settled(state: NodeMachineState) -> bool:
    return state.status in (NodeStatus.SUCCESS, NodeStatus.ERROR)


@pytest.fixture()
def store() -> GraphStore:
    return GraphStore("ws-1")


@pytest.fixture()
async def reconciler(store: GraphStore, scheduler: MockScheduler):
    polling = PollingConfig(interval_seconds=0.01)

    def factory(record: NodeRecord) -> NodeMachine:
        return NodeMachine(record.node_id, record.machine_state, scheduler, polling=polling)

    reconciler = Reconciler(store, factory)
    yield reconciler
    await reconciler.ateardown()


class TestMount:
    @pytest.mark.asyncio()
    async def test_mounts_every_stored_node(
        self, store: GraphStore, reconciler: Reconciler
    ) -> None:
        await store.aadd_node(_record("a", "active"))
        await store.aadd_node(_record("b", "success"))

        machines = await reconciler.amount()

        assert set(machines) == {"a", "b"}
        assert all(m.running for m in machines.values())
        assert machines["b"].state.status == NodeStatus.SUCCESS

    @pytest.mark.asyncio()
    async def test_mount_is_idempotent(
        self, store: GraphStore, reconciler: Reconciler
    ) -> None:
        record = _record("a", "active")
        await store.aadd_node(record)
        first = await reconciler.amount_node(record)
        await reconciler.amount()
        assert reconciler.get("a") is first
        assert len(reconciler.machines) == 1

    @pytest.mark.asyncio()
    async def test_running_node_resumes_polling(
        self, store: GraphStore, reconciler: Reconciler, scheduler: MockScheduler
    ) -> None:
        scheduler.script("55", "RUNNING", "COMPLETED")
        await store.aadd_node(_record("a", "busy.running", job_id="55"))

        await reconciler.amount()
        state = await reconciler.get("a").wait_for(_settled, WAIT)

        assert state.status == NodeStatus.SUCCESS
        assert scheduler.poll_calls == ["55", "55"]
        assert scheduler.submitted == []

    @pytest.mark.asyncio()
    async def test_pending_node_is_interrupted(
        self, store: GraphStore, reconciler: Reconciler
    ) -> None:
        await store.aadd_node(_record("a", "busy.pending"))

        await reconciler.amount()
        state = await reconciler.get("a").wait_for(_settled, WAIT)

        assert state.status == NodeStatus.ERROR
        assert state.context.message == INTERRUPTED_MESSAGE


class TestUnmount:
    @pytest.mark.asyncio()
    async def test_unmount_stops_polling(
        self, store: GraphStore, reconciler: Reconciler, scheduler: MockScheduler
    ) -> None:
        await store.aadd_node(_record("a", "busy.running", job_id="55"))
        scheduler.script("55", "RUNNING")
        await reconciler.amount()
        machine = reconciler.get("a")
        assert machine.poller.active

        await reconciler.aunmount()

        assert not machine.poller.active
        assert not machine.running
        assert reconciler.machines == {}
        assert scheduler.cancel_calls == []

    @pytest.mark.asyncio()
    async def test_unmount_unknown_node(self, reconciler: Reconciler) -> None:
        assert await reconciler.aunmount_node("ghost") is False
