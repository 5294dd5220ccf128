"""Shared fixtures for workboard tests."""

from __future__ import annotations

from collections.abc import Callable, Iterator
from datetime import datetime

import pytest

from workboard.drivers.observer_manager import LocalObserverManager
from workboard.kernel.config import clear_config_cache
from workboard.kernel.config.models import PollingConfig, SchedulerDefaults
from workboard.kernel.domain.node_state import NodeMachineState, NodeType
from workboard.kernel.events.events import Event
from workboard.kernel.machine import NodeMachine, get_policy
from workboard.stdlib.adapters.mock import MockScheduler

FAST_POLL = 0.01
WAIT = 5.0
FIXED_NOW = datetime(2024, 5, 17, 9, 30, 0)


class EventRecorder:
    """Observer collecting every delivered event."""

    def __init__(self) -> None:
        self.events: list[Event] = []

    async def handle(self, event: Event) -> None:
        self.events.append(event)

    def of_type[E: Event](self, event_type: type[E]) -> list[E]:
        return [e for e in self.events if isinstance(e, event_type)]


@pytest.fixture(autouse=True)
def _isolated_config(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    """Keep WORKBOARD_* variables and cached config files out of every test."""
    for name in (
        "WORKBOARD_CONFIG_PATH",
        "WORKBOARD_POLL_INTERVAL",
        "WORKBOARD_LOG_LEVEL",
        "WORKBOARD_LOG_FORMAT",
        "WORKBOARD_LOG_FILE",
    ):
        monkeypatch.delenv(name, raising=False)
    clear_config_cache()
    yield
    clear_config_cache()


@pytest.fixture()
def fast_polling() -> PollingConfig:
    return PollingConfig(interval_seconds=FAST_POLL)


@pytest.fixture()
def scheduler() -> MockScheduler:
    return MockScheduler()


@pytest.fixture()
def recorder() -> EventRecorder:
    return EventRecorder()


@pytest.fixture()
def observers(recorder: EventRecorder) -> LocalObserverManager:
    manager = LocalObserverManager(observer_timeout=1.0)
    manager.register(recorder, observer_id="recorder")
    return manager


@pytest.fixture()
def make_machine(
    scheduler: MockScheduler,
    fast_polling: PollingConfig,
    observers: LocalObserverManager,
) -> Callable[..., NodeMachine]:
    """Factory building an unstarted machine with fast polling and a fixed clock."""

    def factory(
        node_type: NodeType | str,
        state: NodeMachineState | None = None,
        *,
        node_id: str = "node-1",
        workspace_path: str = "/ws",
        defaults: SchedulerDefaults | None = None,
    ) -> NodeMachine:
        policy = get_policy(node_type)
        if state is None:
            state = NodeMachineState(node_type=policy.node_type, value=policy.initial_state)
        return NodeMachine(
            node_id,
            state,
            scheduler,
            policy=policy,
            polling=fast_polling,
            scheduler_defaults=defaults,
            workspace_path=workspace_path,
            observers=observers,
            clock=lambda: FIXED_NOW,
        )

    return factory
