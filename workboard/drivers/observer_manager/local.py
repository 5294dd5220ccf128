"""Local observer manager - in-process delivery of workboard notifications.

Each registration becomes a :class:`Subscription` that can narrow delivery by
event type and by node id, so a panel showing one node only hears about that
node. Deliveries run concurrently under a shared semaphore, each with its own
timeout; failures go to an error handler and are counted per subscription.
"""

from __future__ import annotations

import asyncio
import inspect
import uuid
from collections.abc import Iterable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol

from pydantic import BaseModel, ConfigDict, Field, field_validator

from workboard.kernel.events.events import Event
from workboard.kernel.logging import get_logger

if TYPE_CHECKING:
    from workboard.kernel.ports.observer_manager import (
        AsyncObserverFunc,
        EventTypes,
        Observer,
        ObserverFunc,
    )

logger = get_logger(__name__)

DEFAULT_MAX_CONCURRENT_OBSERVERS = 10
DEFAULT_OBSERVER_TIMEOUT = 5.0
DEFAULT_MAX_SYNC_WORKERS = 4


class ErrorHandler(Protocol):
    def handle_error(self, error: BaseException, context: dict[str, Any]) -> None: ...


class LoggingErrorHandler:
    """Report observer failures as loguru warnings."""

    def handle_error(self, error: BaseException, context: dict[str, Any]) -> None:
        logger.warning(
            "Observer {observer} could not handle {event}: {error!r}",
            observer=context.get("observer_id", "?"),
            event=context.get("event_type", "?"),
            error=error,
        )


class CallableObserver:
    """Adapts a plain function to the ``Observer`` protocol.

    Coroutine functions are awaited; regular functions run on the manager's
    worker pool so a slow print or file write does not block the event loop.
    """

    def __init__(self, func: ObserverFunc | AsyncObserverFunc, pool: ThreadPoolExecutor) -> None:
        self._func = func
        self._pool = pool
        self.__name__ = getattr(func, "__name__", type(func).__name__)

    async def handle(self, event: Event) -> None:
        if inspect.iscoroutinefunction(self._func):
            await self._func(event)
            return
        await asyncio.get_running_loop().run_in_executor(self._pool, self._func, event)


class SubscriptionOptions(BaseModel):
    """Validated keyword options of :meth:`LocalObserverManager.register`."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    observer_id: str | None = None
    event_types: frozenset[type[Event]] | None = None
    node_ids: frozenset[str] | None = None
    timeout: float | None = Field(None, gt=0)

    @field_validator("event_types", mode="before")
    @classmethod
    def _event_types(cls, value: Any) -> frozenset[type[Event]] | None:
        if value is None:
            return None
        if isinstance(value, type):
            value = (value,)
        if not isinstance(value, Iterable):
            raise TypeError(f"event_types must be an Event type or iterable, got {value!r}")
        types = frozenset(value)
        for event_type in types:
            if not (isinstance(event_type, type) and issubclass(event_type, Event)):
                raise TypeError(f"{event_type!r} is not an Event subclass")
        return types

    @field_validator("node_ids", mode="before")
    @classmethod
    def _node_ids(cls, value: Any) -> frozenset[str] | None:
        if value is None:
            return None
        if isinstance(value, str):
            return frozenset({value})
        return frozenset(value)


@dataclass(slots=True)
class Subscription:
    """One registered observer with its filters and delivery counters."""

    observer_id: str
    observer: Observer
    event_types: tuple[type[Event], ...] | None = None
    node_ids: frozenset[str] | None = None
    timeout: float | None = None
    delivered: int = 0
    failed: int = 0

    def wants(self, event: Event) -> bool:
        if self.event_types is not None and not isinstance(event, self.event_types):
            return False
        if self.node_ids is not None:
            return getattr(event, "node_id", None) in self.node_ids
        return True


class LocalObserverManager:
    """In-process ``ObserverManager``.

    Parameters
    ----------
    max_concurrent_observers : int
        Deliveries allowed to run at the same time across all events.
    observer_timeout : float
        Default seconds one delivery may take.
    max_sync_workers : int
        Worker threads for plain-function observers.
    error_handler : ErrorHandler | None
        Receives every failed or timed-out delivery; logs by default.

    Examples
    --------
    Toasts for a single node::

        manager = LocalObserverManager()
        manager.register(show_toast, node_ids="network-1", event_types=JobFailed)
        await manager.notify(JobFailed(node_id="network-1", job_id="42"))
    """

    def __init__(
        self,
        max_concurrent_observers: int = DEFAULT_MAX_CONCURRENT_OBSERVERS,
        observer_timeout: float = DEFAULT_OBSERVER_TIMEOUT,
        max_sync_workers: int = DEFAULT_MAX_SYNC_WORKERS,
        error_handler: ErrorHandler | None = None,
    ) -> None:
        self._default_timeout = observer_timeout
        self._errors = error_handler or LoggingErrorHandler()
        self._slots = asyncio.Semaphore(max_concurrent_observers)
        self._pool = ThreadPoolExecutor(
            max_workers=max_sync_workers, thread_name_prefix="workboard-observer"
        )
        self._closed = False
        self._subscriptions: dict[str, Subscription] = {}

    def register(
        self,
        handler: Observer | ObserverFunc | AsyncObserverFunc,
        *,
        observer_id: str | None = None,
        event_types: EventTypes | None = None,
        node_ids: Iterable[str] | str | None = None,
        timeout: float | None = None,
    ) -> str:
        """Subscribe *handler*; see :class:`~workboard.kernel.ports.ObserverManager`.

        Raises
        ------
        ValueError
            If *observer_id* is already taken
        TypeError
            If *handler* is not callable and has no ``handle`` method, or an
            event type is not an :class:`Event` subclass
        """
        options = SubscriptionOptions(
            observer_id=observer_id, event_types=event_types, node_ids=node_ids, timeout=timeout
        )
        sub_id = options.observer_id or uuid.uuid4().hex
        if sub_id in self._subscriptions:
            raise ValueError(f"Observer '{sub_id}' already registered")

        if callable(getattr(handler, "handle", None)):
            observer: Observer = handler  # type: ignore[assignment]
        elif callable(handler):
            observer = CallableObserver(handler, self._pool)
        else:
            raise TypeError(f"Observer must be callable or have handle(), got {type(handler)}")

        self._subscriptions[sub_id] = Subscription(
            observer_id=sub_id,
            observer=observer,
            event_types=tuple(options.event_types) if options.event_types else None,
            node_ids=options.node_ids,
            timeout=options.timeout,
        )
        logger.debug("Registered observer {observer}", observer=sub_id)
        return sub_id

    def unregister(self, observer_id: str) -> bool:
        return self._subscriptions.pop(observer_id, None) is not None

    def subscription(self, observer_id: str) -> Subscription | None:
        """Registration details and delivery counters of one observer."""
        return self._subscriptions.get(observer_id)

    async def notify(self, event: Event) -> None:
        """Deliver *event* to every matching subscription concurrently."""
        targets = [sub for sub in self._subscriptions.values() if sub.wants(event)]
        if targets:
            await asyncio.gather(*(self._deliver(sub, event) for sub in targets))

    async def _deliver(self, sub: Subscription, event: Event) -> None:
        async with self._slots:
            try:
                async with asyncio.timeout(sub.timeout or self._default_timeout):
                    await sub.observer.handle(event)
            except Exception as exc:  # noqa: BLE001
                sub.failed += 1
                self._errors.handle_error(
                    exc, {"observer_id": sub.observer_id, "event_type": type(event).__name__}
                )
            else:
                sub.delivered += 1

    def clear(self) -> None:
        self._subscriptions.clear()

    async def close(self) -> None:
        """Drop all subscriptions and stop the worker threads."""
        self.clear()
        if not self._closed:
            self._pool.shutdown(wait=True)
            self._closed = True

    def __len__(self) -> int:
        return len(self._subscriptions)

    async def __aenter__(self) -> LocalObserverManager:
        return self

    async def __aexit__(self, *_exc: object) -> None:
        await self.close()
