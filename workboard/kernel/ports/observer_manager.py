"""Observer manager port - how workboard notifications reach the outside.

Node machines and the workboard controller publish every user-visible
notification through this port. Implementations must keep observers
read-only: an observer that fails or hangs never changes a node machine and
never surfaces as an exception to the publisher.
"""

from __future__ import annotations

from abc import abstractmethod
from collections.abc import Awaitable, Callable, Iterable
from typing import Protocol, runtime_checkable

from workboard.kernel.events.events import Event

ObserverFunc = Callable[[Event], None]
AsyncObserverFunc = Callable[[Event], Awaitable[None]]
EventTypes = Iterable[type[Event]] | type[Event]


@runtime_checkable
class Observer(Protocol):
    """Anything with an async ``handle(event)``, e.g. a toast renderer."""

    async def handle(self, event: Event) -> None: ...


@runtime_checkable
class ObserverManager(Protocol):
    """Registry of observers plus the publish side used by the node machines."""

    @abstractmethod
    def register(
        self,
        handler: Observer | ObserverFunc | AsyncObserverFunc,
        *,
        observer_id: str | None = None,
        event_types: EventTypes | None = None,
        node_ids: Iterable[str] | str | None = None,
        timeout: float | None = None,
    ) -> str:
        """Register *handler* and return its id.

        Args
        ----
            handler: Observer object or plain sync/async function.
            observer_id: Explicit id; a random one is generated when omitted.
            event_types: Only deliver these event types (subclasses included).
            node_ids: Only deliver events about these nodes.
            timeout: Per-delivery timeout overriding the manager default.
        """
        ...

    @abstractmethod
    def unregister(self, observer_id: str) -> bool: ...

    @abstractmethod
    async def notify(self, event: Event) -> None:
        """Publish *event*; never raises because of an observer."""
        ...

    @abstractmethod
    async def close(self) -> None: ...

    @abstractmethod
    def __len__(self) -> int: ...
