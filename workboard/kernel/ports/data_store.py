"""Document storage port used to persist workspace graphs.

:class:`~workboard.stdlib.lib.graph_store.GraphStore` writes one document per
node and per edge through this protocol. Without a backend it keeps the
documents in memory only.
"""

from __future__ import annotations

from abc import abstractmethod
from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class SupportsCollectionStorage(Protocol):
    """JSON-like documents addressed by ``(collection, key)``.

    Implementations: ``InMemoryCollectionStorage`` and ``SQLCollectionStorage``.
    """

    @abstractmethod
    async def asave(self, collection: str, key: str, data: dict[str, Any]) -> None:
        """Store *data* under *key*, replacing any previous document.

        A replaced document keeps its position in :meth:`aquery` results.

        Args
        ----
            collection: Collection name, e.g. ``"workboard_nodes"``.
            key: Document key, unique within the collection.
            data: JSON-serialisable document.
        """
        ...

    @abstractmethod
    async def aload(self, collection: str, key: str) -> dict[str, Any] | None:
        """The document under *key*, or ``None``."""
        ...

    @abstractmethod
    async def aquery(
        self, collection: str, filters: dict[str, Any] | None = None
    ) -> list[dict[str, Any]]:
        """Documents in first-save order whose top-level fields equal *filters*."""
        ...

    @abstractmethod
    async def adelete(self, collection: str, key: str) -> bool:
        """Remove *key*; ``False`` when there was nothing to remove."""
        ...


__all__ = ["SupportsCollectionStorage"]
