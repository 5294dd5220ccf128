"""Process-local document storage.

Used when no ``storage_url`` is configured and by most tests::

    storage = InMemoryCollectionStorage()
    await storage.asave("workboard_nodes", "ws:n1", {"status": "active"})
"""

from __future__ import annotations

import copy
from typing import Any


class InMemoryCollectionStorage:
    """``SupportsCollectionStorage`` over ``collection -> key -> document`` dicts.

    Documents are deep-copied in both directions so callers cannot mutate
    stored state. Dict insertion order gives first-save ordering for free.
    """

    def __init__(self) -> None:
        self._collections: dict[str, dict[str, dict[str, Any]]] = {}

    def _docs(self, collection: str) -> dict[str, dict[str, Any]]:
        return self._collections.get(collection, {})

    async def asave(self, collection: str, key: str, data: dict[str, Any]) -> None:
        self._collections.setdefault(collection, {})[key] = copy.deepcopy(data)

    async def aload(self, collection: str, key: str) -> dict[str, Any] | None:
        found = self._docs(collection).get(key)
        return None if found is None else copy.deepcopy(found)

    async def aquery(
        self, collection: str, filters: dict[str, Any] | None = None
    ) -> list[dict[str, Any]]:
        wanted = (filters or {}).items()
        return [
            copy.deepcopy(doc)
            for doc in self._docs(collection).values()
            if all(doc.get(field) == value for field, value in wanted)
        ]

    async def adelete(self, collection: str, key: str) -> bool:
        return self._docs(collection).pop(key, None) is not None

    def count(self, collection: str) -> int:
        """Number of documents in *collection*."""
        return len(self._docs(collection))
