"""In-memory storage adapters."""

from workboard.stdlib.adapters.memory.collection_memory import InMemoryCollectionStorage

__all__ = ["InMemoryCollectionStorage"]
