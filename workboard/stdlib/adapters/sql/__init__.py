"""SQL storage adapters."""

from workboard.stdlib.adapters.sql.collection_storage import SQLCollectionStorage

__all__ = ["SQLCollectionStorage"]
