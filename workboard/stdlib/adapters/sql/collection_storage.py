"""Document collections on any SQLAlchemy async database.

One table per collection, created on first use::

    wb_<collection>(key VARCHAR PRIMARY KEY, seq BIGINT, data JSON)

``seq`` is assigned once when a key is first written, so re-saving a node
keeps its place in ``aquery`` results. Filters compare top-level document
fields after loading; collections hold one workspace's canvas at a time so
they stay small.

Usage::

    from workboard.stdlib.adapters.sql import SQLCollectionStorage

    async with SQLCollectionStorage("sqlite+aiosqlite:///workboard.db") as storage:
        await storage.asave("workboard_nodes", "ws:n1", {"status": "active"})
        doc = await storage.aload("workboard_nodes", "ws:n1")
"""

from __future__ import annotations

import asyncio
import json
import re
from typing import TYPE_CHECKING, Any

from sqlalchemy import JSON, BigInteger, Column, MetaData, String, Table, func, select
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.pool import StaticPool

from workboard.kernel.exceptions import ConfigurationError
from workboard.kernel.logging import get_logger

if TYPE_CHECKING:
    from types import TracebackType

logger = get_logger(__name__)

_VALID_COLLECTION = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def _dumps(doc: Any) -> str:
    # Timestamps and enums inside context dicts are stored as strings
    return json.dumps(doc, default=str)


def _is_memory_sqlite(url: str) -> bool:
    return ":memory:" in url or url.rstrip("/").endswith("sqlite+aiosqlite:")


class SQLCollectionStorage:
    """``SupportsCollectionStorage`` over SQLAlchemy Core tables.

    Parameters
    ----------
    connection_string : str | None
        Async database URL, e.g. ``"sqlite+aiosqlite:///workboard.db"``.
    pool_size : int
        Connection pool size for server databases; SQLite ignores it.
    table_prefix : str
        Prepended to collection names to form table names.
    """

    def __init__(
        self,
        connection_string: str | None = None,
        pool_size: int = 5,
        table_prefix: str = "wb_",
    ) -> None:
        self.connection_string = connection_string
        self.pool_size = pool_size
        self.table_prefix = table_prefix
        self._engine: AsyncEngine | None = None
        self._metadata = MetaData()
        self._tables: dict[str, Table] = {}
        self._ddl_lock = asyncio.Lock()

    async def asetup(self) -> None:
        """Open the engine; the CRUD methods fail until this has run."""
        if self._engine is not None:
            return
        url = self.connection_string
        if not url:
            raise ConfigurationError("storage", "connection_string is required")

        options: dict[str, Any] = {"json_serializer": _dumps}
        if not url.startswith("sqlite"):
            options["pool_size"] = self.pool_size
        elif _is_memory_sqlite(url):
            # One shared connection, otherwise each session sees an empty database
            options["poolclass"] = StaticPool

        self._engine = create_async_engine(url, **options)
        logger.debug("Opened collection storage at {url}", url=self._engine.url)

    async def aclose(self) -> None:
        engine, self._engine = self._engine, None
        if engine is not None:
            await engine.dispose()
        self._metadata.clear()
        self._tables.clear()

    async def __aenter__(self) -> SQLCollectionStorage:
        await self.asetup()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    async def asave(self, collection: str, key: str, data: dict[str, Any]) -> None:
        """Insert or replace the document stored under *key*."""
        table, engine = await self._table(collection)
        async with engine.begin() as conn:
            updated = await conn.execute(
                table.update().where(table.c.key == key).values(data=data)
            )
            if updated.rowcount:
                return
            next_seq = await conn.scalar(select(func.coalesce(func.max(table.c.seq), 0) + 1))
            await conn.execute(table.insert().values(key=key, seq=next_seq, data=data))

    async def aload(self, collection: str, key: str) -> dict[str, Any] | None:
        table, engine = await self._table(collection)
        async with engine.connect() as conn:
            return await conn.scalar(select(table.c.data).where(table.c.key == key))

    async def aquery(
        self, collection: str, filters: dict[str, Any] | None = None
    ) -> list[dict[str, Any]]:
        """All documents in first-save order whose fields equal every *filters* item."""
        table, engine = await self._table(collection)
        async with engine.connect() as conn:
            rows = await conn.scalars(select(table.c.data).order_by(table.c.seq))
            docs = list(rows)
        if not filters:
            return docs
        return [doc for doc in docs if all(doc.get(f) == v for f, v in filters.items())]

    async def adelete(self, collection: str, key: str) -> bool:
        table, engine = await self._table(collection)
        async with engine.begin() as conn:
            result = await conn.execute(table.delete().where(table.c.key == key))
        return bool(result.rowcount)

    async def _table(self, collection: str) -> tuple[Table, AsyncEngine]:
        """Resolve (and on first use create) the table backing *collection*."""
        if self._engine is None:
            raise RuntimeError("SQLCollectionStorage is not open; call asetup() first")
        if collection in self._tables:
            return self._tables[collection], self._engine
        if not _VALID_COLLECTION.match(collection):
            raise ConfigurationError("storage", f"invalid collection name {collection!r}")

        async with self._ddl_lock:
            if collection not in self._tables:
                table = Table(
                    f"{self.table_prefix}{collection}",
                    self._metadata,
                    Column("key", String(255), primary_key=True),
                    Column("seq", BigInteger, nullable=False, index=True),
                    Column("data", JSON, nullable=False),
                )
                async with self._engine.begin() as conn:
                    await conn.run_sync(table.create, checkfirst=True)
                self._tables[collection] = table
        return self._tables[collection], self._engine
