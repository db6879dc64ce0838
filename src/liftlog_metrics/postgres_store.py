"""PostgreSQL-backed document store.

Every document is one row keyed by its full path, with the parent
collection path stored alongside for child listing. Merge writes are a
shallow ``jsonb ||`` of the new fields over the stored object. Each batch
commits in its own transaction, so the store expects an autocommit
connection (``PostgresDocumentStore.connect`` opens one).
"""

from __future__ import annotations

import logging
from typing import Any

import psycopg
from psycopg import sql
from psycopg.rows import dict_row
from psycopg.types.json import Jsonb

from .documents import DocumentSnapshot, PendingWriteBatch, WriteOp, split_path

logger = logging.getLogger(__name__)


class _PostgresBatch(PendingWriteBatch):
    def __init__(self, store: PostgresDocumentStore) -> None:
        super().__init__()
        self._store = store

    async def _apply(self, ops: list[WriteOp]) -> None:
        await self._store._apply(ops)


class PostgresDocumentStore:
    def __init__(self, conn: psycopg.AsyncConnection[Any], table: str = "documents") -> None:
        self._conn = conn
        self._table = sql.Identifier(table)
        self._parent_index = sql.Identifier(f"{table}_parent_idx")

    @classmethod
    async def connect(cls, database_url: str, table: str = "documents") -> PostgresDocumentStore:
        conn = await psycopg.AsyncConnection.connect(database_url, autocommit=True)
        return cls(conn, table)

    async def close(self) -> None:
        await self._conn.close()

    async def __aenter__(self) -> PostgresDocumentStore:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    async def ensure_schema(self) -> None:
        async with self._conn.transaction():
            await self._conn.execute(
                sql.SQL(
                    """
                    CREATE TABLE IF NOT EXISTS {table} (
                        path TEXT PRIMARY KEY,
                        parent TEXT NOT NULL,
                        data JSONB NOT NULL DEFAULT '{{}}'::jsonb,
                        updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
                    )
                    """
                ).format(table=self._table)
            )
            await self._conn.execute(
                sql.SQL("CREATE INDEX IF NOT EXISTS {index} ON {table} (parent)").format(
                    index=self._parent_index, table=self._table
                )
            )
        logger.info("Ensured document table %s", self._table.as_string(self._conn))

    async def get(self, path: str) -> dict[str, Any] | None:
        async with self._conn.cursor(row_factory=dict_row) as cur:
            await cur.execute(
                sql.SQL("SELECT data FROM {table} WHERE path = %s").format(table=self._table),
                (path,),
            )
            row = await cur.fetchone()
        if row is None:
            return None
        return row["data"] or {}

    async def get_all(
        self, collection_path: str, order_by: str | None = None
    ) -> list[DocumentSnapshot]:
        parent = collection_path.strip("/")
        if order_by is None:
            query = sql.SQL(
                "SELECT path, data FROM {table} WHERE parent = %s ORDER BY path ASC"
            ).format(table=self._table)
            params: tuple[Any, ...] = (parent,)
        else:
            query = sql.SQL(
                """
                SELECT path, data FROM {table}
                WHERE parent = %s
                ORDER BY data ->> %s::text ASC NULLS FIRST, path ASC
                """
            ).format(table=self._table)
            params = (parent, order_by)

        async with self._conn.cursor(row_factory=dict_row) as cur:
            await cur.execute(query, params)
            rows = await cur.fetchall()

        snapshots: list[DocumentSnapshot] = []
        for row in rows:
            _, doc_id = split_path(row["path"])
            snapshots.append(DocumentSnapshot(id=doc_id, path=row["path"], data=row["data"] or {}))
        return snapshots

    def batch(self) -> PendingWriteBatch:
        return _PostgresBatch(self)

    async def _apply(self, ops: list[WriteOp]) -> None:
        replace = sql.SQL(
            """
            INSERT INTO {table} (path, parent, data, updated_at)
            VALUES (%s, %s, %s, NOW())
            ON CONFLICT (path) DO UPDATE SET
                data = EXCLUDED.data,
                updated_at = NOW()
            """
        ).format(table=self._table)
        merge = sql.SQL(
            """
            INSERT INTO {table} (path, parent, data, updated_at)
            VALUES (%s, %s, %s, NOW())
            ON CONFLICT (path) DO UPDATE SET
                data = {table}.data || EXCLUDED.data,
                updated_at = NOW()
            """
        ).format(table=self._table)
        delete = sql.SQL("DELETE FROM {table} WHERE path = %s").format(table=self._table)

        async with self._conn.transaction():
            async with self._conn.cursor() as cur:
                for op in ops:
                    if op.kind == "delete":
                        await cur.execute(delete, (op.path,))
                        continue
                    parent, _ = split_path(op.path)
                    await cur.execute(
                        merge if op.merge else replace,
                        (op.path, parent, Jsonb(op.data or {})),
                    )
        logger.debug("Committed batch of %d ops", len(ops))
