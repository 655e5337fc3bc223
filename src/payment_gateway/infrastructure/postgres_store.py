"""PostgreSQL-backed document store.

All collections share one table keyed by ``(collection, doc_id)`` with the
document body in a JSONB column. Single-row statements give the
per-document atomicity the repositories rely on.
"""

import json
from collections.abc import Mapping
from typing import Any

import asyncpg
import structlog

from payment_gateway.infrastructure.database import close_pool, create_pool, transaction
from payment_gateway.infrastructure.document_store import DocumentNotFound, DocumentStore

logger = structlog.get_logger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS documents (
    collection  TEXT        NOT NULL,
    doc_id      TEXT        NOT NULL,
    data        JSONB       NOT NULL,
    created_at  TIMESTAMPTZ NOT NULL DEFAULT now(),
    updated_at  TIMESTAMPTZ NOT NULL DEFAULT now(),
    PRIMARY KEY (collection, doc_id)
);
CREATE INDEX IF NOT EXISTS documents_data_gin ON documents USING GIN (data jsonb_path_ops);
"""


class PostgresDocumentStore(DocumentStore):
    """Document store over an asyncpg pool."""

    def __init__(self, pool: asyncpg.Pool) -> None:
        self.pool = pool

    @classmethod
    async def connect(
        cls,
        database_url: str,
        min_size: int = 2,
        max_size: int = 10,
        application_name: str = "payment-gateway",
    ) -> "PostgresDocumentStore":
        pool = await create_pool(database_url, min_size, max_size, application_name)
        return cls(pool)

    async def create_schema(self) -> None:
        """Create the documents table if it is missing (development helper)."""
        async with self.pool.acquire() as conn:
            await conn.execute(SCHEMA)

    async def get(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                "SELECT data FROM documents WHERE collection = $1 AND doc_id = $2",
                collection,
                doc_id,
            )
        return json.loads(row["data"]) if row else None

    async def set(self, collection: str, doc_id: str, data: Mapping[str, Any]) -> None:
        async with self.pool.acquire() as conn:
            await conn.execute(
                """
                INSERT INTO documents (collection, doc_id, data)
                VALUES ($1, $2, $3::jsonb)
                ON CONFLICT (collection, doc_id)
                DO UPDATE SET data = EXCLUDED.data, updated_at = now()
                """,
                collection,
                doc_id,
                json.dumps(dict(data)),
            )

    async def update(self, collection: str, doc_id: str, fields: Mapping[str, Any]) -> None:
        async with self.pool.acquire() as conn:
            await self._update(conn, collection, doc_id, fields)

    async def _update(
        self,
        conn: asyncpg.Connection,
        collection: str,
        doc_id: str,
        fields: Mapping[str, Any],
    ) -> None:
        status = await conn.execute(
            """
            UPDATE documents
            SET data = data || $3::jsonb, updated_at = now()
            WHERE collection = $1 AND doc_id = $2
            """,
            collection,
            doc_id,
            json.dumps(dict(fields)),
        )
        # asyncpg returns the command tag, e.g. "UPDATE 1"
        if status.split()[-1] == "0":
            raise DocumentNotFound(collection, doc_id)

    async def delete(self, collection: str, doc_id: str) -> None:
        async with self.pool.acquire() as conn:
            await conn.execute(
                "DELETE FROM documents WHERE collection = $1 AND doc_id = $2",
                collection,
                doc_id,
            )

    async def query(
        self,
        collection: str,
        filters: Mapping[str, Any] | None = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        sql = "SELECT data FROM documents WHERE collection = $1 AND data @> $2::jsonb ORDER BY created_at"
        args: list[Any] = [collection, json.dumps(dict(filters or {}))]
        if limit is not None:
            sql += " LIMIT $3"
            args.append(limit)
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(sql, *args)
        return [json.loads(row["data"]) for row in rows]

    async def batch_update(
        self, collection: str, updates: Mapping[str, Mapping[str, Any]]
    ) -> None:
        async with transaction(self.pool) as conn:
            for doc_id, fields in updates.items():
                await self._update(conn, collection, doc_id, fields)
        logger.debug("batch_update_applied", collection=collection, count=len(updates))

    async def close(self) -> None:
        await close_pool(self.pool)
