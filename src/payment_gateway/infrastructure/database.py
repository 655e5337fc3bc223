"""Database connection pool management."""

from contextlib import asynccontextmanager
from typing import AsyncIterator

import asyncpg
import structlog

logger = structlog.get_logger(__name__)


async def create_pool(
    database_url: str,
    min_size: int = 2,
    max_size: int = 10,
    application_name: str = "payment-gateway",
) -> asyncpg.Pool:
    """Create and return a connection pool.

    Returns:
        asyncpg.Pool: Database connection pool
    """
    logger.info(
        "creating_database_pool",
        database_url=database_url.split("@")[-1],  # Hide credentials
        min_size=min_size,
        max_size=max_size,
    )

    pool = await asyncpg.create_pool(
        dsn=database_url,
        min_size=min_size,
        max_size=max_size,
        command_timeout=30.0,
        server_settings={
            "application_name": application_name,
        },
    )

    if pool is None:
        raise RuntimeError("Failed to create database pool")

    logger.info("database_pool_created")
    return pool


async def close_pool(pool: asyncpg.Pool) -> None:
    logger.info("closing_database_pool")
    await pool.close()
    logger.info("database_pool_closed")


@asynccontextmanager
async def transaction(pool: asyncpg.Pool) -> AsyncIterator[asyncpg.Connection]:
    """Get a database connection with an active transaction.

    Example:
        async with transaction(pool) as conn:
            await conn.execute("UPDATE ...")
            await conn.execute("UPDATE ...")
            # Auto-commits on success, auto-rolls back on exception
    """
    async with pool.acquire() as conn:
        async with conn.transaction():
            yield conn
