"""Postgres connection pool for the read-only entry store.

Uses ``asyncpg`` directly.  The pool is optional: when no ``database_url``
is configured the application runs against an in-memory entry store and
this module is never initialised.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator

import asyncpg

from src.config import Settings, get_settings

logger = logging.getLogger("murmur.db")

# Module-level connection pool, initialized once at startup
_pool: asyncpg.Pool | None = None


async def init_pool(settings: Settings | None = None) -> asyncpg.Pool:
    """Create the asyncpg connection pool. Call once at startup."""
    global _pool
    s = settings or get_settings()
    if not s.database_url:
        raise RuntimeError("database_url is not configured")
    _pool = await asyncpg.create_pool(
        s.database_url,
        min_size=1,
        max_size=10,
        command_timeout=30,
    )
    logger.info("Database pool initialized (min=1, max=10)")
    return _pool


async def close_pool() -> None:
    """Drain the pool. Call at shutdown."""
    global _pool
    if _pool:
        await _pool.close()
        _pool = None
        logger.info("Database pool closed")


def get_pool() -> asyncpg.Pool:
    if _pool is None:
        raise RuntimeError("Database pool not initialized, call init_pool() first")
    return _pool


@asynccontextmanager
async def get_connection() -> AsyncGenerator[asyncpg.Connection, None]:
    """Acquire a connection inside a read-only transaction.

    Usage::

        async with get_connection() as conn:
            rows = await conn.fetch("SELECT * FROM symptom_entries WHERE ...", start, end)
    """
    pool = get_pool()
    async with pool.acquire() as conn:
        async with conn.transaction(readonly=True):
            yield conn


async def fetch(query: str, *args: Any) -> list[asyncpg.Record]:
    """Fetch rows in a read-only transaction."""
    async with get_connection() as conn:
        return await conn.fetch(query, *args)
