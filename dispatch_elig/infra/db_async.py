# dispatch_elig/infra/db_async.py
"""
Async database connection using asyncpg.
"""
from __future__ import annotations
import asyncio
from typing import AsyncIterator
from contextlib import asynccontextmanager

import asyncpg
from dispatch_elig.config import settings
from dispatch_elig.infra.logging_config import get_logger

logger = get_logger(__name__)

# Global connection pool
_pool: asyncpg.Pool | None = None


async def init_pool() -> None:
    """Initialize connection pool on startup"""
    global _pool

    if _pool is not None:
        return

    logger.info("Initializing asyncpg connection pool")

    _pool = await asyncpg.create_pool(
        dsn=settings.database_dsn,
        min_size=settings.pg_pool_min,
        max_size=settings.pg_pool_max,
        command_timeout=settings.pg_command_timeout,
        server_settings={
            'application_name': 'dispatch_elig',
            'statement_timeout': str(settings.pg_statement_timeout_ms),
        }
    )

    logger.info(f"Connection pool created: min={settings.pg_pool_min}, max={settings.pg_pool_max}")


async def close_pool() -> None:
    """Close connection pool on shutdown"""
    global _pool

    if _pool is None:
        return

    logger.info("Closing connection pool")
    await _pool.close()
    _pool = None
    logger.info("Connection pool closed")


@asynccontextmanager
async def db_conn(
    autocommit: bool = True,
    acquire_timeout: float | None = None,
) -> AsyncIterator[asyncpg.Connection]:
    """
    Get database connection from pool (async).

    Usage:
        async with db_conn() as conn:
            rows = await conn.fetch("SELECT * FROM workers WHERE id = $1", worker_id)

    Args:
        autocommit: If True (default), no explicit transaction.
                    If False, the block runs in a transaction that commits
                    on success and rolls back on any exception.
        acquire_timeout: Seconds to wait for a free connection. Defaults to
                    ``settings.pg_acquire_timeout``; a value <= 0 waits forever.
    """
    if _pool is None:
        raise RuntimeError("Connection pool not initialized. Call init_pool() first.")

    if acquire_timeout is None:
        acquire_timeout = settings.pg_acquire_timeout

    try:
        conn = await _pool.acquire(timeout=acquire_timeout if acquire_timeout > 0 else None)
    except asyncio.TimeoutError:
        logger.warning(
            f"Timed out after {acquire_timeout}s waiting for a pooled connection "
            f"(pool max={settings.pg_pool_max})"
        )
        raise

    try:
        if autocommit:
            yield conn
        else:
            async with conn.transaction():
                yield conn
    finally:
        await _pool.release(conn)
