# dispatch_elig/infra/db_resilience_async.py
"""
Async database resilience utilities.
Retry on transient asyncpg errors when acquiring a connection.
"""
from __future__ import annotations
import asyncio
from typing import AsyncIterator
from contextlib import AsyncExitStack, asynccontextmanager

import asyncpg
from dispatch_elig.infra import db_async
from dispatch_elig.infra.logging_config import get_logger

logger = get_logger(__name__)


def is_transient_error(exc: Exception) -> bool:
    """
    Check if database error is transient (should retry).

    Transient errors:
    - Connection errors
    - Too many connections
    - Deadlock
    """
    if isinstance(exc, asyncpg.PostgresConnectionError):
        return True

    if isinstance(exc, asyncpg.TooManyConnectionsError):
        return True

    if isinstance(exc, asyncpg.DeadlockDetectedError):
        return True

    if isinstance(exc, (ConnectionError, asyncio.TimeoutError)):
        return True

    error_message = str(exc).lower()
    transient_patterns = [
        "connection reset",
        "server closed",
        "too many connections",
    ]
    return any(pattern in error_message for pattern in transient_patterns)


@asynccontextmanager
async def safe_db_conn(autocommit: bool = True) -> AsyncIterator[asyncpg.Connection]:
    """
    Database connection with retry on transient errors while acquiring.

    Usage:
        async with safe_db_conn() as conn:
            rows = await conn.fetch("SELECT * FROM workers")

    Only acquisition (and transaction start) is retried. Errors raised
    inside the block propagate; with autocommit=False the transaction is
    rolled back by ``db_conn``.
    """
    max_retries = 3
    delay = 0.1

    for attempt in range(max_retries + 1):
        stack = AsyncExitStack()
        try:
            conn = await stack.enter_async_context(db_async.db_conn(autocommit=autocommit))
        except Exception as exc:
            if not is_transient_error(exc):
                raise

            if attempt >= max_retries:
                logger.error(f"Max retries ({max_retries}) exceeded getting connection")
                raise

            logger.warning(
                f"Transient error getting connection (attempt {attempt + 1}/{max_retries}): {exc}. "
                f"Retrying in {delay:.2f}s..."
            )
            await asyncio.sleep(delay)
            delay = min(delay * 2.0, 5.0)
            continue

        async with stack:
            yield conn
        return


@asynccontextmanager
async def reuse_or_acquire(conn: asyncpg.Connection | None = None) -> AsyncIterator[asyncpg.Connection]:
    """
    Yield ``conn`` when the caller already holds one, otherwise acquire a
    fresh connection through ``safe_db_conn``.

    Reads issued while a write transaction is open must pass that
    transaction's connection: a task holding one pooled connection while
    waiting for a second deadlocks once the pool is exhausted.
    """
    if conn is not None:
        yield conn
        return

    async with safe_db_conn() as fresh:
        yield fresh
