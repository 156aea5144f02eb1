# dispatch_elig/infra/pg_elig_fact_repo_async.py
"""
Async PostgreSQL eligibility fact store (asyncpg).

``worker_dispatch_elig_denorm`` holds ``(worker_id, category, value)``
rows. Writers go through ``transaction()``, which serializes rewrites of
the same ``(category, worker)`` with a transaction-scoped advisory lock so
a concurrent eligibility query never observes the gap between delete and
re-insert.
"""
from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator, Iterable

import asyncpg

from dispatch_elig.core.facts import EligibilityFact
from dispatch_elig.infra.db_resilience_async import safe_db_conn
from dispatch_elig.infra.logging_config import get_logger

logger = get_logger(__name__)


def _row_to_fact(row) -> EligibilityFact:
    return EligibilityFact(
        worker_id=str(row["worker_id"]),
        category=row["category"],
        value=row["value"],
    )


def _lock_key(category: str, worker_id: str) -> str:
    return f"{category}:{worker_id}"


class EligFactWriter:
    """Write side of the fact store, bound to one open transaction."""

    def __init__(self, conn: asyncpg.Connection) -> None:
        self._conn = conn

    @property
    def conn(self) -> asyncpg.Connection:
        """The transaction's connection, for source reads made while it is open."""
        return self._conn

    async def delete_by_worker_and_category(self, worker_id: str, category: str) -> int:
        result = await self._conn.execute(
            "DELETE FROM worker_dispatch_elig_denorm WHERE worker_id = $1 AND category = $2",
            worker_id,
            category,
        )
        return int(result.split()[-1]) if result else 0

    async def create(self, fact: EligibilityFact) -> None:
        await self._conn.execute(
            "INSERT INTO worker_dispatch_elig_denorm (worker_id, category, value) VALUES ($1, $2, $3)",
            fact.worker_id,
            fact.category,
            fact.value,
        )

    async def create_many(self, facts: Iterable[EligibilityFact]) -> int:
        rows = [(f.worker_id, f.category, f.value) for f in facts]
        if not rows:
            return 0
        await self._conn.executemany(
            "INSERT INTO worker_dispatch_elig_denorm (worker_id, category, value) VALUES ($1, $2, $3)",
            rows,
        )
        return len(rows)


class AsyncPostgresEligFactRepository:
    """Fact table access: transactional rewrites plus read helpers."""

    @asynccontextmanager
    async def transaction(
        self,
        worker_id: str,
        categories: Iterable[str],
    ) -> AsyncIterator[EligFactWriter]:
        """
        Open a transaction holding the advisory locks for every
        ``(category, worker_id)`` pair. Commits on clean exit, rolls back
        on error.
        """
        async with safe_db_conn(autocommit=False) as conn:
            # Sorted so two writers for the same worker lock in the same order
            for category in sorted(set(categories)):
                await conn.execute(
                    "SELECT pg_advisory_xact_lock(hashtext($1))",
                    _lock_key(category, worker_id),
                )
            yield EligFactWriter(conn)

    async def get_by_worker(self, worker_id: str) -> list[EligibilityFact]:
        async with safe_db_conn() as conn:
            rows = await conn.fetch(
                """
                SELECT worker_id, category, value
                FROM worker_dispatch_elig_denorm
                WHERE worker_id = $1
                ORDER BY category, value
                """,
                worker_id,
            )
            return [_row_to_fact(row) for row in rows]

    async def get_by_worker_and_category(self, worker_id: str, category: str) -> list[EligibilityFact]:
        async with safe_db_conn() as conn:
            rows = await conn.fetch(
                """
                SELECT worker_id, category, value
                FROM worker_dispatch_elig_denorm
                WHERE worker_id = $1 AND category = $2
                ORDER BY value
                """,
                worker_id,
                category,
            )
            return [_row_to_fact(row) for row in rows]

    async def count_by_category(self) -> dict[str, int]:
        """Return {category: row count} for admin visibility."""
        async with safe_db_conn() as conn:
            rows = await conn.fetch(
                "SELECT category, count(*)::int AS cnt FROM worker_dispatch_elig_denorm GROUP BY category"
            )
            return {row["category"]: row["cnt"] for row in rows}
