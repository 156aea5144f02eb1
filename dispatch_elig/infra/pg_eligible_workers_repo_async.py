# dispatch_elig/infra/pg_eligible_workers_repo_async.py
"""Runs compiled eligibility predicates against workers/contacts (asyncpg)."""
from __future__ import annotations

from dispatch_elig.core.conditions import (
    Predicate,
    build_count_sql,
    build_page_sql,
    build_position_sql,
)
from dispatch_elig.core.models import EligibleWorker
from dispatch_elig.infra.db_resilience_async import safe_db_conn


def _row_to_worker(row) -> EligibleWorker:
    return EligibleWorker(
        id=str(row["id"]),
        sirius_id=row["sirius_id"],
        display_name=row["display_name"] or "",
    )


class AsyncPostgresEligibleWorkersQuery:

    async def count(self, predicate: Predicate) -> int:
        sql, params = build_count_sql(predicate)
        async with safe_db_conn() as conn:
            return int(await conn.fetchval(sql, *params) or 0)

    async def fetch_page(self, predicate: Predicate, limit: int, offset: int) -> list[EligibleWorker]:
        sql, params = build_page_sql(predicate, limit, offset)
        async with safe_db_conn() as conn:
            rows = await conn.fetch(sql, *params)
            return [_row_to_worker(row) for row in rows]

    async def position(self, predicate: Predicate, worker_id: str) -> tuple[int, int] | None:
        """``(position, total)`` of the worker in the ordered eligible list, or None."""
        sql, params = build_position_sql(predicate, worker_id)
        async with safe_db_conn() as conn:
            row = await conn.fetchrow(sql, *params)
            if not row:
                return None
            return int(row["position"]), int(row["total"])
