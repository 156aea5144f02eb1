# dispatch_elig/infra/pg_worker_repo_async.py
"""
Async PostgreSQL read access to workers and the per-worker dispatch
records the eligibility plugins derive their facts from.

Per-worker reads take an optional ``conn``. Recompute passes the
connection of its open fact transaction so a rebuild never holds two
pooled connections at once.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date

import asyncpg

from dispatch_elig.infra.db_resilience_async import reuse_or_acquire
from dispatch_elig.infra.logging_config import get_logger

logger = get_logger(__name__)


@dataclass
class WorkerSummary:
    id: str
    sirius_id: int
    display_name: str
    denorm_ws_id: str | None = None


class AsyncPostgresWorkerRepository:

    async def _fetch_column(self, sql: str, *args, conn: asyncpg.Connection | None = None) -> list[str]:
        async with reuse_or_acquire(conn) as c:
            rows = await c.fetch(sql, *args)
            return [str(r[0]) for r in rows]

    async def get_worker(
        self,
        worker_id: str,
        conn: asyncpg.Connection | None = None,
    ) -> WorkerSummary | None:
        async with reuse_or_acquire(conn) as c:
            row = await c.fetchrow(
                """
                SELECT w.id, w.sirius_id, c.display_name, w.denorm_ws_id
                FROM workers w
                INNER JOIN contacts c ON c.id = w.contact_id
                WHERE w.id = $1
                """,
                worker_id,
            )
            if not row:
                return None
            return WorkerSummary(
                id=str(row["id"]),
                sirius_id=row["sirius_id"],
                display_name=row["display_name"] or "",
                denorm_ws_id=str(row["denorm_ws_id"]) if row["denorm_ws_id"] is not None else None,
            )

    async def get_dispatched_job_ids(self, worker_id: str) -> list[str]:
        return await self._fetch_column(
            "SELECT DISTINCT job_id FROM dispatches WHERE worker_id = $1",
            worker_id,
        )

    # -- DNC ---------------------------------------------------------------

    async def get_dnc_employer_ids(self, worker_id: str, conn: asyncpg.Connection | None = None) -> list[str]:
        return await self._fetch_column(
            "SELECT DISTINCT employer_id FROM worker_dispatch_dnc WHERE worker_id = $1",
            worker_id,
            conn=conn,
        )

    # -- HFE ---------------------------------------------------------------

    async def get_active_hfe_employer_ids(
        self,
        worker_id: str,
        today: date,
        conn: asyncpg.Connection | None = None,
    ) -> list[str]:
        """Employers holding the worker; expired holds are ignored."""
        return await self._fetch_column(
            """
            SELECT DISTINCT employer_id FROM worker_dispatch_hfe
            WHERE worker_id = $1 AND (hold_until IS NULL OR hold_until >= $2)
            """,
            worker_id,
            today,
            conn=conn,
        )

    # -- Dispatch status ---------------------------------------------------

    async def get_dispatch_status(self, worker_id: str, conn: asyncpg.Connection | None = None) -> str | None:
        async with reuse_or_acquire(conn) as c:
            return await c.fetchval(
                "SELECT status FROM worker_dispatch_status WHERE worker_id = $1",
                worker_id,
            )

    # -- Skills ------------------------------------------------------------

    async def get_skill_ids(self, worker_id: str, conn: asyncpg.Connection | None = None) -> list[str]:
        return await self._fetch_column(
            "SELECT DISTINCT skill_id FROM worker_skills WHERE worker_id = $1",
            worker_id,
            conn=conn,
        )

    async def list_worker_ids_with_skills(self) -> list[str]:
        return await self._fetch_column("SELECT DISTINCT worker_id FROM worker_skills")

    # -- Work status -------------------------------------------------------

    async def list_worker_ids_with_ws(self) -> list[str]:
        return await self._fetch_column(
            "SELECT id FROM workers WHERE denorm_ws_id IS NOT NULL"
        )

    # -- EBA ---------------------------------------------------------------

    async def get_eba_dates(self, worker_id: str, conn: asyncpg.Connection | None = None) -> list[str]:
        return await self._fetch_column(
            """
            SELECT DISTINCT to_char(ymd, 'YYYY-MM-DD') FROM worker_dispatch_eba
            WHERE worker_id = $1
            """,
            worker_id,
            conn=conn,
        )

    async def list_worker_ids_with_eba(self) -> list[str]:
        return await self._fetch_column("SELECT DISTINCT worker_id FROM worker_dispatch_eba")

    # -- Bans --------------------------------------------------------------

    async def has_active_ban(
        self,
        worker_id: str,
        today: date,
        conn: asyncpg.Connection | None = None,
    ) -> bool:
        async with reuse_or_acquire(conn) as c:
            return bool(await c.fetchval(
                """
                SELECT EXISTS (
                    SELECT 1 FROM worker_bans
                    WHERE worker_id = $1 AND (end_date IS NULL OR end_date >= $2)
                )
                """,
                worker_id,
                today,
            ))

    async def list_worker_ids_with_bans(self) -> list[str]:
        return await self._fetch_column("SELECT DISTINCT worker_id FROM worker_bans")
