# dispatch_elig/infra/pg_dispatch_repo_async.py
"""
Async PostgreSQL read access to dispatch jobs, job types and dispatches.

Read-only from the eligibility engine's point of view: CRUD for these
tables lives elsewhere and announces changes on the event bus.
"""
from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any

import asyncpg

from dispatch_elig.infra.db_resilience_async import reuse_or_acquire, safe_db_conn
from dispatch_elig.infra.logging_config import get_logger

logger = get_logger(__name__)

ACCEPTED_STATUS = "accepted"


@dataclass
class JobType:
    id: str
    name: str
    data: dict[str, Any] = field(default_factory=dict)


@dataclass
class DispatchJob:
    """A dispatch job with its job type joined in."""

    id: str
    employer_id: str
    job_type_id: str | None
    start_ymd: str
    status: str
    data: dict[str, Any] = field(default_factory=dict)
    job_type: JobType | None = None


@dataclass
class Dispatch:
    id: str
    job_id: str
    worker_id: str
    status: str


def _json(raw: Any) -> dict[str, Any]:
    """asyncpg returns jsonb as text unless a codec is registered."""
    if raw is None:
        return {}
    if isinstance(raw, str):
        return json.loads(raw)
    return dict(raw)


def _row_to_job(row) -> DispatchJob:
    job_type = None
    if row["job_type_id"] is not None and row["job_type_name"] is not None:
        job_type = JobType(
            id=str(row["job_type_id"]),
            name=row["job_type_name"],
            data=_json(row["job_type_data"]),
        )
    return DispatchJob(
        id=str(row["id"]),
        employer_id=str(row["employer_id"]),
        job_type_id=str(row["job_type_id"]) if row["job_type_id"] is not None else None,
        start_ymd=row["start_ymd"],
        status=row["status"],
        data=_json(row["data"]),
        job_type=job_type,
    )


class AsyncPostgresDispatchRepository:

    async def get_job_with_relations(self, job_id: str) -> DispatchJob | None:
        async with safe_db_conn() as conn:
            row = await conn.fetchrow(
                """
                SELECT j.id, j.employer_id, j.job_type_id, j.status, j.data,
                       to_char(j.start_date, 'YYYY-MM-DD') AS start_ymd,
                       jt.name AS job_type_name, jt.data AS job_type_data
                FROM dispatch_jobs j
                LEFT JOIN options_dispatch_job_type jt ON jt.id = j.job_type_id
                WHERE j.id = $1
                """,
                job_id,
            )
            return _row_to_job(row) if row else None

    async def get_job_type(self, job_type_id: str) -> JobType | None:
        async with safe_db_conn() as conn:
            row = await conn.fetchrow(
                "SELECT id, name, data FROM options_dispatch_job_type WHERE id = $1",
                job_type_id,
            )
            if not row:
                return None
            return JobType(id=str(row["id"]), name=row["name"], data=_json(row["data"]))

    async def get_dispatches_by_worker(
        self,
        worker_id: str,
        conn: asyncpg.Connection | None = None,
    ) -> list[Dispatch]:
        async with reuse_or_acquire(conn) as c:
            rows = await c.fetch(
                "SELECT id, job_id, worker_id, status FROM dispatches WHERE worker_id = $1",
                worker_id,
            )
            return [
                Dispatch(
                    id=str(r["id"]),
                    job_id=str(r["job_id"]),
                    worker_id=str(r["worker_id"]),
                    status=r["status"],
                )
                for r in rows
            ]

    async def get_accepted_jobs_by_worker(
        self,
        worker_id: str,
        conn: asyncpg.Connection | None = None,
    ) -> list[tuple[str, str]]:
        """Return ``(job_id, start_ymd)`` for each job the worker accepted."""
        async with reuse_or_acquire(conn) as c:
            rows = await c.fetch(
                """
                SELECT j.id AS job_id, to_char(j.start_date, 'YYYY-MM-DD') AS start_ymd
                FROM dispatches d
                INNER JOIN dispatch_jobs j ON j.id = d.job_id
                WHERE d.worker_id = $1 AND d.status = $2
                ORDER BY j.start_date, j.id
                """,
                worker_id,
                ACCEPTED_STATUS,
            )
            return [(str(r["job_id"]), r["start_ymd"]) for r in rows]

    async def list_worker_ids_with_accepted_dispatches(self) -> list[str]:
        async with safe_db_conn() as conn:
            rows = await conn.fetch(
                "SELECT DISTINCT worker_id FROM dispatches WHERE status = $1",
                ACCEPTED_STATUS,
            )
            return [str(r["worker_id"]) for r in rows]
