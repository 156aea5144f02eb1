# tests/conftest.py
"""Pytest configuration, in-memory collaborators and fixtures"""
from __future__ import annotations

import asyncio
from contextlib import AsyncExitStack, asynccontextmanager
from dataclasses import dataclass, field
from datetime import date

import pytest

from dispatch_elig.bootstrap import DispatchEligSystem, build_system
from dispatch_elig.core.components import ComponentCache
from dispatch_elig.core.conditions import Predicate, WorkerSnapshot, evaluate
from dispatch_elig.core.events import EventBus
from dispatch_elig.core.facts import EligibilityFact
from dispatch_elig.core.models import EligibleWorker
from dispatch_elig.core.plugins import register_dispatch_elig_plugins
from dispatch_elig.infra.metrics import get_metrics_collector
from dispatch_elig.infra.pg_dispatch_repo_async import DispatchJob, JobType
from dispatch_elig.infra.pg_worker_repo_async import WorkerSummary

TODAY = date(2026, 3, 2)

ALL_COMPONENTS = {
    "dispatch": True,
    "dispatch.dnc": True,
    "dispatch.hfe": True,
    "dispatch.status": True,
    "dispatch.eba": True,
    "dispatch.singleshift": True,
    "dispatch.ban": True,
    "worker": True,
    "worker.skills": True,
}


# ---------------------------------------------------------------------------
# In-memory fact store
# ---------------------------------------------------------------------------

class InMemoryFactWriter:
    """Stages one transaction's deletes and inserts."""

    def __init__(self, store: "InMemoryFactStore", conn: object) -> None:
        self._store = store
        self.conn = conn
        self.deleted: set[tuple[str, str]] = set()
        self.created: list[EligibilityFact] = []

    async def delete_by_worker_and_category(self, worker_id: str, category: str) -> int:
        await asyncio.sleep(0)
        key = (worker_id, category)
        removed = sum(1 for f in self.created if (f.worker_id, f.category) == key)
        self.created = [f for f in self.created if (f.worker_id, f.category) != key]
        if key not in self.deleted:
            self.deleted.add(key)
            removed += sum(1 for r in self._store.rows if (r.worker_id, r.category) == key)
        return removed

    async def create(self, fact: EligibilityFact) -> None:
        self.created.append(fact)

    async def create_many(self, facts) -> int:
        await asyncio.sleep(0)
        facts = list(facts)
        self.created.extend(facts)
        return len(facts)


class InMemoryFactStore:
    """
    Mirrors the Postgres store: a transaction holds a lock per
    (category, worker), and on clean exit applies only its own deletes and
    inserts. Other rows are left as they are at commit time.
    """

    def __init__(self) -> None:
        self.rows: list[EligibilityFact] = []
        self.transactions: list[tuple[str, tuple[str, ...]]] = []
        self.connections: list[object] = []
        self.active = 0
        self.max_active = 0
        self._locks: dict[tuple[str, str], asyncio.Lock] = {}

    @asynccontextmanager
    async def transaction(self, worker_id: str, categories):
        ordered = tuple(sorted(set(categories)))
        self.transactions.append((worker_id, ordered))

        async with AsyncExitStack() as stack:
            for category in ordered:
                lock = self._locks.setdefault((category, worker_id), asyncio.Lock())
                await stack.enter_async_context(lock)

            conn = object()
            self.connections.append(conn)
            writer = InMemoryFactWriter(self, conn)
            self.active += 1
            self.max_active = max(self.max_active, self.active)
            try:
                yield writer
            finally:
                self.active -= 1

            self.rows = [r for r in self.rows if (r.worker_id, r.category) not in writer.deleted]
            self.rows.extend(writer.created)

    async def get_by_worker(self, worker_id: str) -> list[EligibilityFact]:
        return [r for r in self.rows if r.worker_id == worker_id]

    def values(self, worker_id: str, category: str) -> list[str]:
        return sorted(r.value for r in self.rows if r.worker_id == worker_id and r.category == category)

    def add(self, worker_id: str, category: str, value: str) -> None:
        self.rows.append(EligibilityFact(worker_id=worker_id, category=category, value=value))


# ---------------------------------------------------------------------------
# Source-of-truth repositories
# ---------------------------------------------------------------------------

class FakeDispatchRepository:
    def __init__(self) -> None:
        self.jobs: dict[str, DispatchJob] = {}
        self.job_types: dict[str, JobType] = {}
        self.accepted: dict[str, list[tuple[str, str]]] = {}
        self.read_conns: list[object] = []

    def add_job_type(self, job_type_id: str, eligibility: list | None = None, **data) -> JobType:
        if eligibility is not None:
            data["eligibility"] = eligibility
        job_type = JobType(id=job_type_id, name=f"Type {job_type_id}", data=data)
        self.job_types[job_type_id] = job_type
        return job_type

    def add_job(
        self,
        job_id: str,
        *,
        employer_id: str = "emp-1",
        job_type_id: str | None = "jt-1",
        start_ymd: str = "2026-03-10",
        **data,
    ) -> DispatchJob:
        job = DispatchJob(
            id=job_id,
            employer_id=employer_id,
            job_type_id=job_type_id,
            start_ymd=start_ymd,
            status="open",
            data=data,
        )
        self.jobs[job_id] = job
        return job

    async def get_job_with_relations(self, job_id: str) -> DispatchJob | None:
        job = self.jobs.get(job_id)
        if job is None:
            return None
        job.job_type = self.job_types.get(job.job_type_id) if job.job_type_id else None
        return job

    async def get_job_type(self, job_type_id: str) -> JobType | None:
        return self.job_types.get(job_type_id)

    async def get_accepted_jobs_by_worker(self, worker_id: str, conn=None) -> list[tuple[str, str]]:
        self.read_conns.append(conn)
        await asyncio.sleep(0)
        return list(self.accepted.get(worker_id, []))

    async def list_worker_ids_with_accepted_dispatches(self) -> list[str]:
        return [w for w, jobs in self.accepted.items() if jobs]


@dataclass
class FakeWorkerRepository:
    workers: dict[str, WorkerSummary] = field(default_factory=dict)
    dispatched: dict[str, set[str]] = field(default_factory=dict)
    dnc: dict[str, list[str]] = field(default_factory=dict)
    hfe: dict[str, list[tuple[str, date | None]]] = field(default_factory=dict)
    status: dict[str, str] = field(default_factory=dict)
    skills: dict[str, list[str]] = field(default_factory=dict)
    eba: dict[str, list[str]] = field(default_factory=dict)
    bans: dict[str, list[date | None]] = field(default_factory=dict)
    read_conns: list[object] = field(default_factory=list)

    def add_worker(self, worker_id: str, sirius_id: int, display_name: str, ws: str | None = None) -> WorkerSummary:
        worker = WorkerSummary(id=worker_id, sirius_id=sirius_id, display_name=display_name, denorm_ws_id=ws)
        self.workers[worker_id] = worker
        return worker

    async def _read(self, conn) -> None:
        self.read_conns.append(conn)
        await asyncio.sleep(0)

    async def get_worker(self, worker_id: str, conn=None) -> WorkerSummary | None:
        await self._read(conn)
        return self.workers.get(worker_id)

    async def get_dispatched_job_ids(self, worker_id: str) -> list[str]:
        return sorted(self.dispatched.get(worker_id, set()))

    async def get_dnc_employer_ids(self, worker_id: str, conn=None) -> list[str]:
        await self._read(conn)
        return list(self.dnc.get(worker_id, []))

    async def get_active_hfe_employer_ids(self, worker_id: str, today: date, conn=None) -> list[str]:
        await self._read(conn)
        return [e for e, until in self.hfe.get(worker_id, []) if until is None or until >= today]

    async def get_dispatch_status(self, worker_id: str, conn=None) -> str | None:
        await self._read(conn)
        return self.status.get(worker_id)

    async def get_skill_ids(self, worker_id: str, conn=None) -> list[str]:
        await self._read(conn)
        return list(self.skills.get(worker_id, []))

    async def list_worker_ids_with_skills(self) -> list[str]:
        return [w for w, s in self.skills.items() if s]

    async def list_worker_ids_with_ws(self) -> list[str]:
        return [w.id for w in self.workers.values() if w.denorm_ws_id]

    async def get_eba_dates(self, worker_id: str, conn=None) -> list[str]:
        await self._read(conn)
        return list(self.eba.get(worker_id, []))

    async def list_worker_ids_with_eba(self) -> list[str]:
        return [w for w, d in self.eba.items() if d]

    async def has_active_ban(self, worker_id: str, today: date, conn=None) -> bool:
        await self._read(conn)
        return any(end is None or end >= today for end in self.bans.get(worker_id, []))

    async def list_worker_ids_with_bans(self) -> list[str]:
        return [w for w, b in self.bans.items() if b]


class InMemoryEligibleWorkersQuery:
    """Evaluates predicates over every known worker, ordered like the SQL query."""

    def __init__(self, workers: FakeWorkerRepository, facts: InMemoryFactStore) -> None:
        self._workers = workers
        self._facts = facts
        self.predicates: list[Predicate] = []

    def _matching(self, predicate: Predicate) -> list[WorkerSummary]:
        self.predicates.append(predicate)
        matched = []
        for worker in self._workers.workers.values():
            snapshot = WorkerSnapshot(
                worker_id=worker.id,
                facts={(r.category, r.value) for r in self._facts.rows if r.worker_id == worker.id},
                sirius_id=worker.sirius_id,
                display_name=worker.display_name,
                dispatched_job_ids=set(self._workers.dispatched.get(worker.id, set())),
            )
            if evaluate(predicate, snapshot):
                matched.append(worker)
        return sorted(matched, key=lambda w: (w.display_name, w.id))

    async def count(self, predicate: Predicate) -> int:
        return len(self._matching(predicate))

    async def fetch_page(self, predicate: Predicate, limit: int, offset: int) -> list[EligibleWorker]:
        page = self._matching(predicate)[offset:offset + limit]
        return [EligibleWorker(id=w.id, sirius_id=w.sirius_id, display_name=w.display_name) for w in page]

    async def position(self, predicate: Predicate, worker_id: str) -> tuple[int, int] | None:
        matched = self._matching(predicate)
        for i, worker in enumerate(matched, start=1):
            if worker.id == worker_id:
                return i, len(matched)
        return None


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def reset_metrics():
    get_metrics_collector().reset()
    yield


@pytest.fixture
def components() -> ComponentCache:
    cache = ComponentCache()
    cache.load_from_mapping(ALL_COMPONENTS)
    return cache


@pytest.fixture
def facts() -> InMemoryFactStore:
    return InMemoryFactStore()


@pytest.fixture
def dispatches() -> FakeDispatchRepository:
    return FakeDispatchRepository()


@pytest.fixture
def workers() -> FakeWorkerRepository:
    return FakeWorkerRepository()


@pytest.fixture
def system(components, facts, dispatches, workers) -> DispatchEligSystem:
    """Engine wired to in-memory collaborators, all plugins registered."""
    system = build_system(
        bus=EventBus(),
        components=components,
        facts=facts,
        dispatches=dispatches,
        workers=workers,
        query=InMemoryEligibleWorkersQuery(workers, facts),
        today=lambda: TODAY,
    )
    register_dispatch_elig_plugins(system.registry, system.deps)
    return system


@pytest.fixture
def today() -> date:
    return TODAY
