# dispatch_elig/core/eligible_workers.py
"""
Eligible-workers query service.

Three entry points share one condition-building step (``_build_query``):

* ``get_eligible_workers_for_job``     -- paginated list plus total
* ``get_eligible_workers_for_job_sql`` -- the same query as SQL text and
                                          bind params, for the debug view
* ``check_worker_eligibility``         -- one worker, with a per-plugin
                                          breakdown and seniority position

A broken job type entry (unknown plugin, plugin raising while building its
condition, malformed config) costs only that plugin's contribution; the
query itself still runs.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol

from pydantic import ValidationError

from dispatch_elig.core.conditions import (
    AppliedCondition,
    DisplayNameContains,
    EligibilityQueryContext,
    NotDispatchedTo,
    Predicate,
    SiriusIdIs,
    WorkerSnapshot,
    build_page_sql,
    compile_condition,
    compile_conditions,
    conjunction,
    evaluate,
    explain,
)
from dispatch_elig.core.models import (
    EligibilityPluginConfig,
    EligibleWorker,
    EligibleWorkersFilters,
    EligibleWorkersResult,
    EligibleWorkersSqlResult,
    PluginCheckResult,
    WorkerEligibilityCheckResult,
)
from dispatch_elig.core.plugins.registry import DispatchEligPluginRegistry
from dispatch_elig.infra.logging_config import get_logger
from dispatch_elig.infra.metrics import inc_counter
from dispatch_elig.infra.pg_dispatch_repo_async import DispatchJob

logger = get_logger(__name__)


class EligibleWorkersQuery(Protocol):
    """Executes compiled predicates against worker storage."""

    async def count(self, predicate: Predicate) -> int: ...

    async def fetch_page(self, predicate: Predicate, limit: int, offset: int) -> list[EligibleWorker]: ...

    async def position(self, predicate: Predicate, worker_id: str) -> tuple[int, int] | None: ...


@dataclass
class _BuiltQuery:
    job: DispatchJob
    applied: list[AppliedCondition]

    @property
    def condition_predicate(self) -> Predicate:
        return conjunction(compile_conditions(self.applied))

    def applied_dicts(self) -> list[dict[str, Any]]:
        return [a.to_dict() for a in self.applied]


def parse_eligibility_configs(job_type_data: dict[str, Any] | None) -> list[EligibilityPluginConfig]:
    """Enabled entries of a job type's eligibility list; malformed ones are skipped."""
    raw = (job_type_data or {}).get("eligibility") or []
    if not isinstance(raw, list):
        logger.warning("Job type eligibility config is not a list, ignoring")
        return []

    configs: list[EligibilityPluginConfig] = []
    for entry in raw:
        try:
            config = EligibilityPluginConfig.model_validate(entry)
        except ValidationError as exc:
            logger.warning(f"Skipping malformed eligibility config entry {entry!r}: {exc.error_count()} error(s)")
            continue
        if config.enabled:
            configs.append(config)
    return configs


def filter_predicates(job_id: str, filters: EligibleWorkersFilters | None) -> list[Predicate]:
    if filters is None:
        return []
    predicates: list[Predicate] = []
    if filters.sirius_id is not None:
        predicates.append(SiriusIdIs(filters.sirius_id))
    if filters.name:
        predicates.append(DisplayNameContains(filters.name))
    if filters.exclude_with_dispatches:
        predicates.append(NotDispatchedTo(job_id))
    return predicates


class EligibleWorkersService:

    def __init__(
        self,
        registry: DispatchEligPluginRegistry,
        dispatches,
        workers,
        facts,
        query: EligibleWorkersQuery,
    ) -> None:
        self._registry = registry
        self._dispatches = dispatches
        self._workers = workers
        self._facts = facts
        self._query = query

    # ------------------------------------------------------------------
    # Condition building
    # ------------------------------------------------------------------

    async def _build_query(self, job_id: str) -> _BuiltQuery | None:
        job = await self._dispatches.get_job_with_relations(job_id)
        if job is None:
            logger.info(f"Job {job_id} not found for eligible workers query", extra={"job_id": job_id})
            return None

        context = EligibilityQueryContext(
            job_id=job.id,
            employer_id=job.employer_id,
            job_type_id=job.job_type_id,
        )

        configs: list[EligibilityPluginConfig] = []
        if job.job_type_id:
            job_type = job.job_type or await self._dispatches.get_job_type(job.job_type_id)
            if job_type is not None:
                configs = parse_eligibility_configs(job_type.data)

        applied: list[AppliedCondition] = []
        for config in configs:
            extra = {"job_id": job_id, "plugin_id": config.plugin_id}

            plugin = self._registry.get_plugin(config.plugin_id)
            if plugin is None:
                inc_counter("elig_condition_skipped", reason="missing_plugin")
                logger.warning(f"Eligibility plugin not found: {config.plugin_id}", extra=extra)
                continue

            if not plugin.is_active():
                inc_counter("elig_condition_skipped", reason="component_disabled")
                logger.debug(
                    f"{plugin.component_id} component not enabled, plugin {plugin.id} contributes no condition",
                    extra=extra,
                )
                continue

            try:
                condition = await plugin.get_eligibility_condition(context, config.config)
            except Exception as exc:
                inc_counter("elig_condition_skipped", reason="condition_error")
                logger.error(
                    f"Plugin {plugin.id} failed to build eligibility condition: {exc}",
                    exc_info=True,
                    extra=extra,
                )
                continue

            if condition is not None:
                applied.append(AppliedCondition(plugin_id=plugin.id, condition=condition))

        return _BuiltQuery(job=job, applied=applied)

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def get_eligible_workers_for_job(
        self,
        job_id: str,
        limit: int = 100,
        offset: int = 0,
        filters: EligibleWorkersFilters | None = None,
    ) -> EligibleWorkersResult:
        built = await self._build_query(job_id)
        if built is None:
            return EligibleWorkersResult()

        predicate = conjunction([built.condition_predicate, *filter_predicates(job_id, filters)])

        total = await self._query.count(predicate)
        workers = await self._query.fetch_page(predicate, limit, offset)

        logger.debug(
            f"Eligible workers for job {job_id}: total={total}, page={len(workers)}, "
            f"conditions={len(built.applied)}",
            extra={"job_id": job_id},
        )
        return EligibleWorkersResult(
            workers=workers,
            total=total,
            applied_conditions=built.applied_dicts(),
        )

    async def get_eligible_workers_for_job_sql(
        self,
        job_id: str,
        limit: int = 100,
        offset: int = 0,
        filters: EligibleWorkersFilters | None = None,
    ) -> EligibleWorkersSqlResult | None:
        """The page query exactly as ``get_eligible_workers_for_job`` would run it."""
        built = await self._build_query(job_id)
        if built is None:
            return None

        predicate = conjunction([built.condition_predicate, *filter_predicates(job_id, filters)])
        sql, params = build_page_sql(predicate, limit, offset)
        return EligibleWorkersSqlResult(
            sql=sql,
            params=params,
            applied_conditions=built.applied_dicts(),
        )

    async def check_worker_eligibility(self, job_id: str, worker_id: str) -> WorkerEligibilityCheckResult | None:
        built = await self._build_query(job_id)
        if built is None:
            return None

        worker = await self._workers.get_worker(worker_id)
        if worker is None:
            logger.info(
                f"Worker {worker_id} not found for eligibility check",
                extra={"job_id": job_id, "worker_id": worker_id},
            )
            return None

        facts = await self._facts.get_by_worker(worker_id)
        snapshot = WorkerSnapshot(
            worker_id=worker.id,
            facts={(f.category, f.value) for f in facts},
            sirius_id=worker.sirius_id,
            display_name=worker.display_name,
        )

        plugin_results: list[PluginCheckResult] = []
        for applied in built.applied:
            plugin = self._registry.get_plugin(applied.plugin_id)
            passed = evaluate(compile_condition(applied.condition), snapshot)
            plugin_results.append(PluginCheckResult(
                plugin_id=applied.plugin_id,
                plugin_name=plugin.name if plugin is not None else applied.plugin_id,
                passed=passed,
                explanation=explain(applied.condition, passed),
                condition=applied.condition.to_dict(),
            ))

        is_eligible = all(r.passed for r in plugin_results)

        seniority_position = None
        total_eligible = None
        if is_eligible:
            ranked = await self._query.position(built.condition_predicate, worker.id)
            if ranked is not None:
                seniority_position, total_eligible = ranked

        return WorkerEligibilityCheckResult(
            worker_id=worker.id,
            worker_name=worker.display_name,
            worker_sirius_id=worker.sirius_id,
            is_eligible=is_eligible,
            seniority_position=seniority_position,
            total_eligible=total_eligible,
            plugin_results=plugin_results,
        )
