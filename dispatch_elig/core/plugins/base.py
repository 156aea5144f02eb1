# dispatch_elig/core/plugins/base.py
"""
Dispatch eligibility plugin contract.

A plugin owns one or more fact categories. It keeps its facts current by
rebuilding them for one worker at a time (``recompute_worker``) and
contributes at most one query condition per job
(``get_eligibility_condition``).

Subclasses provide ``compute_facts`` and ``get_eligibility_condition``;
the delete-then-reinsert discipline, the component guard and backfill
live here so every plugin follows them the same way.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Callable, Protocol

from dispatch_elig.core.components import ComponentCache
from dispatch_elig.core.conditions import EligibilityCondition, EligibilityQueryContext
from dispatch_elig.core.events import EventType, worker_id_of
from dispatch_elig.core.facts import EligibilityFact
from dispatch_elig.infra.logging_config import get_logger
from dispatch_elig.infra.metrics import inc_counter

logger = get_logger(__name__)


@dataclass(frozen=True)
class PluginEventHandler:
    """
    A domain event that should trigger a recompute, and how to get the
    affected worker out of its payload. Only events whose payload carries
    a worker id qualify; the registry checks this at runtime.
    """
    event: EventType
    get_worker_id: Callable[[Any], str] = worker_id_of


@dataclass(frozen=True)
class PluginConfigField:
    """Declarative form field for per-job-type plugin configuration."""
    name: str
    label: str
    input_type: str = "text"
    required: bool = False
    help_text: str | None = None
    options_source: str | None = None
    multiple: bool = False

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "name": self.name,
            "label": self.label,
            "inputType": self.input_type,
            "required": self.required,
            "multiple": self.multiple,
        }
        if self.help_text is not None:
            data["helpText"] = self.help_text
        if self.options_source is not None:
            data["optionsSource"] = self.options_source
        return data


@dataclass(frozen=True)
class BackfillResult:
    workers_processed: int = 0
    entries_created: int = 0


class FactStore(Protocol):
    def transaction(self, worker_id: str, categories):
        """Async context manager yielding a writer with a ``conn`` attribute."""


@dataclass
class PluginDeps:
    """Collaborators handed to every plugin at construction."""
    facts: FactStore
    dispatches: Any
    workers: Any
    components: ComponentCache
    today: Callable[[], date] = field(default=date.today)


class DispatchEligPlugin(ABC):
    id: str
    name: str = ""
    description: str = ""
    component_id: str
    hidden: bool = False
    categories: tuple[str, ...] = ()
    event_handlers: tuple[PluginEventHandler, ...] = ()
    config_fields: tuple[PluginConfigField, ...] = ()

    def __init__(self, deps: PluginDeps) -> None:
        self.deps = deps

    @property
    def log_extra(self) -> dict[str, str]:
        return {"plugin_id": self.id}

    def is_active(self) -> bool:
        return self.deps.components.is_active(self.component_id)

    def fact(self, worker_id: str, value: str, category: str | None = None) -> EligibilityFact:
        return EligibilityFact(
            worker_id=worker_id,
            category=category or self.categories[0],
            value=value,
        )

    # -- maintenance -------------------------------------------------------

    async def recompute_worker(self, worker_id: str) -> None:
        """Fully rebuild this plugin's facts for one worker."""
        await self._rebuild(worker_id)

    async def _rebuild(self, worker_id: str) -> int:
        """
        Delete every owned category for the worker, then insert the
        current fact set, all in one transaction. A disabled component
        leaves the worker with no facts. Returns rows inserted.
        """
        extra = {**self.log_extra, "worker_id": worker_id}
        logger.debug(f"Recomputing {self.id} eligibility for worker {worker_id}", extra=extra)

        async with self.deps.facts.transaction(worker_id, self.categories) as tx:
            for category in self.categories:
                await tx.delete_by_worker_and_category(worker_id, category)

            if not self.is_active():
                logger.debug(
                    f"{self.component_id} component disabled, cleared entries for worker {worker_id}",
                    extra=extra,
                )
                return 0

            facts = await self.compute_facts(worker_id, tx.conn)

            stray = {f.category for f in facts} - set(self.categories)
            if stray:
                raise ValueError(
                    f"Plugin {self.id} produced facts outside its categories: {sorted(stray)}"
                )

            created = await tx.create_many(facts) if facts else 0

        inc_counter("elig_recompute_total", plugin=self.id)
        logger.debug(
            f"Created {created} {self.id} eligibility entries for worker {worker_id}",
            extra=extra,
        )
        return created

    @abstractmethod
    async def compute_facts(self, worker_id: str, conn: Any = None) -> list[EligibilityFact]:
        """
        Read source-of-truth data and return the worker's current facts.

        ``conn`` is the open fact transaction's connection; pass it to every
        repository read so the rebuild stays on that one connection.
        """

    # -- query -------------------------------------------------------------

    @abstractmethod
    async def get_eligibility_condition(
        self,
        context: EligibilityQueryContext,
        config: dict[str, Any],
    ) -> EligibilityCondition | None:
        """Condition for this job, or None when the plugin imposes nothing."""

    async def _get_job(self, context: EligibilityQueryContext):
        job = await self.deps.dispatches.get_job_with_relations(context.job_id)
        if job is None:
            logger.warning(
                f"Job not found for {self.id} eligibility check",
                extra={**self.log_extra, "job_id": context.job_id},
            )
        return job

    # -- backfill ----------------------------------------------------------

    async def list_backfill_worker_ids(self) -> list[str] | None:
        """Workers with source rows, or None if the plugin has no backfill."""
        return None

    async def backfill(self) -> BackfillResult:
        """
        Rebuild facts for every worker with source rows. Safe to re-run:
        each rebuild replaces the worker's facts wholesale.
        """
        if not self.deps.components.is_initialized():
            logger.warning(
                f"Component cache not initialized, skipping {self.id} eligibility backfill",
                extra=self.log_extra,
            )
            return BackfillResult()

        if not self.deps.components.is_enabled_sync(self.component_id):
            logger.debug(
                f"{self.component_id} component not enabled, skipping backfill",
                extra=self.log_extra,
            )
            return BackfillResult()

        worker_ids = await self.list_backfill_worker_ids()
        if not worker_ids:
            logger.info(f"No source rows found for {self.id} backfill", extra=self.log_extra)
            return BackfillResult()

        unique_ids = list(dict.fromkeys(worker_ids))
        logger.info(
            f"Backfilling {self.id} eligibility for {len(unique_ids)} workers",
            extra=self.log_extra,
        )

        entries_created = 0
        for worker_id in unique_ids:
            entries_created += await self._rebuild(worker_id)

        logger.info(
            f"Completed {self.id} eligibility backfill: "
            f"workers={len(unique_ids)}, entries={entries_created}",
            extra=self.log_extra,
        )
        return BackfillResult(workers_processed=len(unique_ids), entries_created=entries_created)
