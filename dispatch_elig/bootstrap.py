# dispatch_elig/bootstrap.py
"""
Wiring for the eligibility engine.

``build_system`` constructs every collaborator explicitly (no module
globals); ``start_system`` loads the component cache, registers plugins and
optionally backfills. The HTTP app and any embedding process share these.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Callable

from dispatch_elig.config import settings
from dispatch_elig.core.components import ComponentCache
from dispatch_elig.core.eligible_workers import EligibleWorkersQuery, EligibleWorkersService
from dispatch_elig.core.events import EventBus
from dispatch_elig.core.plugins import initialize_dispatch_elig_system
from dispatch_elig.core.plugins.base import BackfillResult, PluginDeps
from dispatch_elig.core.plugins.registry import DispatchEligPluginRegistry
from dispatch_elig.infra.logging_config import get_logger
from dispatch_elig.infra.pg_dispatch_repo_async import AsyncPostgresDispatchRepository
from dispatch_elig.infra.pg_elig_fact_repo_async import AsyncPostgresEligFactRepository
from dispatch_elig.infra.pg_eligible_workers_repo_async import AsyncPostgresEligibleWorkersQuery
from dispatch_elig.infra.pg_worker_repo_async import AsyncPostgresWorkerRepository

logger = get_logger(__name__)


@dataclass
class DispatchEligSystem:
    bus: EventBus
    components: ComponentCache
    registry: DispatchEligPluginRegistry
    deps: PluginDeps
    service: EligibleWorkersService
    backfill_results: dict[str, BackfillResult] = field(default_factory=dict)


def build_system(
    *,
    bus: EventBus | None = None,
    components: ComponentCache | None = None,
    facts=None,
    dispatches=None,
    workers=None,
    query: EligibleWorkersQuery | None = None,
    today: Callable[[], date] = date.today,
) -> DispatchEligSystem:
    """Assemble the engine; anything not passed in gets its PostgreSQL default."""
    bus = bus or EventBus()
    components = components or ComponentCache()
    facts = facts or AsyncPostgresEligFactRepository()
    dispatches = dispatches or AsyncPostgresDispatchRepository()
    workers = workers or AsyncPostgresWorkerRepository()
    query = query or AsyncPostgresEligibleWorkersQuery()

    registry = DispatchEligPluginRegistry(bus, components)
    deps = PluginDeps(
        facts=facts,
        dispatches=dispatches,
        workers=workers,
        components=components,
        today=today,
    )
    service = EligibleWorkersService(
        registry=registry,
        dispatches=dispatches,
        workers=workers,
        facts=facts,
        query=query,
    )
    return DispatchEligSystem(
        bus=bus,
        components=components,
        registry=registry,
        deps=deps,
        service=service,
    )


async def start_system(system: DispatchEligSystem, run_backfill: bool | None = None) -> DispatchEligSystem:
    if run_backfill is None:
        run_backfill = settings.elig_backfill_on_startup

    if not system.components.is_initialized():
        loaded = await system.components.load()
        logger.info(f"Component cache loaded: {loaded} component flag(s)")

    system.backfill_results = await initialize_dispatch_elig_system(
        system.registry,
        system.deps,
        run_backfill=run_backfill,
    )
    logger.info(
        f"Dispatch eligibility system started: plugins={len(system.registry.get_all_plugin_ids())}, "
        f"backfill={'on' if run_backfill else 'off'}"
    )
    return system
