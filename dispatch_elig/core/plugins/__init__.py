# dispatch_elig/core/plugins/__init__.py
"""
Dispatch eligibility plugins.

``register_dispatch_elig_plugins`` registers every known plugin (each
plugin's event handlers are subscribed by the registry), and
``initialize_dispatch_elig_system`` additionally backfills facts from
pre-existing source rows.
"""
from __future__ import annotations

from dispatch_elig.core.plugins.ban import DispatchBanPlugin
from dispatch_elig.core.plugins.base import BackfillResult, DispatchEligPlugin, PluginDeps
from dispatch_elig.core.plugins.dnc import DispatchDncPlugin
from dispatch_elig.core.plugins.eba import DispatchEbaPlugin
from dispatch_elig.core.plugins.hfe import DispatchHfePlugin
from dispatch_elig.core.plugins.registry import DispatchEligPluginRegistry
from dispatch_elig.core.plugins.singleshift import DispatchAcceptedPlugin, DispatchSingleshiftPlugin
from dispatch_elig.core.plugins.skill import DispatchSkillPlugin
from dispatch_elig.core.plugins.status import DispatchStatusPlugin
from dispatch_elig.core.plugins.ws import DispatchWsPlugin
from dispatch_elig.infra.logging_config import get_logger

logger = get_logger(__name__)

PLUGIN_CLASSES: tuple[type[DispatchEligPlugin], ...] = (
    DispatchBanPlugin,
    DispatchDncPlugin,
    DispatchEbaPlugin,
    DispatchHfePlugin,
    DispatchSkillPlugin,
    DispatchStatusPlugin,
    DispatchWsPlugin,
    DispatchSingleshiftPlugin,
    DispatchAcceptedPlugin,
)


def register_dispatch_elig_plugins(registry: DispatchEligPluginRegistry, deps: PluginDeps) -> list[str]:
    for plugin_cls in PLUGIN_CLASSES:
        registry.register(plugin_cls(deps))

    plugin_ids = registry.get_all_plugin_ids()
    logger.info(f"Dispatch eligibility plugins registered: {', '.join(plugin_ids)}")
    return plugin_ids


async def backfill_all(registry: DispatchEligPluginRegistry) -> dict[str, BackfillResult]:
    """Run every plugin's backfill; one failing backfill does not stop the rest."""
    results: dict[str, BackfillResult] = {}

    for plugin_id in registry.get_all_plugin_ids():
        plugin = registry.get_plugin(plugin_id)
        try:
            result = await plugin.backfill()
        except Exception as exc:
            logger.error(
                f"Failed to backfill {plugin_id} eligibility during startup: {exc}",
                exc_info=True,
                extra={"plugin_id": plugin_id},
            )
            continue

        results[plugin_id] = result
        if result.workers_processed > 0:
            logger.info(
                f"{plugin_id} eligibility backfill completed: "
                f"workers={result.workers_processed}, entries={result.entries_created}",
                extra={"plugin_id": plugin_id},
            )

    return results


async def initialize_dispatch_elig_system(
    registry: DispatchEligPluginRegistry,
    deps: PluginDeps,
    *,
    run_backfill: bool = True,
) -> dict[str, BackfillResult]:
    register_dispatch_elig_plugins(registry, deps)
    if not run_backfill:
        return {}
    return await backfill_all(registry)


__all__ = [
    "BackfillResult",
    "DispatchEligPlugin",
    "DispatchEligPluginRegistry",
    "PluginDeps",
    "PLUGIN_CLASSES",
    "backfill_all",
    "initialize_dispatch_elig_system",
    "register_dispatch_elig_plugins",
]
