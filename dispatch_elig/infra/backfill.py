#!/usr/bin/env python3
# dispatch_elig/infra/backfill.py
"""
Standalone eligibility backfill.

    python -m dispatch_elig.infra.backfill [plugin_id ...]

Rebuilds facts from source rows for the given plugins (all plugins when
none are named). Safe to re-run. Use after a bulk import or after enabling
a component that was off while its source rows changed.
"""
import asyncio
import sys

from dispatch_elig.bootstrap import build_system
from dispatch_elig.config import settings
from dispatch_elig.core.plugins import backfill_all, register_dispatch_elig_plugins
from dispatch_elig.infra.db_async import close_pool, init_pool
from dispatch_elig.infra.logging_config import get_logger, setup_logging

logger = get_logger(__name__)


async def main(plugin_ids: list[str]) -> int:
    setup_logging(level=settings.log_level, use_json=settings.log_json)

    await init_pool()
    try:
        system = build_system()
        await system.components.load()
        register_dispatch_elig_plugins(system.registry, system.deps)

        unknown = [p for p in plugin_ids if system.registry.get_plugin(p) is None]
        if unknown:
            logger.error(f"Unknown plugin id(s): {', '.join(unknown)}")
            return 2

        for plugin_id in system.registry.get_all_plugin_ids():
            if plugin_ids and plugin_id not in plugin_ids:
                system.registry.unregister(plugin_id)

        results = await backfill_all(system.registry)
    finally:
        await close_pool()

    for plugin_id, result in results.items():
        logger.info(
            f"{plugin_id}: workers={result.workers_processed}, entries={result.entries_created}"
        )
    failed = set(system.registry.get_all_plugin_ids()) - set(results)
    if failed:
        logger.error(f"Backfill failed for: {', '.join(sorted(failed))}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main(sys.argv[1:])))
