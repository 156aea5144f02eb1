# dispatch_elig/core/components.py
"""
Component (feature flag) cache.

Components are hierarchical ids such as ``dispatch.singleshift``. A
component is enabled only if it and every ancestor (``dispatch``) are
enabled. Flags live in the ``variables`` table as ``component_<id>`` rows
and are loaded once at startup; lookups after that are synchronous.
"""
from __future__ import annotations

import json
from typing import Any, Callable, Mapping

from dispatch_elig.core.errors import ComponentCacheNotInitializedError
from dispatch_elig.infra.logging_config import get_logger

logger = get_logger(__name__)

VARIABLE_PREFIX = "component_"


def get_ancestor_component_ids(component_id: str) -> list[str]:
    """``"a.b.c"`` -> ``["a.b", "a"]``"""
    parts = component_id.split(".")
    return [".".join(parts[:i]) for i in range(len(parts) - 1, 0, -1)]


def _parse_flag(raw: Any) -> bool:
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except ValueError:
            return raw.strip().lower() in ("true", "1", "yes")
    return raw is True


class ComponentCache:
    def __init__(self) -> None:
        self._enabled: dict[str, bool] | None = None

    def is_initialized(self) -> bool:
        return self._enabled is not None

    def is_enabled_sync(self, component_id: str) -> bool:
        """Raises ComponentCacheNotInitializedError before load()."""
        if self._enabled is None:
            raise ComponentCacheNotInitializedError(component_id)

        for cid in (component_id, *get_ancestor_component_ids(component_id)):
            if not self._enabled.get(cid, False):
                return False
        return True

    def is_active(self, component_id: str) -> bool:
        """Non-raising variant: False until the cache is loaded."""
        return self.is_initialized() and self.is_enabled_sync(component_id)

    def load_from_mapping(self, flags: Mapping[str, bool]) -> None:
        self._enabled = {cid: bool(enabled) for cid, enabled in flags.items()}

    def set_enabled(self, component_id: str, enabled: bool) -> None:
        """Update one flag in memory (after it has been persisted elsewhere)."""
        if self._enabled is None:
            self._enabled = {}
        self._enabled[component_id] = enabled
        logger.info(f"Component {component_id} {'enabled' if enabled else 'disabled'}")

    async def load(self, conn_factory: Callable | None = None) -> int:
        """Load all component flags from the variables table."""
        if conn_factory is None:
            from dispatch_elig.infra.db_resilience_async import safe_db_conn
            conn_factory = safe_db_conn

        async with conn_factory() as conn:
            rows = await conn.fetch(
                "SELECT name, value FROM variables WHERE name LIKE $1",
                "component\\_%",
            )

        self._enabled = {
            row["name"][len(VARIABLE_PREFIX):]: _parse_flag(row["value"])
            for row in rows
        }
        logger.info(
            f"Component cache loaded: {sum(self._enabled.values())}/{len(self._enabled)} enabled"
        )
        return len(self._enabled)
