# dispatch_elig/core/errors.py
"""
Typed errors for the eligibility engine.

Most failures inside the engine are logged and contained (a broken plugin
degrades to "no constraint"). These are the few that callers are expected
to see.
"""
from __future__ import annotations


class DispatchEligError(Exception):
    """Base class for eligibility engine errors."""


class ComponentCacheNotInitializedError(DispatchEligError):
    """Raised by a synchronous component lookup before the cache is loaded."""

    def __init__(self, component_id: str):
        self.component_id = component_id
        super().__init__(
            f"Component cache not initialized (lookup of '{component_id}'). "
            "Call ComponentCache.load() first."
        )


class PluginCategoryConflictError(DispatchEligError):
    """Two plugins claim the same fact category."""

    def __init__(self, plugin_id: str, other_plugin_id: str, categories: set[str]):
        self.plugin_id = plugin_id
        self.other_plugin_id = other_plugin_id
        self.categories = categories
        super().__init__(
            f"Plugin '{plugin_id}' claims categories {sorted(categories)} "
            f"already owned by plugin '{other_plugin_id}'"
        )
