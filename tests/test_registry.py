# tests/test_registry.py
"""
Tests for the plugin registry:
- event subscription and hot-swap
- guards in the subscription wrapper
- failure isolation between plugins
- category ownership
- metadata listing
"""
from __future__ import annotations

from typing import Any

import pytest

from dispatch_elig.core.components import ComponentCache
from dispatch_elig.core.conditions import EligibilityCondition
from dispatch_elig.core.errors import PluginCategoryConflictError
from dispatch_elig.core.events import EventBus, EventType
from dispatch_elig.core.plugins.base import (
    DispatchEligPlugin,
    PluginConfigField,
    PluginDeps,
    PluginEventHandler,
)
from dispatch_elig.core.plugins.registry import DispatchEligPluginRegistry
from dispatch_elig.infra.metrics import get_metrics_collector


class RecordingPlugin(DispatchEligPlugin):
    id = "recording"
    name = "Recording"
    description = "Records every recompute"
    component_id = "dispatch.recording"
    categories = ("rec",)
    event_handlers = (PluginEventHandler(EventType.DISPATCH_SAVED),)
    config_fields = (PluginConfigField(name="threshold", label="Threshold"),)

    def __init__(self, deps: PluginDeps) -> None:
        super().__init__(deps)
        self.recomputed: list[str] = []

    async def recompute_worker(self, worker_id: str) -> None:
        self.recomputed.append(worker_id)

    async def compute_facts(self, worker_id: str, conn=None):
        return []

    async def get_eligibility_condition(self, context, config: dict[str, Any]) -> EligibilityCondition | None:
        return None


class BrokenPlugin(RecordingPlugin):
    id = "broken"
    categories = ("broken",)

    async def recompute_worker(self, worker_id: str) -> None:
        raise RuntimeError("source table unavailable")


class HiddenPlugin(RecordingPlugin):
    id = "hidden"
    categories = ("hidden",)
    hidden = True
    event_handlers = ()


class SameCategoryPlugin(RecordingPlugin):
    id = "same_category"


@pytest.fixture
def cache() -> ComponentCache:
    c = ComponentCache()
    c.load_from_mapping({"dispatch": True, "dispatch.recording": True})
    return c


@pytest.fixture
def bus() -> EventBus:
    return EventBus()


@pytest.fixture
def deps(cache, facts) -> PluginDeps:
    return PluginDeps(facts=facts, dispatches=None, workers=None, components=cache)


@pytest.fixture
def registry(bus, cache) -> DispatchEligPluginRegistry:
    return DispatchEligPluginRegistry(bus, cache)


# ---------------------------------------------------------------------------
# Registration
# ---------------------------------------------------------------------------

class TestRegistration:
    def test_register_subscribes_handlers(self, registry, bus, deps):
        registry.register(RecordingPlugin(deps))
        assert registry.get_all_plugin_ids() == ["recording"]
        assert bus.handler_count(EventType.DISPATCH_SAVED) == 1

    def test_hot_swap_replaces_subscription(self, registry, bus, deps):
        first = RecordingPlugin(deps)
        second = RecordingPlugin(deps)
        registry.register(first)
        registry.register(second)

        assert registry.get_plugin("recording") is second
        assert bus.handler_count(EventType.DISPATCH_SAVED) == 1

    @pytest.mark.asyncio
    async def test_hot_swapped_plugin_receives_events(self, registry, bus, deps):
        first = RecordingPlugin(deps)
        second = RecordingPlugin(deps)
        registry.register(first)
        registry.register(second)

        await bus.emit(EventType.DISPATCH_SAVED, {"workerId": "w-1"})

        assert first.recomputed == []
        assert second.recomputed == ["w-1"]

    def test_unregister(self, registry, bus, deps):
        registry.register(RecordingPlugin(deps))
        assert registry.unregister("recording") is True
        assert registry.unregister("recording") is False
        assert registry.get_plugin("recording") is None
        assert bus.handler_count() == 0

    def test_category_conflict_rejected(self, registry, deps):
        registry.register(RecordingPlugin(deps))
        with pytest.raises(PluginCategoryConflictError) as exc_info:
            registry.register(SameCategoryPlugin(deps))
        assert exc_info.value.categories == {"rec"}
        assert registry.get_plugin("same_category") is None


# ---------------------------------------------------------------------------
# Subscription wrapper
# ---------------------------------------------------------------------------

class TestEventHandling:
    @pytest.mark.asyncio
    async def test_skips_when_cache_not_initialized(self, bus, deps):
        registry = DispatchEligPluginRegistry(bus, ComponentCache())
        plugin = RecordingPlugin(deps)
        registry.register(plugin)

        await bus.emit(EventType.DISPATCH_SAVED, {"workerId": "w-1"})

        assert plugin.recomputed == []

    @pytest.mark.asyncio
    async def test_skips_when_component_disabled(self, registry, bus, cache, deps):
        plugin = RecordingPlugin(deps)
        registry.register(plugin)
        cache.set_enabled("dispatch", False)

        await bus.emit(EventType.DISPATCH_SAVED, {"workerId": "w-1"})

        assert plugin.recomputed == []

    @pytest.mark.asyncio
    async def test_rejects_payload_without_worker_id(self, registry, bus, deps):
        plugin = RecordingPlugin(deps)
        registry.register(plugin)

        await bus.emit(EventType.DISPATCH_SAVED, {"jobId": "j-1"})

        assert plugin.recomputed == []

    @pytest.mark.asyncio
    async def test_invalid_extracted_worker_id(self, registry, bus, deps):
        class EmptyIdPlugin(RecordingPlugin):
            event_handlers = (PluginEventHandler(EventType.DISPATCH_SAVED, get_worker_id=lambda p: ""),)

        plugin = EmptyIdPlugin(deps)
        registry.register(plugin)

        await bus.emit(EventType.DISPATCH_SAVED, {"workerId": "w-1"})

        assert plugin.recomputed == []

    @pytest.mark.asyncio
    async def test_extractor_error_is_contained(self, registry, bus, deps):
        def explode(payload):
            raise KeyError("workerId")

        class ExplodingExtractorPlugin(RecordingPlugin):
            event_handlers = (PluginEventHandler(EventType.DISPATCH_SAVED, get_worker_id=explode),)

        registry.register(ExplodingExtractorPlugin(deps))

        await bus.emit(EventType.DISPATCH_SAVED, {"workerId": "w-1"})

        assert get_metrics_collector().get_counter("elig_recompute_failed", plugin="recording") == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize("broken_first", [True, False], ids=["broken-first", "healthy-first"])
    async def test_failure_isolated_between_plugins(self, registry, bus, deps, broken_first):
        broken = BrokenPlugin(deps)
        healthy = RecordingPlugin(deps)
        for plugin in ((broken, healthy) if broken_first else (healthy, broken)):
            registry.register(plugin)

        await bus.emit(EventType.DISPATCH_SAVED, {"workerId": "w-1"})

        assert healthy.recomputed == ["w-1"]
        assert get_metrics_collector().get_counter("elig_recompute_failed", plugin="broken") == 1
        assert get_metrics_collector().get_counter("event_handler_failed", event="dispatch.saved") == 0


# ---------------------------------------------------------------------------
# Lookup and bulk recompute
# ---------------------------------------------------------------------------

class TestLookup:
    def test_enabled_plugins_follow_components(self, registry, cache, deps):
        registry.register(RecordingPlugin(deps))
        assert [p.id for p in registry.get_enabled_plugins()] == ["recording"]

        cache.set_enabled("dispatch.recording", False)
        assert registry.get_enabled_plugins() == []

    def test_metadata_excludes_hidden_by_default(self, registry, deps):
        registry.register(RecordingPlugin(deps))
        registry.register(HiddenPlugin(deps))

        metadata = registry.get_all_plugins_metadata()
        assert [m["id"] for m in metadata] == ["recording"]
        assert metadata[0] == {
            "id": "recording",
            "name": "Recording",
            "description": "Records every recompute",
            "componentId": "dispatch.recording",
            "componentEnabled": True,
            "configFields": [{
                "name": "threshold",
                "label": "Threshold",
                "inputType": "text",
                "required": False,
                "multiple": False,
            }],
        }

        all_ids = [m["id"] for m in registry.get_all_plugins_metadata(include_hidden=True)]
        assert all_ids == ["recording", "hidden"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("broken_first", [True, False], ids=["broken-first", "healthy-first"])
    async def test_recompute_for_all_plugins_isolates_failures(self, registry, deps, broken_first):
        broken = BrokenPlugin(deps)
        healthy = RecordingPlugin(deps)
        for plugin in ((broken, healthy) if broken_first else (healthy, broken)):
            registry.register(plugin)

        await registry.recompute_worker_for_all_plugins("w-1")

        assert healthy.recomputed == ["w-1"]
        assert get_metrics_collector().get_counter("elig_recompute_failed", plugin="broken") == 1

    @pytest.mark.asyncio
    async def test_recompute_for_all_plugins_needs_loaded_cache(self, bus, deps):
        registry = DispatchEligPluginRegistry(bus, ComponentCache())
        plugin = RecordingPlugin(deps)
        registry.register(plugin)

        await registry.recompute_worker_for_all_plugins("w-1")

        assert plugin.recomputed == []
