# dispatch_elig/core/plugins/registry.py
"""
Dispatch eligibility plugin registry.

Constructed once at startup with the event bus and component cache, then
handed to the eligible-workers service. Registering a plugin subscribes its
event handlers; every subscription is wrapped so that one plugin's failure
stays with that plugin, that event and that worker.
"""
from __future__ import annotations

from typing import Any

from dispatch_elig.core.components import ComponentCache
from dispatch_elig.core.errors import PluginCategoryConflictError
from dispatch_elig.core.events import EventBus, has_worker_id
from dispatch_elig.core.plugins.base import DispatchEligPlugin, PluginEventHandler
from dispatch_elig.infra.logging_config import get_logger
from dispatch_elig.infra.metrics import inc_counter

logger = get_logger(__name__)


class DispatchEligPluginRegistry:

    def __init__(self, bus: EventBus, components: ComponentCache) -> None:
        self._bus = bus
        self._components = components
        self._plugins: dict[str, DispatchEligPlugin] = {}
        self._subscribed_handler_ids: dict[str, list[str]] = {}

    # -- registration ------------------------------------------------------

    def register(self, plugin: DispatchEligPlugin) -> None:
        """
        Register (or hot-swap) a plugin and subscribe its event handlers.

        Raises:
            PluginCategoryConflictError: another plugin owns one of its categories
        """
        self._check_categories(plugin)

        if plugin.id in self._plugins:
            logger.warning(
                f"Dispatch eligibility plugin {plugin.id} already registered, overwriting",
                extra={"plugin_id": plugin.id},
            )
            self._unsubscribe_plugin_handlers(plugin.id)

        self._plugins[plugin.id] = plugin
        logger.info(f"Dispatch eligibility plugin registered: {plugin.id}", extra={"plugin_id": plugin.id})

        if plugin.event_handlers:
            self._subscribe_plugin_handlers(plugin)

    def unregister(self, plugin_id: str) -> bool:
        self._unsubscribe_plugin_handlers(plugin_id)
        removed = self._plugins.pop(plugin_id, None) is not None
        if removed:
            logger.info(f"Dispatch eligibility plugin unregistered: {plugin_id}", extra={"plugin_id": plugin_id})
        return removed

    def _check_categories(self, plugin: DispatchEligPlugin) -> None:
        claimed = set(plugin.categories)
        for other in self._plugins.values():
            if other.id == plugin.id:
                continue
            overlap = claimed & set(other.categories)
            if overlap:
                raise PluginCategoryConflictError(plugin.id, other.id, overlap)

    def _subscribe_plugin_handlers(self, plugin: DispatchEligPlugin) -> None:
        handler_ids = [
            self._bus.on(event_handler.event, self._make_handler(plugin, event_handler))
            for event_handler in plugin.event_handlers
        ]
        self._subscribed_handler_ids[plugin.id] = handler_ids
        logger.debug(
            f"Subscribed {len(handler_ids)} event handler(s) for plugin {plugin.id}",
            extra={"plugin_id": plugin.id},
        )

    def _unsubscribe_plugin_handlers(self, plugin_id: str) -> None:
        handler_ids = self._subscribed_handler_ids.pop(plugin_id, None)
        if not handler_ids:
            return
        for handler_id in handler_ids:
            self._bus.off(handler_id)
        logger.debug(
            f"Unsubscribed {len(handler_ids)} event handler(s) for plugin {plugin_id}",
            extra={"plugin_id": plugin_id},
        )

    def _make_handler(self, plugin: DispatchEligPlugin, event_handler: PluginEventHandler):
        event = event_handler.event.value

        async def handle(payload: Any) -> None:
            extra = {"plugin_id": plugin.id, "event": event}

            if not self._components.is_initialized():
                logger.warning(
                    f"Component cache not initialized, skipping {plugin.id} eligibility recompute",
                    extra=extra,
                )
                return

            if not self._components.is_enabled_sync(plugin.component_id):
                logger.debug(f"{plugin.component_id} component not enabled, skipping recompute", extra=extra)
                return

            if not has_worker_id(payload):
                logger.error(f"Event payload missing worker_id for plugin {plugin.id}", extra=extra)
                return

            worker_id = None
            try:
                worker_id = event_handler.get_worker_id(payload)
                if not worker_id or not isinstance(worker_id, str):
                    logger.error(
                        f"get_worker_id returned invalid value for plugin {plugin.id}: {worker_id!r}",
                        extra=extra,
                    )
                    return
                await plugin.recompute_worker(worker_id)
            except Exception as exc:
                inc_counter("elig_recompute_failed", plugin=plugin.id)
                logger.error(
                    f"Plugin {plugin.id} failed handling {event} for worker {worker_id}: {exc}",
                    exc_info=True,
                    extra={**extra, "worker_id": worker_id},
                )

        return handle

    # -- lookup ------------------------------------------------------------

    def get_plugin(self, plugin_id: str) -> DispatchEligPlugin | None:
        return self._plugins.get(plugin_id)

    def get_all_plugin_ids(self) -> list[str]:
        return list(self._plugins)

    def get_enabled_plugins(self) -> list[DispatchEligPlugin]:
        return [p for p in self._plugins.values() if self._components.is_enabled_sync(p.component_id)]

    def get_all_plugins_metadata(self, include_hidden: bool = False) -> list[dict[str, Any]]:
        """Read-only projection for the job type configuration UI."""
        return [
            {
                "id": plugin.id,
                "name": plugin.name,
                "description": plugin.description,
                "componentId": plugin.component_id,
                "componentEnabled": self._components.is_active(plugin.component_id),
                "configFields": [f.to_dict() for f in plugin.config_fields],
            }
            for plugin in self._plugins.values()
            if include_hidden or not plugin.hidden
        ]

    # -- bulk --------------------------------------------------------------

    async def recompute_worker_for_all_plugins(self, worker_id: str) -> None:
        if not self._components.is_initialized():
            logger.warning(
                f"Component cache not initialized, skipping recompute for worker {worker_id}",
                extra={"worker_id": worker_id},
            )
            return

        for plugin in self.get_enabled_plugins():
            try:
                await plugin.recompute_worker(worker_id)
            except Exception as exc:
                inc_counter("elig_recompute_failed", plugin=plugin.id)
                logger.error(
                    f"Dispatch eligibility plugin {plugin.id} failed to recompute worker {worker_id}: {exc}",
                    exc_info=True,
                    extra={"plugin_id": plugin.id, "worker_id": worker_id},
                )
