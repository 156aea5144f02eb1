# dispatch_elig/core/plugins/status.py
from __future__ import annotations

from typing import Any

from dispatch_elig.core.conditions import ConditionType, EligibilityCondition, EligibilityQueryContext
from dispatch_elig.core.events import EventType
from dispatch_elig.core.facts import EligibilityFact
from dispatch_elig.core.plugins.base import DispatchEligPlugin, PluginEventHandler

STATUS_CATEGORY = "dispstatus"
AVAILABLE_STATUS = "available"


class DispatchStatusPlugin(DispatchEligPlugin):
    id = "dispatch_status"
    name = "Dispatch Status"
    description = "Only workers whose dispatch status is Available"
    component_id = "dispatch.status"
    categories = (STATUS_CATEGORY,)
    event_handlers = (PluginEventHandler(EventType.DISPATCH_STATUS_SAVED),)

    async def compute_facts(self, worker_id: str, conn: Any = None) -> list[EligibilityFact]:
        status = await self.deps.workers.get_dispatch_status(worker_id, conn=conn)
        if not status:
            return []
        return [self.fact(worker_id, status)]

    async def get_eligibility_condition(
        self,
        context: EligibilityQueryContext,
        config: dict[str, Any],
    ) -> EligibilityCondition | None:
        return EligibilityCondition(
            category=STATUS_CATEGORY,
            type=ConditionType.EXISTS,
            value=AVAILABLE_STATUS,
        )
