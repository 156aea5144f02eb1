# dispatch_elig/core/plugins/dnc.py
"""Do Not Call: a worker on an employer's DNC list is never offered that employer's jobs."""
from __future__ import annotations

from typing import Any

from dispatch_elig.core.conditions import ConditionType, EligibilityCondition, EligibilityQueryContext
from dispatch_elig.core.events import EventType
from dispatch_elig.core.facts import EligibilityFact
from dispatch_elig.core.plugins.base import DispatchEligPlugin, PluginEventHandler

DNC_CATEGORY = "dnc"


class DispatchDncPlugin(DispatchEligPlugin):
    id = "dispatch_dnc"
    name = "Do Not Call"
    description = "Excludes workers on the employer's Do Not Call list"
    component_id = "dispatch.dnc"
    categories = (DNC_CATEGORY,)
    event_handlers = (PluginEventHandler(EventType.DISPATCH_DNC_SAVED),)

    async def compute_facts(self, worker_id: str, conn: Any = None) -> list[EligibilityFact]:
        employer_ids = await self.deps.workers.get_dnc_employer_ids(worker_id, conn=conn)
        return [self.fact(worker_id, employer_id) for employer_id in employer_ids]

    async def get_eligibility_condition(
        self,
        context: EligibilityQueryContext,
        config: dict[str, Any],
    ) -> EligibilityCondition | None:
        return EligibilityCondition(
            category=DNC_CATEGORY,
            type=ConditionType.NOT_EXISTS,
            value=context.employer_id,
        )
