# dispatch_elig/core/plugins/hfe.py
"""
Hold for Employer: a held worker may only be dispatched to the employer
holding them. Workers with no active hold are unrestricted.
"""
from __future__ import annotations

from typing import Any

from dispatch_elig.core.conditions import ConditionType, EligibilityCondition, EligibilityQueryContext
from dispatch_elig.core.events import EventType
from dispatch_elig.core.facts import EligibilityFact
from dispatch_elig.core.plugins.base import DispatchEligPlugin, PluginEventHandler

HFE_CATEGORY = "hfe"


class DispatchHfePlugin(DispatchEligPlugin):
    id = "dispatch_hfe"
    name = "Hold for Employer"
    description = "Restricts held workers to jobs at the employer holding them"
    component_id = "dispatch.hfe"
    categories = (HFE_CATEGORY,)
    event_handlers = (PluginEventHandler(EventType.DISPATCH_HFE_SAVED),)

    async def compute_facts(self, worker_id: str, conn: Any = None) -> list[EligibilityFact]:
        # Expired holds drop out on the next recompute for the worker
        employer_ids = await self.deps.workers.get_active_hfe_employer_ids(
            worker_id, self.deps.today(), conn=conn
        )
        return [self.fact(worker_id, employer_id) for employer_id in employer_ids]

    async def get_eligibility_condition(
        self,
        context: EligibilityQueryContext,
        config: dict[str, Any],
    ) -> EligibilityCondition | None:
        return EligibilityCondition(
            category=HFE_CATEGORY,
            type=ConditionType.EXISTS_OR_NONE,
            value=context.employer_id,
        )
