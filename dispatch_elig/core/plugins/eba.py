# dispatch_elig/core/plugins/eba.py
"""Employed but Available: the worker must have declared availability for the job's start date."""
from __future__ import annotations

from typing import Any

from dispatch_elig.core.conditions import ConditionType, EligibilityCondition, EligibilityQueryContext
from dispatch_elig.core.events import EventType
from dispatch_elig.core.facts import EligibilityFact
from dispatch_elig.core.plugins.base import DispatchEligPlugin, PluginEventHandler

EBA_CATEGORY = "eba"


class DispatchEbaPlugin(DispatchEligPlugin):
    id = "dispatch_eba"
    name = "Employed but Available"
    description = "Requires workers to have marked themselves available for the job's start date"
    component_id = "dispatch.eba"
    categories = (EBA_CATEGORY,)
    event_handlers = (PluginEventHandler(EventType.DISPATCH_EBA_SAVED),)

    async def compute_facts(self, worker_id: str, conn: Any = None) -> list[EligibilityFact]:
        dates = await self.deps.workers.get_eba_dates(worker_id, conn=conn)
        return [self.fact(worker_id, ymd) for ymd in dates]

    async def list_backfill_worker_ids(self) -> list[str] | None:
        return await self.deps.workers.list_worker_ids_with_eba()

    async def get_eligibility_condition(
        self,
        context: EligibilityQueryContext,
        config: dict[str, Any],
    ) -> EligibilityCondition | None:
        job = await self._get_job(context)
        if job is None:
            return None

        return EligibilityCondition(
            category=EBA_CATEGORY,
            type=ConditionType.EXISTS,
            value=job.start_ymd,
        )
