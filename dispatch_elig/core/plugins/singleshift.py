# dispatch_elig/core/plugins/singleshift.py
"""
Single shift: a worker may not hold two accepted dispatches starting on
the same date.

Two plugins cooperate here, each owning one category:

* ``dispatch_singleshift`` records the start date of every job the worker
  has accepted and blocks jobs starting on one of those dates;
* ``dispatch_accepted`` (hidden) records the ids of those jobs, so a
  worker who accepted *this* job is not blocked by their own dispatch.
"""
from __future__ import annotations

from typing import Any

from dispatch_elig.core.conditions import ConditionType, EligibilityCondition, EligibilityQueryContext
from dispatch_elig.core.events import EventType
from dispatch_elig.core.facts import EligibilityFact
from dispatch_elig.core.plugins.base import DispatchEligPlugin, PluginEventHandler

SINGLESHIFT_CATEGORY = "singleshift"
ACCEPTED_CATEGORY = "accepted"
COMPONENT_ID = "dispatch.singleshift"


class DispatchSingleshiftPlugin(DispatchEligPlugin):
    id = "dispatch_singleshift"
    name = "Single Shift Dispatch"
    description = "Prevents a worker from accepting two dispatches that start on the same date"
    component_id = COMPONENT_ID
    categories = (SINGLESHIFT_CATEGORY,)
    event_handlers = (PluginEventHandler(EventType.DISPATCH_SAVED),)

    async def compute_facts(self, worker_id: str, conn: Any = None) -> list[EligibilityFact]:
        accepted = await self.deps.dispatches.get_accepted_jobs_by_worker(worker_id, conn=conn)
        dates = dict.fromkeys(start_ymd for _, start_ymd in accepted if start_ymd)
        return [self.fact(worker_id, ymd) for ymd in dates]

    async def list_backfill_worker_ids(self) -> list[str] | None:
        return await self.deps.dispatches.list_worker_ids_with_accepted_dispatches()

    async def get_eligibility_condition(
        self,
        context: EligibilityQueryContext,
        config: dict[str, Any],
    ) -> EligibilityCondition | None:
        job = await self._get_job(context)
        if job is None:
            return None

        return EligibilityCondition(
            category=SINGLESHIFT_CATEGORY,
            type=ConditionType.NOT_EXISTS_UNLESS_EXISTS,
            value=job.start_ymd,
            unless_category=ACCEPTED_CATEGORY,
            unless_value=job.id,
        )


class DispatchAcceptedPlugin(DispatchEligPlugin):
    id = "dispatch_accepted"
    name = "Accepted Dispatches"
    description = "Tracks accepted jobs so single shift can exempt a worker's own dispatch"
    component_id = COMPONENT_ID
    hidden = True
    categories = (ACCEPTED_CATEGORY,)
    event_handlers = (PluginEventHandler(EventType.DISPATCH_SAVED),)

    async def compute_facts(self, worker_id: str, conn: Any = None) -> list[EligibilityFact]:
        accepted = await self.deps.dispatches.get_accepted_jobs_by_worker(worker_id, conn=conn)
        job_ids = dict.fromkeys(job_id for job_id, _ in accepted)
        return [self.fact(worker_id, job_id) for job_id in job_ids]

    async def list_backfill_worker_ids(self) -> list[str] | None:
        return await self.deps.dispatches.list_worker_ids_with_accepted_dispatches()

    async def get_eligibility_condition(
        self,
        context: EligibilityQueryContext,
        config: dict[str, Any],
    ) -> EligibilityCondition | None:
        return None
