# dispatch_elig/core/plugins/skill.py
"""Required skills: the worker must hold every skill listed on the job."""
from __future__ import annotations

from typing import Any

from dispatch_elig.core.conditions import ConditionType, EligibilityCondition, EligibilityQueryContext
from dispatch_elig.core.events import EventType
from dispatch_elig.core.facts import EligibilityFact
from dispatch_elig.core.plugins.base import DispatchEligPlugin, PluginEventHandler
from dispatch_elig.infra.logging_config import get_logger

logger = get_logger(__name__)

SKILL_CATEGORY = "skill"


class DispatchSkillPlugin(DispatchEligPlugin):
    id = "dispatch_skill"
    name = "Required Skills"
    description = "Filters workers based on required skills for the job"
    component_id = "worker.skills"
    categories = (SKILL_CATEGORY,)
    event_handlers = (PluginEventHandler(EventType.WORKER_SKILL_SAVED),)

    async def compute_facts(self, worker_id: str, conn: Any = None) -> list[EligibilityFact]:
        skill_ids = await self.deps.workers.get_skill_ids(worker_id, conn=conn)
        return [self.fact(worker_id, skill_id) for skill_id in skill_ids]

    async def list_backfill_worker_ids(self) -> list[str] | None:
        return await self.deps.workers.list_worker_ids_with_skills()

    async def get_eligibility_condition(
        self,
        context: EligibilityQueryContext,
        config: dict[str, Any],
    ) -> EligibilityCondition | None:
        job = await self._get_job(context)
        if job is None:
            return None

        required_skills = [str(s) for s in (job.data or {}).get("requiredSkills") or []]
        if not required_skills:
            logger.debug(
                "No required skills for job, all workers eligible",
                extra={**self.log_extra, "job_id": context.job_id},
            )
            return None

        return EligibilityCondition(
            category=SKILL_CATEGORY,
            type=ConditionType.EXISTS_ALL,
            value=",".join(required_skills),
            values=tuple(required_skills),
        )
