# dispatch_elig/core/plugins/ban.py
from __future__ import annotations

from typing import Any

from dispatch_elig.core.conditions import ConditionType, EligibilityCondition, EligibilityQueryContext
from dispatch_elig.core.events import EventType
from dispatch_elig.core.facts import EligibilityFact
from dispatch_elig.core.plugins.base import DispatchEligPlugin, PluginEventHandler

BAN_CATEGORY = "ban"
ACTIVE_VALUE = "active"


class DispatchBanPlugin(DispatchEligPlugin):
    """Workers with an active dispatch ban (open-ended or not yet ended) are excluded."""

    id = "dispatch_ban"
    name = "Dispatch Ban"
    description = "Excludes workers with active dispatch bans from dispatch eligibility"
    component_id = "dispatch.ban"
    categories = (BAN_CATEGORY,)
    event_handlers = (PluginEventHandler(EventType.WORKER_BAN_SAVED),)

    async def compute_facts(self, worker_id: str, conn: Any = None) -> list[EligibilityFact]:
        if await self.deps.workers.has_active_ban(worker_id, self.deps.today(), conn=conn):
            return [self.fact(worker_id, ACTIVE_VALUE)]
        return []

    async def list_backfill_worker_ids(self) -> list[str] | None:
        return await self.deps.workers.list_worker_ids_with_bans()

    async def get_eligibility_condition(
        self,
        context: EligibilityQueryContext,
        config: dict[str, Any],
    ) -> EligibilityCondition | None:
        return EligibilityCondition(
            category=BAN_CATEGORY,
            type=ConditionType.NOT_EXISTS_CATEGORY,
            value=ACTIVE_VALUE,
        )
