# dispatch_elig/core/plugins/ws.py
"""
Work status: job types can restrict dispatch to workers in certain work
statuses (e.g. active members only).

The eligible statuses come from the plugin's per-job-type config
(``eligibleWorkStatuses``). Older job types kept the list directly in the
job type data, which is still honoured as a fallback.
"""
from __future__ import annotations

from typing import Any

from dispatch_elig.core.conditions import ConditionType, EligibilityCondition, EligibilityQueryContext
from dispatch_elig.core.events import EventType
from dispatch_elig.core.facts import EligibilityFact
from dispatch_elig.core.plugins.base import DispatchEligPlugin, PluginConfigField, PluginEventHandler
from dispatch_elig.infra.logging_config import get_logger

logger = get_logger(__name__)

WS_CATEGORY = "ws"
CONFIG_KEY = "eligibleWorkStatuses"


class DispatchWsPlugin(DispatchEligPlugin):
    id = "dispatch_ws"
    name = "Work Status"
    description = "Filters workers based on eligible work statuses configured per job type"
    component_id = "dispatch"
    categories = (WS_CATEGORY,)
    event_handlers = (PluginEventHandler(EventType.WORKER_WS_CHANGED),)
    config_fields = (
        PluginConfigField(
            name=CONFIG_KEY,
            label="Eligible Work Statuses",
            input_type="select-options",
            options_source="worker-ws",
            multiple=True,
            help_text="Workers must be in one of these work statuses. Leave empty to allow all.",
        ),
    )

    async def compute_facts(self, worker_id: str, conn: Any = None) -> list[EligibilityFact]:
        worker = await self.deps.workers.get_worker(worker_id, conn=conn)
        if worker is None or not worker.denorm_ws_id:
            return []
        return [self.fact(worker_id, worker.denorm_ws_id)]

    async def list_backfill_worker_ids(self) -> list[str] | None:
        return await self.deps.workers.list_worker_ids_with_ws()

    async def _eligible_statuses(self, context: EligibilityQueryContext, config: dict[str, Any]) -> list[str]:
        configured = (config or {}).get(CONFIG_KEY)
        if configured:
            return [str(s) for s in configured]

        job = await self._get_job(context)
        if job is None or job.job_type is None:
            return []
        return [str(s) for s in (job.job_type.data or {}).get(CONFIG_KEY) or []]

    async def get_eligibility_condition(
        self,
        context: EligibilityQueryContext,
        config: dict[str, Any],
    ) -> EligibilityCondition | None:
        statuses = await self._eligible_statuses(context, config)
        if not statuses:
            logger.debug(
                "No eligible work statuses configured for job type, all workers eligible",
                extra={**self.log_extra, "job_id": context.job_id},
            )
            return None

        return EligibilityCondition(
            category=WS_CATEGORY,
            type=ConditionType.EXISTS,
            value=",".join(statuses),
            values=tuple(statuses),
        )
