# dispatch_elig/core/models.py
"""
Pydantic models for eligibility configuration and query results.

They live in core (not transport) so the service returns the same objects
the HTTP layer serializes. Field names are snake_case in Python and
camelCase on the wire (``model_dump(by_alias=True)``).
"""
from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Job type configuration
# ---------------------------------------------------------------------------

class EligibilityPluginConfig(CamelModel):
    """One entry of a job type's ``data.eligibility`` list."""

    plugin_id: str = Field(..., min_length=1)
    enabled: bool = False
    config: dict[str, Any] = Field(default_factory=dict)

    @field_validator("config", mode="before")
    @classmethod
    def config_none_is_empty(cls, v: Any) -> Any:
        return {} if v is None else v


class EligibleWorkersFilters(CamelModel):
    sirius_id: int | None = None
    name: str | None = None
    exclude_with_dispatches: bool = False

    @field_validator("name")
    @classmethod
    def blank_name_is_none(cls, v: str | None) -> str | None:
        if v is None:
            return None
        v = v.strip()
        return v or None


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------

class EligibleWorker(CamelModel):
    id: str
    sirius_id: int
    display_name: str


class EligibleWorkersResult(CamelModel):
    workers: list[EligibleWorker] = Field(default_factory=list)
    total: int = 0
    applied_conditions: list[dict[str, Any]] = Field(default_factory=list)


class EligibleWorkersSqlResult(CamelModel):
    sql: str
    params: list[Any] = Field(default_factory=list)
    applied_conditions: list[dict[str, Any]] = Field(default_factory=list)


class PluginCheckResult(CamelModel):
    plugin_id: str
    plugin_name: str
    passed: bool
    explanation: str
    condition: dict[str, Any] | None = None


class WorkerEligibilityCheckResult(CamelModel):
    """Single-worker eligibility for one job, with per-plugin outcomes."""

    worker_id: str
    worker_name: str
    worker_sirius_id: int
    is_eligible: bool
    seniority_position: int | None = None
    total_eligible: int | None = None
    plugin_results: list[PluginCheckResult] = Field(default_factory=list)
