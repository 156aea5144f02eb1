# dispatch_elig/core/conditions.py
"""
Eligibility condition algebra and its compiler.

Plugins describe what they require of a worker as an ``EligibilityCondition``
(plain data). ``compile_condition`` lowers each condition into a small
predicate tree, and the tree has two lowerings:

* ``to_sql``   -- correlated EXISTS sub-queries against the fact table,
                  used by the eligible-workers query and its SQL explain view
* ``evaluate`` -- in-memory evaluation against one worker's facts, used by
                  the single-worker eligibility check

Both lowerings share ``compile_condition``, so the two views of a condition
can never disagree about what it means.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Union

from dispatch_elig.infra.logging_config import get_logger

logger = get_logger(__name__)

FACT_TABLE = "worker_dispatch_elig_denorm"


class ConditionType(str, Enum):
    EXISTS = "exists"
    NOT_EXISTS = "not_exists"
    EXISTS_OR_NONE = "exists_or_none"
    NOT_EXISTS_CATEGORY = "not_exists_category"
    EXISTS_ALL = "exists_all"
    NOT_EXISTS_UNLESS_EXISTS = "not_exists_unless_exists"


@dataclass(frozen=True)
class EligibilityCondition:
    """
    What one plugin requires of a worker for one job.

    ``values`` is used by ``exists_all`` (every value required) and by
    ``exists`` (any one of the values suffices). ``unless_category`` /
    ``unless_value`` name the exemption fact of ``not_exists_unless_exists``.
    """
    category: str
    type: Union[ConditionType, str]
    value: str = ""
    values: tuple[str, ...] | None = None
    unless_category: str | None = None
    unless_value: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "category": self.category,
            "type": self.type.value if isinstance(self.type, ConditionType) else self.type,
            "value": self.value,
        }
        if self.values is not None:
            data["values"] = list(self.values)
        if self.unless_category is not None:
            data["unlessCategory"] = self.unless_category
        if self.unless_value is not None:
            data["unlessValue"] = self.unless_value
        return data


@dataclass(frozen=True)
class EligibilityQueryContext:
    job_id: str
    employer_id: str
    job_type_id: str | None


@dataclass(frozen=True)
class AppliedCondition:
    plugin_id: str
    condition: EligibilityCondition

    def to_dict(self) -> dict[str, Any]:
        return {"pluginId": self.plugin_id, "condition": self.condition.to_dict()}


# ---------------------------------------------------------------------------
# Predicate tree
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class FactExists:
    """
    Worker has a fact in ``category``. ``value`` narrows to one value,
    ``values`` to any of several; with neither, any row in the category.
    """
    category: str
    value: str | None = None
    values: tuple[str, ...] | None = None


@dataclass(frozen=True)
class Not:
    operand: "Predicate"


@dataclass(frozen=True)
class And:
    operands: tuple["Predicate", ...]


@dataclass(frozen=True)
class Or:
    operands: tuple["Predicate", ...]


@dataclass(frozen=True)
class Always:
    pass


@dataclass(frozen=True)
class SiriusIdIs:
    sirius_id: int


@dataclass(frozen=True)
class DisplayNameContains:
    text: str


@dataclass(frozen=True)
class NotDispatchedTo:
    job_id: str


Predicate = Union[FactExists, Not, And, Or, Always, SiriusIdIs, DisplayNameContains, NotDispatchedTo]

ALWAYS = Always()


def compile_condition(condition: EligibilityCondition) -> Predicate:
    """Lower one condition to a predicate. Unknown types fail open."""
    try:
        ctype = ConditionType(condition.type)
    except ValueError:
        logger.warning(
            f"Unknown condition type: {condition.type}",
            extra={"category": condition.category},
        )
        return ALWAYS

    category = condition.category

    if ctype is ConditionType.EXISTS:
        if condition.values:
            return FactExists(category, values=tuple(condition.values))
        return FactExists(category, value=condition.value)

    if ctype is ConditionType.NOT_EXISTS:
        return Not(FactExists(category, value=condition.value))

    if ctype is ConditionType.EXISTS_OR_NONE:
        return Or((
            FactExists(category, value=condition.value),
            Not(FactExists(category)),
        ))

    if ctype is ConditionType.NOT_EXISTS_CATEGORY:
        return Not(FactExists(category))

    if ctype is ConditionType.EXISTS_ALL:
        values = condition.values or ()
        if not values:
            return ALWAYS
        return And(tuple(FactExists(category, value=v) for v in values))

    # NOT_EXISTS_UNLESS_EXISTS: the exemption overrides the block
    blocked = Not(FactExists(category, value=condition.value))
    if not condition.unless_category:
        return blocked
    return Or((
        blocked,
        FactExists(condition.unless_category, value=condition.unless_value),
    ))


def compile_conditions(applied: list[AppliedCondition]) -> list[Predicate]:
    return [compile_condition(a.condition) for a in applied]


def conjunction(predicates: list[Predicate]) -> Predicate:
    """AND together, dropping always-true terms."""
    terms = tuple(p for p in predicates if not isinstance(p, Always))
    if not terms:
        return ALWAYS
    if len(terms) == 1:
        return terms[0]
    return And(terms)


# ---------------------------------------------------------------------------
# SQL lowering
# ---------------------------------------------------------------------------

class SqlParams:
    """Collects bind parameters and hands out asyncpg ``$n`` placeholders."""

    def __init__(self) -> None:
        self.values: list[Any] = []

    def add(self, value: Any) -> str:
        self.values.append(value)
        return f"${len(self.values)}"


def escape_like(text: str) -> str:
    return text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def to_sql(predicate: Predicate, params: SqlParams, worker_ref: str = "w.id") -> str:
    """Render a predicate as a SQL boolean expression over ``workers w`` / ``contacts c``."""
    if isinstance(predicate, Always):
        return "TRUE"

    if isinstance(predicate, FactExists):
        clauses = [
            f"e.worker_id = {worker_ref}",
            f"e.category = {params.add(predicate.category)}",
        ]
        if predicate.values is not None:
            clauses.append(f"e.value = ANY({params.add(list(predicate.values))}::text[])")
        elif predicate.value is not None:
            clauses.append(f"e.value = {params.add(predicate.value)}")
        return f"EXISTS (SELECT 1 FROM {FACT_TABLE} e WHERE {' AND '.join(clauses)})"

    if isinstance(predicate, Not):
        return f"NOT {to_sql(predicate.operand, params, worker_ref)}"

    if isinstance(predicate, And):
        if not predicate.operands:
            return "TRUE"
        return "(" + " AND ".join(to_sql(p, params, worker_ref) for p in predicate.operands) + ")"

    if isinstance(predicate, Or):
        if not predicate.operands:
            return "FALSE"
        return "(" + " OR ".join(to_sql(p, params, worker_ref) for p in predicate.operands) + ")"

    if isinstance(predicate, SiriusIdIs):
        return f"w.sirius_id = {params.add(predicate.sirius_id)}"

    if isinstance(predicate, DisplayNameContains):
        return f"c.display_name ILIKE {params.add('%' + escape_like(predicate.text) + '%')}"

    if isinstance(predicate, NotDispatchedTo):
        return (
            "NOT EXISTS (SELECT 1 FROM dispatches d "
            f"WHERE d.worker_id = {worker_ref} AND d.job_id = {params.add(predicate.job_id)})"
        )

    raise TypeError(f"Unsupported predicate: {predicate!r}")


ELIGIBLE_WORKERS_FROM = "FROM workers w INNER JOIN contacts c ON c.id = w.contact_id"
ELIGIBLE_WORKERS_ORDER = "ORDER BY c.display_name, w.id"


def build_page_sql(predicate: Predicate, limit: int, offset: int) -> tuple[str, list[Any]]:
    params = SqlParams()
    where = to_sql(predicate, params)
    sql = (
        f"SELECT w.id, w.sirius_id, c.display_name {ELIGIBLE_WORKERS_FROM} "
        f"WHERE {where} {ELIGIBLE_WORKERS_ORDER} "
        f"LIMIT {params.add(limit)} OFFSET {params.add(offset)}"
    )
    return sql, params.values


def build_count_sql(predicate: Predicate) -> tuple[str, list[Any]]:
    params = SqlParams()
    where = to_sql(predicate, params)
    return f"SELECT count(*)::int AS total {ELIGIBLE_WORKERS_FROM} WHERE {where}", params.values


def build_position_sql(predicate: Predicate, worker_id: str) -> tuple[str, list[Any]]:
    """1-based rank of one worker within the ordered eligible list."""
    params = SqlParams()
    where = to_sql(predicate, params)
    sql = (
        "SELECT ranked.position, ranked.total FROM ("
        f"SELECT w.id, row_number() OVER ({ELIGIBLE_WORKERS_ORDER}) AS position, "
        f"count(*) OVER ()::int AS total {ELIGIBLE_WORKERS_FROM} WHERE {where}"
        f") ranked WHERE ranked.id = {params.add(worker_id)}"
    )
    return sql, params.values


# ---------------------------------------------------------------------------
# In-memory lowering
# ---------------------------------------------------------------------------

@dataclass
class WorkerSnapshot:
    """Everything a predicate can test about one worker."""
    worker_id: str
    facts: set[tuple[str, str]] = field(default_factory=set)
    sirius_id: int | None = None
    display_name: str = ""
    dispatched_job_ids: set[str] = field(default_factory=set)


def evaluate(predicate: Predicate, worker: WorkerSnapshot) -> bool:
    if isinstance(predicate, Always):
        return True

    if isinstance(predicate, FactExists):
        for category, value in worker.facts:
            if category != predicate.category:
                continue
            if predicate.values is not None:
                if value in predicate.values:
                    return True
            elif predicate.value is None or value == predicate.value:
                return True
        return False

    if isinstance(predicate, Not):
        return not evaluate(predicate.operand, worker)

    if isinstance(predicate, And):
        return all(evaluate(p, worker) for p in predicate.operands)

    if isinstance(predicate, Or):
        return any(evaluate(p, worker) for p in predicate.operands)

    if isinstance(predicate, SiriusIdIs):
        return worker.sirius_id == predicate.sirius_id

    if isinstance(predicate, DisplayNameContains):
        return predicate.text.casefold() in (worker.display_name or "").casefold()

    if isinstance(predicate, NotDispatchedTo):
        return predicate.job_id not in worker.dispatched_job_ids

    raise TypeError(f"Unsupported predicate: {predicate!r}")


def explain(condition: EligibilityCondition, passed: bool) -> str:
    """One-line human explanation of a condition outcome for one worker."""
    category = condition.category
    ctype = condition.type.value if isinstance(condition.type, ConditionType) else condition.type

    if ctype == ConditionType.EXISTS.value:
        wanted = " or ".join(condition.values) if condition.values else condition.value
        return (f"Has {category} entry {wanted}" if passed
                else f"Missing required {category} entry {wanted}")
    if ctype == ConditionType.NOT_EXISTS.value:
        return (f"No {category} entry for {condition.value}" if passed
                else f"Blocked by {category} entry for {condition.value}")
    if ctype == ConditionType.EXISTS_OR_NONE.value:
        return (f"No conflicting {category} entries" if passed
                else f"Has {category} entries, none for {condition.value}")
    if ctype == ConditionType.NOT_EXISTS_CATEGORY.value:
        return f"No {category} entries" if passed else f"Has {category} entries"
    if ctype == ConditionType.EXISTS_ALL.value:
        wanted = ", ".join(condition.values or ())
        return (f"Has all required {category} entries ({wanted})" if passed
                else f"Missing one or more required {category} entries ({wanted})")
    if ctype == ConditionType.NOT_EXISTS_UNLESS_EXISTS.value:
        return (f"No blocking {category} entry for {condition.value}, or exempt via "
                f"{condition.unless_category} {condition.unless_value}" if passed
                else f"Blocked by {category} entry for {condition.value}")
    return f"Unknown condition type {ctype}; not applied"
