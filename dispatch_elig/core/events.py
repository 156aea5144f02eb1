# dispatch_elig/core/events.py
"""
In-process async event bus and the domain events the eligibility engine
listens to.

Every event consumed by an eligibility plugin carries a ``worker_id``.
Payloads cross module boundaries untyped, so consumers still check for it
at runtime (see ``has_worker_id``).
"""
from __future__ import annotations

import asyncio
import itertools
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import Any, Awaitable, Callable

from dispatch_elig.infra.logging_config import get_logger
from dispatch_elig.infra.metrics import inc_counter

logger = get_logger(__name__)


class EventType(str, Enum):
    DISPATCH_SAVED = "dispatch.saved"
    DISPATCH_DNC_SAVED = "dispatch.dnc.saved"
    DISPATCH_HFE_SAVED = "dispatch.hfe.saved"
    DISPATCH_STATUS_SAVED = "dispatch.status.saved"
    DISPATCH_EBA_SAVED = "dispatch.eba.saved"
    WORKER_SKILL_SAVED = "worker.skill.saved"
    WORKER_WS_CHANGED = "worker.ws.changed"
    WORKER_BAN_SAVED = "worker.ban.saved"


# ---------------------------------------------------------------------------
# Payloads
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class WorkerEventPayload:
    """Base for every payload that can trigger an eligibility recompute."""
    worker_id: str


@dataclass(frozen=True)
class DispatchSavedPayload(WorkerEventPayload):
    dispatch_id: str = ""
    job_id: str = ""
    status: str = ""
    previous_status: str | None = None


@dataclass(frozen=True)
class DispatchDncSavedPayload(WorkerEventPayload):
    dnc_id: str = ""
    employer_id: str = ""
    type: str = ""
    is_deleted: bool = False


@dataclass(frozen=True)
class DispatchHfeSavedPayload(WorkerEventPayload):
    hfe_id: str = ""
    employer_id: str = ""
    hold_until: date | None = None
    is_deleted: bool = False


@dataclass(frozen=True)
class DispatchStatusSavedPayload(WorkerEventPayload):
    status_id: str = ""
    status: str = ""


@dataclass(frozen=True)
class DispatchEbaSavedPayload(WorkerEventPayload):
    eba_id: str = ""
    ymd: str = ""
    is_deleted: bool = False


@dataclass(frozen=True)
class WorkerSkillSavedPayload(WorkerEventPayload):
    worker_skill_id: str = ""
    skill_id: str = ""
    is_deleted: bool = False


@dataclass(frozen=True)
class WorkerWsChangedPayload(WorkerEventPayload):
    ws_id: str | None = None
    previous_ws_id: str | None = None


@dataclass(frozen=True)
class WorkerBanSavedPayload(WorkerEventPayload):
    ban_id: str = ""
    is_deleted: bool = False


def has_worker_id(payload: Any) -> bool:
    """True if the payload (dataclass or mapping) carries a worker id field."""
    if payload is None:
        return False
    if isinstance(payload, Mapping):
        return "worker_id" in payload or "workerId" in payload
    return hasattr(payload, "worker_id")


def worker_id_of(payload: Any) -> str:
    """Default worker id extractor for dataclass and mapping payloads."""
    if isinstance(payload, Mapping):
        return payload["worker_id"] if "worker_id" in payload else payload["workerId"]
    return payload.worker_id


# ---------------------------------------------------------------------------
# Bus
# ---------------------------------------------------------------------------

EventHandler = Callable[[Any], Awaitable[None]]


@dataclass
class _RegisteredHandler:
    id: str
    event: EventType
    handler: EventHandler


class EventBus:
    """
    Fan-out pub/sub. ``emit`` runs every handler for the event type
    concurrently; a failing handler is logged and never affects the
    others or the emitter.
    """

    def __init__(self) -> None:
        self._handlers: dict[EventType, list[_RegisteredHandler]] = {}
        self._ids = itertools.count(1)

    def on(self, event: EventType, handler: EventHandler) -> str:
        handler_id = f"handler_{next(self._ids)}"
        self._handlers.setdefault(event, []).append(
            _RegisteredHandler(id=handler_id, event=event, handler=handler)
        )
        logger.debug(f"Event handler registered: {handler_id} for {event.value}")
        return handler_id

    def off(self, handler_id: str) -> bool:
        for handlers in self._handlers.values():
            for i, registered in enumerate(handlers):
                if registered.id == handler_id:
                    del handlers[i]
                    logger.debug(f"Event handler unregistered: {handler_id}")
                    return True
        return False

    async def emit(self, event: EventType, payload: Any) -> None:
        handlers = list(self._handlers.get(event, []))

        if not handlers:
            logger.debug(f"No handlers for event: {event.value}")
            return

        logger.debug(f"Emitting event: {event.value} to {len(handlers)} handler(s)")

        results = await asyncio.gather(
            *(registered.handler(payload) for registered in handlers),
            return_exceptions=True,
        )

        failures = 0
        for registered, result in zip(handlers, results):
            if isinstance(result, BaseException):
                failures += 1
                logger.error(
                    f"Event handler {registered.id} failed for {event.value}: {result}",
                    exc_info=result,
                    extra={"event": event.value},
                )
                inc_counter("event_handler_failed", event=event.value)

        if failures:
            logger.warning(f"{failures}/{len(handlers)} handlers failed for event: {event.value}")

    def handler_count(self, event: EventType | None = None) -> int:
        if event is not None:
            return len(self._handlers.get(event, []))
        return sum(len(h) for h in self._handlers.values())
