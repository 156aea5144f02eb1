# dispatch_elig/core/facts.py
from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class EligibilityFact:
    """One denormalized ``(worker, category, value)`` row."""
    worker_id: str
    category: str
    value: str
