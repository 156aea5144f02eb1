"""Dispatch eligibility plugin engine."""

__version__ = "0.4.0"
