"""Habit recurrence, completion ledger, dependency graph and backlog reconciliation.

:class:`HabitService` is the entry point for callers; the component
modules are usable on their own for pure evaluation (``recurrence``,
``graph``, ``backlog.reconcile``).
"""

from habitledger.backlog import reconcile
from habitledger.errors import (
    ConfigError,
    ConflictIgnored,
    HabitLedgerError,
    NotFoundError,
    UpstreamUnavailable,
    ValidationError,
)
from habitledger.graph import DependencyGraph
from habitledger.recurrence import is_scheduled
from habitledger.service import HabitService
from habitledger.store import LedgerDB

__all__ = [
    "ConfigError",
    "ConflictIgnored",
    "DependencyGraph",
    "HabitLedgerError",
    "HabitService",
    "LedgerDB",
    "NotFoundError",
    "UpstreamUnavailable",
    "ValidationError",
    "is_scheduled",
    "reconcile",
]
