"""Error taxonomy shared by the engine and its store."""

from __future__ import annotations


class HabitLedgerError(Exception):
    """Base class for all habitledger errors."""


class ValidationError(HabitLedgerError):
    """Raised on a malformed frequency set, date key, link type or field value."""


class ConflictIgnored(HabitLedgerError):
    """Raised by the store when an insert hits a unique constraint.

    Idempotent paths (toggle-on, skip) catch this and treat it as success.
    It never escapes the service layer.
    """


class NotFoundError(HabitLedgerError):
    """Raised when a referenced habit, link or completion does not exist."""


class UpstreamUnavailable(HabitLedgerError):
    """Raised when the backing store cannot be reached or is locked."""


class ConfigError(HabitLedgerError):
    """Raised when config is invalid or missing."""
