"""Error taxonomy surfaced by every ledger operation."""

from __future__ import annotations


class LedgerError(Exception):
    """Base class for failures reported to callers of the ledger."""


class NotConnected(LedgerError):
    """Raised when the store is closed or was never initialized."""


class NotFound(LedgerError, LookupError):
    """Raised when a referenced record does not resolve at operation time."""


class ValidationError(LedgerError, ValueError):
    """Raised when input violates a field constraint; nothing was written."""


class NotEditable(ValidationError):
    """Raised when a managed transaction is edited outside its owning entity."""


class WriteFailure(LedgerError):
    """Raised when the store rejected an atomic write; prior state is intact."""


__all__ = [
    "LedgerError",
    "NotConnected",
    "NotFound",
    "ValidationError",
    "NotEditable",
    "WriteFailure",
]
