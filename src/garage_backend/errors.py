"""Error taxonomy of the maintenance / attachment lifecycle.

Every error carries a stable ``error`` code and the HTTP status the API renders it
with (see ``error_handlers``). Absent and foreign-owned rows are both reported as
``NotFoundError``.
"""

from __future__ import annotations


class LifecycleError(Exception):
    error: str = "internal_error"
    status_code: int = 500

    def __init__(self, message: str, *, details: object | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details


class ValidationError(LifecycleError):
    """Input rejected before any remote call was made."""

    error = "validation_error"
    status_code = 422


class NotFoundError(LifecycleError):
    error = "not_found"
    status_code = 404


class StorageError(LifecycleError):
    """Object storage transport, quota or permission failure."""

    error = "storage_error"
    status_code = 502


class LedgerError(LifecycleError):
    """Attachment ledger write failed."""

    error = "ledger_error"
    status_code = 502
