"""
Error taxonomy shared by the store, the import merger and the sync engine.

Every error carries a stable `code` (the envelope's `error` key) and the HTTP
status the API layer answers with.
"""
from __future__ import annotations

from typing import Any, Dict, Optional


class AppError(Exception):
    code = "app_error"
    status_code = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details: Dict[str, Any] = dict(details or {})


class ValidationError(AppError):
    """Malformed input to a store operation (empty name, dimension below floor)."""

    code = "validation_error"
    status_code = 400


class StaleDraftError(ValidationError):
    """A settings draft was opened for a series that is no longer active."""

    code = "stale_draft"
    status_code = 409


class NotFoundError(AppError):
    code = "not_found"
    status_code = 404


class FormatError(AppError):
    """Imported or downloaded JSON does not match any known document shape."""

    code = "format_error"
    status_code = 400


class PersistenceError(AppError):
    """The local storage write failed; the mutation is still held in memory."""

    code = "persistence_error"
    status_code = 503


class TransportError(AppError):
    """Remote blob store read/write failed."""

    code = "transport_error"
    status_code = 502


class AuthError(TransportError):
    code = "auth_error"
    status_code = 401
