"""
Error kinds surfaced by identity resolution and the assignment store.

Each error carries the HTTP status the API layer answers with, so a single
exception handler can translate the whole hierarchy.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class HomeworkError(Exception):
    """Base class for errors reported back to the caller."""

    status_code = 500

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.message}


class Unauthenticated(HomeworkError):
    """No bearer credential, or the identity provider rejected it."""

    status_code = 401


class ValidationError(HomeworkError):
    """A payload is missing required fields or has the wrong shape."""

    status_code = 400

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field

    def to_dict(self) -> Dict[str, Any]:
        payload = super().to_dict()
        if self.field is not None:
            payload["field"] = self.field
        return payload


class NotFound(HomeworkError):
    """The record does not exist in the caller's own scope."""

    status_code = 404


class PersistenceFailure(HomeworkError):
    """The underlying storage operation failed. Details are only logged."""

    status_code = 500
