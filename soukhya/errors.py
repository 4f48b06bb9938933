"""
Error taxonomy for the intake API

Every error carries a human readable message and optional structured details.
The handlers registered in main.py render them as {"error": ..., "details": ...}.
"""
from typing import Any, Optional


class IntakeError(Exception):
    """Base class for errors surfaced to API clients"""

    status_code = 500

    def __init__(self, message: str, details: Optional[Any] = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        body = {"error": self.message}
        if self.details is not None:
            body["details"] = self.details
        return body


class ValidationError(IntakeError):
    """Missing field, malformed id or wrong shape for a sub-collection"""

    status_code = 400


class UploadError(IntakeError):
    """File exceeds a limit, has a disallowed type or arrived on an unknown field"""

    status_code = 400


class NotFoundError(IntakeError):
    status_code = 404


class PersistenceError(IntakeError):
    """Database operation failed after validation passed"""

    status_code = 500
