"""
Domain errors raised by the storage layer and route handlers.

Each error carries the HTTP status it maps to; the handlers registered in
main.py render them as {"error": "<message>"}.
"""

from fastapi import status


class CRMError(Exception):
    """Base class for errors that are reported to the client."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(CRMError):
    """A required field is missing or the request carries nothing to apply."""

    status_code = status.HTTP_400_BAD_REQUEST


class NotFoundError(CRMError):
    status_code = status.HTTP_404_NOT_FOUND


class StorageError(CRMError):
    """
    Any failure reported by the database: constraint violations, I/O errors,
    missing tables.
    """

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR


def require_fields(payload, *names: str) -> None:
    """
    Raise ValidationError unless every named attribute of payload is truthy.

    Empty strings and zero count as missing, so amount=0 is rejected.
    """
    missing = [name for name in names if not getattr(payload, name, None)]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")
