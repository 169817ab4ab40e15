# Overview: Domain error taxonomy shared by services and routes.

"""
Rentals error taxonomy.

Every domain failure raised by the service layer is a RentalsError subclass
carrying the HTTP status the routes translate it to. Routes never inspect
messages; they use `status_code` and `code`.

TERMINAL (surfaced verbatim, never retried):
- Unauthorized, Forbidden, ResourceNotFound, NoChangesDetected,
  AlreadyReviewed, ValidationError

RECOVERABLE (depending on where it is raised):
- StorageError: swallowed per item for blob deletes and for reconciliation
  persistence; surfaced for uploads.
"""

from __future__ import annotations


class RentalsError(Exception):
    """Base class for domain errors."""

    status_code = 400
    code = "error"
    default_message = "Request failed"

    def __init__(self, message: str | None = None, **details):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message
        self.details = details

    def to_dict(self) -> dict:
        payload = {"error": self.message, "code": self.code}
        if self.details:
            payload["details"] = self.details
        return payload


class Unauthorized(RentalsError):
    status_code = 401
    code = "unauthorized"
    default_message = "Authentication required"


class Forbidden(RentalsError):
    status_code = 403
    code = "forbidden"
    default_message = "Permission denied"


class ResourceNotFound(RentalsError):
    status_code = 404
    code = "not_found"
    default_message = "Resource not found"


class ValidationError(RentalsError):
    """400-level input problem."""

    status_code = 400
    code = "validation_error"
    default_message = "Invalid input"


class NoChangesDetected(RentalsError):
    status_code = 400
    code = "no_changes"
    default_message = "No changes detected. Modify at least one field before submitting for approval."


class AlreadyReviewed(RentalsError):
    status_code = 409
    code = "already_reviewed"
    default_message = "Approval request has already been reviewed"

    def __init__(self, status: str | None = None):
        message = None
        if status in ("approved", "rejected"):
            message = f"Approval request has already been {status}"
        details = {"status": status} if status else {}
        super().__init__(message, **details)
        self.status = status


class StorageError(RentalsError):
    """Upload, delete or persistence failure in an external store."""

    status_code = 502
    code = "storage_error"
    default_message = "Storage operation failed"

    def __init__(self, message: str | None = None, *, partial=None, **details):
        super().__init__(message, **details)
        # Work completed before the failure (e.g. files uploaded earlier in a batch)
        self.partial = partial
