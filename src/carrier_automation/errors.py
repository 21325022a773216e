"""
Domain errors raised by the task tracker.

Each error carries the HTTP status and short code it maps to at the webhook
and query boundaries:

    ValidationError  400  MissingField | InvalidCarrier | InvalidStatus |
                          InvalidField | MalformedBody
    NotFoundError    404  NotFound
    ConflictError    409  Conflict (logged, never surfaced to the caller)
    StorageError     500  StorageError (transient)
"""

from core.errors.exceptions import PermanentError, TransientError


class ValidationError(PermanentError):
    """Inbound payload failed validation."""

    http_status = 400
    code = "ValidationError"

    MISSING_FIELD = "MissingField"
    INVALID_CARRIER = "InvalidCarrier"
    INVALID_STATUS = "InvalidStatus"
    INVALID_FIELD = "InvalidField"
    MALFORMED_BODY = "MalformedBody"


class NotFoundError(PermanentError):
    """Referenced submission does not exist."""

    http_status = 404
    code = "NotFound"


class ConflictError(PermanentError):
    """Terminal task received a contradicting terminal notification.

    The first terminal state wins; the second notification is absorbed.
    Only ever logged: the webhook answers a conflict with 200, so
    ``http_status`` is nominal and no 409 response exists.
    """

    http_status = 409
    code = "Conflict"


class StorageError(TransientError):
    """Persistence layer could not complete an operation."""

    http_status = 500
    code = "StorageError"


__all__ = [
    "ValidationError",
    "NotFoundError",
    "ConflictError",
    "StorageError",
]
