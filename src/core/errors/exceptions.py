"""
Unified exception hierarchy for the submission tracker.

Provides typed exceptions with retry classification and an HTTP status so
that every failure can be surfaced as a status code at the service boundary.
"""

# Import ErrorCategory from canonical source to avoid duplicate enum issues
# (comparing enums from different classes always returns False)
from core.types import ErrorCategory


class TrackerError(Exception):
    """
    Base exception for all tracker errors.

    Attributes:
        message: Human-readable error description
        category: Error classification for retry decisions
        http_status: Status code used when the error reaches an HTTP boundary
        code: Short machine-readable error code (e.g. "MissingField")
        cause: Original exception if wrapping
        context: Additional context dict for debugging
    """

    category: ErrorCategory = ErrorCategory.UNKNOWN
    http_status: int = 500
    code: str = "InternalError"

    def __init__(
        self,
        message: str,
        cause: Exception | None = None,
        context: dict | None = None,
        code: str | None = None,
    ):
        self.message = message
        self.cause = cause
        self.context = context or {}
        if code is not None:
            self.code = code
        super().__init__(message)

    @property
    def is_retryable(self) -> bool:
        return self.category in (
            ErrorCategory.TRANSIENT,
            ErrorCategory.UNKNOWN,
        )

    def __str__(self) -> str:
        parts = [self.message]
        if self.cause:
            parts.append(f"Caused by: {self.cause}")
        return " | ".join(parts)


# =============================================================================
# Transient Errors
# =============================================================================


class TransientError(TrackerError):
    """Base class for transient/retriable errors."""

    category = ErrorCategory.TRANSIENT
    http_status = 503
    code = "Unavailable"


class ThrottlingError(TransientError):
    """Rate limited (429) - should back off."""

    http_status = 429
    code = "Throttled"

    def __init__(
        self,
        message: str,
        retry_after: float | None = None,
        cause: Exception | None = None,
        context: dict | None = None,
    ):
        super().__init__(message, cause, context)
        self.retry_after = retry_after  # Seconds to wait if provided


# =============================================================================
# Permanent Errors (Don't Retry)
# =============================================================================


class PermanentError(TrackerError):
    """Base class for permanent/non-retriable errors."""

    category = ErrorCategory.PERMANENT
    http_status = 400
    code = "BadRequest"


# =============================================================================
# Error Classification Utilities
# =============================================================================

TRANSIENT_ERROR_MARKERS = frozenset(
    {
        "429",
        "503",
        "502",
        "504",
        "timeout",
        "timed out",
        "connection",
        "database is locked",
        "database is busy",
        "temporarily unavailable",
        "service unavailable",
    }
)


def is_transient_error(exc: Exception) -> bool:
    """
    Check if exception is transient (retriable).

    Returns True if this is a transient error that may succeed on retry.
    """
    if isinstance(exc, TrackerError):
        return exc.category == ErrorCategory.TRANSIENT

    error_str = str(exc).lower()
    return any(marker in error_str for marker in TRANSIENT_ERROR_MARKERS)


def is_retryable_error(exc: Exception) -> bool:
    """
    Check if exception should be retried.

    Retryable errors include:
    - Transient errors (connection, timeout, locked database, 5xx)
    - Unknown errors (conservative retry)

    Non-retryable:
    - Permanent errors (404, validation)
    """
    if isinstance(exc, TrackerError):
        return exc.is_retryable

    category = classify_exception(exc)
    return category in (ErrorCategory.TRANSIENT, ErrorCategory.UNKNOWN)


def classify_http_status(status_code: int) -> ErrorCategory:
    """Classify HTTP status code into error category."""
    if 200 <= status_code < 300:
        return ErrorCategory.UNKNOWN  # Not an error

    if status_code in (408, 429):
        return ErrorCategory.TRANSIENT

    if 400 <= status_code < 500:
        return ErrorCategory.PERMANENT  # Client errors, won't fix with retry

    if status_code >= 500:
        return ErrorCategory.TRANSIENT  # Server errors, may recover

    return ErrorCategory.UNKNOWN


def classify_exception(exc: Exception) -> ErrorCategory:
    """Classify an exception into error category."""
    if isinstance(exc, TrackerError):
        return exc.category

    # Builtin timeouts and connection failures (aiohttp's client errors
    # subclass these as well)
    if isinstance(exc, (TimeoutError, ConnectionError)):
        return ErrorCategory.TRANSIENT

    exc_type = type(exc).__name__.lower()
    exc_str = str(exc).lower()

    connection_markers = (
        "connectionerror",
        "clientconnectorerror",
        "serverdisconnectederror",
        "connection refused",
        "connection reset",
        "broken pipe",
    )
    if any(m in exc_type or m in exc_str for m in connection_markers):
        return ErrorCategory.TRANSIENT

    if "timeout" in exc_type or is_transient_error(exc):
        return ErrorCategory.TRANSIENT

    if "404" in exc_str or "not found" in exc_str:
        return ErrorCategory.PERMANENT

    if isinstance(exc, (ValueError, TypeError, KeyError)):
        return ErrorCategory.PERMANENT

    return ErrorCategory.UNKNOWN


def wrap_exception(
    exc: Exception,
    default_class: type = TrackerError,
    context: dict | None = None,
) -> TrackerError:
    """Wrap a generic exception in appropriate TrackerError subclass."""
    if isinstance(exc, TrackerError):
        if context:
            exc.context.update(context)
        return exc

    category = classify_exception(exc)
    exc_str = str(exc).lower()
    context = context or {}

    if "timeout" in exc_str or isinstance(exc, TimeoutError):
        context["error_type"] = "timeout"
    elif "locked" in exc_str:
        context["error_type"] = "locked"
    elif "429" in exc_str:
        context["error_type"] = "throttling"

    if category == ErrorCategory.TRANSIENT:
        if "429" in exc_str:
            return ThrottlingError(str(exc), cause=exc, context=context)
        return TransientError(str(exc), cause=exc, context=context)

    if category == ErrorCategory.PERMANENT:
        return PermanentError(str(exc), cause=exc, context=context)

    return default_class(str(exc), cause=exc, context=context)
