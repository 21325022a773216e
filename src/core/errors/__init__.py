"""
Error classification and exception hierarchy.

Provides:
- ErrorCategory enum for classifying errors
- TrackerError hierarchy for typed exceptions
- Classification utilities for error handling
"""

from core.errors.exceptions import (
    PermanentError,
    ThrottlingError,
    TrackerError,
    TransientError,
    classify_exception,
    classify_http_status,
    is_retryable_error,
    is_transient_error,
    wrap_exception,
)
from core.types import ErrorCategory

__all__ = [
    # Enums
    "ErrorCategory",
    # Base classes
    "TrackerError",
    "TransientError",
    "PermanentError",
    "ThrottlingError",
    # Classification utilities
    "is_transient_error",
    "is_retryable_error",
    "classify_http_status",
    "classify_exception",
    "wrap_exception",
]
