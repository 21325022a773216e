"""
Core types used across modules.

This module provides base enums shared across the core library to ensure
consistency and type safety.
"""

from enum import Enum


class ErrorCategory(Enum):
    """
    Classification of error types for handling decisions.

    Categories:
        TRANSIENT: Temporary failures that are safe to retry with backoff
                   (e.g., a locked SQLite database, 5xx from a status endpoint)
        PERMANENT: Non-retriable failures that won't succeed on retry
                   (e.g., malformed webhook payloads, unknown submissions)
        UNKNOWN: Unclassified errors, may retry conservatively
    """

    TRANSIENT = "transient"
    PERMANENT = "permanent"
    UNKNOWN = "unknown"


__all__ = [
    "ErrorCategory",
]
