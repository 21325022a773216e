"""
Resilience patterns module.

Components:
    - RetryConfig: Exponential backoff configuration with equal jitter
    - @with_retry_async decorator: Retry coroutines on transient errors
"""

from .retry import (
    DEFAULT_RETRY,
    STORE_READ_RETRY,
    RetryConfig,
    with_retry_async,
)

__all__ = [
    "RetryConfig",
    "with_retry_async",
    "DEFAULT_RETRY",
    "STORE_READ_RETRY",
]
