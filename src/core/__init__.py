"""
Core library: Reusable, domain-agnostic components.

Modules:
    resilience  - Retry with exponential backoff and jitter
    logging     - Structured JSON logging with context propagation
    errors      - Error classification and exception hierarchy

Design Principles:
    - No dependencies on a specific storage backend or web framework
    - All modules are independently testable
    - Async-first where applicable
"""

from .types import ErrorCategory

__version__ = "0.1.0"

__all__ = [
    "ErrorCategory",
]
