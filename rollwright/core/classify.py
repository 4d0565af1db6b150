"""
Rollwright Core - Error classification.

Maps any exception to a recovery category, and each category to operator
hints. Rollwright's own exceptions are classified by type; foreign exceptions
fall back to message patterns.
"""

from __future__ import annotations

import asyncio

from rollwright.core.exceptions import (
    CapacityError,
    CircuitOpenError,
    PermanentError,
    RollbackError,
    TransientError,
)
from rollwright.core.types import ErrorKind

# Checked in order; the first matching kind wins
_MESSAGE_PATTERNS: list[tuple[ErrorKind, tuple[str, ...]]] = [
    (
        ErrorKind.PERMANENT,
        (
            "syntax",
            "compile",
            "module not found",
            "invalid configuration",
            "unauthorized",
            "forbidden",
            "credential",
            "validation",
        ),
    ),
    (
        ErrorKind.TRANSIENT,
        (
            "timeout",
            "timed out",
            "econnrefused",
            "econnreset",
            "enotfound",
            "etimedout",
            "connection",
            "network",
            "rate limit",
            "429",
            "503",
            "502",
            "fetch failed",
        ),
    ),
    (ErrorKind.CAPACITY, ("pool exhausted", "no available", "too many connections")),
]

_SUGGESTIONS: dict[ErrorKind, list[str]] = {
    ErrorKind.TRANSIENT: [
        "Check connectivity to the platform API",
        "Retry the failed targets only; succeeded targets need no redeploy",
        "Raise max_retries or base_delay if the platform is rate limiting",
    ],
    ErrorKind.CAPACITY: [
        "Increase max_pool_size or acquire_timeout",
        "Lower coordinator max_concurrency",
    ],
    ErrorKind.PERMANENT: [
        "Fix the reported configuration, credential or artifact error",
        "Retrying without a change will fail the same way",
    ],
    ErrorKind.CIRCUIT_OPEN: [
        "The operation failed repeatedly and calls are paused",
        "Wait for circuit_breaker_timeout or reset the circuit",
    ],
    ErrorKind.ROLLBACK: [
        "The target may be left in a broken state",
        "Inspect the target and restore it manually from the last rollback point",
    ],
    ErrorKind.UNKNOWN: [
        "Check the error message for details",
        "Run with verbose logging for the full trace",
    ],
}


def classify_error(error: BaseException) -> ErrorKind:
    """
    Classify an exception by recovery policy.

    Args:
        error: Any exception

    Returns:
        The ErrorKind that governs how it is handled.
    """
    if isinstance(error, CircuitOpenError):
        return ErrorKind.CIRCUIT_OPEN
    if isinstance(error, RollbackError):
        return ErrorKind.ROLLBACK
    if isinstance(error, PermanentError):
        return ErrorKind.PERMANENT
    if isinstance(error, CapacityError):
        return ErrorKind.CAPACITY
    if isinstance(error, TransientError):
        return ErrorKind.TRANSIENT
    if isinstance(error, (asyncio.TimeoutError, TimeoutError, ConnectionError, OSError)):
        return ErrorKind.TRANSIENT

    message = str(error).lower()
    for kind, patterns in _MESSAGE_PATTERNS:
        if any(p in message for p in patterns):
            return kind
    return ErrorKind.UNKNOWN


def is_retryable(error: BaseException) -> bool:
    """Whether the resilience executor may retry after this error."""
    return classify_error(error) not in (
        ErrorKind.PERMANENT,
        ErrorKind.ROLLBACK,
        ErrorKind.CIRCUIT_OPEN,
    )


def recovery_suggestions(kind: ErrorKind) -> list[str]:
    """Operator hints for an error category."""
    return list(_SUGGESTIONS.get(kind, _SUGGESTIONS[ErrorKind.UNKNOWN]))
