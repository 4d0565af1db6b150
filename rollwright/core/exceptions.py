"""
Core Exceptions - Unified error hierarchy for Rollwright.

Each family maps to one recovery policy:
transient errors are retried, capacity errors are surfaced to the caller,
permanent errors fail fast, rollback errors are always fatal.
"""

from __future__ import annotations

from typing import Any


class RollwrightError(Exception):
    """Base exception for all Rollwright errors."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | {self.details}"
        return self.message


# =============================================================================
# Transient Errors (retried)
# =============================================================================

class TransientError(RollwrightError):
    """Failure that may succeed on retry (network, 5xx, non-zero exit)."""
    pass


class RateLimitError(TransientError):
    """Remote API answered 429."""

    def __init__(self, message: str = "Rate limited by remote API", retry_after: float | None = None):
        super().__init__(message, {"retry_after": retry_after})
        self.retry_after = retry_after


class AttemptTimeoutError(TransientError):
    """A single attempt exceeded its deadline."""

    def __init__(self, operation_id: str, timeout: float):
        super().__init__(
            f"Operation '{operation_id}' timed out after {timeout}s",
            {"operation_id": operation_id, "timeout": timeout}
        )
        self.operation_id = operation_id
        self.timeout = timeout


class PhaseTimeoutError(TransientError):
    """A deployment phase exceeded its deadline."""

    def __init__(self, target_id: str, phase: str, timeout: float):
        super().__init__(
            f"Phase '{phase}' of '{target_id}' timed out after {timeout}s",
            {"target_id": target_id, "phase": phase, "timeout": timeout}
        )
        self.target_id = target_id
        self.phase = phase
        self.timeout = timeout


class QueryTimeoutError(TransientError):
    """Data-store query exceeded its deadline."""

    def __init__(self, resource_name: str, timeout: float):
        super().__init__(
            f"Query on '{resource_name}' timed out after {timeout}s",
            {"resource_name": resource_name, "timeout": timeout}
        )
        self.resource_name = resource_name
        self.timeout = timeout


class RemoteCommandError(TransientError):
    """Deployment tool returned non-zero exit code."""

    def __init__(self, command: str, exit_code: int, stderr: str = ""):
        super().__init__(
            f"Command '{command}' failed with exit code {exit_code}",
            {"command": command, "exit_code": exit_code, "stderr": stderr}
        )
        self.command = command
        self.exit_code = exit_code
        self.stderr = stderr


# =============================================================================
# Capacity Errors (not retried by the pool)
# =============================================================================

class CapacityError(RollwrightError):
    """A bounded resource had no room."""
    pass


class PoolExhaustedError(CapacityError):
    """No pooled connection became free before the timeout."""

    def __init__(self, resource_name: str, timeout: float, pool_size: int):
        super().__init__(
            f"No available connection for '{resource_name}' after {timeout}s",
            {"resource_name": resource_name, "timeout": timeout, "pool_size": pool_size}
        )
        self.resource_name = resource_name
        self.timeout = timeout


# =============================================================================
# Permanent Errors (fail fast, never retried)
# =============================================================================

class PermanentError(RollwrightError):
    """Failure that retrying cannot fix."""
    pass


class ValidationError(PermanentError):
    """Input or remote-state validation failed."""
    pass


class ConfigurationError(PermanentError):
    """Malformed or missing configuration."""
    pass


class CredentialError(PermanentError):
    """Missing or rejected credential."""

    def __init__(self, name: str, reason: str = "missing"):
        super().__init__(
            f"Credential '{name}' {reason}",
            {"credential": name, "reason": reason}
        )
        self.name = name
        self.reason = reason


class ArtifactSyntaxError(PermanentError):
    """Generated artifact rejected by the deployment tool (syntax/build error)."""
    pass


class VerificationError(PermanentError):
    """Deployed target did not become healthy."""

    def __init__(self, target_id: str, reason: str, details: dict | None = None):
        super().__init__(
            f"Verification of '{target_id}' failed: {reason}",
            {"target_id": target_id, "reason": reason, **(details or {})}
        )
        self.target_id = target_id
        self.reason = reason


# =============================================================================
# Circuit Breaker
# =============================================================================

class CircuitOpenError(RollwrightError):
    """Call refused because the circuit for this operation is open."""

    def __init__(self, operation_id: str, failure_count: int, retry_in: float):
        super().__init__(
            f"Circuit breaker open for operation '{operation_id}'",
            {
                "operation_id": operation_id,
                "failure_count": failure_count,
                "retry_in": round(retry_in, 3),
            }
        )
        self.operation_id = operation_id
        self.failure_count = failure_count
        self.retry_in = retry_in


# =============================================================================
# Pool / Transaction Errors
# =============================================================================

class PoolError(RollwrightError):
    """Misuse of the resource pool (double release, foreign connection)."""
    pass


class TransactionError(RollwrightError):
    """
    A statement inside a best-effort transaction failed.

    Statements before ``failed_index`` were already applied: the data store
    has no atomic rollback, so ``atomic`` is always False.
    """

    atomic = False

    def __init__(
        self,
        resource_name: str,
        failed_index: int,
        results: list[Any],
        cause: BaseException,
    ):
        super().__init__(
            f"Transaction on '{resource_name}' failed at statement {failed_index}: {cause}",
            {
                "resource_name": resource_name,
                "failed_index": failed_index,
                "completed": len(results),
                "atomic": False,
            }
        )
        self.resource_name = resource_name
        self.failed_index = failed_index
        self.results = results
        self.cause = cause


# =============================================================================
# Rollback Errors (always fatal)
# =============================================================================

class RollbackError(RollwrightError):
    """Base for rollback failures."""
    pass


class NoRollbackPointError(RollbackError):
    """No rollback point recorded for the target."""

    def __init__(self, target_id: str):
        super().__init__(
            f"No rollback point recorded for target '{target_id}'",
            {"target_id": target_id}
        )
        self.target_id = target_id


class RollbackFailedError(RollbackError):
    """Revert collaborator could not restore the target."""

    def __init__(self, target_id: str, reason: str):
        super().__init__(
            f"Rollback of target '{target_id}' failed: {reason}",
            {"target_id": target_id, "reason": reason}
        )
        self.target_id = target_id
        self.reason = reason


# =============================================================================
# Session Errors
# =============================================================================

class SessionStateError(RollwrightError):
    """Illegal mutation of a deployment session."""
    pass
