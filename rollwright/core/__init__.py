"""
Rollwright Core - Shared types, errors and interfaces.
"""

from rollwright.core.exceptions import (
    CircuitOpenError,
    NoRollbackPointError,
    PermanentError,
    PoolExhaustedError,
    RollbackFailedError,
    RollwrightError,
    TransientError,
)
from rollwright.core.types import (
    BreakerState,
    Environment,
    ErrorKind,
    HealthCheck,
    HealthStatus,
    Phase,
    PhaseStatus,
    SessionStatus,
    Strategy,
    TargetSpec,
)

__all__ = [
    "BreakerState",
    "CircuitOpenError",
    "Environment",
    "ErrorKind",
    "HealthCheck",
    "HealthStatus",
    "NoRollbackPointError",
    "PermanentError",
    "Phase",
    "PhaseStatus",
    "PoolExhaustedError",
    "RollbackFailedError",
    "RollwrightError",
    "SessionStatus",
    "Strategy",
    "TargetSpec",
    "TransientError",
]
