"""
Rollwright Core - Shared types and enums.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any


class Environment(StrEnum):
    """Deployment environment."""

    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"


class Phase(StrEnum):
    """Deployment lifecycle phase, declared in execution order."""

    INITIALIZE = "initialize"
    VALIDATE = "validate"
    PREPARE = "prepare"
    DEPLOY = "deploy"
    VERIFY = "verify"
    MONITOR = "monitor"

    @property
    def index(self) -> int:
        """Position of the phase in the lifecycle."""
        return list(Phase).index(self)


class PhaseStatus(StrEnum):
    """Outcome of one phase execution."""

    OK = "ok"
    WARNING = "warning"
    ERROR = "error"


class OrchestratorState(StrEnum):
    """States of the phase state machine beyond the phases themselves."""

    INITIALIZE = "initialize"
    VALIDATE = "validate"
    PREPARE = "prepare"
    DEPLOY = "deploy"
    VERIFY = "verify"
    MONITOR = "monitor"
    COMPLETED = "completed"
    ROLLED_BACK = "rolled_back"
    FAILED = "failed"


class SessionStatus(StrEnum):
    """Terminal status of a deployment session."""

    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    ROLLED_BACK = "rolled-back"
    SKIPPED = "skipped"

    @property
    def is_failure(self) -> bool:
        """Failed outright or failed after a rollback."""
        return self in (SessionStatus.FAILED, SessionStatus.ROLLED_BACK)


class BreakerState(StrEnum):
    """Circuit breaker states."""

    CLOSED = "closed"  # Normal operation
    OPEN = "open"  # Circuit tripped, rejecting requests
    HALF_OPEN = "half-open"  # Testing if service recovered


class HealthStatus(StrEnum):
    """Outcome of one health check."""

    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"
    ERROR = "error"


class Strategy(StrEnum):
    """Multi-target rollout strategy."""

    PARALLEL = "parallel"
    SEQUENTIAL = "sequential"


class ErrorKind(StrEnum):
    """Recovery category of an error."""

    TRANSIENT = "transient"
    CAPACITY = "capacity"
    PERMANENT = "permanent"
    CIRCUIT_OPEN = "circuit_open"
    ROLLBACK = "rollback"
    UNKNOWN = "unknown"


@dataclass
class TargetSpec:
    """One independently deployable unit (a domain in a given environment)."""

    target_id: str
    environment: Environment = Environment.PRODUCTION
    service_name: str | None = None
    health_url: str | None = None
    database: str | None = None
    settings: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.target_id or not self.target_id.strip():
            raise ValueError("target_id cannot be empty")
        self.environment = Environment(self.environment)


@dataclass
class HealthCheck:
    """Answer of a health predicate."""

    status: HealthStatus
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def healthy(self) -> bool:
        return self.status == HealthStatus.HEALTHY


@dataclass
class InvocationResult:
    """Result of a deployment tool invocation."""

    exit_code: int
    stdout: str = ""
    stderr: str = ""
    command: str | None = None
    duration_ms: float = 0.0
    timestamp: datetime = field(default_factory=datetime.now)

    @property
    def success(self) -> bool:
        return self.exit_code == 0

    @property
    def output(self) -> str:
        """Combined stdout and stderr."""
        if self.stderr:
            return f"{self.stdout}\n{self.stderr}".strip()
        return self.stdout


@dataclass
class ApiResponse:
    """Response of the control-plane API."""

    status: int
    json: Any = None
    headers: dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300
