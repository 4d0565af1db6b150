"""
Rollwright Config - Configuration models.

Pydantic models for type-safe configuration. Durations are seconds.
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field, model_validator

from rollwright.core.types import Environment, Strategy


class ResilienceConfig(BaseModel):
    """Retry, backoff and circuit breaker settings."""

    max_retries: int = Field(default=3, ge=0, le=20, description="Retries after the first attempt")
    base_delay: float = Field(default=1.0, ge=0, description="Base backoff delay in seconds")
    cap_delay: float = Field(default=30.0, gt=0, description="Upper bound of any backoff delay")
    circuit_breaker_threshold: int = Field(
        default=5, ge=1, description="Consecutive failures before the circuit opens"
    )
    circuit_breaker_timeout: float = Field(
        default=60.0, gt=0, description="Seconds an open circuit waits before half-open"
    )
    graceful_degradation: bool = Field(
        default=False, description="Return a degraded result instead of failing"
    )
    attempt_timeout: float | None = Field(
        default=None, gt=0, description="Deadline of a single attempt"
    )


class PoolConfig(BaseModel):
    """Backing data-store connection pool settings."""

    max_pool_size: int = Field(default=10, ge=1, le=1000, description="Connections per resource")
    connection_idle_timeout: float = Field(
        default=300.0, gt=0, description="Idle seconds before a connection expires"
    )
    query_timeout: float = Field(default=30.0, gt=0, description="Deadline of a single query")
    acquire_timeout: float = Field(
        default=30.0, ge=0, description="Seconds to wait for a free connection"
    )
    poll_interval: float = Field(default=0.1, gt=0, description="Wait-for-connection poll interval")
    timeout_strategy: Literal["even", "per_statement"] = Field(
        default="even", description="How a transaction deadline is split across statements"
    )


class HealthConfig(BaseModel):
    """Post-deploy health polling settings."""

    max_retries: int = Field(default=5, ge=0, le=100, description="Polls after the first one")
    base_delay: float = Field(default=2.0, ge=0, description="Base backoff delay in seconds")
    cap_delay: float = Field(default=30.0, gt=0, description="Upper bound of any poll delay")
    deadline: float = Field(default=120.0, gt=0, description="Overall polling deadline")
    check_timeout: float = Field(default=10.0, gt=0, description="Deadline of a single health check")


class OrchestratorConfig(BaseModel):
    """Single-target state machine settings."""

    environment: Environment = Field(default=Environment.PRODUCTION)
    phase_timeout: float = Field(default=300.0, gt=0, description="Deadline of one phase")
    rollback_timeout: float = Field(
        default=300.0, gt=0, description="Deadline of the rollback after a failed Verify"
    )
    dry_run: bool = Field(default=False, description="Record phases without invoking handlers")


class CoordinatorConfig(BaseModel):
    """Multi-target rollout settings."""

    max_concurrency: int = Field(default=3, ge=1, le=64, description="Parallel targets")
    strategy: Strategy = Field(default=Strategy.PARALLEL)
    continue_on_error: bool = Field(
        default=False, description="Sequential mode: keep going after a failed target"
    )


class LoggingConfig(BaseModel):
    """Logging settings."""

    console_level: Literal["debug", "info", "warning", "error"] = Field(default="info")
    file_level: Literal["debug", "info", "warning", "error"] = Field(default="debug")
    log_file: str | None = Field(default=None, description="Rotated log file path")
    rotation: str = Field(default="10 MB")
    retention: str = Field(default="1 week")
    json_logs: bool = Field(default=False)
    include_caller: bool = Field(default=True)


class AuditConfig(BaseModel):
    """Audit trail persistence."""

    enabled: bool = Field(default=True)
    directory: str | None = Field(default=None, description="Where audit JSON files are saved")


class RollwrightConfig(BaseModel):
    """Root configuration."""

    resilience: ResilienceConfig = Field(default_factory=ResilienceConfig)
    pool: PoolConfig = Field(default_factory=PoolConfig)
    health: HealthConfig = Field(default_factory=HealthConfig)
    orchestrator: OrchestratorConfig = Field(default_factory=OrchestratorConfig)
    coordinator: CoordinatorConfig = Field(default_factory=CoordinatorConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    audit: AuditConfig = Field(default_factory=AuditConfig)

    @model_validator(mode="after")
    def _check_delays(self) -> RollwrightConfig:
        if self.resilience.base_delay > self.resilience.cap_delay:
            raise ValueError("resilience.base_delay cannot exceed resilience.cap_delay")
        if self.health.base_delay > self.health.cap_delay:
            raise ValueError("health.base_delay cannot exceed health.cap_delay")
        return self
