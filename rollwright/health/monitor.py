"""
Rollwright Health - Wait for a deployed target to become healthy.

Polls a health predicate on the executor's backoff schedule until the
target reports healthy, the deadline passes, or the retry budget runs out.
"""

from __future__ import annotations

import asyncio
import inspect
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from loguru import logger

from rollwright.config.models import HealthConfig
from rollwright.core.classify import classify_error
from rollwright.core.logging import log_prefix
from rollwright.core.metrics import track_health_check
from rollwright.core.protocols import Clock, SystemClock
from rollwright.core.resilience import compute_backoff
from rollwright.core.types import ErrorKind, HealthCheck, HealthStatus, TargetSpec

IsHealthy = Callable[[TargetSpec], Awaitable[bool | HealthCheck] | bool | HealthCheck]


@dataclass(frozen=True)
class HealthAttempt:
    """One check of the attempt log (diagnostics only)."""

    index: int
    status: HealthStatus
    latency: float
    timestamp: datetime
    details: dict[str, Any] = field(default_factory=dict)
    error: str | None = None


@dataclass
class HealthResult:
    """Outcome of wait_until_healthy."""

    target_id: str
    healthy: bool
    attempts: list[HealthAttempt] = field(default_factory=list)
    elapsed: float = 0.0
    reason: str | None = None  # "deadline_exceeded" | "retries_exhausted" | "permanent_error"

    @property
    def last_attempt(self) -> HealthAttempt | None:
        return self.attempts[-1] if self.attempts else None

    def to_dict(self) -> dict[str, Any]:
        return {
            "target_id": self.target_id,
            "healthy": self.healthy,
            "elapsed": self.elapsed,
            "reason": self.reason,
            "attempts": [
                {
                    "index": a.index,
                    "status": a.status.value,
                    "latency": a.latency,
                    "timestamp": a.timestamp.isoformat(),
                    "error": a.error,
                }
                for a in self.attempts
            ],
        }


@dataclass
class HealthOptions:
    """Per-call overrides of HealthConfig; ``None`` keeps the configured value."""

    max_retries: int | None = None
    base_delay: float | None = None
    cap_delay: float | None = None
    deadline: float | None = None
    check_timeout: float | None = None


def _to_check(answer: bool | HealthCheck) -> HealthCheck:
    if isinstance(answer, HealthCheck):
        return answer
    return HealthCheck(status=HealthStatus.HEALTHY if answer else HealthStatus.UNHEALTHY)


class HealthMonitor:
    """Polls a health predicate with exponential backoff and a deadline."""

    def __init__(
        self,
        config: HealthConfig | None = None,
        clock: Clock | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self.config = config or HealthConfig()
        self.clock = clock or SystemClock()
        self.rng = rng or random.Random()

    async def _check_once(self, target: TargetSpec, is_healthy: IsHealthy, timeout: float) -> HealthCheck:
        answer = is_healthy(target)
        if inspect.isawaitable(answer):
            answer = await asyncio.wait_for(answer, timeout=timeout)
        return _to_check(answer)

    async def wait_until_healthy(
        self,
        target: TargetSpec,
        is_healthy: IsHealthy,
        options: HealthOptions | None = None,
    ) -> HealthResult:
        """
        Wait for a target to report healthy.

        Args:
            target: Target under verification
            is_healthy: Predicate returning bool or HealthCheck; exceptions count as ERROR,
                permanent ones (e.g. a missing health URL) stop polling
            options: Per-call overrides

        Returns:
            HealthResult with the ordered attempt log.
        """
        opts = options or HealthOptions()
        cfg = self.config
        max_retries = cfg.max_retries if opts.max_retries is None else opts.max_retries
        base_delay = cfg.base_delay if opts.base_delay is None else opts.base_delay
        cap_delay = cfg.cap_delay if opts.cap_delay is None else opts.cap_delay
        deadline = cfg.deadline if opts.deadline is None else opts.deadline
        check_timeout = cfg.check_timeout if opts.check_timeout is None else opts.check_timeout

        start = self.clock.now()
        result = HealthResult(target_id=target.target_id, healthy=False)

        for attempt in range(max_retries + 1):
            if self.clock.now() - start >= deadline:
                result.reason = "deadline_exceeded"
                break

            check_start = self.clock.now()
            error: str | None = None
            permanent = False
            try:
                check = await self._check_once(target, is_healthy, check_timeout)
            except TimeoutError:
                error = f"health check timed out after {check_timeout}s"
                check = HealthCheck(status=HealthStatus.ERROR, details={"error": error})
            except Exception as e:
                error = str(e) or type(e).__name__
                permanent = classify_error(e) == ErrorKind.PERMANENT
                check = HealthCheck(status=HealthStatus.ERROR, details={"error": error})

            result.attempts.append(
                HealthAttempt(
                    index=attempt,
                    status=check.status,
                    latency=self.clock.now() - check_start,
                    timestamp=datetime.now(),
                    details=dict(check.details),
                    error=error,
                )
            )
            track_health_check(check.status.value)

            if check.healthy:
                result.healthy = True
                break

            if permanent:
                result.reason = "permanent_error"
                break

            if attempt >= max_retries:
                result.reason = "retries_exhausted"
                break

            remaining = deadline - (self.clock.now() - start)
            delay = min(compute_backoff(attempt, base_delay, cap_delay, self.rng), max(0.0, remaining))
            logger.debug(
                f"{log_prefix('🩺')} '{target.target_id}' {check.status.value} "
                f"(attempt {attempt + 1}/{max_retries + 1}), next check in {delay:.2f}s"
            )
            await self.clock.sleep(delay)

        result.elapsed = self.clock.now() - start
        if result.healthy:
            logger.info(
                f"{log_prefix('🟢')} '{target.target_id}' healthy after {len(result.attempts)} check(s)"
            )
        else:
            logger.warning(
                f"{log_prefix('🔴')} '{target.target_id}' not healthy "
                f"({result.reason}, {len(result.attempts)} check(s), {result.elapsed:.1f}s)"
            )
        return result
