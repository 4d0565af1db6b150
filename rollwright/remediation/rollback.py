"""
Rollwright Remediation - Rollback points and reverts.

Rollback points are append-only per target and never deleted automatically.
A rollback always reverts to the most recent point, so repeated rollbacks
without a new point converge on the same snapshot.
"""

from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from loguru import logger

from rollwright.core.exceptions import NoRollbackPointError, RollbackFailedError, TransientError
from rollwright.core.logging import log_prefix
from rollwright.core.metrics import track_rollback
from rollwright.core.protocols import Clock, RevertCollaborator
from rollwright.core.resilience import ExecuteOptions, ResilienceExecutor
from rollwright.core.types import TargetSpec

DEFAULT_ROLLBACK_TIMEOUT = 300.0


@dataclass(frozen=True)
class RollbackPoint:
    """Last known-good state of a target."""

    target_id: str
    snapshot: Any
    point_id: str = field(default_factory=lambda: f"rp_{uuid.uuid4().hex[:12]}")
    created_at: datetime = field(default_factory=datetime.now)


@dataclass(frozen=True)
class RollbackResult:
    """Outcome of one rollback call."""

    target_id: str
    success: bool
    point: RollbackPoint | None = None
    attempts: int = 0
    duration: float = 0.0
    error: str | None = None
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "target_id": self.target_id,
            "success": self.success,
            "point_id": self.point.point_id if self.point else None,
            "attempts": self.attempts,
            "duration": self.duration,
            "error": self.error,
            "timestamp": self.timestamp.isoformat(),
        }


class RollbackManager:
    """
    Records rollback points and reverts targets to them.

    Reverts run through the shared ResilienceExecutor under operation id
    ``"{target_id}:rollback"``. Graceful degradation is never applied: a
    failed rollback always raises RollbackFailedError, and so does a
    rollback still running when its deadline passes.
    """

    def __init__(
        self,
        executor: ResilienceExecutor,
        revert: RevertCollaborator,
        clock: Clock | None = None,
        timeout: float | None = DEFAULT_ROLLBACK_TIMEOUT,
    ) -> None:
        self.executor = executor
        self.revert = revert
        self.clock = clock or executor.clock
        self.timeout = timeout
        self._points: dict[str, list[RollbackPoint]] = {}
        self._history: list[RollbackResult] = []

    def record_point(self, target: TargetSpec, snapshot: Any) -> RollbackPoint:
        """Append a rollback point for a target."""
        point = RollbackPoint(target_id=target.target_id, snapshot=snapshot)
        self._points.setdefault(target.target_id, []).append(point)
        logger.debug(
            f"{log_prefix('⏪')} Rollback point {point.point_id} recorded for '{target.target_id}' "
            f"({len(self._points[target.target_id])} total)"
        )
        return point

    def points(self, target_id: str) -> list[RollbackPoint]:
        """All rollback points of a target, oldest first."""
        return list(self._points.get(target_id, []))

    def latest(self, target_id: str) -> RollbackPoint | None:
        points = self._points.get(target_id)
        return points[-1] if points else None

    @property
    def history(self) -> list[RollbackResult]:
        return list(self._history)

    async def rollback(self, target: TargetSpec, timeout: float | None = None) -> RollbackResult:
        """
        Revert a target to its most recent rollback point.

        Args:
            target: Target to restore
            timeout: Deadline in seconds (defaults to the manager's ``timeout``)

        Returns:
            Successful RollbackResult.

        Raises:
            NoRollbackPointError: Nothing was ever recorded for the target.
            RollbackFailedError: The revert failed after all retries or timed out.
        """
        point = self.latest(target.target_id)
        if point is None:
            raise NoRollbackPointError(target.target_id)

        operation_id = f"{target.target_id}:rollback"
        deadline = self.timeout if timeout is None else timeout
        attempts = 0

        async def revert_once() -> bool:
            nonlocal attempts
            attempts += 1
            if not await self.revert.revert(target, point.snapshot):
                raise TransientError(
                    f"Revert of '{target.target_id}' reported failure",
                    {"point_id": point.point_id},
                )
            return True

        logger.warning(
            f"{log_prefix('⏪')} Rolling back '{target.target_id}' to point {point.point_id}"
        )
        start = self.clock.now()
        try:
            async with asyncio.timeout(deadline) as scope:
                await self.executor.execute(
                    operation_id, revert_once, ExecuteOptions(graceful_degradation=False)
                )
        except Exception as e:
            reason = str(e)
            if isinstance(e, TimeoutError) and scope.expired():
                reason = f"timed out after {deadline}s"
            result = RollbackResult(
                target_id=target.target_id,
                success=False,
                point=point,
                attempts=attempts,
                duration=self.clock.now() - start,
                error=reason,
            )
            self._history.append(result)
            track_rollback(target.target_id, "failed")
            logger.error(f"{log_prefix('❌')} Rollback of '{target.target_id}' failed: {reason}")
            raise RollbackFailedError(target.target_id, reason) from e

        result = RollbackResult(
            target_id=target.target_id,
            success=True,
            point=point,
            attempts=attempts,
            duration=self.clock.now() - start,
        )
        self._history.append(result)
        track_rollback(target.target_id, "succeeded")
        logger.info(
            f"{log_prefix('✅')} '{target.target_id}' rolled back to {point.point_id} "
            f"({attempts} attempt(s))"
        )
        return result
