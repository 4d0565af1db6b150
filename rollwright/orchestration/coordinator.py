"""
Rollwright Orchestration - Multi-target rollouts.

Runs one PhaseOrchestrator per target, in parallel (bounded) or in a
caller-specified sequence, and aggregates the per-target outcomes. A target
failure is always captured as an outcome, never raised.
"""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field
from typing import Any

from loguru import logger

from rollwright.config.models import CoordinatorConfig
from rollwright.core.classify import classify_error
from rollwright.core.logging import log_prefix
from rollwright.core.resilience import ResilienceExecutor
from rollwright.core.types import Environment, ErrorKind, Phase, SessionStatus, Strategy, TargetSpec
from rollwright.health.monitor import HealthMonitor
from rollwright.orchestration.audit import AuditLog
from rollwright.orchestration.orchestrator import PhaseOrchestrator
from rollwright.orchestration.session import DeploymentSession
from rollwright.remediation.rollback import RollbackManager

OrchestratorFactory = Callable[[TargetSpec], PhaseOrchestrator]

CANCELLED = "cancelled"


@dataclass(frozen=True)
class TargetOutcome:
    """
    Final result of one target.

    Carries enough to retry only the failed targets: the failed phase, the
    error kind, and whether a rollback ran and succeeded.
    """

    target_id: str
    status: SessionStatus
    error: str | None = None
    failed_phase: Phase | None = None
    error_kind: ErrorKind | None = None
    rollback_ran: bool = False
    rollback_succeeded: bool | None = None
    duration: float = 0.0
    skip_reason: str | None = None
    session: DeploymentSession | None = field(default=None, repr=False, compare=False)

    @property
    def succeeded(self) -> bool:
        return self.status == SessionStatus.SUCCEEDED

    @property
    def failed(self) -> bool:
        return self.status.is_failure

    @property
    def skipped(self) -> bool:
        return self.status == SessionStatus.SKIPPED

    @classmethod
    def from_session(cls, session: DeploymentSession) -> TargetOutcome:
        rollback_succeeded = None
        if session.rollback_attempted:
            rollback_succeeded = session.status == SessionStatus.ROLLED_BACK
        return cls(
            target_id=session.target_id,
            status=session.status,
            error=session.error,
            failed_phase=session.failed_phase,
            error_kind=session.error_kind,
            rollback_ran=session.rollback_attempted,
            rollback_succeeded=rollback_succeeded,
            duration=session.duration,
            session=session,
        )

    @classmethod
    def from_exception(cls, target_id: str, error: BaseException) -> TargetOutcome:
        return cls(
            target_id=target_id,
            status=SessionStatus.FAILED,
            error=str(error) or type(error).__name__,
            error_kind=classify_error(error),
        )

    @classmethod
    def skip(cls, target_id: str, reason: str) -> TargetOutcome:
        return cls(target_id=target_id, status=SessionStatus.SKIPPED, skip_reason=reason)

    def to_dict(self) -> dict[str, Any]:
        return {
            "target_id": self.target_id,
            "status": self.status.value,
            "error": self.error,
            "failed_phase": self.failed_phase.value if self.failed_phase else None,
            "error_kind": self.error_kind.value if self.error_kind else None,
            "rollback_ran": self.rollback_ran,
            "rollback_succeeded": self.rollback_succeeded,
            "duration": self.duration,
            "skip_reason": self.skip_reason,
        }


@dataclass(frozen=True)
class AggregateResult:
    """Outcome of a multi-target rollout, in input target order."""

    outcomes: tuple[TargetOutcome, ...]
    strategy: Strategy
    run_id: str = ""

    @property
    def total(self) -> int:
        return len(self.outcomes)

    @property
    def succeeded(self) -> int:
        return sum(1 for o in self.outcomes if o.succeeded)

    @property
    def failed(self) -> int:
        return sum(1 for o in self.outcomes if o.failed)

    @property
    def skipped(self) -> int:
        return sum(1 for o in self.outcomes if o.skipped)

    @property
    def success(self) -> bool:
        """True only if every target succeeded."""
        return all(o.succeeded for o in self.outcomes)

    def outcome(self, target_id: str) -> TargetOutcome | None:
        for outcome in self.outcomes:
            if outcome.target_id == target_id:
                return outcome
        return None

    def retry_targets(self) -> list[str]:
        """Targets an operator should rerun (failed or skipped)."""
        return [o.target_id for o in self.outcomes if not o.succeeded]

    def summary(self) -> dict[str, Any]:
        """Counts, success rate and average duration of attempted targets."""
        attempted = [o for o in self.outcomes if not o.skipped]
        average = sum(o.duration for o in attempted) / len(attempted) if attempted else 0.0
        return {
            "run_id": self.run_id,
            "strategy": self.strategy.value,
            "total": self.total,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "skipped": self.skipped,
            "success": self.success,
            "success_rate": self.succeeded / self.total if self.total else 0.0,
            "average_duration": average,
        }

    def to_dict(self) -> dict[str, Any]:
        return {**self.summary(), "outcomes": [o.to_dict() for o in self.outcomes]}


def orchestrator_factory(
    executor: ResilienceExecutor,
    rollback_manager: RollbackManager,
    health_monitor: HealthMonitor | None = None,
    **options: Any,
) -> OrchestratorFactory:
    """
    Build orchestrators sharing one executor, rollback manager and health monitor.

    Args:
        executor: Shared resilience executor (shared circuit state)
        rollback_manager: Shared rollback manager
        health_monitor: Shared health monitor
        **options: Extra PhaseOrchestrator arguments (handlers, is_healthy, config, ...)
    """
    monitor = health_monitor or HealthMonitor(clock=executor.clock)

    def build(target: TargetSpec) -> PhaseOrchestrator:
        return PhaseOrchestrator(
            target,
            executor,
            rollback_manager,
            health_monitor=monitor,
            **options,
        )

    return build


class MultiTargetCoordinator:
    """
    Deploys many targets.

    Example:
        coordinator = MultiTargetCoordinator(orchestrator_factory(executor, rollbacks, **opts))
        result = await coordinator.deploy(["a.example.com", "b.example.com"])
        if not result.success:
            retry = result.retry_targets()
    """

    def __init__(
        self,
        factory: OrchestratorFactory,
        config: CoordinatorConfig | None = None,
        audit: AuditLog | None = None,
        environment: Environment | str = Environment.PRODUCTION,
    ) -> None:
        self.factory = factory
        self.config = config or CoordinatorConfig()
        self.audit = audit
        self.environment = Environment(environment)
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        """Stop launching targets; in-flight targets run to completion."""
        if not self._cancelled:
            logger.warning(f"{log_prefix('⚠️')} Rollout cancelled, no new targets will start")
        self._cancelled = True

    def _as_target(self, target: TargetSpec | str) -> TargetSpec:
        if isinstance(target, TargetSpec):
            return target
        return TargetSpec(target_id=target, environment=self.environment)

    async def _run_target(self, target: TargetSpec) -> TargetOutcome:
        try:
            orchestrator = self.factory(target)
            if self.audit is not None:
                orchestrator.subscribe(self.audit.record)
            session = await orchestrator.run()
        except Exception as e:
            logger.error(f"{log_prefix('❌')} Unexpected failure deploying '{target.target_id}': {e}")
            return TargetOutcome.from_exception(target.target_id, e)
        return TargetOutcome.from_session(session)

    async def _deploy_parallel(self, targets: list[TargetSpec]) -> list[TargetOutcome]:
        semaphore = asyncio.Semaphore(self.config.max_concurrency)

        async def run_bounded(target: TargetSpec) -> TargetOutcome:
            async with semaphore:
                if self._cancelled:
                    return TargetOutcome.skip(target.target_id, CANCELLED)
                return await self._run_target(target)

        return list(await asyncio.gather(*(run_bounded(t) for t in targets)))

    async def _deploy_sequential(
        self, targets: list[TargetSpec], order: Sequence[str] | None, continue_on_error: bool
    ) -> list[TargetOutcome]:
        by_id = {t.target_id: t for t in targets}
        if order is None:
            sequence = [t.target_id for t in targets]
        else:
            sequence = list(order)
            if sorted(sequence) != sorted(by_id):
                raise ValueError("order must list every target exactly once")

        outcomes: dict[str, TargetOutcome] = {}
        stop_reason: str | None = None
        for target_id in sequence:
            if self._cancelled:
                stop_reason = CANCELLED
            if stop_reason is not None:
                outcomes[target_id] = TargetOutcome.skip(target_id, stop_reason)
                continue

            outcome = await self._run_target(by_id[target_id])
            outcomes[target_id] = outcome
            if outcome.failed and not continue_on_error:
                logger.warning(
                    f"{log_prefix('⏭️')} '{target_id}' failed, skipping remaining targets"
                )
                stop_reason = f"'{target_id}' failed"

        return [outcomes[t.target_id] for t in targets]

    async def deploy(
        self,
        targets: Iterable[TargetSpec | str],
        strategy: Strategy | str | None = None,
        order: Sequence[str] | None = None,
        continue_on_error: bool | None = None,
    ) -> AggregateResult:
        """
        Deploy every target.

        Args:
            targets: Targets (or bare target ids)
            strategy: "parallel" or "sequential" (default: config.strategy)
            order: Sequential order of target ids (default: input order)
            continue_on_error: Sequential only; keep going after a failure

        Returns:
            AggregateResult with outcomes in input order.

        Raises:
            ValueError: Duplicate target ids or an order that does not match the targets.
        """
        specs = [self._as_target(t) for t in targets]
        ids = [t.target_id for t in specs]
        if len(set(ids)) != len(ids):
            raise ValueError("target ids must be unique")

        strategy = Strategy(strategy or self.config.strategy)
        keep_going = self.config.continue_on_error if continue_on_error is None else continue_on_error
        run_id = self.audit.run_id if self.audit is not None else f"run_{uuid.uuid4().hex[:12]}"
        self._cancelled = False

        logger.info(
            f"{log_prefix('🚀')} Rolling out {len(specs)} target(s) ({strategy.value}, "
            f"max concurrency {self.config.max_concurrency})"
        )
        if strategy == Strategy.PARALLEL:
            outcomes = await self._deploy_parallel(specs)
        else:
            outcomes = await self._deploy_sequential(specs, order, keep_going)

        result = AggregateResult(outcomes=tuple(outcomes), strategy=strategy, run_id=run_id)
        log = logger.info if result.success else logger.warning
        log(
            f"{log_prefix('📊')} Rollout finished: {result.succeeded} succeeded, "
            f"{result.failed} failed, {result.skipped} skipped"
        )
        return result
