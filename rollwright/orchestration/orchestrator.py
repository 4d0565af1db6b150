"""
Rollwright Orchestration - Phase state machine for one target.

Drives a target through Initialize, Validate, Prepare, Deploy, Verify and
Monitor. Every phase runs through the shared ResilienceExecutor under its own
operation id, so retries happen inside a phase and never by re-entering the
state machine. A failed Verify rolls the target back to the rollback point
recorded just before Deploy.
"""

from __future__ import annotations

import asyncio
import inspect
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field, replace
from typing import Any

from rollwright.config.models import OrchestratorConfig
from rollwright.core.classify import classify_error
from rollwright.core.exceptions import (
    PhaseTimeoutError,
    RollbackError,
    SessionStateError,
    VerificationError,
)
from rollwright.core.logging import get_session_logger, log_prefix
from rollwright.core.metrics import track_phase
from rollwright.core.protocols import SnapshotProvider
from rollwright.core.resilience import ExecuteOptions, ResilienceExecutor
from rollwright.core.types import (
    ErrorKind,
    OrchestratorState,
    Phase,
    PhaseStatus,
    SessionStatus,
    TargetSpec,
)
from rollwright.health.monitor import HealthMonitor, HealthOptions, IsHealthy
from rollwright.orchestration.session import (
    DeploymentSession,
    PhaseResult,
    SessionEvent,
    SessionEventType,
    SessionSubscriber,
)
from rollwright.remediation.rollback import RollbackManager

_UNTIL_DEPLOY = (Phase.INITIALIZE, Phase.VALIDATE, Phase.PREPARE, Phase.DEPLOY)


@dataclass
class PhaseContext:
    """What a phase handler sees."""

    target: TargetSpec
    session: DeploymentSession
    phase: Phase
    payloads: dict[Phase, Any] = field(default_factory=dict)

    def payload(self, phase: Phase) -> Any:
        """Payload returned by an earlier phase."""
        return self.payloads.get(phase)


PhaseHandler = Callable[[PhaseContext], Awaitable[Any] | Any]


class PhaseOrchestrator:
    """
    Runs one deployment session.

    Example:
        orchestrator = PhaseOrchestrator(
            target, executor, rollback_manager,
            handlers=StandardPhases(invoker=invoker).handlers(),
            is_healthy=predicate_for(HttpHealthPredicate()),
        )
        session = await orchestrator.run()
    """

    def __init__(
        self,
        target: TargetSpec,
        executor: ResilienceExecutor,
        rollback_manager: RollbackManager,
        health_monitor: HealthMonitor | None = None,
        handlers: Mapping[Phase, PhaseHandler] | None = None,
        is_healthy: IsHealthy | None = None,
        snapshot_provider: SnapshotProvider | None = None,
        config: OrchestratorConfig | None = None,
        health_options: HealthOptions | None = None,
        phase_options: Mapping[Phase, ExecuteOptions] | None = None,
    ) -> None:
        """
        Initialize orchestrator.

        Args:
            target: Target to deploy
            executor: Shared resilience executor
            rollback_manager: Records points before Deploy and reverts on failed Verify
            health_monitor: Polls ``is_healthy`` during Verify
            handlers: Unit of work per phase; missing phases succeed with an empty payload
            is_healthy: Verify predicate (bool, HealthCheck, or raise)
            snapshot_provider: Captures the known-good state before Deploy
            config: Phase timeout and dry-run settings
            health_options: Overrides for the Verify health polling
            phase_options: Per-phase retry overrides
        """
        self.target = target
        self.executor = executor
        self.rollback_manager = rollback_manager
        self.clock = executor.clock
        self.health_monitor = health_monitor or HealthMonitor(clock=self.clock)
        self.handlers: dict[Phase, PhaseHandler] = dict(handlers or {})
        self.is_healthy = is_healthy
        self.snapshot_provider = snapshot_provider
        self.config = config or OrchestratorConfig()
        self.health_options = health_options
        self.phase_options: dict[Phase, ExecuteOptions] = dict(phase_options or {})

        self.session = DeploymentSession(target=target, environment=target.environment)
        self.log = get_session_logger(self.session.session_id, target=target.target_id)
        self._payloads: dict[Phase, Any] = {}
        self._subscribers: list[SessionSubscriber] = []
        self._started = False

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def subscribe(self, subscriber: SessionSubscriber) -> Callable[[], None]:
        """
        Register a session event subscriber.

        Returns:
            Function removing the subscription.
        """
        self._subscribers.append(subscriber)

        def unsubscribe() -> None:
            if subscriber in self._subscribers:
                self._subscribers.remove(subscriber)

        return unsubscribe

    async def _publish(
        self,
        event_type: SessionEventType,
        phase: Phase | None = None,
        status: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        event = SessionEvent(
            event_type=event_type,
            session_id=self.session.session_id,
            target_id=self.target.target_id,
            phase=phase,
            status=status,
            details=details or {},
        )
        for subscriber in list(self._subscribers):
            try:
                outcome = subscriber(event)
                if inspect.isawaitable(outcome):
                    await outcome
            except Exception as e:
                self.log.warning(f"Session subscriber failed on {event_type.value}: {e}")

    # ------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------

    async def run(self) -> DeploymentSession:
        """
        Run every phase and return the terminal session.

        Phase failures never raise; they are recorded on the session.

        Raises:
            SessionStateError: The orchestrator already ran.
        """
        if self._started:
            raise SessionStateError(
                f"Session {self.session.session_id} already ran",
                {"session_id": self.session.session_id},
            )
        self._started = True
        session = self.session

        mode = " (dry run)" if self.config.dry_run else ""
        self.log.info(
            f"{log_prefix('🚀')} Deploying '{self.target.target_id}' to "
            f"{self.target.environment.value}{mode}"
        )
        await self._publish(SessionEventType.SESSION_STARTED)

        try:
            await self._drive()
        except Exception as e:
            self.log.error(f"{log_prefix('❌')} Orchestration of '{self.target.target_id}' aborted: {e}")
            if not session.is_terminal:
                session.error_kind = classify_error(e)
                session.transition(OrchestratorState.FAILED)
                session.finish(SessionStatus.FAILED, str(e))

        await self._publish(
            SessionEventType.SESSION_FINISHED,
            status=session.status.value,
            details={"error": session.error} if session.error else None,
        )

        if session.status == SessionStatus.SUCCEEDED:
            self.log.info(f"{log_prefix('✅')} '{self.target.target_id}' deployed")
        else:
            self.log.error(
                f"{log_prefix('❌')} '{self.target.target_id}' {session.status.value}: {session.error}"
            )
        return session

    async def _drive(self) -> None:
        for phase in _UNTIL_DEPLOY:
            result, error = await self._run_phase(phase)
            if not result.ok:
                self._fail(phase, error)
                return

        result, error = await self._run_phase(Phase.VERIFY)
        if not result.ok:
            await self._recover(error)
            return

        await self._run_phase(Phase.MONITOR, best_effort=True)
        self.session.transition(OrchestratorState.COMPLETED)
        self.session.finish(SessionStatus.SUCCEEDED)

    async def _run_phase(
        self, phase: Phase, best_effort: bool = False
    ) -> tuple[PhaseResult, Exception | None]:
        self.session.transition(OrchestratorState(phase.value))
        await self._publish(SessionEventType.PHASE_STARTED, phase)
        self.log.debug(f"Phase {phase.value} started")

        start = self.clock.now()
        error: Exception | None = None
        payload: Any = None
        if self.config.dry_run:
            payload = {"dry_run": True}
        else:
            try:
                if phase == Phase.DEPLOY:
                    await self._record_rollback_point()
                payload = await self._execute(phase)
            except Exception as e:
                error = e
        duration = self.clock.now() - start

        if error is None:
            status = PhaseStatus.OK
            self._payloads[phase] = payload
        elif best_effort:
            status = PhaseStatus.WARNING
            self.log.warning(f"{log_prefix('⚠️')} Phase {phase.value} failed (non-blocking): {error}")
        else:
            status = PhaseStatus.ERROR
            self.log.error(f"{log_prefix('❌')} Phase {phase.value} failed: {error}")

        result = PhaseResult(
            phase=phase,
            status=status,
            duration=duration,
            payload=payload,
            error=str(error) if error is not None else None,
        )
        self.session.record(result)
        track_phase(phase.value, status.value, duration)
        await self._publish(
            SessionEventType.PHASE_COMPLETED,
            phase,
            status=status.value,
            details={"duration": duration, "error": result.error},
        )
        return result, error

    async def _execute(self, phase: Phase) -> Any:
        """Run one phase's unit of work through the executor under the phase deadline."""
        ctx = PhaseContext(
            target=self.target,
            session=self.session,
            phase=phase,
            payloads=dict(self._payloads),
        )

        handler = self.handlers.get(phase)
        options = self.phase_options.get(phase, ExecuteOptions())
        if phase == Phase.VERIFY:
            # HealthMonitor already polls; one verification per phase
            options = replace(options, max_retries=0)
        elif handler is None:
            return {}
        options = replace(options, graceful_degradation=False)

        def work() -> Any:
            if phase == Phase.VERIFY:
                return self._verify(ctx)
            return handler(ctx)

        operation_id = f"{self.target.target_id}:{phase.value}"
        timeout = self.config.phase_timeout
        try:
            async with asyncio.timeout(timeout) as deadline:
                return await self.executor.execute(operation_id, work, options)
        except TimeoutError as e:
            if deadline.expired():
                raise PhaseTimeoutError(self.target.target_id, phase.value, timeout) from e
            raise

    async def _verify(self, ctx: PhaseContext) -> Any:
        if self.is_healthy is not None:
            health = await self.health_monitor.wait_until_healthy(
                self._verify_target(), self.is_healthy, self.health_options
            )
            if not health.healthy:
                raise VerificationError(
                    self.target.target_id,
                    health.reason or "unhealthy",
                    {"checks": len(health.attempts)},
                )
            return health

        handler = self.handlers.get(Phase.VERIFY)
        if handler is not None:
            outcome = handler(ctx)
            if inspect.isawaitable(outcome):
                outcome = await outcome
            if outcome is False:
                raise VerificationError(self.target.target_id, "verification handler rejected the deployment")
            return outcome

        self.log.warning(f"{log_prefix('⚠️')} No health predicate for '{self.target.target_id}', verify skipped")
        return {"health_checked": False}

    def _verify_target(self) -> TargetSpec:
        """Target to poll: the URL printed by Deploy unless a health URL is configured."""
        deployed = self._payloads.get(Phase.DEPLOY)
        if self.target.health_url or not isinstance(deployed, Mapping):
            return self.target
        url = deployed.get("url")
        if not url:
            return self.target
        return replace(self.target, health_url=url)

    async def _record_rollback_point(self) -> None:
        """Snapshot the last known-good state at the Prepare to Deploy boundary."""
        if self.snapshot_provider is not None:
            snapshot = await self.snapshot_provider.capture(self.target)
        else:
            snapshot = {
                "target_id": self.target.target_id,
                "environment": self.target.environment.value,
                "settings": dict(self.target.settings),
                "prepare": self._payloads.get(Phase.PREPARE),
            }
        self.rollback_manager.record_point(self.target, snapshot)

    def _fail(self, phase: Phase, error: Exception | None) -> None:
        self.session.failed_phase = phase
        self.session.error_kind = classify_error(error) if error else ErrorKind.UNKNOWN
        self.session.transition(OrchestratorState.FAILED)
        self.session.finish(SessionStatus.FAILED, str(error) if error else f"{phase.value} failed")

    async def _recover(self, error: Exception | None) -> None:
        """Roll back after a failed Verify."""
        session = self.session
        session.failed_phase = Phase.VERIFY
        session.error_kind = classify_error(error) if error else ErrorKind.UNKNOWN
        session.rollback_attempted = True
        reason = str(error) if error else "verification failed"

        await self._publish(SessionEventType.ROLLBACK_STARTED, Phase.VERIFY, details={"reason": reason})
        try:
            rollback = await self.rollback_manager.rollback(
                self.target, timeout=self.config.rollback_timeout
            )
        except RollbackError as e:
            session.error_kind = ErrorKind.ROLLBACK
            await self._publish(
                SessionEventType.ROLLBACK_COMPLETED, Phase.VERIFY, status="failed", details={"error": str(e)}
            )
            session.transition(OrchestratorState.FAILED)
            session.finish(SessionStatus.FAILED, f"{reason}; {e}")
            return

        session.rollback = rollback
        session.transition(OrchestratorState.ROLLED_BACK)
        await self._publish(
            SessionEventType.ROLLBACK_COMPLETED,
            Phase.VERIFY,
            status="succeeded",
            details={"point_id": rollback.point.point_id if rollback.point else None},
        )
        session.transition(OrchestratorState.FAILED)
        session.finish(SessionStatus.ROLLED_BACK, reason)
