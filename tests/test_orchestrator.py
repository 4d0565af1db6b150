"""
Tests for the phase orchestrator.

Tests:
- Phase ordering and rollback point placement
- Verify failure and rollback outcomes
- Fatal phase failures, timeouts and open circuits
- Dry run, events and session immutability
"""

from __future__ import annotations

import asyncio
from typing import Any

import pytest

from rollwright.config.models import OrchestratorConfig
from rollwright.core.exceptions import (
    SessionStateError,
    TransientError,
    ValidationError,
)
from rollwright.core.metrics import get_registry
from rollwright.core.types import (
    ErrorKind,
    OrchestratorState,
    Phase,
    PhaseStatus,
    SessionStatus,
    TargetSpec,
)
from rollwright.orchestration.orchestrator import PhaseContext, PhaseOrchestrator
from rollwright.orchestration.session import DeploymentSession, PhaseResult, SessionEventType
from rollwright.remediation.rollback import RollbackManager

TARGET = TargetSpec("api.example.com", settings={"account_id": "acc-1"})


class Recorder:
    """Builds phase handlers that record their calls."""

    def __init__(self) -> None:
        self.calls: list[Phase] = []

    def handler(self, phase: Phase, error: Exception | None = None, result: Any = None):
        async def run(ctx: PhaseContext) -> Any:
            self.calls.append(phase)
            if error is not None:
                raise error
            return result if result is not None else {"phase": phase.value}

        return run

    def handlers(self, **overrides) -> dict:
        built = {p: self.handler(p) for p in Phase if p != Phase.VERIFY}
        for name, handler in overrides.items():
            built[Phase(name)] = handler
        return built


def always(value: bool):
    def is_healthy(target: TargetSpec) -> bool:
        return value

    return is_healthy


@pytest.fixture
def recorder() -> Recorder:
    return Recorder()


@pytest.fixture
def build(executor, rollback_manager, health_monitor):
    def make(**kwargs: Any) -> PhaseOrchestrator:
        kwargs.setdefault("health_monitor", health_monitor)
        target = kwargs.pop("target", TARGET)
        return PhaseOrchestrator(
            target,
            kwargs.pop("executor", executor),
            kwargs.pop("rollback_manager", rollback_manager),
            **kwargs,
        )

    return make


class TestHappyPath:
    """Tests for a successful deployment."""

    @pytest.mark.asyncio
    async def test_all_phases_in_order(self, build, recorder) -> None:
        """Test every phase runs once, in lifecycle order."""
        orchestrator = build(handlers=recorder.handlers(), is_healthy=always(True))

        session = await orchestrator.run()

        assert session.status == SessionStatus.SUCCEEDED
        assert session.state == OrchestratorState.COMPLETED
        assert [r.phase for r in session.history] == list(Phase)
        assert all(r.status == PhaseStatus.OK for r in session.history)
        assert recorder.calls == [p for p in Phase if p != Phase.VERIFY]
        assert session.error is None

    @pytest.mark.asyncio
    async def test_rollback_point_recorded_before_deploy(self, build, recorder, rollback_manager) -> None:
        """Test the rollback point exists when Deploy starts and holds the Prepare payload."""
        seen_points: list[int] = []

        async def deploy(ctx: PhaseContext) -> dict:
            seen_points.append(len(rollback_manager.points(ctx.target.target_id)))
            return {"url": "https://api.example.com"}

        handlers = recorder.handlers(
            prepare=recorder.handler(Phase.PREPARE, result={"migrations_applied": 2}),
            deploy=deploy,
        )
        await build(handlers=handlers, is_healthy=always(True)).run()

        assert seen_points == [1]
        snapshot = rollback_manager.latest("api.example.com").snapshot
        assert snapshot["prepare"] == {"migrations_applied": 2}
        assert snapshot["settings"] == {"account_id": "acc-1"}

    @pytest.mark.asyncio
    async def test_snapshot_provider_used(self, build, rollback_manager) -> None:
        """Test a snapshot provider captures the known-good state."""

        class Provider:
            async def capture(self, target: TargetSpec) -> dict:
                return {"deployment_id": "dep-41"}

        await build(snapshot_provider=Provider(), is_healthy=always(True)).run()

        assert rollback_manager.latest("api.example.com").snapshot == {"deployment_id": "dep-41"}

    @pytest.mark.asyncio
    async def test_payloads_flow_to_later_phases(self, build, recorder) -> None:
        """Test handlers can read earlier phase payloads."""
        seen: list[Any] = []

        async def monitor(ctx: PhaseContext) -> None:
            seen.append(ctx.payload(Phase.DEPLOY))

        handlers = recorder.handlers(
            deploy=recorder.handler(Phase.DEPLOY, result={"url": "https://api.example.com"}),
            monitor=monitor,
        )
        await build(handlers=handlers, is_healthy=always(True)).run()

        assert seen == [{"url": "https://api.example.com"}]

    @pytest.mark.asyncio
    async def test_transient_phase_failure_retried_inside_phase(self, build, executor) -> None:
        """Test retries happen inside the phase: one PhaseResult, phase circuit reset."""
        calls = 0

        async def deploy(ctx: PhaseContext) -> str:
            nonlocal calls
            calls += 1
            if calls == 1:
                raise TransientError("502 Bad Gateway")
            return "deployed"

        session = await build(handlers={Phase.DEPLOY: deploy}, is_healthy=always(True)).run()

        assert session.status == SessionStatus.SUCCEEDED
        assert calls == 2
        assert len([r for r in session.history if r.phase == Phase.DEPLOY]) == 1
        assert executor.circuit_status("api.example.com:deploy")["failure_count"] == 0

    @pytest.mark.asyncio
    async def test_missing_health_predicate_skips_verify(self, build) -> None:
        """Test Verify passes without a predicate and says so."""
        session = await build().run()

        assert session.status == SessionStatus.SUCCEEDED
        assert session.phase_result(Phase.VERIFY).payload == {"health_checked": False}

    @pytest.mark.asyncio
    async def test_phase_metrics(self, build) -> None:
        """Test phase results are counted."""
        await build(is_healthy=always(True)).run()

        counter = get_registry().counter("rollwright_phase_results_total")
        assert counter.get(phase="deploy", status="ok") == 1


class TestVerifyFailure:
    """Tests for the Verify to rollback escape."""

    @pytest.mark.asyncio
    async def test_unhealthy_target_rolled_back(self, build, recorder, revert) -> None:
        """Test a failed Verify rolls back once and ends rolled-back."""
        session = await build(handlers=recorder.handlers(), is_healthy=always(False)).run()

        assert session.status == SessionStatus.ROLLED_BACK
        assert session.state == OrchestratorState.FAILED
        assert session.failed_phase == Phase.VERIFY
        assert session.rollback_attempted
        assert session.rollback is not None and session.rollback.success
        assert len(revert.calls) == 1
        assert [r.phase for r in session.history] == [
            Phase.INITIALIZE,
            Phase.VALIDATE,
            Phase.PREPARE,
            Phase.DEPLOY,
            Phase.VERIFY,
        ]
        assert session.phase_result(Phase.VERIFY).status == PhaseStatus.ERROR
        assert Phase.MONITOR not in recorder.calls

    @pytest.mark.asyncio
    async def test_failed_rollback_surfaces(self, build, make_executor, health_monitor) -> None:
        """Test a failed rollback leaves the session failed with the rollback error."""

        class BrokenRevert:
            def __init__(self) -> None:
                self.calls = 0

            async def revert(self, target, snapshot) -> bool:
                self.calls += 1
                return False

        executor = make_executor(max_retries=1)
        revert = BrokenRevert()
        orchestrator = build(
            executor=executor,
            rollback_manager=RollbackManager(executor, revert),
            is_healthy=always(False),
        )

        session = await orchestrator.run()

        assert session.status == SessionStatus.FAILED
        assert session.error_kind == ErrorKind.ROLLBACK
        assert "Rollback of target 'api.example.com' failed" in session.error
        assert session.rollback is None
        assert session.rollback_attempted
        assert revert.calls == 2

    @pytest.mark.asyncio
    async def test_hanging_rollback_times_out(self, build, make_executor) -> None:
        """Test a revert that never returns fails the session instead of hanging it."""

        class HangingRevert:
            async def revert(self, target, snapshot) -> bool:
                await asyncio.sleep(3600)
                return True

        executor = make_executor(max_retries=0)
        orchestrator = build(
            executor=executor,
            rollback_manager=RollbackManager(executor, HangingRevert()),
            is_healthy=always(False),
            config=OrchestratorConfig(rollback_timeout=0.05),
        )

        session = await asyncio.wait_for(orchestrator.run(), timeout=5)

        assert session.status == SessionStatus.FAILED
        assert session.error_kind == ErrorKind.ROLLBACK
        assert "timed out after 0.05s" in session.error
        assert session.rollback is None
        assert session.rollback_attempted

    @pytest.mark.asyncio
    async def test_verify_handler_rejection(self, build, revert) -> None:
        """Test a Verify handler returning False triggers rollback."""

        async def verify(ctx: PhaseContext) -> bool:
            return False

        session = await build(handlers={Phase.VERIFY: verify}).run()

        assert session.status == SessionStatus.ROLLED_BACK
        assert len(revert.calls) == 1

    @pytest.mark.asyncio
    async def test_verify_not_retried_by_executor(self, build, health_monitor) -> None:
        """Test Verify polls through the health monitor only, not executor retries."""
        checks = 0

        def is_healthy(target: TargetSpec) -> bool:
            nonlocal checks
            checks += 1
            return False

        await build(is_healthy=is_healthy).run()

        assert checks == health_monitor.config.max_retries + 1


class TestFatalFailures:
    """Tests for phase failures that end the session."""

    @pytest.mark.asyncio
    async def test_validation_failure_stops_session(self, build, recorder, revert) -> None:
        """Test a permanent failure fails the session without rollback."""
        handlers = recorder.handlers(
            validate=recorder.handler(Phase.VALIDATE, error=ValidationError("database missing"))
        )

        session = await build(handlers=handlers, is_healthy=always(True)).run()

        assert session.status == SessionStatus.FAILED
        assert session.state == OrchestratorState.FAILED
        assert session.failed_phase == Phase.VALIDATE
        assert session.error_kind == ErrorKind.PERMANENT
        assert session.error == "database missing"
        assert recorder.calls == [Phase.INITIALIZE, Phase.VALIDATE]
        assert [r.phase for r in session.history] == [Phase.INITIALIZE, Phase.VALIDATE]
        assert not session.rollback_attempted
        assert revert.calls == []

    @pytest.mark.asyncio
    async def test_deploy_failure_after_retries(self, build, recorder) -> None:
        """Test an exhausted deploy fails with a transient error kind."""
        handlers = recorder.handlers(
            deploy=recorder.handler(Phase.DEPLOY, error=TransientError("ECONNRESET"))
        )

        session = await build(handlers=handlers, is_healthy=always(True)).run()

        assert session.status == SessionStatus.FAILED
        assert session.failed_phase == Phase.DEPLOY
        assert session.error_kind == ErrorKind.TRANSIENT
        assert recorder.calls.count(Phase.DEPLOY) == 3

    @pytest.mark.asyncio
    async def test_phase_timeout(self, build) -> None:
        """Test a phase exceeding its deadline fails instead of hanging."""

        async def prepare(ctx: PhaseContext) -> None:
            await asyncio.sleep(5)

        session = await build(
            handlers={Phase.PREPARE: prepare},
            config=OrchestratorConfig(phase_timeout=0.05),
        ).run()

        assert session.status == SessionStatus.FAILED
        assert session.failed_phase == Phase.PREPARE
        assert session.error_kind == ErrorKind.TRANSIENT
        assert "timed out" in session.error

    @pytest.mark.asyncio
    async def test_open_circuit_refuses_phase(self, build, make_executor, revert) -> None:
        """Test an open deploy circuit fails the phase without invoking it."""
        executor = make_executor(max_retries=0, circuit_breaker_threshold=1)

        async def failing() -> None:
            raise TransientError("503")

        with pytest.raises(TransientError):
            await executor.execute("api.example.com:deploy", failing)

        recorder = Recorder()
        session = await build(
            executor=executor,
            rollback_manager=RollbackManager(executor, revert),
            handlers=recorder.handlers(),
        ).run()

        assert session.status == SessionStatus.FAILED
        assert session.error_kind == ErrorKind.CIRCUIT_OPEN
        assert Phase.DEPLOY not in recorder.calls

    @pytest.mark.asyncio
    async def test_monitor_failure_is_warning(self, build, recorder) -> None:
        """Test a failing Monitor phase leaves the session succeeded."""
        handlers = recorder.handlers(
            monitor=recorder.handler(Phase.MONITOR, error=ValidationError("dashboard quota"))
        )

        session = await build(handlers=handlers, is_healthy=always(True)).run()

        assert session.status == SessionStatus.SUCCEEDED
        monitor = session.phase_result(Phase.MONITOR)
        assert monitor.status == PhaseStatus.WARNING
        assert monitor.error == "dashboard quota"


class TestDryRun:
    """Tests for dry-run mode."""

    @pytest.mark.asyncio
    async def test_handlers_not_invoked(self, build, recorder, rollback_manager) -> None:
        """Test dry run records every phase without side effects."""
        orchestrator = build(
            handlers=recorder.handlers(),
            is_healthy=always(False),
            config=OrchestratorConfig(dry_run=True),
        )

        session = await orchestrator.run()

        assert session.status == SessionStatus.SUCCEEDED
        assert recorder.calls == []
        assert all(r.payload == {"dry_run": True} for r in session.history)
        assert len(session.history) == 6
        assert rollback_manager.points("api.example.com") == []


class TestEventsAndState:
    """Tests for session events and immutability."""

    @pytest.mark.asyncio
    async def test_event_stream(self, build) -> None:
        """Test subscribers see the full lifecycle in order."""
        orchestrator = build(is_healthy=always(True))
        events = []
        orchestrator.subscribe(events.append)

        await orchestrator.run()

        types = [e.event_type for e in events]
        assert types[0] == SessionEventType.SESSION_STARTED
        assert types[-1] == SessionEventType.SESSION_FINISHED
        assert types[1:-1] == [SessionEventType.PHASE_STARTED, SessionEventType.PHASE_COMPLETED] * 6
        assert events[-1].status == "succeeded"
        assert {e.session_id for e in events} == {orchestrator.session.session_id}

    @pytest.mark.asyncio
    async def test_rollback_events(self, build) -> None:
        """Test rollback start and completion are published."""
        orchestrator = build(is_healthy=always(False))
        events = []
        orchestrator.subscribe(events.append)

        await orchestrator.run()

        types = [e.event_type for e in events]
        assert SessionEventType.ROLLBACK_STARTED in types
        assert types.index(SessionEventType.ROLLBACK_COMPLETED) == types.index(
            SessionEventType.ROLLBACK_STARTED
        ) + 1
        completed = events[types.index(SessionEventType.ROLLBACK_COMPLETED)]
        assert completed.status == "succeeded"

    @pytest.mark.asyncio
    async def test_async_subscriber_and_unsubscribe(self, build) -> None:
        """Test async subscribers are awaited and can unsubscribe."""
        orchestrator = build(is_healthy=always(True))
        seen: list[str] = []

        async def subscriber(event) -> None:
            seen.append(event.event_type.value)

        unsubscribe = orchestrator.subscribe(subscriber)
        unsubscribe()
        await orchestrator.run()

        assert seen == []

    @pytest.mark.asyncio
    async def test_failing_subscriber_does_not_break_run(self, build) -> None:
        """Test subscriber errors are contained."""
        orchestrator = build(is_healthy=always(True))

        def subscriber(event) -> None:
            raise RuntimeError("dashboard down")

        orchestrator.subscribe(subscriber)
        session = await orchestrator.run()

        assert session.status == SessionStatus.SUCCEEDED

    @pytest.mark.asyncio
    async def test_run_twice_rejected(self, build) -> None:
        """Test a session cannot be re-entered."""
        orchestrator = build(is_healthy=always(True))
        await orchestrator.run()

        with pytest.raises(SessionStateError):
            await orchestrator.run()

    @pytest.mark.asyncio
    async def test_terminal_session_immutable(self, build) -> None:
        """Test a finished session rejects further results."""
        session = await build(is_healthy=always(True)).run()

        with pytest.raises(SessionStateError):
            session.record(PhaseResult(Phase.MONITOR, PhaseStatus.OK, 0.0))
        with pytest.raises(SessionStateError):
            session.finish(SessionStatus.FAILED)

    def test_out_of_order_result_rejected(self) -> None:
        """Test phase results must move forward."""
        session = DeploymentSession(target=TARGET)
        session.record(PhaseResult(Phase.DEPLOY, PhaseStatus.OK, 0.0))

        with pytest.raises(SessionStateError):
            session.record(PhaseResult(Phase.PREPARE, PhaseStatus.OK, 0.0))
        with pytest.raises(SessionStateError):
            session.record(PhaseResult(Phase.DEPLOY, PhaseStatus.OK, 0.0))
