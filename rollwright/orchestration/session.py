"""
Rollwright Orchestration - Deployment session state.

A session records one target's walk through the phase state machine. Phase
results are write-once and strictly ordered; once the session reaches a
terminal status it can no longer be mutated.
"""

from __future__ import annotations

import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import TYPE_CHECKING, Any

from rollwright.core.exceptions import SessionStateError
from rollwright.core.types import (
    Environment,
    ErrorKind,
    OrchestratorState,
    Phase,
    PhaseStatus,
    SessionStatus,
    TargetSpec,
)

if TYPE_CHECKING:
    from rollwright.remediation.rollback import RollbackResult


class SessionEventType(StrEnum):
    """Lifecycle events published by an orchestrator."""

    SESSION_STARTED = "session_started"
    PHASE_STARTED = "phase_started"
    PHASE_COMPLETED = "phase_completed"
    ROLLBACK_STARTED = "rollback_started"
    ROLLBACK_COMPLETED = "rollback_completed"
    SESSION_FINISHED = "session_finished"


@dataclass(frozen=True)
class SessionEvent:
    """One entry of a session's event stream."""

    event_type: SessionEventType
    session_id: str
    target_id: str
    phase: Phase | None = None
    status: str | None = None
    details: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "event_type": self.event_type.value,
            "session_id": self.session_id,
            "target_id": self.target_id,
            "phase": self.phase.value if self.phase else None,
            "status": self.status,
            "details": self.details,
            "timestamp": self.timestamp.isoformat(),
        }


SessionSubscriber = Callable[[SessionEvent], Awaitable[None] | None]


@dataclass(frozen=True)
class PhaseResult:
    """Outcome of one executed phase."""

    phase: Phase
    status: PhaseStatus
    duration: float
    payload: Any = None
    error: str | None = None
    timestamp: datetime = field(default_factory=datetime.now)

    @property
    def ok(self) -> bool:
        return self.status != PhaseStatus.ERROR

    def to_dict(self) -> dict[str, Any]:
        return {
            "phase": self.phase.value,
            "status": self.status.value,
            "duration": self.duration,
            "error": self.error,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class DeploymentSession:
    """
    State of one target's deployment.

    Attributes:
        target: Target being deployed
        session_id: Unique session identifier
        environment: Deployment environment
        state: Current state machine position
        status: Terminal status, PENDING while running
        error: Error that ended the session, if any
        error_kind: Recovery category of ``error``
        failed_phase: Phase whose failure ended the session
        rollback: Result of the rollback, if one succeeded
        rollback_attempted: Whether a rollback was started
    """

    target: TargetSpec
    session_id: str = field(default_factory=lambda: f"dep_{uuid.uuid4().hex[:12]}")
    environment: Environment = Environment.PRODUCTION
    started_at: datetime = field(default_factory=datetime.now)
    finished_at: datetime | None = None
    state: OrchestratorState = OrchestratorState.INITIALIZE
    status: SessionStatus = SessionStatus.PENDING
    error: str | None = None
    error_kind: ErrorKind | None = None
    failed_phase: Phase | None = None
    rollback: RollbackResult | None = None
    rollback_attempted: bool = False
    _results: list[PhaseResult] = field(default_factory=list, repr=False)

    @property
    def target_id(self) -> str:
        return self.target.target_id

    @property
    def is_terminal(self) -> bool:
        return self.status != SessionStatus.PENDING

    @property
    def history(self) -> tuple[PhaseResult, ...]:
        """Phase results in execution order."""
        return tuple(self._results)

    @property
    def duration(self) -> float:
        end = self.finished_at or datetime.now()
        return (end - self.started_at).total_seconds()

    def _guard(self) -> None:
        if self.is_terminal:
            raise SessionStateError(
                f"Session {self.session_id} is already {self.status.value}",
                {"session_id": self.session_id},
            )

    def transition(self, state: OrchestratorState) -> None:
        self._guard()
        self.state = state

    def record(self, result: PhaseResult) -> None:
        """
        Append a phase result.

        Raises:
            SessionStateError: Session is terminal, the phase already ran,
                or the phase comes before the last recorded one.
        """
        self._guard()
        if self._results:
            last = self._results[-1].phase
            if result.phase.index <= last.index:
                raise SessionStateError(
                    f"Phase '{result.phase.value}' cannot follow '{last.value}'",
                    {"session_id": self.session_id},
                )
        self._results.append(result)

    def phase_result(self, phase: Phase) -> PhaseResult | None:
        for result in self._results:
            if result.phase == phase:
                return result
        return None

    def finish(self, status: SessionStatus, error: str | None = None) -> None:
        """Move the session to a terminal status."""
        self._guard()
        if status == SessionStatus.PENDING:
            raise SessionStateError("A session cannot finish as pending")
        self.status = status
        if error is not None:
            self.error = error
        self.finished_at = datetime.now()

    def to_dict(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "target_id": self.target_id,
            "environment": self.environment.value,
            "state": self.state.value,
            "status": self.status.value,
            "error": self.error,
            "error_kind": self.error_kind.value if self.error_kind else None,
            "failed_phase": self.failed_phase.value if self.failed_phase else None,
            "rollback_attempted": self.rollback_attempted,
            "rollback": self.rollback.to_dict() if self.rollback else None,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "phases": [r.to_dict() for r in self._results],
        }
