"""
Rollwright Orchestration - Deployment lifecycle for one or many targets.
"""

from rollwright.orchestration.audit import AuditEntry, AuditLog
from rollwright.orchestration.coordinator import (
    AggregateResult,
    MultiTargetCoordinator,
    TargetOutcome,
    orchestrator_factory,
)
from rollwright.orchestration.orchestrator import PhaseContext, PhaseHandler, PhaseOrchestrator
from rollwright.orchestration.phases import StandardPhases
from rollwright.orchestration.session import (
    DeploymentSession,
    PhaseResult,
    SessionEvent,
    SessionEventType,
)

__all__ = [
    "AggregateResult",
    "AuditEntry",
    "AuditLog",
    "DeploymentSession",
    "MultiTargetCoordinator",
    "PhaseContext",
    "PhaseHandler",
    "PhaseOrchestrator",
    "PhaseResult",
    "SessionEvent",
    "SessionEventType",
    "StandardPhases",
    "TargetOutcome",
    "orchestrator_factory",
]
