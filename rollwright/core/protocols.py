"""
Core Protocols - Interfaces of the external collaborators.

The engine only orchestrates; everything that talks to the remote platform,
the data store, or the target's own state is injected through these.
"""

from __future__ import annotations

import asyncio
import time
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from rollwright.core.types import ApiResponse, HealthCheck, InvocationResult, TargetSpec


# =============================================================================
# Clock
# =============================================================================

@runtime_checkable
class Clock(Protocol):
    """Time source and non-blocking wait."""

    def now(self) -> float:
        """Monotonic seconds."""
        ...

    async def sleep(self, seconds: float) -> None:
        """Suspend the current task."""
        ...


class SystemClock:
    """Clock backed by ``time.monotonic`` and ``asyncio.sleep``."""

    def now(self) -> float:
        return time.monotonic()

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(max(0.0, seconds))


# =============================================================================
# Remote Platform
# =============================================================================

@runtime_checkable
class DeploymentInvoker(Protocol):
    """Wraps the external deployment CLI tool."""

    async def invoke(
        self, command: str, args: list[str], env: dict[str, str] | None = None
    ) -> InvocationResult:
        ...


@runtime_checkable
class ControlPlaneClient(Protocol):
    """REST control-plane API."""

    async def request(self, method: str, path: str, body: Any = None) -> ApiResponse:
        ...


@runtime_checkable
class HealthPredicate(Protocol):
    """Remote health check of a deployed target."""

    async def check(self, url: str) -> HealthCheck:
        ...


# =============================================================================
# Target State
# =============================================================================

@runtime_checkable
class RevertCollaborator(Protocol):
    """Restores a target from a captured snapshot."""

    async def revert(self, target: TargetSpec, snapshot: Any) -> bool:
        ...


@runtime_checkable
class SnapshotProvider(Protocol):
    """Captures the last known-good state of a target."""

    async def capture(self, target: TargetSpec) -> Any:
        ...


# =============================================================================
# Data Store
# =============================================================================

@runtime_checkable
class QueryRunner(Protocol):
    """Executes one statement against a logical database."""

    async def run(self, resource_name: str, statement: str, connection: Any) -> Any:
        ...
