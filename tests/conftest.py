"""Pytest configuration and shared fixtures."""

from __future__ import annotations

import asyncio
import random
from collections.abc import Callable
from typing import Any

import pytest

from rollwright.config.models import HealthConfig, ResilienceConfig
from rollwright.core.metrics import reset_metrics
from rollwright.core.resilience import ResilienceExecutor
from rollwright.core.types import TargetSpec
from rollwright.health.monitor import HealthMonitor
from rollwright.remediation.rollback import RollbackManager


class FakeClock:
    """Deterministic clock: sleeping advances time instantly and records the delay."""

    def __init__(self, start: float = 1000.0) -> None:
        self.time = start
        self.sleeps: list[float] = []

    def now(self) -> float:
        return self.time

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.time += max(0.0, seconds)
        # Let other tasks run
        await asyncio.sleep(0)

    def advance(self, seconds: float) -> None:
        self.time += seconds


class RecordingRevert:
    """Revert collaborator that records every call."""

    def __init__(self, results: list[bool] | None = None) -> None:
        self.calls: list[tuple[str, Any]] = []
        self._results = list(results or [])

    async def revert(self, target: TargetSpec, snapshot: Any) -> bool:
        self.calls.append((target.target_id, snapshot))
        if self._results:
            return self._results.pop(0)
        return True


@pytest.fixture(autouse=True)
def _reset_metrics() -> None:
    """Start every test with empty metrics."""
    reset_metrics()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def make_executor(clock: FakeClock) -> Callable[..., ResilienceExecutor]:
    """Build an executor on the fake clock with a seeded jitter source."""

    def build(**overrides: Any) -> ResilienceExecutor:
        settings = {"max_retries": 2, "base_delay": 0.1, "cap_delay": 30.0}
        settings.update(overrides)
        return ResilienceExecutor(
            ResilienceConfig(**settings), clock=clock, rng=random.Random(42)
        )

    return build


@pytest.fixture
def executor(make_executor: Callable[..., ResilienceExecutor]) -> ResilienceExecutor:
    return make_executor()


@pytest.fixture
def health_monitor(clock: FakeClock) -> HealthMonitor:
    return HealthMonitor(
        HealthConfig(max_retries=2, base_delay=0.5, cap_delay=5.0, deadline=60.0),
        clock=clock,
        rng=random.Random(7),
    )


@pytest.fixture
def revert() -> RecordingRevert:
    return RecordingRevert()


@pytest.fixture
def rollback_manager(executor: ResilienceExecutor, revert: RecordingRevert) -> RollbackManager:
    return RollbackManager(executor, revert)

