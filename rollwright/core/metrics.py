"""
Rollwright Core - Metrics collection.

In-memory metrics for the orchestration engine. No exporter; callers read
``get_registry().get_all()``.

Metrics:
- rollwright_retry_attempts_total: retries issued by the resilience executor
- rollwright_circuit_trips_total: circuits that flipped to open
- rollwright_degraded_total: calls answered with a degraded result
- rollwright_phase_duration_seconds: phase execution time
- rollwright_phase_results_total: phase results by phase and status
- rollwright_pool_in_use: connections currently handed out
- rollwright_pool_exhausted_total: acquire timeouts
- rollwright_rollbacks_total: rollbacks by outcome
- rollwright_health_checks_total: health checks by outcome
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from threading import Lock
from typing import Any


def _label_key(labels: dict[str, str]) -> str:
    return ",".join(f"{k}={v}" for k, v in sorted(labels.items()))


@dataclass
class Counter:
    """Simple counter metric."""

    name: str
    value: int = 0
    labels: dict[str, int] = field(default_factory=dict)
    _lock: Lock = field(default_factory=Lock, repr=False)

    def inc(self, amount: int = 1, **labels: str) -> None:
        """
        Increment counter.

        Args:
            amount: Amount to increment (default: 1)
            **labels: Optional labels (e.g., phase="deploy", status="ok")
        """
        with self._lock:
            if labels:
                key = _label_key(labels)
                self.labels[key] = self.labels.get(key, 0) + amount
            else:
                self.value += amount

    def get(self, **labels: str) -> int:
        """Get counter value, optionally for one label set."""
        with self._lock:
            if labels:
                return self.labels.get(_label_key(labels), 0)
            return self.value

    def total(self) -> int:
        """Unlabelled value plus every labelled value."""
        with self._lock:
            return self.value + sum(self.labels.values())

    def reset(self) -> None:
        with self._lock:
            self.value = 0
            self.labels.clear()


@dataclass
class Histogram:
    """Duration histogram with a sliding window of observations."""

    name: str
    buckets: list[float] = field(
        default_factory=lambda: [0.01, 0.05, 0.1, 0.5, 1.0, 5.0, 10.0, 30.0, 60.0]
    )
    observations: list[float] = field(default_factory=list)
    _lock: Lock = field(default_factory=Lock, repr=False)
    max_observations: int = 10000

    def observe(self, value: float) -> None:
        """Record an observation, keeping only the last ``max_observations``."""
        with self._lock:
            self.observations.append(value)
            if len(self.observations) > self.max_observations:
                self.observations = self.observations[-self.max_observations :]

    def get_stats(self) -> dict[str, Any]:
        """
        Get histogram statistics.

        Returns:
            Dict with count, sum, min, max, avg, and cumulative bucket counts
        """
        with self._lock:
            if not self.observations:
                return {
                    "count": 0,
                    "sum": 0.0,
                    "min": 0.0,
                    "max": 0.0,
                    "avg": 0.0,
                    "buckets": {str(b): 0 for b in self.buckets},
                }

            count = len(self.observations)
            total = sum(self.observations)
            return {
                "count": count,
                "sum": total,
                "min": min(self.observations),
                "max": max(self.observations),
                "avg": total / count,
                "buckets": {
                    str(b): sum(1 for v in self.observations if v <= b) for b in self.buckets
                },
            }

    def reset(self) -> None:
        with self._lock:
            self.observations.clear()


@dataclass
class Gauge:
    """Gauge metric for current values."""

    name: str
    value: float = 0.0
    _lock: Lock = field(default_factory=Lock, repr=False)

    def set(self, value: float) -> None:
        with self._lock:
            self.value = value

    def inc(self, amount: float = 1.0) -> None:
        with self._lock:
            self.value += amount

    def dec(self, amount: float = 1.0) -> None:
        with self._lock:
            self.value -= amount

    def get(self) -> float:
        with self._lock:
            return self.value

    def reset(self) -> None:
        with self._lock:
            self.value = 0.0


class MetricsRegistry:
    """
    Registry for all metrics.

    Thread-safe in-memory metrics storage.
    """

    def __init__(self) -> None:
        self._counters: dict[str, Counter] = {}
        self._histograms: dict[str, Histogram] = {}
        self._gauges: dict[str, Gauge] = {}
        self._lock = Lock()

    def counter(self, name: str) -> Counter:
        """Get or create a counter metric."""
        with self._lock:
            if name not in self._counters:
                self._counters[name] = Counter(name=name)
            return self._counters[name]

    def histogram(self, name: str, buckets: list[float] | None = None) -> Histogram:
        """Get or create a histogram metric."""
        with self._lock:
            if name not in self._histograms:
                if buckets:
                    self._histograms[name] = Histogram(name=name, buckets=buckets)
                else:
                    self._histograms[name] = Histogram(name=name)
            return self._histograms[name]

    def gauge(self, name: str) -> Gauge:
        """Get or create a gauge metric."""
        with self._lock:
            if name not in self._gauges:
                self._gauges[name] = Gauge(name=name)
            return self._gauges[name]

    def get_all(self) -> dict[str, Any]:
        """Snapshot of all counters, histograms and gauges."""
        with self._lock:
            return {
                "counters": {
                    name: {"value": c.value, "labels": dict(c.labels)}
                    for name, c in self._counters.items()
                },
                "histograms": {name: h.get_stats() for name, h in self._histograms.items()},
                "gauges": {name: g.value for name, g in self._gauges.items()},
            }

    def reset(self) -> None:
        """Reset all metrics."""
        with self._lock:
            for counter in self._counters.values():
                counter.reset()
            for histogram in self._histograms.values():
                histogram.reset()
            for gauge in self._gauges.values():
                gauge.reset()


_registry = MetricsRegistry()


def get_registry() -> MetricsRegistry:
    """Get the process metrics registry."""
    return _registry


def reset_metrics() -> None:
    """Reset all metrics in the process registry."""
    _registry.reset()


# ============================================================================
# Engine Metrics
# ============================================================================


def track_retry(operation_id: str, attempt: int) -> None:
    _registry.counter("rollwright_retry_attempts_total").inc(
        operation=operation_id, attempt=str(attempt)
    )


def track_circuit_trip(operation_id: str) -> None:
    _registry.counter("rollwright_circuit_trips_total").inc(operation=operation_id)


def track_degraded(operation_id: str, reason: str) -> None:
    _registry.counter("rollwright_degraded_total").inc(operation=operation_id, reason=reason)


def track_phase(phase: str, status: str, duration: float) -> None:
    """
    Track one phase execution.

    Args:
        phase: Phase name (e.g., "deploy")
        status: PhaseResult status ("ok", "warning", "error")
        duration: Duration in seconds
    """
    _registry.counter("rollwright_phase_results_total").inc(phase=phase, status=status)
    _registry.histogram("rollwright_phase_duration_seconds").observe(duration)


def track_rollback(target_id: str, status: str) -> None:
    _registry.counter("rollwright_rollbacks_total").inc(target=target_id, status=status)


def track_health_check(status: str) -> None:
    _registry.counter("rollwright_health_checks_total").inc(status=status)


# ============================================================================
# Timing Context Manager
# ============================================================================


class timing:
    """
    Context manager for timing operations.

    Example:
        with timing("rollwright_query_duration_seconds") as t:
            await pool.execute_query("users-db", "SELECT 1")
        logger.debug(f"Query took {t.duration:.2f}s")
    """

    def __init__(self, histogram: str | None = None) -> None:
        self.histogram = histogram
        self.start_time: float = 0.0
        self.duration: float = 0.0

    def __enter__(self) -> timing:
        self.start_time = time.perf_counter()
        return self

    def __exit__(self, *args: Any) -> None:
        self.duration = time.perf_counter() - self.start_time
        if self.histogram:
            _registry.histogram(self.histogram).observe(self.duration)
