"""
Rollwright Core - Resilience executor.

Wraps every call to the remote platform with:
- a circuit breaker per operation id
- bounded retry with exponential backoff and jitter
- optional graceful degradation to an explicit fallback

Circuit state is owned by the executor instance; share one executor between
components that must see the same circuits.
"""

from __future__ import annotations

import asyncio
import inspect
import random
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, replace
from functools import wraps
from typing import Any, Generic, TypeVar

from loguru import logger

from rollwright.config.models import ResilienceConfig
from rollwright.core.classify import is_retryable
from rollwright.core.exceptions import AttemptTimeoutError, CircuitOpenError, RateLimitError
from rollwright.core.logging import log_prefix
from rollwright.core.metrics import track_circuit_trip, track_degraded, track_retry
from rollwright.core.protocols import Clock, SystemClock
from rollwright.core.types import BreakerState

T = TypeVar("T")

DEFAULT_CAP_DELAY = 30.0
JITTER_RATIO = 0.1


@dataclass
class CircuitState:
    """Circuit breaker record for one operation id."""

    operation_id: str
    failure_count: int = 0
    last_failure_time: float | None = None
    state: BreakerState = BreakerState.CLOSED
    trial_in_flight: bool = False


@dataclass(frozen=True)
class RetryAttempt:
    """One attempt of an executed operation."""

    operation_id: str
    index: int
    delay: float
    outcome: str  # "success" | "failure"
    error: str | None = None


@dataclass(frozen=True)
class Degraded(Generic[T]):
    """
    Sentinel returned instead of a real result under graceful degradation.

    ``reason`` is ``"circuit_open"`` when the work was never invoked and
    ``"retries_exhausted"`` when every attempt failed.
    """

    operation_id: str
    reason: str
    value: T | None = None
    error: BaseException | None = None

    @property
    def degraded(self) -> bool:
        return True


def is_degraded(result: Any) -> bool:
    """Whether ``execute`` answered with a degraded sentinel."""
    return isinstance(result, Degraded)


@dataclass
class ExecuteOptions:
    """
    Per-call overrides. ``None`` fields fall back to the executor config.

    Attributes:
        max_retries: Retries after the first attempt
        base_delay: Base backoff delay in seconds
        cap_delay: Upper bound of a single delay
        graceful_degradation: Return ``Degraded`` instead of raising
        attempt_timeout: Deadline of each attempt
        fallback: Value carried by the ``Degraded`` sentinel
        fallback_factory: Builds the fallback from the last error (wins over ``fallback``)
        retry_if: Decides whether an error is retryable (default: classify_error)
        on_attempt: Observer called with every RetryAttempt
    """

    max_retries: int | None = None
    base_delay: float | None = None
    cap_delay: float | None = None
    graceful_degradation: bool | None = None
    attempt_timeout: float | None = None
    fallback: Any = None
    fallback_factory: Callable[[BaseException | None], Any] | None = None
    retry_if: Callable[[BaseException], bool] | None = None
    on_attempt: Callable[[RetryAttempt], None] | None = None


def compute_backoff(
    attempt: int,
    base_delay: float,
    cap_delay: float = DEFAULT_CAP_DELAY,
    rng: random.Random | None = None,
) -> float:
    """
    Delay before retry ``attempt`` (0-indexed).

    ``min(base * 2**attempt + jitter, cap)`` with jitter uniform in
    ``[0, 0.1 * base * 2**attempt)``.
    """
    exponential = base_delay * (2**attempt)
    jitter = (rng or random).random() * JITTER_RATIO * exponential
    return min(exponential + jitter, cap_delay)


def synthetic_operation_id(prefix: str = "operation") -> str:
    """Unique id for a unit of work that has no stable key of its own."""
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


class ResilienceExecutor:
    """
    Circuit breaker + retry + graceful degradation around a unit of work.

    Example:
        executor = ResilienceExecutor(ResilienceConfig(max_retries=2, base_delay=0.5))
        url = await executor.execute("api.example.com:deploy", lambda: invoker.invoke(...))
    """

    def __init__(
        self,
        config: ResilienceConfig | None = None,
        clock: Clock | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self.config = config or ResilienceConfig()
        self.clock = clock or SystemClock()
        self.rng = rng or random.Random()
        self._circuits: dict[str, CircuitState] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    def _lock_for(self, operation_id: str) -> asyncio.Lock:
        lock = self._locks.get(operation_id)
        if lock is None:
            lock = self._locks[operation_id] = asyncio.Lock()
        return lock

    # ------------------------------------------------------------------
    # Circuit breaker
    # ------------------------------------------------------------------

    def _refresh(self, circuit: CircuitState) -> None:
        """Move an open circuit to half-open once its timeout elapsed."""
        if circuit.state != BreakerState.OPEN or circuit.last_failure_time is None:
            return
        elapsed = self.clock.now() - circuit.last_failure_time
        if elapsed >= self.config.circuit_breaker_timeout:
            logger.info(
                f"{log_prefix('🔄')} Circuit '{circuit.operation_id}': OPEN → HALF_OPEN (testing recovery)"
            )
            circuit.state = BreakerState.HALF_OPEN

    async def _check_circuit(self, operation_id: str) -> CircuitOpenError | None:
        """Return the refusal for an open circuit, None if the call may proceed."""
        async with self._lock_for(operation_id):
            circuit = self._circuits.get(operation_id)
            if circuit is None:
                return None
            self._refresh(circuit)
            if circuit.state == BreakerState.HALF_OPEN:
                if not circuit.trial_in_flight:
                    circuit.trial_in_flight = True
                    return None
                logger.warning(
                    f"{log_prefix('🟡')} Circuit '{operation_id}' HALF_OPEN: trial call in flight"
                )
                return CircuitOpenError(operation_id, circuit.failure_count, 0.0)
            if circuit.state != BreakerState.OPEN:
                return None
            remaining = self.config.circuit_breaker_timeout - (
                self.clock.now() - (circuit.last_failure_time or 0.0)
            )
            logger.warning(
                f"{log_prefix('🔴')} Circuit '{operation_id}' OPEN: {circuit.failure_count} failures, "
                f"recovery in {remaining:.1f}s"
            )
            return CircuitOpenError(operation_id, circuit.failure_count, remaining)

    async def _record_success(self, operation_id: str) -> None:
        async with self._lock_for(operation_id):
            circuit = self._circuits.get(operation_id)
            if circuit is None:
                return
            if circuit.state == BreakerState.HALF_OPEN:
                logger.info(f"{log_prefix('🟢')} Circuit '{operation_id}': HALF_OPEN → CLOSED")
            elif circuit.failure_count > 0:
                logger.debug(
                    f"Circuit '{operation_id}': reset failure count (was {circuit.failure_count})"
                )
            circuit.failure_count = 0
            circuit.state = BreakerState.CLOSED
            circuit.trial_in_flight = False

    async def _record_failure(self, operation_id: str) -> None:
        async with self._lock_for(operation_id):
            circuit = self._circuits.setdefault(operation_id, CircuitState(operation_id))
            circuit.failure_count += 1
            circuit.last_failure_time = self.clock.now()
            circuit.trial_in_flight = False

            if circuit.state == BreakerState.HALF_OPEN:
                logger.warning(
                    f"{log_prefix('⚠️')} Circuit '{operation_id}': HALF_OPEN → OPEN (recovery failed)"
                )
                circuit.state = BreakerState.OPEN
                track_circuit_trip(operation_id)
            elif (
                circuit.state == BreakerState.CLOSED
                and circuit.failure_count >= self.config.circuit_breaker_threshold
            ):
                logger.error(
                    f"{log_prefix('🔴')} Circuit '{operation_id}': CLOSED → OPEN "
                    f"(threshold {self.config.circuit_breaker_threshold} reached)"
                )
                circuit.state = BreakerState.OPEN
                track_circuit_trip(operation_id)

    def _release_trial(self, operation_id: str) -> None:
        circuit = self._circuits.get(operation_id)
        if circuit is not None:
            circuit.trial_in_flight = False

    def circuit(self, operation_id: str) -> CircuitState | None:
        """Copy of the circuit record, None if the operation never failed."""
        circuit = self._circuits.get(operation_id)
        if circuit is None:
            return None
        self._refresh(circuit)
        return replace(circuit)

    def circuit_status(self, operation_id: str) -> dict[str, Any]:
        """Circuit breaker status for an operation id."""
        circuit = self._circuits.get(operation_id)
        if circuit is None:
            return {
                "operation_id": operation_id,
                "state": BreakerState.CLOSED.value,
                "failure_count": 0,
                "last_failure_time": None,
                "retry_in": 0.0,
            }
        self._refresh(circuit)
        retry_in = 0.0
        if circuit.state == BreakerState.OPEN and circuit.last_failure_time is not None:
            retry_in = max(
                0.0,
                self.config.circuit_breaker_timeout - (self.clock.now() - circuit.last_failure_time),
            )
        return {
            "operation_id": operation_id,
            "state": circuit.state.value,
            "failure_count": circuit.failure_count,
            "last_failure_time": circuit.last_failure_time,
            "retry_in": retry_in,
        }

    def all_circuit_statuses(self) -> dict[str, dict[str, Any]]:
        return {op: self.circuit_status(op) for op in list(self._circuits)}

    def reset_circuit(self, operation_id: str) -> None:
        """Forget the circuit of one operation (manual recovery)."""
        if self._circuits.pop(operation_id, None) is not None:
            logger.info(f"{log_prefix('🔄')} Circuit '{operation_id}' reset")

    def reset_all(self) -> None:
        self._circuits.clear()

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def _resolve(self, options: ExecuteOptions | None) -> ExecuteOptions:
        opts = options or ExecuteOptions()
        cfg = self.config
        return replace(
            opts,
            max_retries=cfg.max_retries if opts.max_retries is None else opts.max_retries,
            base_delay=cfg.base_delay if opts.base_delay is None else opts.base_delay,
            cap_delay=cfg.cap_delay if opts.cap_delay is None else opts.cap_delay,
            graceful_degradation=(
                cfg.graceful_degradation
                if opts.graceful_degradation is None
                else opts.graceful_degradation
            ),
            attempt_timeout=(
                cfg.attempt_timeout if opts.attempt_timeout is None else opts.attempt_timeout
            ),
            retry_if=opts.retry_if or is_retryable,
        )

    async def _run_attempt(
        self, operation_id: str, work: Callable[[], Awaitable[T] | T], timeout: float | None
    ) -> T:
        result = work()
        if not inspect.isawaitable(result):
            return result
        if not timeout:
            return await result
        try:
            return await asyncio.wait_for(result, timeout=timeout)
        except TimeoutError as e:
            raise AttemptTimeoutError(operation_id, timeout) from e

    def _degrade(
        self, operation_id: str, reason: str, error: BaseException | None, opts: ExecuteOptions
    ) -> Degraded:
        value = opts.fallback_factory(error) if opts.fallback_factory else opts.fallback
        logger.warning(
            f"{log_prefix('⚠️')} Graceful degradation for '{operation_id}' ({reason})"
        )
        track_degraded(operation_id, reason)
        return Degraded(operation_id=operation_id, reason=reason, value=value, error=error)

    @staticmethod
    def _notify(opts: ExecuteOptions, attempt: RetryAttempt) -> None:
        if opts.on_attempt is not None:
            opts.on_attempt(attempt)

    async def execute(
        self,
        operation_id: str,
        work: Callable[[], Awaitable[T] | T],
        options: ExecuteOptions | None = None,
    ) -> T | Degraded:
        """
        Run ``work`` through the circuit breaker and retry loop.

        Args:
            operation_id: Stable key of the logical operation (see synthetic_operation_id)
            work: Zero-argument callable returning a value or an awaitable
            options: Per-call overrides

        Returns:
            The work's result, or a ``Degraded`` sentinel under graceful degradation.

        Raises:
            CircuitOpenError: Circuit open and degradation disabled
            PermanentError: Non-retryable failure, raised verbatim
            Exception: Last failure once retries are exhausted
        """
        if not operation_id:
            raise ValueError("operation_id cannot be empty")
        opts = self._resolve(options)
        if opts.max_retries < 0:
            raise ValueError(f"max_retries cannot be negative (got {opts.max_retries})")

        refusal = await self._check_circuit(operation_id)
        if refusal is not None:
            if opts.graceful_degradation:
                return self._degrade(operation_id, "circuit_open", refusal, opts)
            raise refusal

        last_error: Exception | None = None
        for attempt in range(opts.max_retries + 1):
            try:
                result = await self._run_attempt(operation_id, work, opts.attempt_timeout)
            except asyncio.CancelledError:
                self._release_trial(operation_id)
                raise
            except Exception as e:
                last_error = e
                await self._record_failure(operation_id)

                if not opts.retry_if(e):
                    logger.error(f"{log_prefix('❌')} '{operation_id}' failed permanently: {e}")
                    self._notify(opts, RetryAttempt(operation_id, attempt, 0.0, "failure", str(e)))
                    raise

                if attempt >= opts.max_retries:
                    self._notify(opts, RetryAttempt(operation_id, attempt, 0.0, "failure", str(e)))
                    break

                delay = compute_backoff(attempt, opts.base_delay, opts.cap_delay, self.rng)
                if isinstance(e, RateLimitError) and e.retry_after:
                    delay = min(max(delay, e.retry_after), opts.cap_delay)
                self._notify(opts, RetryAttempt(operation_id, attempt, delay, "failure", str(e)))
                track_retry(operation_id, attempt + 1)

                error_msg = str(e)[:80] + "..." if len(str(e)) > 80 else str(e)
                logger.warning(
                    f"{log_prefix('🔄')} Retry {attempt + 1}/{opts.max_retries} for "
                    f"'{operation_id}' in {delay:.2f}s: {error_msg}"
                )
                await self.clock.sleep(delay)

                if await self._check_circuit(operation_id) is not None:
                    logger.warning(f"Circuit for '{operation_id}' opened during retries, giving up")
                    break
            else:
                await self._record_success(operation_id)
                self._notify(opts, RetryAttempt(operation_id, attempt, 0.0, "success"))
                return result

        if opts.graceful_degradation:
            return self._degrade(operation_id, "retries_exhausted", last_error, opts)

        logger.error(
            f"{log_prefix('❌')} Retries exhausted for '{operation_id}' "
            f"after {opts.max_retries + 1} attempts"
        )
        if last_error is None:
            raise ValueError(f"'{operation_id}' ran no attempt")
        raise last_error


def resilient(
    executor: ResilienceExecutor, operation_id: str, options: ExecuteOptions | None = None
) -> Callable:
    """
    Decorator running an async function through an executor.

    Example:
        @resilient(executor, "control_plane:list_routes")
        async def list_routes(zone: str) -> list[dict]:
            ...
    """

    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T | Degraded]]:
        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T | Degraded:
            return await executor.execute(operation_id, lambda: func(*args, **kwargs), options)

        return wrapper

    return decorator
