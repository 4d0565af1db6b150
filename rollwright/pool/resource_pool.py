"""
Rollwright Pool - Connection pool for the backing data store.

Manages bounded, reusable connections per logical database with idle expiry,
wait-for-free polling, and query/transaction helpers that always return the
connection they borrowed.
"""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import AsyncIterator, Awaitable, Callable, Iterable
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from loguru import logger

from rollwright.config.models import PoolConfig
from rollwright.core.exceptions import (
    ConfigurationError,
    PoolError,
    PoolExhaustedError,
    QueryTimeoutError,
    TransactionError,
)
from rollwright.core.logging import log_prefix
from rollwright.core.metrics import get_registry
from rollwright.core.protocols import Clock, QueryRunner, SystemClock


class TimeoutStrategy(StrEnum):
    """How a transaction's overall deadline is split across its statements."""

    EVEN = "even"  # total / count for every statement
    PER_STATEMENT = "per_statement"  # each statement gets the full query timeout


# (total_timeout, statement_count, statement_index) -> seconds
TimeoutPolicy = TimeoutStrategy | str | Callable[[float, int, int], float]


def statement_timeout(
    policy: TimeoutPolicy, total: float, count: int, index: int, query_timeout: float
) -> float:
    """Deadline of statement ``index`` under a timeout policy."""
    if callable(policy) and not isinstance(policy, str):
        return policy(total, count, index)
    strategy = TimeoutStrategy(policy)
    if strategy == TimeoutStrategy.PER_STATEMENT:
        return query_timeout
    return total / count


@dataclass
class PooledConnection:
    """One slot of a resource pool."""

    connection_id: str
    resource_name: str
    created_at: float
    last_used: float
    in_use: bool = False
    handle: Any = None
    closed: bool = False


@dataclass
class QueryResult:
    """Result of a single pooled query."""

    resource_name: str
    result: Any
    duration: float
    connection_id: str


@dataclass
class StatementResult:
    """One completed statement of a transaction."""

    index: int
    statement: str
    result: Any
    duration: float


@dataclass
class TransactionResult:
    """
    Result of a best-effort transaction.

    ``atomic`` is always False: the data store applies statements one by one
    and cannot undo the ones already applied.
    """

    resource_name: str
    transaction_id: str
    results: list[StatementResult] = field(default_factory=list)
    duration: float = 0.0
    atomic: bool = False


class ResourcePool:
    """
    Pooled connections keyed by resource name.

    Features:
    - Lazy creation up to ``max_pool_size`` per resource
    - Idle expiry: expired entries are never handed out and are replaced
    - Polling wait for a free entry, bounded by a timeout
    - Per-resource asyncio.Lock so two tasks never claim the same slot
    """

    def __init__(
        self,
        config: PoolConfig | None = None,
        runner: QueryRunner | None = None,
        opener: Callable[[str], Awaitable[Any]] | None = None,
        closer: Callable[[Any], Awaitable[None]] | None = None,
        clock: Clock | None = None,
    ) -> None:
        """
        Initialize pool.

        Args:
            config: Pool settings
            runner: Executes statements for execute_query / execute_transaction
            opener: Creates a backend handle for a new slot (optional)
            closer: Disposes of a backend handle on eviction (optional)
            clock: Time source (default: SystemClock)
        """
        self.config = config or PoolConfig()
        self.runner = runner
        self.opener = opener
        self.closer = closer
        self.clock = clock or SystemClock()
        self._pools: dict[str, list[PooledConnection]] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._in_use_gauge = get_registry().gauge("rollwright_pool_in_use")

    def _lock_for(self, resource_name: str) -> asyncio.Lock:
        lock = self._locks.get(resource_name)
        if lock is None:
            lock = self._locks[resource_name] = asyncio.Lock()
        return lock

    def is_expired(self, connection: PooledConnection, now: float | None = None) -> bool:
        """Idle longer than the configured idle timeout."""
        now = self.clock.now() if now is None else now
        return (now - connection.last_used) > self.config.connection_idle_timeout

    async def _close(self, connection: PooledConnection) -> None:
        if self.closer is not None and connection.handle is not None:
            try:
                await self.closer(connection.handle)
            except Exception as e:
                logger.warning(f"Failed to close connection {connection.connection_id}: {e}")

    async def _try_acquire(self, resource_name: str) -> PooledConnection | None:
        async with self._lock_for(resource_name):
            entries = self._pools.setdefault(resource_name, [])
            now = self.clock.now()

            for entry in list(entries):
                if entry.in_use:
                    continue
                if self.is_expired(entry, now):
                    logger.debug(f"{log_prefix('🔌')} Replacing expired connection {entry.connection_id}")
                    entries.remove(entry)
                    await self._close(entry)
                    continue
                entry.in_use = True
                entry.last_used = now
                return entry

            if len(entries) >= self.config.max_pool_size:
                return None

            # Slot is reserved before the opener awaits so capacity holds
            entry = PooledConnection(
                connection_id=f"conn_{uuid.uuid4().hex[:12]}",
                resource_name=resource_name,
                created_at=now,
                last_used=now,
                in_use=True,
            )
            entries.append(entry)
            if self.opener is not None:
                try:
                    entry.handle = await self.opener(resource_name)
                except Exception:
                    entries.remove(entry)
                    raise
            logger.debug(
                f"{log_prefix('🔌')} Opened connection {entry.connection_id} for '{resource_name}' "
                f"({len(entries)}/{self.config.max_pool_size})"
            )
            return entry

    async def acquire(self, resource_name: str, timeout: float | None = None) -> PooledConnection:
        """
        Borrow a connection.

        Args:
            resource_name: Logical database name
            timeout: Seconds to wait for a free slot (default: config.acquire_timeout)

        Returns:
            A connection marked in use.

        Raises:
            PoolExhaustedError: No slot freed before the timeout.
        """
        if not resource_name:
            raise ValueError("resource_name cannot be empty")
        timeout = self.config.acquire_timeout if timeout is None else timeout
        deadline = self.clock.now() + timeout

        while True:
            connection = await self._try_acquire(resource_name)
            if connection is not None:
                self._in_use_gauge.inc()
                return connection

            remaining = deadline - self.clock.now()
            if remaining <= 0:
                get_registry().counter("rollwright_pool_exhausted_total").inc(
                    resource=resource_name
                )
                logger.warning(
                    f"{log_prefix('⚠️')} Pool '{resource_name}' exhausted after {timeout}s "
                    f"({self.config.max_pool_size} in use)"
                )
                raise PoolExhaustedError(resource_name, timeout, self.config.max_pool_size)
            await self.clock.sleep(min(self.config.poll_interval, remaining))

    def release(self, resource_name: str, connection: PooledConnection) -> None:
        """
        Return a connection to its pool.

        The entry stays in the pool; only sweep() removes entries.
        Releasing a connection closed by close_all() is logged and ignored.

        Raises:
            PoolError: Connection not owned by this pool or not in use.
        """
        if connection.closed:
            logger.warning(
                f"{log_prefix('⚠️')} Connection {connection.connection_id} of '{resource_name}' "
                "released after close_all(), ignoring"
            )
            return
        entries = self._pools.get(resource_name, [])
        if not any(entry is connection for entry in entries):
            raise PoolError(
                f"Connection {connection.connection_id} does not belong to pool '{resource_name}'"
            )
        if not connection.in_use:
            raise PoolError(f"Connection {connection.connection_id} is already released")
        connection.in_use = False
        connection.last_used = self.clock.now()
        self._in_use_gauge.dec()

    @asynccontextmanager
    async def connection(
        self, resource_name: str, timeout: float | None = None
    ) -> AsyncIterator[PooledConnection]:
        """Borrow a connection for the duration of a block."""
        conn = await self.acquire(resource_name, timeout)
        try:
            yield conn
        finally:
            self.release(resource_name, conn)

    async def sweep(self) -> int:
        """
        Evict free connections idle beyond the idle timeout.

        Returns:
            Number of evicted connections.
        """
        evicted = 0
        for resource_name in list(self._pools):
            async with self._lock_for(resource_name):
                entries = self._pools[resource_name]
                now = self.clock.now()
                expired = [e for e in entries if not e.in_use and self.is_expired(e, now)]
                for entry in expired:
                    entries.remove(entry)
                    await self._close(entry)
                evicted += len(expired)
        if evicted:
            logger.debug(f"{log_prefix('🔌')} Evicted {evicted} idle connection(s)")
        return evicted

    def _require_runner(self) -> QueryRunner:
        if self.runner is None:
            raise ConfigurationError("ResourcePool has no query runner configured")
        return self.runner

    async def execute_query(
        self, resource_name: str, statement: str, timeout: float | None = None
    ) -> QueryResult:
        """
        Run one statement on one borrowed connection.

        Raises:
            QueryTimeoutError: Statement exceeded its deadline.
            PoolExhaustedError: No connection available.
        """
        runner = self._require_runner()
        timeout = self.config.query_timeout if timeout is None else timeout
        start = self.clock.now()

        conn = await self.acquire(resource_name)
        try:
            try:
                result = await asyncio.wait_for(
                    runner.run(resource_name, statement, conn), timeout=timeout
                )
            except TimeoutError as e:
                raise QueryTimeoutError(resource_name, timeout) from e
        finally:
            self.release(resource_name, conn)

        return QueryResult(
            resource_name=resource_name,
            result=result,
            duration=self.clock.now() - start,
            connection_id=conn.connection_id,
        )

    async def execute_transaction(
        self,
        resource_name: str,
        statements: Iterable[str],
        timeout: float | None = None,
        strategy: TimeoutPolicy | None = None,
    ) -> TransactionResult:
        """
        Run statements in order on one connection, stopping at the first failure.

        This is not atomic: statements before a failure stay applied. Use a
        rollback point for real recovery.

        Args:
            resource_name: Logical database name
            statements: Ordered statements
            timeout: Overall deadline (default: query_timeout * number of statements)
            strategy: Per-statement timeout policy (default: config.timeout_strategy)

        Raises:
            TransactionError: Carries the failed index and completed results.
        """
        runner = self._require_runner()
        statements = list(statements)
        transaction_id = f"txn_{uuid.uuid4().hex[:12]}"
        if not statements:
            return TransactionResult(resource_name=resource_name, transaction_id=transaction_id)

        count = len(statements)
        total = self.config.query_timeout * count if timeout is None else timeout
        policy = strategy if strategy is not None else self.config.timeout_strategy
        start = self.clock.now()
        results: list[StatementResult] = []

        conn = await self.acquire(resource_name)
        try:
            for index, statement in enumerate(statements):
                per_statement = statement_timeout(
                    policy, total, count, index, self.config.query_timeout
                )
                step_start = self.clock.now()
                try:
                    value = await asyncio.wait_for(
                        runner.run(resource_name, statement, conn), timeout=per_statement
                    )
                except TimeoutError as e:
                    cause = QueryTimeoutError(resource_name, per_statement)
                    raise TransactionError(resource_name, index, list(results), cause) from e
                except Exception as e:
                    raise TransactionError(resource_name, index, list(results), e) from e
                results.append(
                    StatementResult(index, statement, value, self.clock.now() - step_start)
                )
        except TransactionError as e:
            logger.error(
                f"{log_prefix('❌')} Transaction {transaction_id} on '{resource_name}' aborted at "
                f"statement {e.failed_index}/{count}; {len(results)} statement(s) already applied"
            )
            raise
        finally:
            self.release(resource_name, conn)

        logger.debug(f"Transaction {transaction_id} on '{resource_name}': {count} statement(s) applied")
        return TransactionResult(
            resource_name=resource_name,
            transaction_id=transaction_id,
            results=results,
            duration=self.clock.now() - start,
        )

    def in_use_count(self, resource_name: str) -> int:
        return sum(1 for e in self._pools.get(resource_name, []) if e.in_use)

    def stats(self, resource_name: str) -> dict[str, Any]:
        """Pool statistics for one resource."""
        entries = self._pools.get(resource_name, [])
        now = self.clock.now()
        return {
            "resource_name": resource_name,
            "total": len(entries),
            "in_use": sum(1 for e in entries if e.in_use),
            "idle": sum(1 for e in entries if not e.in_use),
            "expired": sum(1 for e in entries if not e.in_use and self.is_expired(e, now)),
            "max_pool_size": self.config.max_pool_size,
        }

    def all_stats(self) -> dict[str, dict[str, Any]]:
        return {name: self.stats(name) for name in self._pools}

    async def close_all(self) -> None:
        """Close every handle and forget all entries."""
        for resource_name in list(self._pools):
            async with self._lock_for(resource_name):
                for entry in self._pools[resource_name]:
                    if entry.in_use:
                        self._in_use_gauge.dec()
                    entry.closed = True
                    await self._close(entry)
                self._pools[resource_name] = []
        self._pools.clear()
        logger.debug(f"{log_prefix('🔌')} All pooled connections closed")
