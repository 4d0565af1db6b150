"""
Rollwright Pool - Backing data-store connections.
"""

from rollwright.pool.resource_pool import (
    PooledConnection,
    QueryResult,
    ResourcePool,
    StatementResult,
    TimeoutStrategy,
    TransactionResult,
    statement_timeout,
)

__all__ = [
    "PooledConnection",
    "QueryResult",
    "ResourcePool",
    "StatementResult",
    "TimeoutStrategy",
    "TransactionResult",
    "statement_timeout",
]
