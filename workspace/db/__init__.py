"""
Database module for the workspace server.

Provides:
- Async SQLite connections
- Fixed-size connection pooling
- Schema bootstrap
"""

from __future__ import annotations

from .connection import DatabaseConnection, RunResult, create_connection
from .pool import (
    ConnectionPool,
    PoolConfig,
    PoolManager,
    PoolStats,
    close_pool,
    get_pool,
    initialize_pool,
)
from .schema import SCHEMA, initialize_schema

__all__ = [
    "ConnectionPool",
    "DatabaseConnection",
    "PoolConfig",
    "PoolManager",
    "PoolStats",
    "RunResult",
    "SCHEMA",
    "close_pool",
    "create_connection",
    "get_pool",
    "initialize_pool",
    "initialize_schema",
]
