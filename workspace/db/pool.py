"""
Database connection pooling for SQLite.

Provides a fixed-size pool of async connections to a single SQLite file,
so concurrent request handlers never share a handle and never open
unbounded numbers of them.

Features:
- Fixed pool size, connections opened once at initialization
- FIFO wait queue when every connection is checked out
- Acquire timeout turning "wait forever" into PoolExhaustedError
- Scoped acquisition (async context manager and execute())
- Pending waiters rejected when the pool closes
- Explicit pool manager instead of hidden global state

All bookkeeping (moving a connection between available, in-use and the
wait queue) is synchronous, so it is atomic with respect to the event loop.

Example:
    from workspace.db.pool import ConnectionPool, PoolConfig

    pool = ConnectionPool("data/database.sqlite", PoolConfig(pool_size=5))
    await pool.initialize()

    async with pool.connection() as conn:
        rows = await conn.all("SELECT * FROM users")

    user = await pool.execute(
        lambda conn: conn.get("SELECT * FROM users WHERE id = ?", (1,))
    )

    await pool.close()
"""

from __future__ import annotations

import asyncio
from collections import deque
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from dataclasses import asdict, dataclass
from enum import Enum
from pathlib import Path
from typing import Any, TypeVar

from workspace.db.connection import DatabaseConnection, create_connection
from workspace.errors import (
    PoolAlreadyInitializedError,
    PoolClosedError,
    PoolExhaustedError,
    PoolNotInitializedError,
)
from workspace.logging_config import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

_UNSET: Any = object()


@dataclass
class PoolConfig:
    """Configuration for connection pool."""

    pool_size: int = 5

    # Seconds a caller may wait for a connection; None waits forever
    acquire_timeout: float | None = 10.0

    # SQLite settings
    enable_wal: bool = True
    enable_foreign_keys: bool = True
    busy_timeout: int = 5000  # milliseconds

    def __post_init__(self):
        if self.pool_size < 1:
            raise ValueError("pool_size must be >= 1")
        if self.acquire_timeout is not None and self.acquire_timeout <= 0:
            raise ValueError("acquire_timeout must be > 0 or None")
        if self.busy_timeout < 0:
            raise ValueError("busy_timeout must be >= 0")


@dataclass(frozen=True)
class PoolStats:
    """Point-in-time snapshot of pool occupancy."""

    total: int
    available: int
    in_use: int
    waiting: int
    acquires: int = 0
    releases: int = 0
    timeouts: int = 0

    def to_dict(self) -> dict[str, int]:
        return asdict(self)


class PoolState(Enum):
    NEW = "new"
    READY = "ready"
    CLOSED = "closed"


class ConnectionPool:
    """
    Fixed-size async SQLite connection pool.

    Every owned connection is in exactly one of ``available`` or ``in_use``
    once the pool is ready. Callers that find no available connection wait
    in FIFO order; a released connection goes straight to the oldest
    waiter and never passes through ``available`` in that case.
    """

    def __init__(
        self,
        db_path: Path | str,
        config: PoolConfig | None = None,
    ):
        """
        Initialize the connection pool.

        Args:
            db_path: Path to SQLite database
            config: Pool configuration
        """
        self.db_path = str(db_path)
        self.config = config or PoolConfig()

        self._connections: list[DatabaseConnection] = []
        self._available: list[DatabaseConnection] = []
        self._in_use: set[DatabaseConnection] = set()
        self._waiters: deque[asyncio.Future[DatabaseConnection]] = deque()
        self._state = PoolState.NEW

        self._stats = {
            "acquires": 0,
            "releases": 0,
            "timeouts": 0,
        }

    @property
    def size(self) -> int:
        return self.config.pool_size

    @property
    def state(self) -> PoolState:
        return self._state

    @property
    def is_ready(self) -> bool:
        return self._state is PoolState.READY

    async def initialize(self) -> None:
        """
        Open exactly ``pool_size`` connections.

        Raises:
            PoolAlreadyInitializedError: If the pool is already initialized
            ConnectionOpenError: If any connection fails to open; connections
                opened before the failure are closed again
        """
        if self._state is PoolState.READY:
            raise PoolAlreadyInitializedError()

        logger.info(
            "pool_initializing",
            size=self.config.pool_size,
            path=self.db_path,
        )

        opened: list[DatabaseConnection] = []
        try:
            for _ in range(self.config.pool_size):
                conn = create_connection(self.db_path, self.config)
                await conn.open()
                opened.append(conn)
        except BaseException:
            for conn in opened:
                try:
                    await conn.close()
                except Exception as e:
                    logger.error("pool_cleanup_close_failed", error=str(e))
            raise

        self._connections = opened
        self._available = list(opened)
        self._in_use = set()
        self._waiters = deque()
        self._state = PoolState.READY

        logger.info("pool_initialized", size=len(self._connections))

    def _check_ready(self) -> None:
        if self._state is PoolState.CLOSED:
            raise PoolClosedError()
        if self._state is PoolState.NEW:
            raise PoolNotInitializedError()

    async def acquire(self, timeout: float | None = _UNSET) -> DatabaseConnection:
        """
        Check out a connection, waiting in FIFO order if none is free.

        Args:
            timeout: Seconds to wait; defaults to ``config.acquire_timeout``,
                None waits forever

        Raises:
            PoolExhaustedError: No connection was released within the timeout
            PoolClosedError: The pool is closed, or closed while waiting
            PoolNotInitializedError: ``initialize()`` has not run
        """
        self._check_ready()

        if self._available:
            conn = self._available.pop()
            self._in_use.add(conn)
            self._stats["acquires"] += 1
            return conn

        if timeout is _UNSET:
            timeout = self.config.acquire_timeout

        waiter: asyncio.Future[DatabaseConnection] = (
            asyncio.get_running_loop().create_future()
        )
        self._waiters.append(waiter)
        logger.debug("pool_acquire_waiting", waiting=len(self._waiters))

        try:
            conn = await asyncio.wait_for(waiter, timeout)
        except asyncio.TimeoutError as err:
            self._abandon(waiter)
            self._stats["timeouts"] += 1
            logger.warning(
                "pool_acquire_timeout",
                timeout=timeout,
                size=len(self._connections),
                waiting=len(self._waiters),
            )
            raise PoolExhaustedError(
                f"No connection available within {timeout}s "
                f"(pool size: {len(self._connections)})"
            ) from err
        except BaseException:
            self._abandon(waiter)
            raise

        self._stats["acquires"] += 1
        return conn

    def _abandon(self, waiter: asyncio.Future[DatabaseConnection]) -> None:
        """Drop a waiter that gave up; return a connection handed to it."""
        try:
            self._waiters.remove(waiter)
        except ValueError:
            pass
        if waiter.done() and not waiter.cancelled() and waiter.exception() is None:
            self.release(waiter.result())

    def release(self, conn: DatabaseConnection) -> None:
        """
        Return a connection to circulation.

        Hands it to the oldest live waiter if there is one, otherwise puts it
        back in ``available``. Releasing a connection that is not checked out
        logs a warning and does nothing.
        """
        if conn not in self._in_use:
            logger.warning("pool_release_not_in_use", connection=repr(conn))
            return

        self._stats["releases"] += 1

        while self._waiters:
            waiter = self._waiters.popleft()
            if waiter.done():
                continue
            # stays in _in_use, now owned by the waiter
            waiter.set_result(conn)
            return

        self._in_use.discard(conn)
        self._available.append(conn)

    @asynccontextmanager
    async def connection(
        self, timeout: float | None = _UNSET
    ) -> AsyncIterator[DatabaseConnection]:
        """
        Scoped acquisition: the connection is released on every exit path.

        Example:
            async with pool.connection() as conn:
                await conn.run("DELETE FROM notifications WHERE read_at IS NOT NULL")
        """
        conn = await self.acquire(timeout)
        try:
            yield conn
        finally:
            self.release(conn)

    async def execute(
        self,
        callback: Callable[[DatabaseConnection], Awaitable[T]],
    ) -> T:
        """
        Run ``callback`` with a pooled connection.

        The connection is released whether the callback returns or raises;
        its result or exception propagates unchanged.
        """
        async with self.connection() as conn:
            return await callback(conn)

    async def close(self) -> None:
        """
        Close every owned connection and reject pending waiters.

        The pool can be initialized again afterwards.
        """
        if self._state is PoolState.CLOSED:
            return

        logger.info("pool_closing", path=self.db_path)
        self._state = PoolState.CLOSED

        waiters = list(self._waiters)
        self._waiters.clear()
        for waiter in waiters:
            if not waiter.done():
                waiter.set_exception(PoolClosedError())

        connections = self._connections
        self._connections = []
        self._available = []
        self._in_use = set()

        first_error: Exception | None = None
        for conn in connections:
            try:
                await conn.close()
            except Exception as e:
                logger.error("pool_connection_close_failed", error=str(e))
                if first_error is None:
                    first_error = e

        logger.info("pool_closed", path=self.db_path, rejected_waiters=len(waiters))

        if first_error is not None:
            raise first_error

    def get_stats(self) -> PoolStats:
        """Get pool statistics."""
        return PoolStats(
            total=len(self._connections),
            available=len(self._available),
            in_use=len(self._in_use),
            waiting=sum(1 for w in self._waiters if not w.done()),
            **self._stats,
        )

    async def __aenter__(self) -> ConnectionPool:
        if self._state is not PoolState.READY:
            await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()


class PoolManager:
    """
    Owns the server's connection pool.

    Passed to request handlers (directly or through WorkspaceRuntime)
    instead of reaching for module-level state.

    Example:
        manager = PoolManager()
        await manager.initialize("data/database.sqlite", PoolConfig(pool_size=5))

        pool = manager.get()
        rows = await pool.execute(lambda conn: conn.all("SELECT * FROM events"))

        await manager.close()
    """

    def __init__(self) -> None:
        self._pool: ConnectionPool | None = None
        self._lock = asyncio.Lock()

    @property
    def is_initialized(self) -> bool:
        return self._pool is not None

    async def initialize(
        self,
        db_path: Path | str,
        config: PoolConfig | None = None,
    ) -> ConnectionPool:
        """
        Create and initialize the pool.

        Returns the existing pool, with a warning, if already initialized.
        """
        async with self._lock:
            if self._pool is not None:
                logger.warning("pool_already_initialized", path=self._pool.db_path)
                return self._pool

            pool = ConnectionPool(db_path, config)
            await pool.initialize()
            self._pool = pool
            return pool

    def get(self) -> ConnectionPool:
        """
        Get the initialized pool.

        Raises:
            PoolNotInitializedError: If called before ``initialize()``
        """
        if self._pool is None:
            raise PoolNotInitializedError()
        return self._pool

    async def close(self) -> None:
        """Close the pool; a later ``initialize()`` creates a fresh one."""
        async with self._lock:
            pool, self._pool = self._pool, None
            if pool is not None:
                await pool.close()


# Default manager for callers that do not carry a WorkspaceRuntime
_default_manager = PoolManager()


async def initialize_pool(
    db_path: Path | str,
    config: PoolConfig | None = None,
) -> ConnectionPool:
    """Initialize the default connection pool."""
    return await _default_manager.initialize(db_path, config)


def get_pool() -> ConnectionPool:
    """Get the default connection pool; fails before ``initialize_pool()``."""
    return _default_manager.get()


async def close_pool() -> None:
    """Close the default connection pool."""
    await _default_manager.close()
