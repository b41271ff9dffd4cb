"""
Single SQLite connection with async query primitives.

Wraps one aiosqlite handle and exposes the query surface used by the
pool and by request handlers:

- all():         every row of a read query
- get():         the first row, or None
- run():         a mutating statement, returning last row id and row count
- transaction(): an ordered list of statements, all-or-nothing
- executescript(): a multi-statement script (schema bootstrap)

Example:
    conn = DatabaseConnection("data/database.sqlite")
    await conn.open()
    result = await conn.run("INSERT INTO users (username) VALUES (?)", ("ana",))
    row = await conn.get("SELECT * FROM users WHERE id = ?", (result.last_row_id,))
    await conn.close()
"""

from __future__ import annotations

import asyncio
import sqlite3
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any

import aiosqlite

from workspace.errors import (
    ConnectionCloseError,
    ConnectionOpenError,
    ConnectionStateError,
    NotConnectedError,
    QueryError,
)
from workspace.logging_config import get_logger

if TYPE_CHECKING:
    from workspace.db.pool import PoolConfig

logger = get_logger(__name__)

MEMORY_PATH = ":memory:"

Params = Sequence[Any] | dict[str, Any]
Query = str | tuple[str, Params]


@dataclass(frozen=True)
class RunResult:
    """Outcome of a mutating statement."""

    last_row_id: int
    changes: int


class DatabaseConnection:
    """
    One physical database handle.

    The handle is exclusively owned by this object and is ``None`` until
    ``open()`` succeeds. A closed connection cannot be reopened; build a
    new instance instead.
    """

    def __init__(self, path: Path | str, config: PoolConfig | None = None):
        self.path = str(path)
        self.config = config
        self._db: aiosqlite.Connection | None = None
        self._closed = False
        # aiosqlite already runs one statement at a time per handle; the lock
        # keeps a transaction's statements contiguous.
        self._lock = asyncio.Lock()

    def __repr__(self) -> str:
        state = "open" if self.is_open else ("closed" if self._closed else "new")
        return f"<DatabaseConnection path={self.path!r} {state}>"

    @property
    def is_open(self) -> bool:
        return self._db is not None

    async def open(self) -> None:
        """Open the database file and apply connection PRAGMAs."""
        if self._db is not None:
            raise ConnectionStateError(f"Connection to {self.path} is already open")
        if self._closed:
            raise ConnectionStateError(
                f"Connection to {self.path} was closed; create a new connection"
            )

        try:
            if self.path != MEMORY_PATH:
                Path(self.path).parent.mkdir(parents=True, exist_ok=True)
            db = await aiosqlite.connect(self.path, isolation_level=None)
        except (sqlite3.Error, OSError) as err:
            logger.error("database_open_failed", path=self.path, error=str(err))
            raise ConnectionOpenError(
                f"Failed to open database {self.path}: {err}"
            ) from err

        db.row_factory = aiosqlite.Row
        try:
            await self._configure(db)
        except sqlite3.Error as err:
            await db.close()
            logger.error("database_open_failed", path=self.path, error=str(err))
            raise ConnectionOpenError(
                f"Failed to configure database {self.path}: {err}"
            ) from err

        self._db = db
        logger.debug("database_connection_opened", path=self.path)

    async def _configure(self, db: aiosqlite.Connection) -> None:
        config = self.config
        if config is None:
            return
        if config.enable_foreign_keys:
            await db.execute("PRAGMA foreign_keys = ON")
        if config.enable_wal and self.path != MEMORY_PATH:
            await db.execute("PRAGMA journal_mode = WAL")
        await db.execute(f"PRAGMA busy_timeout = {int(config.busy_timeout)}")

    async def close(self) -> None:
        """Close the handle. No-op if the connection was never opened."""
        if self._db is None:
            return

        async with self._lock:
            # a concurrent close may have finished while we waited
            if self._db is None:
                return
            try:
                await self._db.close()
            except sqlite3.Error as err:
                logger.error("database_close_failed", path=self.path, error=str(err))
                raise ConnectionCloseError(
                    f"Failed to close database {self.path}: {err}"
                ) from err
            self._db = None
            self._closed = True

        logger.debug("database_connection_closed", path=self.path)

    def _require_db(self) -> aiosqlite.Connection:
        if self._db is None:
            raise NotConnectedError()
        return self._db

    async def _execute(self, sql: str, params: Params) -> aiosqlite.Cursor:
        db = self._require_db()
        try:
            return await db.execute(sql, params)
        except sqlite3.Error as err:
            logger.error("query_failed", sql=sql, error=str(err))
            raise QueryError(str(err), sql=sql) from err

    async def all(self, sql: str, params: Params = ()) -> list[dict[str, Any]]:
        """Run a read query and return every matching row."""
        self._require_db()
        async with self._lock:
            cursor = await self._execute(sql, params)
            try:
                rows = await cursor.fetchall()
            finally:
                await cursor.close()
        return [dict(row) for row in rows]

    async def get(self, sql: str, params: Params = ()) -> dict[str, Any] | None:
        """Run a read query and return the first row, or None."""
        self._require_db()
        async with self._lock:
            cursor = await self._execute(sql, params)
            try:
                row = await cursor.fetchone()
            finally:
                await cursor.close()
        return dict(row) if row is not None else None

    async def run(self, sql: str, params: Params = ()) -> RunResult:
        """Execute a mutating statement."""
        self._require_db()
        async with self._lock:
            return await self._run_unlocked(sql, params)

    async def _run_unlocked(self, sql: str, params: Params) -> RunResult:
        cursor = await self._execute(sql, params)
        try:
            return RunResult(
                last_row_id=cursor.lastrowid or 0,
                changes=max(cursor.rowcount, 0),
            )
        finally:
            await cursor.close()

    async def transaction(self, queries: Iterable[Query]) -> list[RunResult]:
        """
        Execute statements in order inside a single transaction.

        Args:
            queries: ``(sql, params)`` tuples or bare SQL strings

        Returns:
            One RunResult per statement

        Raises:
            QueryError: The failing statement's error, after ROLLBACK
        """
        statements = [_normalize(query) for query in queries]
        self._require_db()

        async with self._lock:
            await self._run_unlocked("BEGIN IMMEDIATE", ())
            results: list[RunResult] = []
            try:
                for sql, params in statements:
                    results.append(await self._run_unlocked(sql, params))
                await self._run_unlocked("COMMIT", ())
            except BaseException:
                await self._rollback()
                raise

        return results

    async def _rollback(self) -> None:
        db = self._db
        if db is None or not db.in_transaction:
            return
        try:
            await db.execute("ROLLBACK")
        except sqlite3.Error as err:
            logger.error("rollback_failed", path=self.path, error=str(err))

    async def executescript(self, script: str) -> None:
        """Run a multi-statement SQL script."""
        db = self._require_db()
        async with self._lock:
            try:
                await db.executescript(script)
            except sqlite3.Error as err:
                logger.error("script_failed", path=self.path, error=str(err))
                raise QueryError(str(err), sql=script) from err


def _normalize(query: Query) -> tuple[str, Params]:
    if isinstance(query, str):
        return query, ()
    sql, params = query
    return sql, params if params is not None else ()


def create_connection(
    path: Path | str,
    config: PoolConfig | None = None,
) -> DatabaseConnection:
    """Create a new, unopened database connection."""
    return DatabaseConnection(path, config=config)
