"""
Error hierarchy for the workspace server.

Every error carries a stable ``code`` so request handlers can map it to a
user-facing response without matching on message text. Driver errors are
chained with ``raise ... from err``.
"""

from __future__ import annotations


class WorkspaceError(Exception):
    """Base class for all workspace errors."""

    default_code = "WORKSPACE_ERROR"

    def __init__(self, message: str, code: str | None = None):
        self.message = message
        self.code = code or self.default_code
        super().__init__(message)


# =============================================================================
# Database
# =============================================================================


class DatabaseError(WorkspaceError):
    """Raised for failures on a single database connection."""

    default_code = "DATABASE_ERROR"


class ConnectionOpenError(DatabaseError):
    """The database file could not be opened."""

    default_code = "CONNECTION_OPEN_FAILED"


class ConnectionCloseError(DatabaseError):
    """The driver failed while closing the handle."""

    default_code = "CONNECTION_CLOSE_FAILED"


class ConnectionStateError(DatabaseError):
    """Open was requested on a connection that is open or already closed."""

    default_code = "CONNECTION_STATE"


class NotConnectedError(DatabaseError):
    """A query was issued on a connection without an open handle."""

    default_code = "NOT_CONNECTED"

    def __init__(self, message: str = "Database not connected"):
        super().__init__(message)


class QueryError(DatabaseError):
    """A statement failed (malformed SQL, constraint violation, ...)."""

    default_code = "QUERY_FAILED"

    def __init__(self, message: str, sql: str | None = None):
        self.sql = sql
        super().__init__(message)


# =============================================================================
# Pool
# =============================================================================


class PoolError(WorkspaceError):
    """Raised for connection pool misuse or exhaustion."""

    default_code = "POOL_ERROR"


class PoolNotInitializedError(PoolError):
    default_code = "POOL_NOT_INITIALIZED"

    def __init__(self, message: str = "Connection pool not initialized"):
        super().__init__(message)


class PoolAlreadyInitializedError(PoolError):
    default_code = "POOL_ALREADY_INITIALIZED"

    def __init__(self, message: str = "Connection pool already initialized"):
        super().__init__(message)


class PoolClosedError(PoolError):
    default_code = "POOL_CLOSED"

    def __init__(self, message: str = "Connection pool is closed"):
        super().__init__(message)


class PoolExhaustedError(PoolError, TimeoutError):
    """No connection was released to the caller within the acquire timeout."""

    default_code = "POOL_EXHAUSTED"


# =============================================================================
# Discovery
# =============================================================================


class DiscoveryError(WorkspaceError):
    default_code = "DISCOVERY_ERROR"


class BeaconError(DiscoveryError):
    """A datagram is not a valid workspace beacon."""

    default_code = "INVALID_BEACON"
