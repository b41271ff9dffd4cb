"""
Health checks for the workspace server.

Reports database reachability through the pool and the state of the
discovery broadcaster, for the monitoring dashboard.

Example:
    check = await check_database(pool)
    print(check.status.value, check.details["pool"])
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from workspace.db.pool import ConnectionPool
from workspace.discovery.server import ServerDiscovery
from workspace.errors import WorkspaceError
from workspace.logging_config import get_logger

logger = get_logger(__name__)


class HealthStatus(Enum):
    """Health status levels."""

    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"
    UNKNOWN = "unknown"


@dataclass
class HealthCheck:
    """Result of a health check."""

    name: str
    status: HealthStatus
    message: str = ""
    details: dict[str, Any] = field(default_factory=dict)
    checked_at: datetime = field(default_factory=datetime.now)
    duration_ms: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "name": self.name,
            "status": self.status.value,
            "message": self.message,
            "details": self.details,
            "checked_at": self.checked_at.isoformat(),
            "duration_ms": round(self.duration_ms, 2),
        }

    @property
    def is_healthy(self) -> bool:
        return self.status == HealthStatus.HEALTHY


async def check_database(
    pool: ConnectionPool, timeout: float | None = 5.0
) -> HealthCheck:
    """
    Run ``SELECT 1`` through the pool.

    Healthy when the query succeeds with nobody waiting for a connection,
    degraded when callers are queued, unhealthy when the query fails.
    """
    start = time.time()

    try:
        row = await asyncio.wait_for(
            pool.execute(lambda conn: conn.get("SELECT 1 AS ok")),
            timeout,
        )
    except (WorkspaceError, asyncio.TimeoutError) as e:
        logger.warning("database_health_check_failed", error=str(e))
        return HealthCheck(
            name="database",
            status=HealthStatus.UNHEALTHY,
            message=f"Database check failed: {e}",
            details={"path": pool.db_path, "pool": pool.get_stats().to_dict()},
            duration_ms=(time.time() - start) * 1000,
        )

    stats = pool.get_stats()
    if row is None or row.get("ok") != 1:
        status, message = HealthStatus.UNHEALTHY, "Unexpected query result"
    elif stats.waiting > 0:
        status, message = HealthStatus.DEGRADED, f"{stats.waiting} callers waiting"
    else:
        status, message = HealthStatus.HEALTHY, "Database reachable"

    return HealthCheck(
        name="database",
        status=status,
        message=message,
        details={"path": pool.db_path, "pool": stats.to_dict()},
        duration_ms=(time.time() - start) * 1000,
    )


def check_discovery(discovery: ServerDiscovery | None) -> HealthCheck:
    """Report whether beacons are going out."""
    if discovery is None:
        return HealthCheck(
            name="discovery",
            status=HealthStatus.UNKNOWN,
            message="Discovery disabled",
        )

    if discovery.is_running and discovery.has_socket:
        status, message = HealthStatus.HEALTHY, "Broadcasting"
    elif discovery.is_running:
        status, message = HealthStatus.DEGRADED, "Socket lost, restart required"
    else:
        status, message = HealthStatus.UNHEALTHY, "Not broadcasting"

    return HealthCheck(
        name="discovery",
        status=status,
        message=message,
        details=discovery.status(),
    )
