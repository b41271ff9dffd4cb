import asyncio

import pytest

from workspace.config import WorkspaceConfig
from workspace.db.pool import ConnectionPool, PoolConfig
from workspace.db.schema import TABLES
from workspace.discovery.server import ServerDiscovery
from workspace.errors import PoolNotInitializedError
from workspace.health import HealthStatus, check_database, check_discovery
from workspace.runtime import WorkspaceRuntime


def _config(db_path, discovery=False):
    return WorkspaceConfig.from_env(
        environ={
            "DATABASE_PATH": str(db_path),
            "DB_POOL_SIZE": "2",
            "DISCOVERY_ENABLED": "true" if discovery else "false",
        }
    )


def test_check_database_healthy(db_path):
    async def scenario():
        pool = ConnectionPool(db_path, PoolConfig(pool_size=1))
        await pool.initialize()
        try:
            return await check_database(pool)
        finally:
            await pool.close()

    check = asyncio.run(scenario())

    assert check.status is HealthStatus.HEALTHY
    assert check.details["pool"]["total"] == 1
    assert check.to_dict()["status"] == "healthy"


def test_check_database_unhealthy_when_pool_closed(db_path):
    async def scenario():
        pool = ConnectionPool(db_path, PoolConfig(pool_size=1))
        await pool.initialize()
        await pool.close()
        return await check_database(pool)

    check = asyncio.run(scenario())

    assert check.status is HealthStatus.UNHEALTHY
    assert "closed" in check.message


def test_check_discovery_states():
    assert check_discovery(None).status is HealthStatus.UNKNOWN
    idle = ServerDiscovery(9000, local_ip="127.0.0.1", broadcast_address="127.0.0.1")
    assert check_discovery(idle).status is HealthStatus.UNHEALTHY


def test_runtime_lifecycle(db_path):
    async def scenario():
        runtime = WorkspaceRuntime(_config(db_path))
        async with runtime:
            tables = await runtime.pool.execute(
                lambda conn: conn.all(
                    "SELECT name FROM sqlite_master WHERE type = 'table' "
                    "AND name NOT LIKE 'sqlite_%'"
                )
            )
            status = runtime.status()
            health = await runtime.health()
        return runtime, tables, status, health

    runtime, tables, status, health = asyncio.run(scenario())

    assert {row["name"] for row in tables} == set(TABLES)
    assert status["started"] is True
    assert status["pool"]["total"] == 2
    assert status["discovery"] is None
    assert health["status"] == "healthy"
    assert health["checks"]["database"]["status"] == "healthy"
    assert not runtime.started
    with pytest.raises(PoolNotInitializedError):
        runtime.pool


@pytest.mark.slow
def test_runtime_starts_and_stops_discovery(db_path, free_udp_port):
    discovery = ServerDiscovery(
        8060,
        discovery_port=free_udp_port,
        interval=0.05,
        local_ip="127.0.0.1",
        broadcast_address="127.0.0.1",
        bind_host="127.0.0.1",
    )

    async def scenario():
        runtime = WorkspaceRuntime(_config(db_path, discovery=True), discovery=discovery)
        async with runtime:
            await asyncio.sleep(0.01)
            status = runtime.status()
            health = await runtime.health()
        return status, health

    status, health = asyncio.run(scenario())

    assert status["discovery"]["running"] is True
    assert status["discovery"]["beacons_sent"] >= 1
    assert health["checks"]["discovery"]["status"] == "healthy"
    assert not discovery.is_running
