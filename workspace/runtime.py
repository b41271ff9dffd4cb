"""Runtime context for the workspace server.

Holds the pieces request handlers depend on (configuration, connection
pool, discovery broadcaster) and starts and stops them in order.
Handlers receive the runtime instead of reaching for global state.

Usage:
    config = WorkspaceConfig.from_env()
    async with WorkspaceRuntime(config) as runtime:
        users = await runtime.pool.execute(
            lambda conn: conn.all("SELECT id, username FROM users")
        )
"""

from __future__ import annotations

from typing import Any

from workspace.config import WorkspaceConfig
from workspace.db.pool import ConnectionPool, PoolManager
from workspace.db.schema import initialize_schema
from workspace.discovery.server import ServerDiscovery
from workspace.health import HealthStatus, check_database, check_discovery
from workspace.logging_config import get_logger

logger = get_logger(__name__)


class WorkspaceRuntime:
    """Application context with the server's shared resources."""

    def __init__(
        self,
        config: WorkspaceConfig | None = None,
        *,
        pool_manager: PoolManager | None = None,
        discovery: ServerDiscovery | None = None,
        init_schema: bool = True,
    ):
        """Initialize the runtime.

        Args:
            config: Server configuration (defaults to ``from_env()``)
            pool_manager: Pool holder to use instead of a fresh one
            discovery: Broadcaster to use instead of one built from config
            init_schema: Create the workspace tables on start
        """
        self.config = config or WorkspaceConfig.from_env()
        self.pool_manager = pool_manager or PoolManager()
        self._discovery = discovery
        self.init_schema = init_schema
        self._started = False

    @property
    def pool(self) -> ConnectionPool:
        """The initialized pool; raises PoolNotInitializedError before start()."""
        return self.pool_manager.get()

    @property
    def discovery(self) -> ServerDiscovery | None:
        return self._discovery

    @property
    def started(self) -> bool:
        return self._started

    async def start(self) -> None:
        """Open the pool, bootstrap the schema and start broadcasting."""
        if self._started:
            logger.warning("runtime_already_started")
            return

        pool = await self.pool_manager.initialize(
            self.config.database.path,
            self.config.pool_config(),
        )
        try:
            if self.init_schema:
                await initialize_schema(pool)

            if self.config.discovery.enabled:
                if self._discovery is None:
                    self._discovery = ServerDiscovery(
                        self.config.port,
                        discovery_port=self.config.discovery.port,
                        interval=self.config.discovery.interval,
                        name=self.config.discovery.name,
                    )
                if not await self._discovery.start():
                    logger.warning("runtime_discovery_unavailable")
        except BaseException:
            await self.pool_manager.close()
            raise

        self._started = True
        logger.info(
            "runtime_started",
            port=self.config.port,
            database=str(self.config.database.path),
            discovery=self.config.discovery.enabled,
        )

    async def stop(self) -> None:
        """Stop broadcasting and close the pool."""
        if self._discovery is not None:
            await self._discovery.stop()
        await self.pool_manager.close()
        if self._started:
            logger.info("runtime_stopped")
        self._started = False

    async def health(self) -> dict[str, Any]:
        """Aggregated health for the monitoring dashboard."""
        checks = [
            await check_database(self.pool),
            check_discovery(self._discovery),
        ]
        worst = HealthStatus.HEALTHY
        for check in checks:
            if check.status is HealthStatus.UNHEALTHY:
                worst = HealthStatus.UNHEALTHY
                break
            if check.status is HealthStatus.DEGRADED:
                worst = HealthStatus.DEGRADED

        return {
            "status": worst.value,
            "checks": {check.name: check.to_dict() for check in checks},
        }

    def status(self) -> dict[str, Any]:
        """Snapshot of the runtime for logs and the dashboard."""
        pool_stats = (
            self.pool.get_stats().to_dict()
            if self.pool_manager.is_initialized
            else None
        )
        return {
            "started": self._started,
            "port": self.config.port,
            "database": str(self.config.database.path),
            "pool": pool_stats,
            "discovery": self._discovery.status() if self._discovery else None,
        }

    async def __aenter__(self) -> WorkspaceRuntime:
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.stop()
