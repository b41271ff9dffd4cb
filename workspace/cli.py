"""
Command line for the workspace server.

Commands:
    serve      open the pool, start discovery, run until interrupted
    discover   listen for server beacons on the LAN
    init-db    create the workspace tables
    health     check database reachability through the pool
"""

from __future__ import annotations

import argparse
import asyncio
import json
import signal
import sys
from pathlib import Path

from workspace.config import WorkspaceConfig
from workspace.db.pool import ConnectionPool
from workspace.db.schema import TABLES, initialize_schema
from workspace.discovery.client import ClientDiscovery
from workspace.discovery.constants import DISCOVERY_TIMEOUT
from workspace.errors import WorkspaceError
from workspace.health import check_database
from workspace.logging_config import configure_logging, get_logger
from workspace.runtime import WorkspaceRuntime

logger = get_logger(__name__)


async def _serve(config: WorkspaceConfig) -> None:
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except (NotImplementedError, RuntimeError):
            # Windows: KeyboardInterrupt still stops asyncio.run()
            pass

    async with WorkspaceRuntime(config) as runtime:
        print(f"OK: serving {config.database.path} (port {config.port})")
        if runtime.discovery is not None:
            print(f"    discovery on udp/{config.discovery.port}")
        await stop.wait()


def serve(config: WorkspaceConfig) -> int:
    """Run the runtime until SIGINT/SIGTERM."""
    try:
        asyncio.run(_serve(config))
    except KeyboardInterrupt:
        pass
    print("OK: stopped")
    return 0


def discover(config: WorkspaceConfig, timeout: float, first: bool) -> int:
    """Print servers announcing themselves on the LAN."""
    client = ClientDiscovery(discovery_port=config.discovery.port)
    print(f"==> Listening on udp/{config.discovery.port} for {timeout:g}s...")
    servers = asyncio.run(client.discover(timeout, stop_on_first=first))

    if not servers:
        print("  No server found")
        return 1

    for server in servers:
        print(f"  {server.name:20} {server.url}")
    return 0


async def _init_db(config: WorkspaceConfig) -> None:
    pool = ConnectionPool(config.database.path, config.pool_config())
    await pool.initialize()
    try:
        await initialize_schema(pool)
    finally:
        await pool.close()


def init_db(config: WorkspaceConfig) -> int:
    """Create the workspace tables."""
    asyncio.run(_init_db(config))
    print(f"OK: {len(TABLES)} tables ready in {config.database.path}")
    return 0


async def _health(config: WorkspaceConfig) -> dict:
    pool = ConnectionPool(config.database.path, config.pool_config())
    await pool.initialize()
    try:
        check = await check_database(pool)
    finally:
        await pool.close()
    return check.to_dict()


def health(config: WorkspaceConfig) -> int:
    """Print the database health check as JSON."""
    result = asyncio.run(_health(config))
    print(json.dumps(result, indent=2))
    return 0 if result["status"] == "healthy" else 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="workspace", description="Workspace server tools"
    )
    parser.add_argument("--config", type=Path, help="YAML configuration file")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    parser.add_argument("--json-logs", action="store_true", help="JSON log output")
    parser.add_argument("--log-file", type=Path, help="Write logs to this file")

    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("serve", help="Run the server core until interrupted")

    p_discover = sub.add_parser("discover", help="Listen for server beacons")
    p_discover.add_argument(
        "--timeout", type=float, default=DISCOVERY_TIMEOUT, help="Seconds to listen"
    )
    p_discover.add_argument(
        "--first", action="store_true", help="Stop at the first server found"
    )

    sub.add_parser("init-db", help="Create the workspace tables")
    sub.add_parser("health", help="Check the database through the pool")

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    config = WorkspaceConfig.from_env(config_file=args.config)

    level = "DEBUG" if args.verbose else config.log_level
    json_output = args.json_logs or config.log_json
    configure_logging(
        level=level,
        json_output=json_output,
        log_file=args.log_file or config.log_file,
        colors=not json_output,
    )

    try:
        if args.command == "serve":
            return serve(config)
        elif args.command == "discover":
            return discover(config, args.timeout, args.first)
        elif args.command == "init-db":
            return init_db(config)
        elif args.command == "health":
            return health(config)
    except WorkspaceError as e:
        logger.error("command_failed", command=args.command, code=e.code, error=e.message)
        print(f"Error: {e.message}", file=sys.stderr)
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
