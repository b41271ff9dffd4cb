"""Configuration for the workspace server.

Settings come from an optional YAML file and from environment variables;
the environment wins. Recognized variables:

    HOST, PORT                   HTTP/WS service address
    DATABASE_PATH                SQLite file
    DB_POOL_SIZE                 connections in the pool
    DB_POOL_TIMEOUT              acquire timeout in ms (0 waits forever)
    DISCOVERY_ENABLED            broadcast beacons (true/false)
    DISCOVERY_PORT               UDP beacon port
    DISCOVERY_INTERVAL           seconds between beacons
    SERVER_NAME                  name announced in beacons
    LOG_LEVEL, LOG_JSON          logging
    LOG_FILE                     write logs to this file instead of stderr
    WORKSPACE_ENV                deployment name (development, production)
    WORKSPACE_CONFIG             path of the YAML file

YAML layout:

    server: {host: 0.0.0.0, port: 8060}
    database: {path: data/database.sqlite, pool_size: 5, pool_timeout: 10000}
    discovery: {enabled: true, port: 8061, interval: 5, name: Workspace Server}
    logging: {level: info, json: false, file: logs/workspace.log}
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any

import yaml

from workspace.db.pool import PoolConfig
from workspace.discovery.constants import (
    BROADCAST_INTERVAL,
    DEFAULT_SERVER_PORT,
    DISCOVERY_PORT,
    SERVER_NAME,
)
from workspace.logging_config import get_logger

logger = get_logger(__name__)

DEFAULT_DATABASE_PATH = Path("data") / "database.sqlite"

_TRUE = ("1", "true", "yes", "on")


@dataclass
class DatabaseSettings:
    path: Path = DEFAULT_DATABASE_PATH
    pool_size: int = 5
    pool_timeout: int = 10000  # milliseconds, 0 waits forever


@dataclass
class DiscoverySettings:
    enabled: bool = True
    port: int = DISCOVERY_PORT
    interval: float = BROADCAST_INTERVAL
    name: str = SERVER_NAME


@dataclass
class WorkspaceConfig:
    """Server configuration."""

    host: str = "0.0.0.0"
    port: int = DEFAULT_SERVER_PORT
    env: str = "development"

    database: DatabaseSettings = field(default_factory=DatabaseSettings)
    discovery: DiscoverySettings = field(default_factory=DiscoverySettings)

    log_level: str = "info"
    log_json: bool = False
    log_file: Path | None = None

    @classmethod
    def from_env(
        cls,
        environ: Mapping[str, str] | None = None,
        config_file: Path | None = None,
    ) -> WorkspaceConfig:
        """Load configuration from an optional YAML file and the environment.

        Args:
            environ: Environment mapping (defaults to ``os.environ``)
            config_file: YAML file (defaults to ``$WORKSPACE_CONFIG``)

        Returns:
            WorkspaceConfig instance
        """
        env = os.environ if environ is None else environ

        if config_file is None and env.get("WORKSPACE_CONFIG"):
            config_file = Path(env["WORKSPACE_CONFIG"])

        config = cls.from_file(config_file) if config_file else cls()
        config._apply_env(env)
        return config

    @classmethod
    def from_file(cls, config_file: Path) -> WorkspaceConfig:
        """Load configuration from a YAML file; a missing file yields defaults."""
        config = cls()
        if not config_file.exists():
            logger.warning("config_file_missing", path=str(config_file))
            return config

        data = yaml.safe_load(config_file.read_text(encoding="utf-8")) or {}
        if not isinstance(data, dict):
            raise ValueError(f"Invalid config file {config_file}: expected a mapping")

        server = data.get("server") or {}
        config.host = str(server.get("host", config.host))
        config.port = int(server.get("port", config.port))
        config.env = str(data.get("env", config.env))

        database = data.get("database") or {}
        if "path" in database:
            config.database.path = Path(database["path"])
        config.database.pool_size = int(
            database.get("pool_size", config.database.pool_size)
        )
        config.database.pool_timeout = int(
            database.get("pool_timeout", config.database.pool_timeout)
        )

        discovery = data.get("discovery") or {}
        config.discovery.enabled = _as_bool(
            discovery.get("enabled", config.discovery.enabled)
        )
        config.discovery.port = int(discovery.get("port", config.discovery.port))
        config.discovery.interval = float(
            discovery.get("interval", config.discovery.interval)
        )
        config.discovery.name = str(discovery.get("name", config.discovery.name))

        logging_section = data.get("logging") or {}
        config.log_level = str(logging_section.get("level", config.log_level))
        config.log_json = _as_bool(logging_section.get("json", config.log_json))
        if logging_section.get("file"):
            config.log_file = Path(logging_section["file"])

        return config

    def _apply_env(self, env: Mapping[str, str]) -> None:
        self.host = env.get("HOST", self.host)
        self.port = _env_int(env, "PORT", self.port)
        self.env = env.get("WORKSPACE_ENV", self.env)

        if env.get("DATABASE_PATH"):
            self.database.path = Path(env["DATABASE_PATH"])
        self.database.pool_size = _env_int(env, "DB_POOL_SIZE", self.database.pool_size)
        self.database.pool_timeout = _env_int(
            env, "DB_POOL_TIMEOUT", self.database.pool_timeout
        )

        if "DISCOVERY_ENABLED" in env:
            self.discovery.enabled = _as_bool(env["DISCOVERY_ENABLED"])
        self.discovery.port = _env_int(env, "DISCOVERY_PORT", self.discovery.port)
        if env.get("DISCOVERY_INTERVAL"):
            try:
                self.discovery.interval = float(env["DISCOVERY_INTERVAL"])
            except ValueError:
                logger.warning("config_invalid_value", key="DISCOVERY_INTERVAL")
        self.discovery.name = env.get("SERVER_NAME", self.discovery.name)

        self.log_level = env.get("LOG_LEVEL", self.log_level)
        if "LOG_JSON" in env:
            self.log_json = _as_bool(env["LOG_JSON"])
        if env.get("LOG_FILE"):
            self.log_file = Path(env["LOG_FILE"])

    def pool_config(self) -> PoolConfig:
        """Pool configuration derived from the database settings."""
        timeout_ms = self.database.pool_timeout
        return PoolConfig(
            pool_size=self.database.pool_size,
            acquire_timeout=timeout_ms / 1000 if timeout_ms > 0 else None,
        )

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["database"]["path"] = str(self.database.path)
        data["log_file"] = str(self.log_file) if self.log_file else None
        return data


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in _TRUE
    return bool(value)

def _env_int(env: Mapping[str, str], key: str, default: int) -> int:
    raw = env.get(key)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw.strip())
    except ValueError:
        logger.warning("config_invalid_value", key=key, value=raw)
        return default
