"""Pytest configuration and shared fixtures."""
import logging
import socket

import pytest


def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line(
        "markers", "slow: binds real UDP sockets on loopback (deselect with -m \"not slow\")"
    )


@pytest.fixture
def reset_logging():
    """Close whatever handlers configure_logging installed."""
    yield
    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()


@pytest.fixture
def db_path(tmp_path):
    """Path of a fresh SQLite file."""
    return tmp_path / "data" / "workspace.sqlite"


@pytest.fixture
def free_udp_port():
    """A UDP port on loopback that was free a moment ago."""
    with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    """Keep host configuration out of the tests."""
    for key in (
        "HOST",
        "PORT",
        "DATABASE_PATH",
        "DB_POOL_SIZE",
        "DB_POOL_TIMEOUT",
        "DISCOVERY_ENABLED",
        "DISCOVERY_PORT",
        "DISCOVERY_INTERVAL",
        "DEBUG_DISCOVERY",
        "SERVER_NAME",
        "LOG_LEVEL",
        "LOG_JSON",
        "LOG_FILE",
        "WORKSPACE_CONFIG",
        "WORKSPACE_ENV",
    ):
        monkeypatch.delenv(key, raising=False)
