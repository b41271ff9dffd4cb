"""
LAN discovery for the workspace server.

The server broadcasts a JSON beacon over UDP; clients listen for it to
locate the server without static configuration.
"""

from __future__ import annotations

from .beacon import Beacon, parse_beacon
from .client import ClientDiscovery, DiscoveredServer
from .constants import (
    BROADCAST_INTERVAL,
    DEFAULT_SERVER_PORT,
    DISCOVERY_PORT,
    DISCOVERY_TIMEOUT,
    SERVER_NAME,
    WORKSPACE_MAGIC,
)
from .netinfo import broadcast_address_for, get_broadcast_address, get_local_ip
from .server import ServerDiscovery

__all__ = [
    "BROADCAST_INTERVAL",
    "Beacon",
    "ClientDiscovery",
    "DEFAULT_SERVER_PORT",
    "DISCOVERY_PORT",
    "DISCOVERY_TIMEOUT",
    "DiscoveredServer",
    "SERVER_NAME",
    "ServerDiscovery",
    "WORKSPACE_MAGIC",
    "broadcast_address_for",
    "get_broadcast_address",
    "get_local_ip",
    "parse_beacon",
]
