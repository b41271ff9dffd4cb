"""
Client-side server discovery.

Listens on the discovery port for beacons and collects the servers that
announce themselves. Datagrams that are not valid beacons are ignored.

Example:
    discovery = ClientDiscovery()
    endpoint = await discovery.find_server(timeout=5.0)
    if endpoint:
        print(endpoint["url"])
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any

from workspace.discovery.beacon import Beacon, parse_beacon
from workspace.discovery.constants import DISCOVERY_PORT, DISCOVERY_TIMEOUT
from workspace.logging_config import get_logger

logger = get_logger(__name__)


@dataclass
class DiscoveredServer:
    """A server seen on the network."""

    ip: str
    port: int
    name: str
    timestamp: int
    last_seen: float = field(default_factory=time.time)

    @property
    def key(self) -> str:
        return f"{self.ip}:{self.port}"

    @property
    def url(self) -> str:
        return f"http://{self.ip}:{self.port}"

    @property
    def ws_url(self) -> str:
        return f"ws://{self.ip}:{self.port}"

    @classmethod
    def from_beacon(cls, beacon: Beacon) -> DiscoveredServer:
        return cls(
            ip=beacon.server_ip,
            port=beacon.server_port,
            name=beacon.name,
            timestamp=beacon.timestamp,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "ip": self.ip,
            "port": self.port,
            "name": self.name,
            "timestamp": self.timestamp,
            "last_seen": self.last_seen,
        }


class _ListenerProtocol(asyncio.DatagramProtocol):
    def __init__(self, owner: ClientDiscovery):
        self._owner = owner

    def datagram_received(self, data: bytes, addr: tuple[str, int]) -> None:
        self._owner._on_datagram(data, addr)

    def error_received(self, exc: Exception) -> None:
        logger.error("discovery_listen_error", error=str(exc))


class ClientDiscovery:
    """Beacon listener."""

    def __init__(
        self,
        *,
        discovery_port: int = DISCOVERY_PORT,
        listen_host: str = "0.0.0.0",
    ):
        self.discovery_port = discovery_port
        self.listen_host = listen_host
        self._servers: dict[str, DiscoveredServer] = {}
        self._transport: asyncio.DatagramTransport | None = None
        self._found: asyncio.Event | None = None

    @property
    def servers(self) -> list[DiscoveredServer]:
        return list(self._servers.values())

    def _on_datagram(self, data: bytes, addr: tuple[str, int]) -> None:
        beacon = parse_beacon(data)
        if beacon is None:
            return

        server = DiscoveredServer.from_beacon(beacon)
        if server.key not in self._servers:
            logger.info(
                "server_discovered",
                name=server.name,
                server=server.key,
                sender=addr[0],
            )
        self._servers[server.key] = server
        if self._found is not None:
            self._found.set()

    async def discover(
        self,
        timeout: float = DISCOVERY_TIMEOUT,
        *,
        stop_on_first: bool = False,
    ) -> list[DiscoveredServer]:
        """
        Listen for beacons.

        Args:
            timeout: Seconds to listen
            stop_on_first: Return as soon as one server is found

        Returns:
            One entry per server address, most recent beacon wins
        """
        self._servers.clear()
        self._found = asyncio.Event()

        loop = asyncio.get_running_loop()
        try:
            transport, _ = await loop.create_datagram_endpoint(
                lambda: _ListenerProtocol(self),
                local_addr=(self.listen_host, self.discovery_port),
            )
        except OSError as e:
            logger.error("discovery_listen_failed", error=str(e), port=self.discovery_port)
            return []

        self._transport = transport
        logger.debug("discovery_listening", port=self.discovery_port)

        try:
            if stop_on_first:
                try:
                    await asyncio.wait_for(self._found.wait(), timeout)
                except asyncio.TimeoutError:
                    pass
            else:
                await asyncio.sleep(timeout)
        finally:
            self._close_socket()

        return self.servers

    async def find_server(
        self, timeout: float = DISCOVERY_TIMEOUT
    ) -> dict[str, str] | None:
        """
        Find the first server on the network.

        Returns:
            Dict with ``url`` and ``ws`` endpoints, or None
        """
        servers = await self.discover(timeout, stop_on_first=True)
        if not servers:
            logger.warning("no_server_found", timeout=timeout)
            return None

        server = servers[0]
        logger.info("server_selected", server=server.key)
        return {"url": server.url, "ws": server.ws_url}

    def _close_socket(self) -> None:
        transport, self._transport = self._transport, None
        if transport is not None:
            transport.close()
        self._found = None

    def stop(self) -> None:
        """Stop listening and forget discovered servers."""
        self._close_socket()
        self._servers.clear()
