"""
Server discovery broadcaster.

Announces the server's address on the local network so clients can find
it without static configuration. One beacon is sent as soon as the
socket is ready, then one every ``interval`` seconds until ``stop()``.

Failure handling:
- a bind failure is logged and ``start()`` returns False
- a failed send is logged; the next tick tries again
- a socket-level failure reported by the transport is logged and the
  socket is dropped; beacons stop until ``start()`` is called again

Example:
    discovery = ServerDiscovery(server_port=8060)
    await discovery.start()
    ...
    await discovery.stop()
"""

from __future__ import annotations

import asyncio
import contextlib
import os
from typing import Any

from workspace.discovery.beacon import Beacon
from workspace.discovery.constants import (
    BROADCAST_INTERVAL,
    DEFAULT_SERVER_PORT,
    DISCOVERY_PORT,
    SERVER_NAME,
)
from workspace.discovery.netinfo import (
    broadcast_address_for,
    get_broadcast_address,
    get_local_ip,
)
from workspace.logging_config import get_logger

logger = get_logger(__name__)


class _BeaconProtocol(asyncio.DatagramProtocol):
    def __init__(self, owner: ServerDiscovery):
        self._owner = owner

    def error_received(self, exc: Exception) -> None:
        logger.error("discovery_send_failed", error=str(exc))

    def connection_lost(self, exc: Exception | None) -> None:
        if exc is not None:
            self._owner._handle_socket_error(exc)


class ServerDiscovery:
    """UDP beacon broadcaster."""

    def __init__(
        self,
        server_port: int = DEFAULT_SERVER_PORT,
        *,
        discovery_port: int = DISCOVERY_PORT,
        interval: float = BROADCAST_INTERVAL,
        name: str = SERVER_NAME,
        local_ip: str | None = None,
        broadcast_address: str | None = None,
        bind_host: str = "0.0.0.0",
    ):
        if interval <= 0:
            raise ValueError("interval must be > 0")

        self.server_port = server_port
        self.discovery_port = discovery_port
        self.interval = interval
        self.name = name
        self.bind_host = bind_host

        self._local_ip_override = local_ip
        self._broadcast_override = broadcast_address
        self.local_ip: str | None = local_ip
        self.broadcast_address: str | None = broadcast_address

        self._transport: asyncio.DatagramTransport | None = None
        self._task: asyncio.Task[None] | None = None
        self.beacons_sent = 0
        self.debug = bool(os.environ.get("DEBUG_DISCOVERY"))

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def has_socket(self) -> bool:
        return self._transport is not None

    async def start(self) -> bool:
        """
        Open the broadcast socket and start the beacon timer.

        If the timer is still running but the socket was lost, only the
        socket is reopened and a beacon goes out at once.

        Returns:
            True when broadcasting (or already broadcasting), False if the
            socket could not be opened
        """
        if self.is_running and self.has_socket:
            logger.warning("discovery_already_running", port=self.discovery_port)
            return True

        self._resolve_addresses()

        loop = asyncio.get_running_loop()
        try:
            transport, _ = await loop.create_datagram_endpoint(
                lambda: _BeaconProtocol(self),
                local_addr=(self.bind_host, 0),
                allow_broadcast=True,
            )
        except OSError as e:
            logger.error("discovery_start_failed", error=str(e))
            return False

        self._transport = transport
        if self.is_running:
            logger.info("discovery_socket_reopened", port=self.discovery_port)
            self.broadcast()
            return True

        self._task = asyncio.create_task(self._broadcast_loop())

        logger.info(
            "discovery_started",
            local_ip=self.local_ip,
            broadcast_address=self.broadcast_address,
            discovery_port=self.discovery_port,
            server_port=self.server_port,
        )
        return True

    def _resolve_addresses(self) -> None:
        self.local_ip = self._local_ip_override or get_local_ip()
        if self._broadcast_override:
            self.broadcast_address = self._broadcast_override
        elif self._local_ip_override:
            # same /24 as the announced address
            self.broadcast_address = broadcast_address_for(self.local_ip)
        else:
            self.broadcast_address = get_broadcast_address()

    async def _broadcast_loop(self) -> None:
        while True:
            self.broadcast()
            await asyncio.sleep(self.interval)

    def build_beacon(self) -> Beacon:
        return Beacon(
            server_ip=self.local_ip or get_local_ip(),
            server_port=self.server_port,
            name=self.name,
        )

    def broadcast(self) -> bool:
        """Send one beacon. Returns False when there is no socket or the send fails."""
        transport = self._transport
        if transport is None or transport.is_closing():
            return False

        beacon = self.build_beacon()
        target = (self.broadcast_address, self.discovery_port)
        try:
            transport.sendto(beacon.to_bytes(), target)
        except OSError as e:
            logger.error("discovery_send_failed", error=str(e), target=target)
            return False

        self.beacons_sent += 1
        if self.debug:
            logger.info("beacon_sent", target=f"{target[0]}:{target[1]}")
        return True

    def _handle_socket_error(self, exc: Exception) -> None:
        logger.error("discovery_socket_error", error=str(exc))
        transport, self._transport = self._transport, None
        if transport is not None and not transport.is_closing():
            transport.close()

    async def stop(self) -> None:
        """Cancel the beacon timer and close the socket."""
        task, self._task = self._task, None
        if task is not None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

        transport, self._transport = self._transport, None
        if transport is not None:
            transport.close()
            logger.info("discovery_stopped", beacons_sent=self.beacons_sent)

    def status(self) -> dict[str, Any]:
        return {
            "running": self.is_running,
            "socket": self.has_socket,
            "local_ip": self.local_ip,
            "broadcast_address": self.broadcast_address,
            "discovery_port": self.discovery_port,
            "server_port": self.server_port,
            "beacons_sent": self.beacons_sent,
        }

    async def __aenter__(self) -> ServerDiscovery:
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.stop()
