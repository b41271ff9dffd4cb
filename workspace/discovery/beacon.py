"""
Beacon payload.

Wire format (UTF-8 JSON, one object per datagram):

    {"magic": "WORKSPACE_SERVER_BEACON", "serverIP": "192.168.1.50",
     "serverPort": 8060, "timestamp": 1760000000000, "name": "Workspace Server"}
"""

from __future__ import annotations

import json
import time
from dataclasses import dataclass, field
from typing import Any

from workspace.discovery.constants import SERVER_NAME, WORKSPACE_MAGIC
from workspace.errors import BeaconError


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True)
class Beacon:
    """One server announcement."""

    server_ip: str
    server_port: int
    name: str = SERVER_NAME
    timestamp: int = field(default_factory=_now_ms)
    magic: str = WORKSPACE_MAGIC

    def to_dict(self) -> dict[str, Any]:
        return {
            "magic": self.magic,
            "serverIP": self.server_ip,
            "serverPort": self.server_port,
            "timestamp": self.timestamp,
            "name": self.name,
        }

    def to_bytes(self) -> bytes:
        return json.dumps(self.to_dict()).encode("utf-8")

    @classmethod
    def from_bytes(cls, data: bytes) -> Beacon:
        """
        Parse and validate a datagram.

        Raises:
            BeaconError: Not JSON, missing fields, or wrong magic
        """
        try:
            payload = json.loads(data.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as err:
            raise BeaconError(f"Beacon is not valid JSON: {err}") from err

        if not isinstance(payload, dict):
            raise BeaconError("Beacon payload must be a JSON object")
        if payload.get("magic") != WORKSPACE_MAGIC:
            raise BeaconError("Beacon magic mismatch")

        server_ip = payload.get("serverIP")
        server_port = payload.get("serverPort")
        if not isinstance(server_ip, str) or not server_ip:
            raise BeaconError("Beacon is missing serverIP")
        if isinstance(server_port, bool) or not isinstance(server_port, int):
            raise BeaconError("Beacon is missing serverPort")
        if not 0 < server_port < 65536:
            raise BeaconError(f"Beacon serverPort out of range: {server_port}")

        timestamp = payload.get("timestamp")
        return cls(
            server_ip=server_ip,
            server_port=server_port,
            name=str(payload.get("name") or SERVER_NAME),
            timestamp=timestamp if isinstance(timestamp, int) else _now_ms(),
        )


def parse_beacon(data: bytes) -> Beacon | None:
    """Parse a datagram, returning None for anything that is not a beacon."""
    try:
        return Beacon.from_bytes(data)
    except BeaconError:
        return None
