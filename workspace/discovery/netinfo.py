"""
Local network address helpers.

Addresses come from ``psutil.net_if_addrs()``. The broadcast address
assumes a /24 network: the interface address with its last octet set
to 255.
"""

from __future__ import annotations

import ipaddress
import socket

import psutil

from workspace.discovery.constants import FALLBACK_BROADCAST, FALLBACK_HOST


def iter_ipv4_addresses() -> list[str]:
    """Non-loopback IPv4 addresses, in interface order."""
    addresses: list[str] = []
    for _name, addrs in psutil.net_if_addrs().items():
        for addr in addrs:
            if addr.family != socket.AF_INET:
                continue
            try:
                ip = ipaddress.IPv4Address(addr.address)
            except ValueError:
                continue
            if ip.is_loopback:
                continue
            addresses.append(str(ip))
    return addresses


def get_local_ip() -> str:
    """First non-loopback IPv4 address, or ``localhost``."""
    addresses = iter_ipv4_addresses()
    return addresses[0] if addresses else FALLBACK_HOST


def broadcast_address_for(ip: str) -> str:
    """``192.168.1.50`` -> ``192.168.1.255``."""
    parts = str(ipaddress.IPv4Address(ip)).split(".")
    return ".".join(parts[:3] + ["255"])


def get_broadcast_address() -> str:
    """Broadcast address of the first usable interface, or the global one."""
    addresses = iter_ipv4_addresses()
    if not addresses:
        return FALLBACK_BROADCAST
    return broadcast_address_for(addresses[0])
