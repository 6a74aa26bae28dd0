"""Peer address records — one observed endpoint and the services it claims."""

from __future__ import annotations

import ipaddress
import time
from dataclasses import dataclass, field, replace
from enum import IntFlag
from typing import NamedTuple, Union

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]

MAX_PORT = 0xFFFF
MAX_SERVICES = 0xFFFF_FFFF_FFFF_FFFF
MAX_TIMESTAMP = 0xFFFF_FFFF_FFFF_FFFF


class ServiceFlag(IntFlag):
    """Well-known bits of the 64-bit services field."""

    NODE_NETWORK = 1    # Peer has a copy of the block chain
    NODE_GETUTXOS = 2   # Peer supports the getutxos message
    NODE_BLOOM = 4      # Peer supports Bloom filters


class SocketAddress(NamedTuple):
    """A (host, port) pair, usable anywhere a socket address tuple is."""

    host: str
    port: int

    def __str__(self) -> str:
        if ":" in self.host:
            return f"[{self.host}]:{self.port}"
        return f"{self.host}:{self.port}"


def parse_ip(value: str | bytes | IPAddress) -> IPAddress:
    """Parse text or packed bytes into an IP address.

    IPv4-mapped IPv6 addresses (``::ffff:a.b.c.d``) collapse to IPv4 so the
    same peer never shows up under two keys.
    """
    if isinstance(value, (ipaddress.IPv4Address, ipaddress.IPv6Address)):
        addr = value
    elif isinstance(value, (bytes, bytearray)):
        if len(value) not in (4, 16):
            raise ValueError(f"Address must be 4 or 16 bytes, got {len(value)}")
        addr = ipaddress.ip_address(bytes(value))
    else:
        addr = ipaddress.ip_address(value)
    if isinstance(addr, ipaddress.IPv6Address) and addr.ipv4_mapped is not None:
        return addr.ipv4_mapped
    return addr


def normalize_socket_address(host: str | bytes | IPAddress, port: int) -> SocketAddress:
    """Canonical SocketAddress for a host/port pair."""
    return SocketAddress(str(parse_ip(host)), int(port))


def is_loopback_host(host: str | bytes | IPAddress) -> bool:
    return parse_ip(host).is_loopback


@dataclass
class PeerAddressRecord:
    """One peer endpoint as last advertised on the network.

    ``address`` accepts text, packed bytes or an ``ipaddress`` object and is
    always stored as an ``ipaddress`` object.
    """

    address: IPAddress
    port: int
    services: int = 0
    last_seen: int = field(default_factory=lambda: int(time.time()))

    def __post_init__(self) -> None:
        self.address = parse_ip(self.address)
        if not 0 <= self.port <= MAX_PORT:
            raise ValueError(f"Port out of range: {self.port}")
        if not 0 <= self.services <= MAX_SERVICES:
            raise ValueError(f"Services out of 64-bit range: {self.services}")
        self.last_seen = int(self.last_seen)
        if not 0 <= self.last_seen <= MAX_TIMESTAMP:
            raise ValueError(f"last_seen out of 64-bit range: {self.last_seen}")

    @property
    def key(self) -> tuple[IPAddress, int]:
        return self.address, self.port

    @property
    def socket_address(self) -> SocketAddress:
        return SocketAddress(str(self.address), self.port)

    @property
    def packed(self) -> bytes:
        """Raw address bytes (4 for IPv4, 16 for IPv6)."""
        return self.address.packed

    @property
    def is_loopback(self) -> bool:
        return self.address.is_loopback

    def has_services(self, required: int) -> bool:
        """True if every bit of ``required`` is advertised by this peer."""
        return (self.services & required) == required

    def copy(self) -> PeerAddressRecord:
        return replace(self)

    def __str__(self) -> str:
        return str(self.socket_address)
