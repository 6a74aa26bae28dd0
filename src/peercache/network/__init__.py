"""Networking layer — peer address records and seed resolution."""

from peercache.network.address import PeerAddressRecord, ServiceFlag, SocketAddress
from peercache.network.seeds import DnsSeedResolver, HttpSeedResolver, PeerSource

__all__ = [
    "DnsSeedResolver",
    "HttpSeedResolver",
    "PeerAddressRecord",
    "PeerSource",
    "ServiceFlag",
    "SocketAddress",
]
