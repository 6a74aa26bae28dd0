"""Storage layer — the in-memory address cache and its peer file."""

from peercache.storage.address_store import AddressStore
from peercache.storage.peerfile import (
    MAX_STORED_PEERS,
    decode_peers,
    encode_peers,
    read_peer_file,
    write_peer_file,
)

__all__ = [
    "AddressStore",
    "MAX_STORED_PEERS",
    "decode_peers",
    "encode_peers",
    "read_peer_file",
    "write_peer_file",
]
