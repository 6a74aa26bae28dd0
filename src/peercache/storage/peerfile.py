"""Peer file — compact binary persistence for the address cache.

Layout (little-endian, no header, end of file ends the list)::

    repeated {
        uint16  addr_len          4 (IPv4) or 16 (IPv6)
        bytes   address[addr_len]
        uint32  port
        uint64  services
        uint64  last_seen         unix seconds
    }

At most ``MAX_STORED_PEERS`` records are written, most recently seen first,
so inactive peers age out. Decoding shuffles the result because discovery
walks the cache in list order and should not always start with the same
peer.
"""

from __future__ import annotations

import logging
import os
import random
import struct
from pathlib import Path
from typing import Iterable

from peercache.errors import CorruptPersistentStateError, PersistenceIOError
from peercache.network.address import MAX_PORT, PeerAddressRecord

logger = logging.getLogger(__name__)

MAX_STORED_PEERS = 200

_LENGTH = struct.Struct("<H")
_FIELDS = struct.Struct("<IQQ")  # port, services, last_seen
_VALID_ADDR_LENGTHS = (4, 16)


def encode_peers(records: Iterable[PeerAddressRecord]) -> bytes:
    """Serialize records, newest first, capped at ``MAX_STORED_PEERS``.

    The sort is stable, so peers with equal ``last_seen`` keep their
    relative store order.
    """
    return _encode(records)[0]


def _encode(records: Iterable[PeerAddressRecord]) -> tuple[bytes, int]:
    ordered = sorted(records, key=lambda r: r.last_seen, reverse=True)
    out = bytearray()
    count = 0
    for record in ordered:
        if record.is_loopback:
            continue
        addr = record.packed
        out += _LENGTH.pack(len(addr))
        out += addr
        out += _FIELDS.pack(record.port, record.services, record.last_seen)
        count += 1
        if count >= MAX_STORED_PEERS:
            break
    return bytes(out), count


def decode_peers(
    data: bytes, rng: random.Random | None = None,
) -> list[PeerAddressRecord]:
    """Parse a peer file image and return its records in random order.

    Raises:
        CorruptPersistentStateError: If a record is truncated or holds an
            impossible address length or port.
    """
    records: list[PeerAddressRecord] = []
    view = memoryview(data)
    offset = 0
    end = len(view)
    while offset < end:
        if end - offset < _LENGTH.size:
            raise CorruptPersistentStateError(
                f"Truncated length prefix at offset {offset}"
            )
        (addr_len,) = _LENGTH.unpack_from(view, offset)
        offset += _LENGTH.size

        if addr_len not in _VALID_ADDR_LENGTHS:
            raise CorruptPersistentStateError(
                f"Invalid address length {addr_len} at offset {offset - _LENGTH.size}"
            )
        if end - offset < addr_len + _FIELDS.size:
            raise CorruptPersistentStateError(
                f"Record at offset {offset - _LENGTH.size} needs "
                f"{addr_len + _FIELDS.size} bytes, only {end - offset} left"
            )
        addr = bytes(view[offset:offset + addr_len])
        offset += addr_len
        port, services, last_seen = _FIELDS.unpack_from(view, offset)
        offset += _FIELDS.size

        if port > MAX_PORT:
            raise CorruptPersistentStateError(f"Invalid port {port} in record {len(records)}")
        records.append(PeerAddressRecord(
            address=addr, port=port, services=services, last_seen=last_seen,
        ))

    (rng or random).shuffle(records)
    return records


def read_peer_file(
    path: str | Path, rng: random.Random | None = None,
) -> list[PeerAddressRecord]:
    """Load records from ``path``. A missing file yields an empty list.

    Raises:
        PersistenceIOError: If the file exists but cannot be read.
        CorruptPersistentStateError: If its contents do not decode.
    """
    path = Path(path)
    if not path.exists():
        logger.info("No peer file at %s", path)
        return []
    try:
        data = path.read_bytes()
    except OSError as exc:
        raise PersistenceIOError(f"Unable to read peer file {path}: {exc}") from exc
    return decode_peers(data, rng)


def write_peer_file(path: str | Path, records: Iterable[PeerAddressRecord]) -> int:
    """Encode ``records`` and atomically replace ``path`` with the result.

    Returns:
        Number of records written.

    Raises:
        PersistenceIOError: If the file cannot be written.
    """
    path = Path(path)
    data, count = _encode(records)
    tmp_path = path.with_name(path.name + ".tmp")
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(tmp_path, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        tmp_path.replace(path)
    except OSError as exc:
        raise PersistenceIOError(f"Unable to write peer file {path}: {exc}") from exc
    return count
