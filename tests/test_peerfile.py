"""Tests for the binary peer file codec."""

from __future__ import annotations

import random
import struct

import pytest

from peercache.errors import CorruptPersistentStateError, PersistenceIOError
from peercache.network.address import PeerAddressRecord
from peercache.storage.peerfile import (
    MAX_STORED_PEERS,
    decode_peers,
    encode_peers,
    read_peer_file,
    write_peer_file,
)


# ── Helpers ──────────────────────────────────────────────────────

def make_record(
    address: str = "10.0.0.1",
    port: int = 8333,
    services: int = 1,
    last_seen: int = 1_000,
) -> PeerAddressRecord:
    return PeerAddressRecord(address, port, services=services, last_seen=last_seen)


def as_tuples(records: list[PeerAddressRecord]) -> set[tuple]:
    return {(r.address, r.port, r.services, r.last_seen) for r in records}


def many_records(n: int) -> list[PeerAddressRecord]:
    return [
        make_record(f"10.{i // 256}.{i % 256}.1", 8000 + i, services=i, last_seen=i)
        for i in range(n)
    ]


# ── Encoding ─────────────────────────────────────────────────────

class TestEncode:
    def test_ipv4_layout(self):
        data = encode_peers([make_record("1.2.3.4", 8333, services=5, last_seen=1000)])
        assert data == (
            struct.pack("<H", 4) + bytes([1, 2, 3, 4]) + struct.pack("<IQQ", 8333, 5, 1000)
        )

    def test_ipv6_layout(self):
        r = make_record("2001:db8::1", 18333, services=0xFFFF_FFFF_FFFF_FFFF, last_seen=7)
        data = encode_peers([r])
        assert len(data) == 2 + 16 + 4 + 8 + 8
        assert data[:2] == b"\x10\x00"
        assert data[2:18] == r.packed

    def test_empty(self):
        assert encode_peers([]) == b""

    @pytest.mark.parametrize("field, value", [
        ("services", 1 << 64),
        ("services", -1),
        ("last_seen", 1 << 64),
        ("last_seen", -1),
    ])
    def test_out_of_range_fields_rejected_before_encoding(self, field, value):
        with pytest.raises(ValueError):
            make_record(**{field: value})

    def test_float_last_seen_encodes(self):
        r = PeerAddressRecord("1.2.3.4", 8333, services=5, last_seen=1000.9)
        assert encode_peers([r]) == encode_peers([make_record("1.2.3.4", 8333, services=5)])

    def test_newest_first(self):
        old = make_record("10.0.0.1", last_seen=1)
        new = make_record("10.0.0.2", last_seen=9)
        assert encode_peers([old, new]) == encode_peers([new]) + encode_peers([old])

    def test_ties_keep_store_order(self):
        a = make_record("10.0.0.1", last_seen=5)
        b = make_record("10.0.0.2", last_seen=5)
        c = make_record("10.0.0.3", last_seen=9)
        expected = encode_peers([c]) + encode_peers([a]) + encode_peers([b])
        assert encode_peers([a, b, c]) == expected

    def test_skips_loopback(self):
        assert encode_peers([make_record("127.0.0.1"), make_record("::1")]) == b""

    def test_cap_keeps_most_recent(self):
        records = many_records(250)
        decoded = decode_peers(encode_peers(records))
        assert len(decoded) == MAX_STORED_PEERS == 200
        assert {r.last_seen for r in decoded} == set(range(50, 250))

    def test_cap_ignores_loopback(self):
        records = many_records(200) + [make_record("127.0.0.1", last_seen=10_000)]
        assert len(decode_peers(encode_peers(records))) == 200


# ── Decoding ─────────────────────────────────────────────────────

class TestDecode:
    def test_round_trip_mixed_families(self):
        records = many_records(20) + [
            make_record("2001:db8::1", 1, services=4, last_seen=50),
            make_record("2001:db8::2", 2, services=6, last_seen=60),
        ]
        assert as_tuples(decode_peers(encode_peers(records))) == as_tuples(records)

    def test_empty(self):
        assert decode_peers(b"") == []

    def test_order_is_shuffled(self):
        records = many_records(50)
        data = encode_peers(records)
        decoded = decode_peers(data, random.Random(0))
        newest_first = sorted(records, key=lambda r: r.last_seen, reverse=True)
        assert [r.last_seen for r in decoded] != [r.last_seen for r in newest_first]
        assert as_tuples(decoded) == as_tuples(records)

    def test_seeded_rng_is_deterministic(self):
        data = encode_peers(many_records(30))
        first = decode_peers(data, random.Random(7))
        second = decode_peers(data, random.Random(7))
        assert [r.last_seen for r in first] == [r.last_seen for r in second]

    def test_truncated_record(self):
        data = encode_peers([make_record(), make_record("10.0.0.2")])
        with pytest.raises(CorruptPersistentStateError):
            decode_peers(data[:-1])

    def test_declared_length_past_end(self):
        data = struct.pack("<H", 16) + b"\x01\x02\x03\x04"
        with pytest.raises(CorruptPersistentStateError):
            decode_peers(data)

    def test_truncated_length_prefix(self):
        data = encode_peers([make_record()]) + b"\x04"
        with pytest.raises(CorruptPersistentStateError):
            decode_peers(data)

    def test_invalid_address_length(self):
        data = struct.pack("<H", 5) + b"\x00" * 5 + struct.pack("<IQQ", 1, 0, 0)
        with pytest.raises(CorruptPersistentStateError):
            decode_peers(data)

    def test_invalid_port(self):
        data = struct.pack("<H", 4) + b"\x01\x02\x03\x04" + struct.pack("<IQQ", 70_000, 0, 0)
        with pytest.raises(CorruptPersistentStateError):
            decode_peers(data)

    def test_corrupt_is_value_error(self):
        with pytest.raises(ValueError):
            decode_peers(b"\xff")


# ── File I/O ─────────────────────────────────────────────────────

class TestPeerFile:
    def test_missing_file_is_empty(self, tmp_path):
        assert read_peer_file(tmp_path / "nope.dat") == []

    def test_write_then_read(self, tmp_path):
        path = tmp_path / "sub" / "PeerAddresses.dat"
        records = many_records(10)
        assert write_peer_file(path, records) == 10
        assert as_tuples(read_peer_file(path)) == as_tuples(records)

    def test_write_reports_capped_count(self, tmp_path):
        assert write_peer_file(tmp_path / "p.dat", many_records(250)) == 200

    def test_no_temp_file_left(self, tmp_path):
        path = tmp_path / "p.dat"
        write_peer_file(path, many_records(3))
        assert [p.name for p in tmp_path.iterdir()] == ["p.dat"]

    def test_write_overwrites(self, tmp_path):
        path = tmp_path / "p.dat"
        write_peer_file(path, many_records(10))
        write_peer_file(path, many_records(2))
        assert len(read_peer_file(path)) == 2

    def test_write_failure(self, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("not a directory")
        with pytest.raises(PersistenceIOError):
            write_peer_file(blocker / "p.dat", many_records(1))

    def test_read_failure(self, tmp_path):
        with pytest.raises(PersistenceIOError):
            read_peer_file(tmp_path)

    def test_read_corrupt(self, tmp_path):
        path = tmp_path / "p.dat"
        path.write_bytes(encode_peers(many_records(3))[:-3])
        with pytest.raises(CorruptPersistentStateError):
            read_peer_file(path)
