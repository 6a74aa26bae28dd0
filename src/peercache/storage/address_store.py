"""AddressStore — in-memory, deduplicated cache of peer address records.

Records are held in arrival order in a list, with a dict from
``(address, port)`` to list position for O(1) dedup. One lock guards the
list, the index and the discovery tracker bookkeeping done through
``claim_matching``/``claim_unserved``, so ingest, discovery and persistence
always see a consistent view.
"""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING, Iterable

from peercache.network.address import IPAddress, PeerAddressRecord, SocketAddress, parse_ip

if TYPE_CHECKING:
    from peercache.network.discovery import DiscoveryTracker

logger = logging.getLogger(__name__)


class AddressStore:
    """Ordered, deduplicated collection of peer address records.

    The store never deletes entries on its own; only ``replace`` (used when
    loading the peer file) swaps out the whole contents.
    """

    def __init__(self, records: Iterable[PeerAddressRecord] | None = None) -> None:
        self._lock = threading.Lock()
        self._records: list[PeerAddressRecord] = []
        self._index: dict[tuple[IPAddress, int], int] = {}
        if records is not None:
            self.replace(records)

    def __len__(self) -> int:
        return self.size()

    def size(self) -> int:
        with self._lock:
            return len(self._records)

    def merge(self, record: PeerAddressRecord) -> bool:
        """Insert or update a record.

        Loopback addresses are dropped. For a known key, ``services`` and
        ``last_seen`` are overwritten with the new values even if the new
        ``last_seen`` is older.

        Returns:
            True if a new key was added, False on update or rejection.
        """
        with self._lock:
            return self._merge_locked(record)

    def replace(self, records: Iterable[PeerAddressRecord]) -> int:
        """Adopt ``records`` as the store's contents, in the given order.

        Returns:
            Number of records held afterwards.
        """
        with self._lock:
            self._records = []
            self._index = {}
            for record in records:
                self._merge_locked(record)
            return len(self._records)

    def snapshot(self) -> list[PeerAddressRecord]:
        """Independent copies of all records, in store order."""
        with self._lock:
            return [r.copy() for r in self._records]

    def get(self, address: str | IPAddress, port: int) -> PeerAddressRecord | None:
        """Copy of the record for a socket address, if known."""
        with self._lock:
            pos = self._index.get((parse_ip(address), port))
            return self._records[pos].copy() if pos is not None else None

    # ── Discovery bookkeeping ────────────────────────────────────

    def claim_matching(
        self, required_services: int, tracker: DiscoveryTracker,
    ) -> list[SocketAddress]:
        """Return unserved socket addresses advertising ``required_services``.

        Every returned address is marked in ``tracker`` before the lock is
        released, so concurrent callers never receive the same peer.
        """
        claimed: list[SocketAddress] = []
        with self._lock:
            for record in self._records:
                if not record.has_services(required_services):
                    continue
                sock = record.socket_address
                if sock in tracker:
                    continue
                tracker.add(sock)
                claimed.append(sock)
        return claimed

    def claim_unserved(
        self, addresses: Iterable[SocketAddress], tracker: DiscoveryTracker,
    ) -> list[SocketAddress]:
        """Mark addresses handed out from outside the store.

        Returns the ones ``tracker`` had not seen yet, in input order and
        without repeats.
        """
        claimed: list[SocketAddress] = []
        with self._lock:
            for sock in addresses:
                if sock in tracker:
                    continue
                tracker.add(sock)
                claimed.append(sock)
        return claimed

    # ── Internals ────────────────────────────────────────────────

    def _merge_locked(self, record: PeerAddressRecord) -> bool:
        if record.is_loopback:
            return False
        pos = self._index.get(record.key)
        if pos is None:
            self._index[record.key] = len(self._records)
            self._records.append(record.copy())
            logger.debug("Added peer %s", record)
            return True
        existing = self._records[pos]
        existing.services = record.services
        existing.last_seen = record.last_seen
        return False
