"""Peer Discovery — serve cached peers by capability, fall back to seeds.

Addresses advertised by connected peers are merged into an AddressStore.
Discovery requests walk that cache and hand out each socket address at most
once per process, so repeated calls move through the cache instead of
returning the same peers. Only when the cache has nothing new to offer is
the seed source consulted.

Lifecycle:
  1. ``load_peers()`` at startup populates the cache from the peer file
  2. ``process_address_message()`` ingests advertisements while running
  3. ``get_peers()`` answers discovery requests
  4. ``store_peers()`` then ``shutdown()`` at exit
"""

from __future__ import annotations

import asyncio
import logging
import random
from typing import Any, Iterable

from peercache.config import DiscoveryConfig
from peercache.errors import DiscoveryUnavailableError
from peercache.network.address import (
    PeerAddressRecord,
    SocketAddress,
    is_loopback_host,
    normalize_socket_address,
)
from peercache.network.seeds import (
    CompositeSeedResolver,
    DnsSeedResolver,
    HttpSeedResolver,
    PeerSource,
)
from peercache.storage.address_store import AddressStore
from peercache.storage.peerfile import read_peer_file, write_peer_file

logger = logging.getLogger(__name__)


class DiscoveryTracker:
    """Socket addresses already returned by discovery in this process.

    Grows monotonically and is never persisted. It has no lock of its own:
    it is only touched through AddressStore methods that hold the store lock.
    """

    def __init__(self) -> None:
        self._served: set[SocketAddress] = set()

    def __contains__(self, addr: object) -> bool:
        return addr in self._served

    def __len__(self) -> int:
        return len(self._served)

    def add(self, addr: SocketAddress) -> None:
        self._served.add(addr)


class DiscoveryService:
    """Cache-backed peer source with seed fallback.

    Composes an AddressStore, a DiscoveryTracker and an optional seed
    PeerSource. When no seed source is given, one is built from the config
    seeds the first time the cache runs dry.
    """

    def __init__(
        self,
        config: DiscoveryConfig | None = None,
        seed_source: PeerSource | None = None,
        store: AddressStore | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self.config = config or DiscoveryConfig()
        self.store = store if store is not None else AddressStore()
        self.tracker = DiscoveryTracker()
        self._seed_source = seed_source
        self._rng = rng
        self._closed = False

    @property
    def known_count(self) -> int:
        return self.store.size()

    @property
    def served_count(self) -> int:
        return len(self.tracker)

    # ── Ingestion ────────────────────────────────────────────────

    def process_address_message(self, records: Iterable[PeerAddressRecord]) -> None:
        """Merge a batch of peer address advertisements into the cache."""
        added = sum(1 for record in records if self.store.merge(record))
        if added:
            logger.debug("Address message added %d new peers", added)

    # ── Persistence ──────────────────────────────────────────────

    def load_peers(self) -> int:
        """Replace the cache with the peer file contents.

        Returns:
            Number of records now cached.

        Raises:
            PersistenceIOError: If the file cannot be read.
            CorruptPersistentStateError: If the file does not decode.
        """
        path = self.config.peers_path
        records = read_peer_file(path, self._rng)
        count = self.store.replace(records)
        logger.info("%d peers loaded from %s", count, path)
        return count

    def store_peers(self) -> int:
        """Write the most recently seen peers to the peer file.

        Returns:
            Number of records written.

        Raises:
            PersistenceIOError: If the file cannot be written.
        """
        path = self.config.peers_path
        count = write_peer_file(path, self.store.snapshot())
        logger.info("%d peers saved to %s", count, path)
        return count

    # ── Discovery ────────────────────────────────────────────────

    async def get_peers(self, services: int, timeout: float) -> list[SocketAddress]:
        """Return peers advertising every bit in ``services``.

        Each socket address is returned at most once per process, whether it
        came from the cache or from a seed. Cached matches are preferred;
        only when none remain is the seed source asked (once, with a zero
        mask) for bare addresses. Seed entries that are not literal IP
        addresses are skipped.

        Args:
            services: Bitmask of required services.
            timeout: Seconds to allow the seed fallback.

        Returns:
            Socket addresses, possibly empty.

        Raises:
            DiscoveryUnavailableError: If the seed fallback fails or times out.
        """
        if self._closed:
            raise DiscoveryUnavailableError("Discovery service is shut down")

        peers = self.store.claim_matching(services, self.tracker)
        logger.debug("Returning %d peers from address cache", len(peers))
        if peers:
            return peers

        source = self._get_seed_source()
        if source is None:
            return []

        try:
            seeded = await asyncio.wait_for(source.get_peers(0, timeout), timeout=timeout)
        except DiscoveryUnavailableError:
            raise
        except asyncio.TimeoutError as exc:
            raise DiscoveryUnavailableError(
                f"Seed resolution timed out after {timeout}s"
            ) from exc
        except Exception as exc:
            raise DiscoveryUnavailableError(f"Seed resolution failed: {exc}") from exc

        candidates = []
        for entry in seeded or []:
            try:
                host, port = entry
                addr = normalize_socket_address(host, port)
            except (TypeError, ValueError):
                logger.debug("Skipping unusable seed address %r", entry)
                continue
            if not is_loopback_host(addr.host):
                candidates.append(addr)
        peers = self.store.claim_unserved(candidates, self.tracker)
        logger.debug("Returning %d peers from seed discovery", len(peers))
        return peers

    def shutdown(self) -> None:
        """Release the seed source. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        if self._seed_source is not None:
            self._seed_source.shutdown()
        logger.info("Peer discovery stopped")

    def _get_seed_source(self) -> PeerSource | None:
        if self._seed_source is None:
            sources: list[PeerSource] = []
            if self.config.dns_seeds:
                sources.append(DnsSeedResolver(
                    self.config.dns_seeds, default_port=self.config.default_port,
                ))
            if self.config.http_seeds:
                sources.append(HttpSeedResolver(
                    self.config.http_seeds, default_port=self.config.default_port,
                ))
            if not sources:
                return None
            self._seed_source = sources[0] if len(sources) == 1 else CompositeSeedResolver(sources)
        return self._seed_source

    # ── Stats ────────────────────────────────────────────────────

    def get_stats(self) -> dict[str, Any]:
        snapshot = self.store.snapshot()
        return {
            "known_peers": len(snapshot),
            "served": len(self.tracker),
            "peers_file": str(self.config.peers_path),
            "by_family": {
                "ipv4": sum(1 for r in snapshot if r.address.version == 4),
                "ipv6": sum(1 for r in snapshot if r.address.version == 6),
            },
        }
