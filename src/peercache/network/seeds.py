"""Seed resolution — bootstrap peer sources that know nothing about services.

Two resolvers are provided:
  1. DNS seeds: hostnames whose A/AAAA records list reachable peers
  2. HTTP seeds: nodes that publish their peer list at ``GET /peers``

Neither can filter by capability, so both ignore the services mask they
are given. A single failing seed is logged and skipped; only when every
configured seed fails does the resolver raise DiscoveryUnavailableError.
"""

from __future__ import annotations

import asyncio
import logging
import socket
from abc import ABC, abstractmethod
from typing import Any, Protocol, runtime_checkable

from aiohttp import ClientError, ClientSession, ClientTimeout

from peercache.errors import DiscoveryUnavailableError
from peercache.network.address import SocketAddress, normalize_socket_address

logger = logging.getLogger(__name__)

DEFAULT_PORT = 8333
MAX_ADDRESSES_PER_SEED = 100


@runtime_checkable
class PeerSource(Protocol):
    """Anything that can hand out peer socket addresses."""

    async def get_peers(self, services: int, timeout: float) -> list[SocketAddress]:
        ...

    def shutdown(self) -> None:
        ...


def split_seed(seed: str, default_port: int) -> tuple[str, int]:
    """Split ``host[:port]`` (or ``[v6]:port``) into host and port."""
    if seed.startswith("["):
        host, _, rest = seed[1:].partition("]")
        port = int(rest[1:]) if rest.startswith(":") else default_port
        return host, port
    if seed.count(":") == 1:
        host, port_str = seed.rsplit(":", 1)
        return host, int(port_str)
    return seed, default_port


class _SeedResolver(ABC):
    """Shared fan-out over a list of seeds."""

    kind = "seed"

    def __init__(
        self,
        seeds: list[str],
        default_port: int = DEFAULT_PORT,
        max_addresses_per_seed: int = MAX_ADDRESSES_PER_SEED,
    ) -> None:
        self.seeds = list(seeds)
        self.default_port = default_port
        self.max_addresses_per_seed = max_addresses_per_seed

    async def get_peers(self, services: int, timeout: float) -> list[SocketAddress]:
        """Resolve every seed and return the deduplicated union.

        ``services`` is accepted for interface compatibility and ignored.

        Raises:
            DiscoveryUnavailableError: If seeds are configured and all fail.
        """
        if not self.seeds:
            return []

        results = await asyncio.gather(
            *(self._resolve_seed(seed, timeout) for seed in self.seeds),
            return_exceptions=True,
        )

        found: dict[SocketAddress, None] = {}
        failures = 0
        for seed, result in zip(self.seeds, results):
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                failures += 1
                logger.warning("Failed to resolve %s seed %s: %s", self.kind, seed, result)
                continue
            for addr in result[:self.max_addresses_per_seed]:
                found.setdefault(addr, None)
            logger.info("Resolved %d addresses from %s seed %s", len(result), self.kind, seed)

        if failures == len(self.seeds):
            raise DiscoveryUnavailableError(
                f"All {len(self.seeds)} {self.kind} seeds failed"
            )
        return list(found)

    @abstractmethod
    async def _resolve_seed(self, seed: str, timeout: float) -> list[SocketAddress]:
        """Addresses behind one seed. Any exception marks the seed as failed."""

    def shutdown(self) -> None:
        """Nothing is held between calls."""


class DnsSeedResolver(_SeedResolver):
    """Resolve ``hostname[:port]`` seeds through the system resolver."""

    kind = "DNS"

    async def _resolve_seed(self, seed: str, timeout: float) -> list[SocketAddress]:
        hostname, port = split_seed(seed, self.default_port)
        loop = asyncio.get_running_loop()
        addrinfo = await asyncio.wait_for(
            loop.getaddrinfo(
                hostname, port, family=socket.AF_UNSPEC, type=socket.SOCK_STREAM,
            ),
            timeout=timeout,
        )
        addresses: list[SocketAddress] = []
        for family, _type, _proto, _canonname, sockaddr in addrinfo:
            if family not in (socket.AF_INET, socket.AF_INET6):
                continue
            addr = normalize_socket_address(sockaddr[0], port)
            if addr not in addresses:
                addresses.append(addr)
        return addresses


class HttpSeedResolver(_SeedResolver):
    """Fetch peer lists from ``http://<seed>/peers``.

    The response body is ``{"peers": [{"address": ..., "port": ...}, ...]}``.
    Entries without a port use the default port; malformed entries are
    skipped.
    """

    kind = "HTTP"

    async def _resolve_seed(self, seed: str, timeout: float) -> list[SocketAddress]:
        url = f"http://{seed}/peers"
        try:
            async with ClientSession(timeout=ClientTimeout(total=timeout)) as session:
                async with session.get(url) as resp:
                    if resp.status != 200:
                        raise DiscoveryUnavailableError(
                            f"{url} returned HTTP {resp.status}"
                        )
                    data = await resp.json(content_type=None)
        except ClientError as exc:
            raise DiscoveryUnavailableError(f"{url}: {exc}") from exc
        return self._parse_peers(data)

    def _parse_peers(self, data: Any) -> list[SocketAddress]:
        if not isinstance(data, dict):
            raise DiscoveryUnavailableError("Peer list response is not a JSON object")
        addresses: list[SocketAddress] = []
        for p in data.get("peers", []):
            try:
                addr = normalize_socket_address(
                    p["address"], int(p.get("port", self.default_port)),
                )
            except (KeyError, TypeError, ValueError):
                logger.debug("Skipping malformed peer entry %r", p)
                continue
            if addr not in addresses:
                addresses.append(addr)
        return addresses


class CompositeSeedResolver:
    """Query several seed sources and merge what the healthy ones return."""

    def __init__(self, sources: list[PeerSource]) -> None:
        self.sources = list(sources)

    async def get_peers(self, services: int, timeout: float) -> list[SocketAddress]:
        if not self.sources:
            return []
        results = await asyncio.gather(
            *(s.get_peers(services, timeout) for s in self.sources),
            return_exceptions=True,
        )
        found: dict[SocketAddress, None] = {}
        errors: list[Exception] = []
        for result in results:
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                errors.append(result)
                continue
            for addr in result:
                found.setdefault(addr, None)
        if len(errors) == len(self.sources):
            raise DiscoveryUnavailableError(
                "; ".join(str(e) for e in errors)
            ) from errors[0]
        return list(found)

    def shutdown(self) -> None:
        for source in self.sources:
            source.shutdown()
