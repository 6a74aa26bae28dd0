"""CLI entry point for inspecting and exercising the peer cache.

Usage:
    peercache show --data-dir ./peercache-data
    peercache discover --config peercache.json --services 4 --timeout 5
    peercache discover --dns-seeds seed.example.org,seed2.example.org:8333

Environment variables:
    PEERCACHE_DATA_DIR:     Override data directory
    PEERCACHE_DNS_SEEDS:    Comma-separated DNS seeds
    PEERCACHE_HTTP_SEEDS:   Comma-separated HTTP seeds
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from datetime import datetime, timezone
from typing import Any

from peercache.config import DiscoveryConfig, load_config
from peercache.errors import PeerCacheError
from peercache.network.discovery import DiscoveryService
from peercache.storage.peerfile import read_peer_file


def _int_mask(value: str) -> int:
    """Accept decimal, 0x hex or 0b binary service masks."""
    return int(value, 0)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="peercache",
        description="Inspect the persisted peer cache and run discovery",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--config", "-c",
        help="Path to JSON config file",
    )
    parser.add_argument(
        "--data-dir", "-d",
        help="Override data directory",
    )
    parser.add_argument(
        "--dns-seeds",
        help="Comma-separated DNS seeds (host[:port])",
    )
    parser.add_argument(
        "--http-seeds",
        help="Comma-separated HTTP seeds (host:port)",
    )
    parser.add_argument(
        "--log-level", "-l",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Log level (default: INFO)",
    )

    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("show", help="List peers in the peer file, newest first")

    discover = sub.add_parser("discover", help="Run one discovery request")
    discover.add_argument(
        "--services", "-s",
        type=_int_mask,
        help="Required services mask (default: from config)",
    )
    discover.add_argument(
        "--timeout", "-t",
        type=float,
        help="Seed fallback timeout in seconds (default: from config)",
    )
    return parser.parse_args(argv)


def build_config(args: argparse.Namespace) -> DiscoveryConfig:
    overrides: dict[str, Any] = {}
    if args.data_dir:
        overrides["data_dir"] = args.data_dir
    if args.dns_seeds:
        overrides["dns_seeds"] = [s.strip() for s in args.dns_seeds.split(",") if s.strip()]
    if args.http_seeds:
        overrides["http_seeds"] = [s.strip() for s in args.http_seeds.split(",") if s.strip()]
    return load_config(args.config, overrides)


def show_peers(config: DiscoveryConfig) -> int:
    """Print the peer file, most recently seen first."""
    records = read_peer_file(config.peers_path)
    records.sort(key=lambda r: r.last_seen, reverse=True)
    for r in records:
        seen = datetime.fromtimestamp(r.last_seen, tz=timezone.utc)
        print(f"{str(r):<48} services=0x{r.services:016x}  last_seen={seen:%Y-%m-%d %H:%M:%S}Z")
    print(f"{len(records)} peers in {config.peers_path}")
    return 0


async def run_discovery(config: DiscoveryConfig, services: int, timeout: float) -> int:
    """Load the cache, answer one request, save the cache."""
    service = DiscoveryService(config)
    try:
        service.load_peers()
        peers = await service.get_peers(services, timeout)
        for addr in peers:
            print(addr)
        print(f"{len(peers)} peers discovered (services=0x{services:x})")
        service.store_peers()
    finally:
        service.shutdown()
    return 0


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    try:
        config = build_config(args)
        if args.command == "show":
            return show_peers(config)
        services = args.services if args.services is not None else config.required_services
        timeout = args.timeout if args.timeout is not None else config.seed_timeout
        return asyncio.run(run_discovery(config, services, timeout))
    except (PeerCacheError, FileNotFoundError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
