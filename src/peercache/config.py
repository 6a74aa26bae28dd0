"""Configuration for the peer cache.

Values come from, in increasing priority: dataclass defaults, a JSON config
file, environment variables, then explicit overrides (CLI flags).

Environment variables:
    PEERCACHE_DATA_DIR:     Override data directory
    PEERCACHE_DNS_SEEDS:    Comma-separated DNS seeds (host[:port])
    PEERCACHE_HTTP_SEEDS:   Comma-separated HTTP seeds (host:port)
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Mapping

from peercache.network.address import ServiceFlag
from peercache.network.seeds import DEFAULT_PORT

logger = logging.getLogger(__name__)

ENV_PREFIX = "PEERCACHE_"


@dataclass
class DiscoveryConfig:
    """Where the peer file lives and which seeds back discovery."""

    data_dir: Path = Path("./peercache-data")
    peers_file: str = "PeerAddresses.dat"
    dns_seeds: list[str] = field(default_factory=list)
    http_seeds: list[str] = field(default_factory=list)
    default_port: int = DEFAULT_PORT
    required_services: int = int(ServiceFlag.NODE_BLOOM)
    seed_timeout: float = 10.0

    def __post_init__(self) -> None:
        self.data_dir = Path(self.data_dir)
        if self.seed_timeout <= 0:
            raise ValueError(f"seed_timeout must be positive, got {self.seed_timeout}")

    @property
    def peers_path(self) -> Path:
        return self.data_dir / self.peers_file

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> DiscoveryConfig:
        known = {f.name for f in fields(cls)}
        unknown = set(raw) - known
        if unknown:
            raise ValueError(f"Unknown config keys: {', '.join(sorted(unknown))}")
        return cls(**dict(raw))


def _split_list(value: str) -> list[str]:
    return [p.strip() for p in value.split(",") if p.strip()]


def load_config(
    config_path: str | Path | None = None,
    overrides: Mapping[str, Any] | None = None,
    environ: Mapping[str, str] | None = None,
) -> DiscoveryConfig:
    """Build a DiscoveryConfig from file, environment and overrides.

    Raises:
        FileNotFoundError: If ``config_path`` is given but missing.
        ValueError: On unknown keys or invalid values.
    """
    raw: dict[str, Any] = {}
    if config_path is not None:
        path = Path(config_path).resolve()
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")
        with open(path) as f:
            raw = json.load(f)
        if not isinstance(raw, dict):
            raise ValueError(f"Config file {path} must hold a JSON object")
        logger.debug("Config loaded from %s", path)

    env = os.environ if environ is None else environ
    if env.get(ENV_PREFIX + "DATA_DIR"):
        raw["data_dir"] = env[ENV_PREFIX + "DATA_DIR"]
    if env.get(ENV_PREFIX + "DNS_SEEDS"):
        raw["dns_seeds"] = _split_list(env[ENV_PREFIX + "DNS_SEEDS"])
    if env.get(ENV_PREFIX + "HTTP_SEEDS"):
        raw["http_seeds"] = _split_list(env[ENV_PREFIX + "HTTP_SEEDS"])

    for key, value in (overrides or {}).items():
        if value is not None:
            raw[key] = value

    return DiscoveryConfig.from_dict(raw)
