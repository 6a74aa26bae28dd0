"""Error kinds surfaced by the peer cache.

Nothing in the cache retries or suppresses these; the caller decides
whether a failure is fatal (startup) or only worth a log line (shutdown).
"""

from __future__ import annotations


class PeerCacheError(Exception):
    """Base class for peer cache failures."""


class PersistenceIOError(PeerCacheError, OSError):
    """Raised when the peer file cannot be opened, read or written."""


class CorruptPersistentStateError(PeerCacheError, ValueError):
    """Raised when the peer file is structurally invalid."""


class DiscoveryUnavailableError(PeerCacheError):
    """Raised when seed resolution fails or times out. Safe to retry later."""
