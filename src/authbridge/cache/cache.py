"""Disk-backed cache for JWKS documents.

Uses :mod:`diskcache` to persist key-set documents on the filesystem with a
time-to-live.  A key set is cached as a unit, keyed by the SHA-256 of its
URL, because identity providers rotate keys as a set rather than one at a
time.  A TTL of ``0`` disables caching entirely.

:mod:`diskcache` is safe for concurrent use across threads and processes,
so two application instances can share one cache directory.
"""

from __future__ import annotations

import hashlib
from pathlib import Path
from typing import Any, Optional

import diskcache


class KeySetCache:
    """Disk-backed cache of JWKS documents.

    Args:
        cache_dir: Root directory for the cache.  A ``jwks/``
            subdirectory is created inside it.
        ttl_seconds: How long a fetched key set stays fresh.  ``0`` disables
            the cache.

    Example::

        cache = KeySetCache("/tmp/authbridge-cache", ttl_seconds=600)
        cache.set("https://idp.example.com/.well-known/jwks.json", {"keys": [...]})
        document = cache.get("https://idp.example.com/.well-known/jwks.json")
    """

    def __init__(self, cache_dir: str | Path, ttl_seconds: int) -> None:
        self._ttl = ttl_seconds
        self._cache_dir = Path(cache_dir)
        self._cache: Optional[diskcache.Cache] = None
        if ttl_seconds > 0:
            self._cache = diskcache.Cache(str(self._cache_dir / "jwks"))

    @property
    def enabled(self) -> bool:
        return self._cache is not None

    def get(self, url: str) -> Optional[dict[str, Any]]:
        """Return the cached key set for *url*, or ``None`` on a miss or when disabled."""
        if self._cache is None:
            return None
        return self._cache.get(self._make_key(url))

    def set(self, url: str, document: dict[str, Any]) -> None:
        """Cache *document* for *url* with the configured TTL."""
        if self._cache is None:
            return
        self._cache.set(self._make_key(url), document, expire=self._ttl)

    def invalidate(self, url: str) -> None:
        """Drop the cached key set for *url*."""
        if self._cache is None:
            return
        self._cache.delete(self._make_key(url))

    def clear(self) -> None:
        """Remove all cached key sets."""
        if self._cache is not None:
            self._cache.clear()

    def close(self) -> None:
        """Close the underlying :class:`diskcache.Cache` and release resources."""
        if self._cache is not None:
            self._cache.close()

    def _make_key(self, url: str) -> str:
        return hashlib.sha256(url.encode()).hexdigest()
