"""Disk-based caching of identity-provider key sets.

This package provides :class:`KeySetCache`, which stores fetched JWKS
documents on disk using :mod:`diskcache` so that a restart within the cache
TTL does not refetch them.  Only public key material is ever cached.

The cache is consumed by :class:`~authbridge.verification.key_resolver.KeyResolver`.
"""

from authbridge.cache.cache import KeySetCache

__all__ = ["KeySetCache"]
