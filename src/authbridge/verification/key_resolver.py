"""Resolution of token signing keys from the identity provider's JWKS.

:class:`KeyResolver` fetches the provider's published key set over HTTPS
with :mod:`httpx`, caches the whole set through
:class:`~authbridge.cache.KeySetCache`, and returns the public key matching a
token's ``kid`` header.  An unknown key id against a cached set triggers one
refetch, because a provider that rotated its keys publishes the new key
before signing with it.  Every outbound fetch passes through a
:class:`~authbridge.verification.rate_limiter.FetchRateLimiter`.

Every failure surfaces as :class:`~authbridge.exceptions.KeyResolutionError`.
There is no fallback that skips verification.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional

import httpx
from jwt import PyJWK, PyJWKSet
from jwt.exceptions import PyJWTError

from authbridge.cache import KeySetCache
from authbridge.exceptions import KeyResolutionError
from authbridge.verification.rate_limiter import FetchRateLimiter

logger = logging.getLogger(__name__)


def parse_key_set(document: Any) -> PyJWKSet:
    """Parse a JWKS document.

    Raises:
        KeyResolutionError: If the document is not a key set or holds no
            usable keys.
    """
    if not isinstance(document, dict) or not isinstance(document.get("keys"), list):
        raise KeyResolutionError("Malformed key set: expected an object with a 'keys' list")
    try:
        return PyJWKSet.from_dict(document)
    except PyJWTError as exc:
        raise KeyResolutionError(f"Malformed key set: {exc}") from exc


def find_key(key_set: PyJWKSet, key_id: str) -> Optional[PyJWK]:
    """Return the key with ``kid`` equal to *key_id*, or ``None``."""
    for key in key_set.keys:
        if key.key_id == key_id:
            return key
    return None


class KeyResolver:
    """Fetches, caches, and searches the identity provider's key set.

    Args:
        jwks_url: HTTPS URL of the provider's JWKS document.
        cache: Key-set cache shared across resolutions.
        rate_limiter: Limits outbound fetches.
        client: Optional pre-configured :class:`httpx.AsyncClient`.  When
            omitted one is created lazily and closed by :meth:`aclose`.
        timeout: Request timeout in seconds for the lazily created client.

    Example::

        resolver = KeyResolver(config.jwks_url, KeySetCache(cache_dir, 600), FetchRateLimiter())
        key = await resolver.resolve("ins_2abc")
        public_key = key.key
    """

    def __init__(
        self,
        jwks_url: str,
        cache: KeySetCache,
        rate_limiter: FetchRateLimiter,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 10.0,
    ) -> None:
        self._jwks_url = jwks_url
        self._cache = cache
        self._rate_limiter = rate_limiter
        self._client = client
        self._owns_client = client is None
        self._timeout = timeout
        self._lock = asyncio.Lock()

    @property
    def jwks_url(self) -> str:
        return self._jwks_url

    async def resolve(self, key_id: str) -> PyJWK:
        """Return the public key for *key_id*.

        Raises:
            KeyResolutionError: If the key id is absent from a freshly
                fetched key set, the fetch fails, or the key material is
                malformed.
            RateLimitedError: If a fetch is needed but the fetch budget for
                the current window is spent.
        """
        async with self._lock:
            document = self._cache.get(self._jwks_url)
            if document is not None:
                key = find_key(parse_key_set(document), key_id)
                if key is not None:
                    return key
                logger.info("Key id not in cached key set; refreshing")

            document = await self._fetch()
            key_set = parse_key_set(document)
            self._cache.set(self._jwks_url, document)

            key = find_key(key_set, key_id)
            if key is None:
                raise KeyResolutionError(f"Signing key '{key_id}' is not in the key set")
            return key

    async def aclose(self) -> None:
        """Close the HTTP client if this resolver created it."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def _fetch(self) -> dict[str, Any]:
        self._rate_limiter.acquire()
        client = self._get_client()
        logger.debug("Fetching key set from %s", self._jwks_url)
        try:
            response = await client.get(self._jwks_url, headers={"Accept": "application/json"})
            response.raise_for_status()
            document = response.json()
        except httpx.HTTPStatusError as exc:
            raise KeyResolutionError(
                f"Key set fetch failed with status {exc.response.status_code}",
                transient=True,
            ) from exc
        except httpx.HTTPError as exc:
            raise KeyResolutionError(f"Key set fetch failed: {exc}", transient=True) from exc
        except ValueError as exc:
            raise KeyResolutionError(f"Key set response is not JSON: {exc}") from exc
        if not isinstance(document, dict):
            raise KeyResolutionError("Malformed key set: expected a JSON object")
        return document

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout, follow_redirects=False)
        return self._client
