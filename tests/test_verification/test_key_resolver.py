"""Tests for signing key resolution."""

from __future__ import annotations

from pathlib import Path

import httpx
import pytest

from authbridge.cache import KeySetCache
from authbridge.exceptions import KeyResolutionError, RateLimitedError
from authbridge.verification.key_resolver import KeyResolver, find_key, parse_key_set
from authbridge.verification.rate_limiter import FetchRateLimiter

JWKS_URL = "https://idp.example.com/.well-known/jwks.json"
KEY_ID = "ins_test_1"


@pytest.fixture()
def key_cache(tmp_path: Path) -> KeySetCache:
    cache = KeySetCache(tmp_path / "cache", ttl_seconds=600)
    yield cache
    cache.close()


def _resolver(client: httpx.AsyncClient, cache: KeySetCache, limit: int = 10) -> KeyResolver:
    return KeyResolver(JWKS_URL, cache, FetchRateLimiter(max_requests=limit), client=client)


class TestParseKeySet:
    def test_parses_rsa_key(self, jwks) -> None:
        key_set = parse_key_set(jwks)
        key = find_key(key_set, KEY_ID)
        assert key is not None
        assert key.key_id == KEY_ID

    def test_find_key_missing(self, jwks) -> None:
        assert find_key(parse_key_set(jwks), "other") is None

    @pytest.mark.parametrize("document", [[], {"keys": "nope"}, {"other": []}, "text"])
    def test_rejects_non_key_sets(self, document) -> None:
        with pytest.raises(KeyResolutionError, match="Malformed key set"):
            parse_key_set(document)

    def test_rejects_set_without_usable_keys(self) -> None:
        with pytest.raises(KeyResolutionError):
            parse_key_set({"keys": [{"kty": "bogus", "kid": "x"}]})


class TestKeyResolver:
    @pytest.mark.asyncio
    async def test_resolves_and_caches(self, http_client, idp, key_cache) -> None:
        resolver = _resolver(http_client, key_cache)
        first = await resolver.resolve(KEY_ID)
        second = await resolver.resolve(KEY_ID)
        assert first.key_id == second.key_id == KEY_ID
        assert idp.jwks_requests == 1
        assert key_cache.get(JWKS_URL) == idp.jwks

    @pytest.mark.asyncio
    async def test_cache_survives_new_resolver(self, http_client, idp, tmp_path) -> None:
        cache = KeySetCache(tmp_path / "shared", ttl_seconds=600)
        await _resolver(http_client, cache).resolve(KEY_ID)
        cache.close()

        reopened = KeySetCache(tmp_path / "shared", ttl_seconds=600)
        await _resolver(http_client, reopened).resolve(KEY_ID)
        reopened.close()
        assert idp.jwks_requests == 1

    @pytest.mark.asyncio
    async def test_unknown_kid_refetches_once(
        self, http_client, idp, key_cache, signing_key, public_jwk
    ) -> None:
        resolver = _resolver(http_client, key_cache)
        await resolver.resolve(KEY_ID)

        # Provider rotates in a new key.
        idp.jwks = {"keys": [public_jwk(signing_key, KEY_ID), public_jwk(signing_key, "ins_new")]}
        key = await resolver.resolve("ins_new")
        assert key.key_id == "ins_new"
        assert idp.jwks_requests == 2

    @pytest.mark.asyncio
    async def test_unknown_kid_after_refresh_is_definitive(
        self, http_client, idp, key_cache
    ) -> None:
        resolver = _resolver(http_client, key_cache)
        with pytest.raises(KeyResolutionError) as exc_info:
            await resolver.resolve("not-there")
        assert exc_info.value.transient is False
        assert "not-there" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_unknown_kids_are_rate_limited(self, http_client, idp, key_cache) -> None:
        resolver = _resolver(http_client, key_cache, limit=3)
        for _ in range(3):
            with pytest.raises(KeyResolutionError):
                await resolver.resolve("attacker-kid")
        with pytest.raises(RateLimitedError):
            await resolver.resolve("attacker-kid")
        assert idp.jwks_requests == 3

    @pytest.mark.asyncio
    async def test_known_kid_served_from_cache_when_rate_limited(
        self, http_client, idp, key_cache
    ) -> None:
        resolver = _resolver(http_client, key_cache, limit=1)
        await resolver.resolve(KEY_ID)
        key = await resolver.resolve(KEY_ID)
        assert key.key_id == KEY_ID

    @pytest.mark.asyncio
    async def test_http_error_is_transient(self, http_client, idp, key_cache) -> None:
        idp.jwks_status = 503
        with pytest.raises(KeyResolutionError) as exc_info:
            await _resolver(http_client, key_cache).resolve(KEY_ID)
        assert exc_info.value.transient is True
        assert "503" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_connection_error_is_transient(self, http_client, idp, key_cache) -> None:
        idp.offline = True
        with pytest.raises(KeyResolutionError) as exc_info:
            await _resolver(http_client, key_cache).resolve(KEY_ID)
        assert exc_info.value.transient is True

    @pytest.mark.asyncio
    async def test_malformed_response_is_not_cached(self, key_cache) -> None:
        client = httpx.AsyncClient(
            transport=httpx.MockTransport(lambda r: httpx.Response(200, json={"keys": "x"}))
        )
        with pytest.raises(KeyResolutionError):
            await _resolver(client, key_cache).resolve(KEY_ID)
        assert key_cache.get(JWKS_URL) is None
        await client.aclose()

    @pytest.mark.asyncio
    async def test_non_json_response(self, key_cache) -> None:
        client = httpx.AsyncClient(
            transport=httpx.MockTransport(lambda r: httpx.Response(200, content=b"<html>"))
        )
        with pytest.raises(KeyResolutionError, match="not JSON"):
            await _resolver(client, key_cache).resolve(KEY_ID)
        await client.aclose()

    @pytest.mark.asyncio
    async def test_disabled_cache_fetches_every_time(self, http_client, idp, tmp_path) -> None:
        resolver = _resolver(http_client, KeySetCache(tmp_path, ttl_seconds=0))
        await resolver.resolve(KEY_ID)
        await resolver.resolve(KEY_ID)
        assert idp.jwks_requests == 2
