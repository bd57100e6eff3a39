"""Shared test fixtures for authbridge.

Provides RSA signing keys and a token factory, an in-memory keychain, a
fake identity provider served through :class:`httpx.MockTransport`, a
controllable clock, isolated configuration, and output/CLI helpers.  These
fixtures are discovered by pytest and available to all test modules without
explicit imports.
"""

from __future__ import annotations

import json
import time
from pathlib import Path
from typing import Any, Callable, Optional

import httpx
import jwt
import pytest
import pytest_asyncio
from cryptography.hazmat.primitives.asymmetric import rsa
from jwt.algorithms import RSAAlgorithm
from keyring.backend import KeyringBackend
from keyring.errors import KeyringError, PasswordDeleteError, PasswordSetError

from authbridge.auth.session import SessionManager
from authbridge.config import BridgeConfig
from authbridge.output import OutputFormat, OutputManager, reset_output, set_output


ISSUER_HOST = "idp.example.com"
ISSUER = f"https://{ISSUER_HOST}"
KEY_ID = "ins_test_1"


# ---------------------------------------------------------------------------
# Auto-reset global output state between tests
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _reset_output_between_tests() -> None:
    """Reset the global OutputManager after every test.

    CliRunner swaps sys.stdout/sys.stderr; a manager created during one
    test would otherwise keep references to closed streams.
    """
    yield
    reset_output()


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class InMemoryKeyring(KeyringBackend):
    """Keyring backend holding secrets in a dict.

    ``fail_set`` / ``fail_delete`` name entries whose write or delete is
    refused; ``fail_get`` makes every read fail.
    """

    priority = 1  # type: ignore[assignment]

    def __init__(self) -> None:
        super().__init__()
        self.entries: dict[tuple[str, str], str] = {}
        self.fail_set: set[str] = set()
        self.fail_delete: set[str] = set()
        self.fail_get = False

    def set_password(self, service: str, username: str, password: str) -> None:
        if username in self.fail_set:
            raise PasswordSetError("keychain is locked")
        self.entries[(service, username)] = password

    def get_password(self, service: str, username: str) -> Optional[str]:
        if self.fail_get:
            raise KeyringError("keychain is unavailable")
        return self.entries.get((service, username))

    def delete_password(self, service: str, username: str) -> None:
        if username in self.fail_delete:
            raise PasswordDeleteError("delete refused")
        try:
            del self.entries[(service, username)]
        except KeyError:
            raise PasswordDeleteError("no such entry") from None


class FakeClock:
    """Callable wall clock that only moves when told to."""

    def __init__(self, start: Optional[float] = None) -> None:
        self.now = time.time() if start is None else start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeIdentityProvider:
    """Serves a key set and a user directory through a mock transport."""

    def __init__(self, jwks: dict[str, Any]) -> None:
        self.jwks = jwks
        self.users: dict[str, dict[str, Any]] = {}
        self.jwks_requests = 0
        self.user_requests = 0
        self.jwks_status = 200
        self.offline = False
        self.last_authorization: Optional[str] = None

    def handler(self, request: httpx.Request) -> httpx.Response:
        if self.offline:
            raise httpx.ConnectError("connection refused", request=request)
        if request.url.path == "/.well-known/jwks.json":
            self.jwks_requests += 1
            if self.jwks_status != 200:
                return httpx.Response(self.jwks_status)
            return httpx.Response(200, json=self.jwks)
        if request.url.path.startswith("/v1/users/"):
            self.user_requests += 1
            self.last_authorization = request.headers.get("Authorization")
            user_id = request.url.path.rsplit("/", 1)[-1]
            if user_id in self.users:
                return httpx.Response(200, json=self.users[user_id])
            return httpx.Response(404, json={"errors": [{"code": "resource_not_found"}]})
        return httpx.Response(404)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))


# ---------------------------------------------------------------------------
# Keys and tokens
# ---------------------------------------------------------------------------


def _public_jwk(private_key: rsa.RSAPrivateKey, kid: str) -> dict[str, Any]:
    jwk = json.loads(RSAAlgorithm.to_jwk(private_key.public_key()))
    jwk.update({"kid": kid, "alg": "RS256", "use": "sig"})
    return jwk


@pytest.fixture(scope="session")
def signing_key() -> rsa.RSAPrivateKey:
    """The identity provider's trusted signing key."""
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def untrusted_key() -> rsa.RSAPrivateKey:
    """A key that never appears in the published key set."""
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture
def jwks(signing_key: rsa.RSAPrivateKey) -> dict[str, Any]:
    return {"keys": [_public_jwk(signing_key, KEY_ID)]}


@pytest.fixture
def public_jwk() -> Callable[[rsa.RSAPrivateKey, str], dict[str, Any]]:
    return _public_jwk


@pytest.fixture
def make_token(signing_key: rsa.RSAPrivateKey) -> Callable[..., str]:
    """Factory minting RS256 tokens.

    Keyword arguments override claims; a claim set to ``None`` is removed.
    ``key``, ``kid`` and ``algorithm`` control signing (``kid=None`` omits
    the header entirely).
    """

    def _make(
        key: Any = None,
        kid: Optional[str] = KEY_ID,
        algorithm: str = "RS256",
        **overrides: Any,
    ) -> str:
        now = int(time.time())
        claims: dict[str, Any] = {
            "sub": "user_123",
            "sid": "sess_456",
            "iss": ISSUER,
            "iat": now,
            "nbf": now - 5,
            "exp": now + 3600,
        }
        claims.update(overrides)
        claims = {k: v for k, v in claims.items() if v is not None}
        headers = {"kid": kid} if kid is not None else None
        return jwt.encode(claims, key or signing_key, algorithm=algorithm, headers=headers)

    return _make


# ---------------------------------------------------------------------------
# Collaborators
# ---------------------------------------------------------------------------


@pytest.fixture
def keyring_backend() -> InMemoryKeyring:
    return InMemoryKeyring()


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def idp(jwks: dict[str, Any]) -> FakeIdentityProvider:
    return FakeIdentityProvider(jwks)


@pytest_asyncio.fixture
async def http_client(idp: FakeIdentityProvider) -> httpx.AsyncClient:
    async with idp.client() as client:
        yield client


@pytest.fixture
def config(tmp_path: Path) -> BridgeConfig:
    """Configuration pointing at the fake provider, caching under tmp_path."""
    return BridgeConfig(issuer_host=ISSUER_HOST, cache_dir=tmp_path / "cache")


@pytest_asyncio.fixture
async def manager(
    config: BridgeConfig,
    keyring_backend: InMemoryKeyring,
    http_client: httpx.AsyncClient,
    fake_clock: FakeClock,
) -> SessionManager:
    """A fully wired SessionManager driven by the fake clock."""
    manager = SessionManager.from_config(
        config,
        secret_backend=keyring_backend,
        http_client=http_client,
        clock=fake_clock,
    )
    yield manager
    await manager.aclose()


# ---------------------------------------------------------------------------
# Config isolation and output fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def isolated_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point XDG directories at tmp_path and clear ``AUTHBRIDGE_*`` variables."""
    monkeypatch.setattr("authbridge.config._is_xdg_platform", lambda: True)
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "config"))
    monkeypatch.setenv("XDG_CACHE_HOME", str(tmp_path / "cache"))
    for name in BridgeConfig.model_fields:
        monkeypatch.delenv(f"AUTHBRIDGE_{name.upper()}", raising=False)
    monkeypatch.chdir(tmp_path)
    return tmp_path


@pytest.fixture
def json_output() -> OutputManager:
    output = OutputManager(format=OutputFormat.JSON)
    set_output(output)
    yield output
    reset_output()


@pytest.fixture
def cli_runner():
    """Typer CLI test runner."""
    from typer.testing import CliRunner

    return CliRunner()
