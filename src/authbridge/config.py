"""Configuration with XDG paths and precedence resolution.

This module owns the single explicit configuration object for the bridge:

* **Directory layout** -- XDG Base Directory compliant on Linux/BSD,
  ``~/.authbridge/`` on macOS and Windows.  See :func:`get_config_dir` and
  :func:`get_cache_dir`.
* **BridgeConfig** -- a Pydantic model validated once at construction.
  Derived endpoints (issuer, JWKS URL, frontend URL) are filled in from
  ``issuer_host`` when not set explicitly.
* **Precedence resolution** -- :func:`load_config` merges defaults, the
  user config file, ``AUTHBRIDGE_*`` environment variables, and explicit
  overrides, failing fast with :class:`~authbridge.exceptions.ConfigurationError`
  when the identity provider is not configured.
"""

from __future__ import annotations

import json
import os
import platform
from pathlib import Path
from typing import Any, Mapping, Optional
from urllib.parse import urlparse

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from authbridge.exceptions import ConfigurationError

_APP_NAME = "authbridge"
_CONFIG_FILENAME = "config.json"
ENV_PREFIX = "AUTHBRIDGE_"

ASYMMETRIC_ALGORITHMS = frozenset(
    {
        "RS256", "RS384", "RS512",
        "PS256", "PS384", "PS512",
        "ES256", "ES256K", "ES384", "ES512",
        "EdDSA",
    }
)


# --- XDG path resolution ---


def _is_xdg_platform() -> bool:
    """Return True if the platform uses XDG base directories (Linux/FreeBSD)."""
    return platform.system() == "Linux" or platform.system().endswith("BSD")


def _fallback_base_dir() -> Path:
    """Fallback base directory for non-XDG platforms (macOS, Windows)."""
    return Path.home() / f".{_APP_NAME}"


def _xdg_base(env_var: str, default_segments: tuple[str, ...]) -> Path:
    """Resolve an XDG base directory from an env var with fallback segments under $HOME."""
    env_value = os.environ.get(env_var, "")
    if env_value:
        return Path(env_value)
    base = Path.home()
    for seg in default_segments:
        base = base / seg
    return base


def get_config_dir() -> Path:
    """Return the configuration directory, creating it if necessary.

    On Linux/BSD: ``$XDG_CONFIG_HOME/authbridge/`` (default ``~/.config/authbridge/``).
    On macOS/Windows: ``~/.authbridge/``.
    """
    if _is_xdg_platform():
        path = _xdg_base("XDG_CONFIG_HOME", (".config",)) / _APP_NAME
    else:
        path = _fallback_base_dir()
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_cache_dir() -> Path:
    """Return the cache directory, creating it if necessary.

    Holds the cached identity-provider key set, which is public material
    and can be deleted at any time.

    On Linux/BSD: ``$XDG_CACHE_HOME/authbridge/`` (default ``~/.cache/authbridge/``).
    On macOS/Windows: ``~/.authbridge/cache/``.
    """
    if _is_xdg_platform():
        path = _xdg_base("XDG_CACHE_HOME", (".cache",)) / _APP_NAME
    else:
        path = _fallback_base_dir() / "cache"
    path.mkdir(parents=True, exist_ok=True)
    return path


# --- Config model ---


class BridgeConfig(BaseModel):
    """Identity-provider and bridge settings.

    Only ``issuer_host`` is required.  Everything else has a safe default.

    Example::

        config = BridgeConfig(issuer_host="clerk.example.com")
        assert config.issuer == "https://clerk.example.com"
        assert config.jwks_url == "https://clerk.example.com/.well-known/jwks.json"
    """

    issuer_host: str = Field(description="Identity provider frontend API host name")
    issuer: Optional[str] = Field(
        default=None, description="Expected 'iss' claim (default https://<issuer_host>)"
    )
    jwks_url: Optional[str] = Field(
        default=None, description="Key set URL (default <issuer>/.well-known/jwks.json)"
    )
    frontend_url: Optional[str] = Field(
        default=None, description="Web app hosting the desktop login page"
    )
    login_path: str = Field(default="/auth/desktop", description="Desktop login page path")

    # Profile enrichment
    directory_url: str = Field(
        default="https://api.clerk.com/v1", description="User directory API base URL"
    )
    directory_secret_key: Optional[str] = Field(
        default=None, repr=False, description="Secret key for the user directory API"
    )

    # Local integration
    service_name: str = Field(
        default="com.authbridge.desktop", description="Keychain service namespace"
    )
    url_schemes: list[str] = Field(
        default_factory=lambda: ["authbridge"], description="Registered custom URI schemes"
    )
    algorithms: list[str] = Field(
        default_factory=lambda: ["RS256"], description="Accepted token signing algorithms"
    )

    # Timing
    login_ttl_seconds: int = Field(default=300, ge=1, le=3600)
    clock_skew_seconds: int = Field(default=10, ge=0, le=300)
    jwks_cache_ttl_seconds: int = Field(default=600, ge=0)
    jwks_requests_per_minute: int = Field(default=10, ge=1)
    http_timeout: float = Field(default=10.0, gt=0)

    cache_dir: Optional[Path] = Field(
        default=None, description="Key set cache directory (default XDG cache dir)"
    )
    allow_direct_link: bool = Field(
        default=False, description="Accept tokens delivered without a state parameter"
    )

    @field_validator("issuer_host")
    @classmethod
    def _normalise_host(cls, value: str) -> str:
        host = value.strip()
        if "://" in host:
            host = urlparse(host).netloc
        host = host.rstrip("/")
        if not host:
            raise ValueError("issuer_host must not be empty")
        return host

    @field_validator("url_schemes")
    @classmethod
    def _normalise_schemes(cls, value: list[str]) -> list[str]:
        schemes = [s.strip().lower().rstrip(":/") for s in value if s.strip()]
        if not schemes:
            raise ValueError("at least one URL scheme is required")
        return schemes

    @field_validator("algorithms")
    @classmethod
    def _asymmetric_only(cls, value: list[str]) -> list[str]:
        if not value:
            raise ValueError("at least one signing algorithm is required")
        rejected = [alg for alg in value if alg not in ASYMMETRIC_ALGORITHMS]
        if rejected:
            raise ValueError(
                f"only asymmetric signing algorithms are accepted, got {rejected}"
            )
        return value

    @model_validator(mode="after")
    def _derive_endpoints(self) -> BridgeConfig:
        if self.issuer is None:
            self.issuer = f"https://{self.issuer_host}"
        if self.jwks_url is None:
            self.jwks_url = f"{self.issuer.rstrip('/')}/.well-known/jwks.json"
        if self.frontend_url is None:
            self.frontend_url = f"https://{self.issuer_host}"
        parsed = urlparse(self.jwks_url)
        if parsed.scheme != "https" and parsed.hostname not in ("localhost", "127.0.0.1"):
            raise ValueError("jwks_url must use https")
        return self

    @property
    def login_url(self) -> str:
        """Base URL of the desktop login page (state is appended by the caller)."""
        assert self.frontend_url is not None
        return f"{self.frontend_url.rstrip('/')}/{self.login_path.lstrip('/')}"

    @property
    def directory_enabled(self) -> bool:
        """Whether profile enrichment credentials are configured."""
        return bool(self.directory_secret_key)


# --- Precedence resolution ---


def _config_file_path() -> Path:
    return get_config_dir() / _CONFIG_FILENAME


def load_config_file(path: Optional[Path] = None) -> dict[str, Any]:
    """Read the user config file.

    Returns:
        The parsed JSON object, or an empty dict if the file does not exist.

    Raises:
        ConfigurationError: If the file exists but is not a JSON object.
    """
    path = path or _config_file_path()
    if not path.is_file():
        return {}
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (json.JSONDecodeError, OSError) as exc:
        raise ConfigurationError(f"Invalid config file at {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigurationError(f"Invalid config file at {path}: expected a JSON object")
    return data


def config_from_env(env: Optional[Mapping[str, str]] = None) -> dict[str, Any]:
    """Collect ``AUTHBRIDGE_*`` environment variables as config fields.

    List-valued fields (``url_schemes``, ``algorithms``) are comma-separated.
    Empty values are ignored.
    """
    env = os.environ if env is None else env
    values: dict[str, Any] = {}
    for name, field in BridgeConfig.model_fields.items():
        raw = env.get(f"{ENV_PREFIX}{name.upper()}")
        if raw is None or raw.strip() == "":
            continue
        if field.annotation is not None and "list" in str(field.annotation):
            values[name] = [part.strip() for part in raw.split(",") if part.strip()]
        else:
            values[name] = raw.strip()
    return values


def load_config(
    overrides: Optional[Mapping[str, Any]] = None,
    env: Optional[Mapping[str, str]] = None,
    config_path: Optional[Path] = None,
) -> BridgeConfig:
    """Resolve the effective configuration.

    Precedence (high to low):
        1. ``overrides`` (e.g. CLI flags)
        2. Environment variables (``AUTHBRIDGE_ISSUER_HOST``, ...)
        3. User config file (``~/.config/authbridge/config.json``)
        4. Defaults

    Raises:
        ConfigurationError: If ``issuer_host`` is absent from every source or
            any value fails validation.
    """
    merged: dict[str, Any] = {}
    merged.update(load_config_file(config_path))
    merged.update(config_from_env(env))
    if overrides:
        merged.update({k: v for k, v in overrides.items() if v is not None})

    if not merged.get("issuer_host"):
        raise ConfigurationError(
            "Sign-in is not configured: set AUTHBRIDGE_ISSUER_HOST or "
            "'issuer_host' in the config file"
        )
    try:
        return BridgeConfig.model_validate(merged)
    except ValidationError as exc:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'config'}: {err['msg']}"
            for err in exc.errors()
        )
        raise ConfigurationError(f"Invalid sign-in configuration: {problems}") from exc
