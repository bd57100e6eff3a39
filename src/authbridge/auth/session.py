"""Session manager -- the login state machine.

:class:`SessionManager` is the only component that mutates authentication
state.  It composes:

- :class:`~authbridge.auth.pending.PendingRequestTracker` for the single
  in-flight login attempt and its anti-CSRF state;
- :class:`~authbridge.verification.TokenVerifier` for every token it is
  asked to trust;
- :class:`~authbridge.auth.credential_store.CredentialStore` for the
  credential kept in the OS keychain;
- an optional :class:`~authbridge.auth.directory.UserDirectory` for profile
  enrichment;
- :class:`~authbridge.security.SecurityEventLog` for the audit trail.

State machine::

    IDLE --start_login--> LOGIN_STARTED --> AWAITING_CALLBACK
    AWAITING_CALLBACK --valid callback--> AUTHENTICATED
    AWAITING_CALLBACK --rejected callback / expiry--> IDLE
    IDLE --restore_session (valid stored credential)--> AUTHENTICATED
    any --sign_out--> IDLE

Public operations are serialised by an :class:`asyncio.Lock`, so a callback
can never observe a half-finished restore or sign-out.

For most use cases, call :func:`create_session_manager`, which returns an
:class:`UnconfiguredSessionManager` when no identity provider is configured.
"""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Mapping, Optional
from urllib.parse import urlencode

import httpx
from keyring.backend import KeyringBackend

from authbridge.auth.base import AuthBridge
from authbridge.auth.credential_store import CredentialStore
from authbridge.auth.directory import UserDirectory
from authbridge.auth.pending import PendingRequestTracker
from authbridge.auth.secret_store import SecretStore
from authbridge.cache import KeySetCache
from authbridge.config import BridgeConfig, get_cache_dir, load_config
from authbridge.exceptions import (
    AuthBridgeError,
    ConfigurationError,
    CsrfError,
    KeyResolutionError,
    NetworkError,
    StorageError,
    TokenVerificationError,
)
from authbridge.models import (
    AuthState,
    AuthStatus,
    CallbackResult,
    LoginStart,
    Session,
    StoredCredential,
    TokenPayload,
    UserProfile,
)
from authbridge.security import SecurityEvent, SecurityEventLog
from authbridge.verification import FetchRateLimiter, KeyResolver, TokenVerifier

logger = logging.getLogger(__name__)


def _failure(exc: AuthBridgeError) -> CallbackResult:
    return CallbackResult(authenticated=False, error=str(exc), error_code=exc.error_code)


class SessionManager(AuthBridge):
    """Drives login, callback handling, restore and sign-out.

    Args:
        config: Resolved bridge configuration.
        credentials: Keychain-backed credential store.
        verifier: Verifier used for every token, including restored ones.
        tracker: Pending-request tracker.  Defaults to one using
            ``config.login_ttl_seconds`` and *clock*.
        directory: Optional user directory for profile enrichment.
        events: Security event sink.
        clock: Wall-clock source returning POSIX seconds.
        key_cache: Key-set cache to close in :meth:`aclose`.

    Example::

        manager = SessionManager.from_config(load_config())
        start = await manager.start_login()
        webbrowser.open(start.auth_url)
        ...
        result = await manager.process_callback(token, state)
    """

    def __init__(
        self,
        config: BridgeConfig,
        credentials: CredentialStore,
        verifier: TokenVerifier,
        *,
        tracker: Optional[PendingRequestTracker] = None,
        directory: Optional[UserDirectory] = None,
        events: Optional[SecurityEventLog] = None,
        clock: Callable[[], float] = time.time,
        key_cache: Optional[KeySetCache] = None,
    ) -> None:
        self._config = config
        self._credentials = credentials
        self._verifier = verifier
        self._clock = clock
        self._tracker = tracker or PendingRequestTracker(
            ttl_seconds=config.login_ttl_seconds, clock=clock
        )
        self._directory = directory
        self._events = events or SecurityEventLog()
        self._key_cache = key_cache
        self._lock = asyncio.Lock()
        self._state = AuthState.IDLE
        self._session: Optional[Session] = None
        self._user: Optional[UserProfile] = None

    @classmethod
    def from_config(
        cls,
        config: BridgeConfig,
        *,
        secret_backend: Optional[KeyringBackend] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        events: Optional[SecurityEventLog] = None,
        clock: Callable[[], float] = time.time,
    ) -> SessionManager:
        """Wire up every collaborator from *config*.

        Args:
            config: Resolved bridge configuration.
            secret_backend: Keyring backend; defaults to the platform keychain.
            http_client: Shared client for key-set and directory requests.
            events: Security event sink.
            clock: Wall-clock source.
        """
        key_cache = KeySetCache(
            config.cache_dir or get_cache_dir(), config.jwks_cache_ttl_seconds
        )
        assert config.jwks_url is not None and config.issuer is not None
        resolver = KeyResolver(
            config.jwks_url,
            key_cache,
            FetchRateLimiter(max_requests=config.jwks_requests_per_minute),
            client=http_client,
            timeout=config.http_timeout,
        )
        verifier = TokenVerifier(
            resolver,
            issuer=config.issuer,
            algorithms=config.algorithms,
            clock_skew_seconds=config.clock_skew_seconds,
        )
        directory = None
        if config.directory_enabled:
            assert config.directory_secret_key is not None
            directory = UserDirectory(
                config.directory_url,
                config.directory_secret_key,
                client=http_client,
                timeout=config.http_timeout,
            )
        credentials = CredentialStore(SecretStore(config.service_name, backend=secret_backend))
        return cls(
            config,
            credentials,
            verifier,
            directory=directory,
            events=events,
            clock=clock,
            key_cache=key_cache,
        )

    # --- Read-only views ---

    @property
    def configured(self) -> bool:
        return True

    @property
    def config(self) -> BridgeConfig:
        return self._config

    @property
    def state(self) -> AuthState:
        if self._state is AuthState.AWAITING_CALLBACK and not self._tracker.has_pending():
            return self._settled_state()
        return self._state

    def get_auth_status(self) -> AuthStatus:
        session = self._session
        return AuthStatus(
            authenticated=session is not None and self._user is not None,
            user=self._user,
            session_valid=session is not None and session.is_valid(self._now()),
            state=self.state,
            expires_at=session.expires_at if session is not None else None,
        )

    def get_stored_credentials(self) -> Optional[StoredCredential]:
        try:
            return self._credentials.load()
        except StorageError as exc:
            logger.warning("Could not read stored credentials: %s", exc)
            return None

    # --- Operations ---

    async def start_login(self) -> LoginStart:
        """Create a fresh pending request and build the browser login URL.

        A login already in flight is superseded; its state value will never
        validate.
        """
        async with self._lock:
            self._state = AuthState.LOGIN_STARTED
            state = self._tracker.begin()
            auth_url = f"{self._config.login_url}?{urlencode({'state': state})}"
            self._state = AuthState.AWAITING_CALLBACK
        self._events.log(SecurityEvent.LOGIN_STARTED)
        logger.info("Login started; waiting for the browser callback")
        return LoginStart(state=state, auth_url=auth_url)

    async def process_callback(self, token: str, state: str) -> CallbackResult:
        """Validate *state*, verify *token*, persist it and authenticate.

        The pending request is consumed before anything else happens, so a
        replayed callback always fails with ``csrf_missing``.  Nothing is
        written to the keychain unless the token passes verification.

        A rejected callback leaves an existing session in place: the state
        returns to ``AUTHENTICATED`` when a session is held, otherwise to
        ``IDLE``.
        """
        async with self._lock:
            try:
                self._tracker.check(state)
            except CsrfError as exc:
                self._state = self._settled_state()
                self._events.log(SecurityEvent.CSRF_REJECTED, reason=exc.reason.value)
                return _failure(exc)
            return await self._authenticate(token)

    async def process_direct_link(self, token: str) -> CallbackResult:
        """Authenticate from a callback that carries no state value.

        Disabled unless ``allow_direct_link`` is set.  Without a state value
        nothing binds the callback to a login this process started, so the
        token signature is the only protection.
        """
        async with self._lock:
            if not self._config.allow_direct_link:
                self._events.log(SecurityEvent.DIRECT_LINK_REJECTED)
                return CallbackResult(
                    authenticated=False,
                    error="Direct sign-in links are disabled",
                    error_code="direct_link_disabled",
                )
            logger.warning("Accepting a sign-in link without state validation")
            return await self._authenticate(token)

    async def restore_session(self) -> Optional[UserProfile]:
        """Re-establish the session from the stored credential.

        A stored token that fails verification or has expired is purged.
        When the signing keys cannot be fetched (network failure or fetch
        budget exhausted) the credential is kept for the next attempt.

        Returns:
            The restored user profile, or ``None`` if there is no usable
            stored session.
        """
        async with self._lock:
            try:
                credential = self._credentials.load()
            except StorageError as exc:
                logger.warning("Could not read stored credentials: %s", exc)
                return None
            if credential is None:
                logger.debug("No stored session to restore")
                return None

            try:
                payload = await self._verifier.verify(credential.token)
            except TokenVerificationError as exc:
                if isinstance(exc, KeyResolutionError) and exc.transient:
                    logger.warning("Stored session could not be checked right now: %s", exc)
                    return None
                self._purge(reason=exc.error_code)
                return None

            if payload.expires_at <= self._now():
                self._purge(reason="token_expiry")
                return None
            if payload.subject != credential.user_id or payload.session_id != credential.session_id:
                self._purge(reason="credential_mismatch")
                return None

            user = await self._establish(credential.token, payload)
            self._events.log(
                SecurityEvent.SESSION_RESTORED,
                user_id=user.id,
                session_id=user.session_id,
            )
            logger.info("Restored stored session")
            return user

    async def sign_out(self) -> None:
        """Clear the in-memory session, any pending login and the keychain.

        Local state is always cleared, even if the keychain cannot be.
        """
        async with self._lock:
            user_id = self._session.user_id if self._session else None
            session_id = self._session.session_id if self._session else None
            self._tracker.cancel()
            try:
                self._credentials.clear()
            except StorageError as exc:
                logger.warning("Signed out, but stored credentials were not fully removed: %s", exc)
                self._events.log(SecurityEvent.STORAGE_FAILED, reason="sign_out")
            self._clear_local()
        self._events.log(SecurityEvent.SIGNED_OUT, user_id=user_id, session_id=session_id)
        logger.info("Signed out")

    async def aclose(self) -> None:
        self._tracker.cancel()
        await self._verifier.resolver.aclose()
        if self._directory is not None:
            await self._directory.aclose()
        if self._key_cache is not None:
            self._key_cache.close()

    # --- Internals (callers hold self._lock) ---

    async def _authenticate(self, token: str) -> CallbackResult:
        try:
            payload = await self._verifier.verify(token)
        except TokenVerificationError as exc:
            self._state = self._settled_state()
            self._events.log(SecurityEvent.TOKEN_REJECTED, reason=exc.error_code)
            return _failure(exc)

        credential = StoredCredential(
            token=token, user_id=payload.subject, session_id=payload.session_id
        )
        try:
            self._credentials.save(credential)
        except StorageError as exc:
            self._events.log(
                SecurityEvent.STORAGE_FAILED,
                user_id=payload.subject,
                session_id=payload.session_id,
            )
            self._discard_partial_write()
            self._clear_local()
            return _failure(exc)

        user = await self._establish(token, payload)
        self._events.log(
            SecurityEvent.LOGIN_SUCCEEDED, user_id=user.id, session_id=user.session_id
        )
        logger.info("Login completed")
        return CallbackResult(authenticated=True, user=user)

    async def _establish(self, token: str, payload: TokenPayload) -> UserProfile:
        self._session = Session(
            token=token,
            session_id=payload.session_id,
            user_id=payload.subject,
            expires_at=payload.expires_at,
            created_at=self._now(),
        )
        self._user = await self._enrich(payload.subject, payload.session_id)
        self._state = AuthState.AUTHENTICATED
        return self._user

    async def _enrich(self, user_id: str, session_id: str) -> UserProfile:
        if self._directory is None:
            return UserProfile.bare(user_id, session_id)
        try:
            return await self._directory.fetch_profile(user_id, session_id)
        except NetworkError as exc:
            logger.warning("Profile lookup failed; continuing with a bare profile: %s", exc)
            return UserProfile.bare(user_id, session_id)

    def _purge(self, reason: str) -> None:
        logger.warning("Stored session is no longer valid (%s); removing it", reason)
        try:
            self._credentials.clear()
        except StorageError as exc:
            logger.warning("Could not remove invalid stored session: %s", exc)
            self._events.log(SecurityEvent.STORAGE_FAILED, reason="purge")
        self._clear_local()
        self._events.log(SecurityEvent.SESSION_PURGED, reason=reason)

    def _discard_partial_write(self) -> None:
        try:
            self._credentials.clear()
        except StorageError as exc:
            logger.warning("Could not roll back a partial credential write: %s", exc)

    def _clear_local(self) -> None:
        self._session = None
        self._user = None
        self._state = AuthState.IDLE

    def _settled_state(self) -> AuthState:
        return AuthState.AUTHENTICATED if self._session is not None else AuthState.IDLE

    def _now(self) -> datetime:
        return datetime.fromtimestamp(self._clock(), tz=timezone.utc)


class UnconfiguredSessionManager(AuthBridge):
    """Stand-in used when no identity provider is configured.

    Every operation raises :class:`~authbridge.exceptions.ConfigurationError`
    carrying the reason configuration failed, so callers can show it.  No
    token is ever accepted.
    """

    def __init__(self, reason: str) -> None:
        self._reason = reason

    @property
    def reason(self) -> str:
        return self._reason

    @property
    def configured(self) -> bool:
        return False

    @property
    def state(self) -> AuthState:
        return AuthState.IDLE

    def _fail(self) -> ConfigurationError:
        return ConfigurationError(self._reason)

    async def start_login(self) -> LoginStart:
        raise self._fail()

    async def process_callback(self, token: str, state: str) -> CallbackResult:
        raise self._fail()

    async def process_direct_link(self, token: str) -> CallbackResult:
        raise self._fail()

    async def restore_session(self) -> Optional[UserProfile]:
        raise self._fail()

    async def sign_out(self) -> None:
        raise self._fail()

    def get_auth_status(self) -> AuthStatus:
        raise self._fail()

    def get_stored_credentials(self) -> Optional[StoredCredential]:
        raise self._fail()


def create_session_manager(
    overrides: Optional[Mapping[str, Any]] = None,
    env: Optional[Mapping[str, str]] = None,
    config_path: Optional[Path] = None,
    **kwargs: Any,
) -> AuthBridge:
    """Resolve configuration and build the matching bridge.

    Args:
        overrides: Highest-precedence config values (e.g. CLI flags).
        env: Environment mapping; defaults to :data:`os.environ`.
        config_path: Config file location; defaults to the user config dir.
        **kwargs: Forwarded to :meth:`SessionManager.from_config`.

    Returns:
        A :class:`SessionManager`, or an :class:`UnconfiguredSessionManager`
        if configuration is missing or invalid.
    """
    try:
        config = load_config(overrides=overrides, env=env, config_path=config_path)
    except ConfigurationError as exc:
        logger.warning("Sign-in disabled: %s", exc)
        return UnconfiguredSessionManager(str(exc))
    return SessionManager.from_config(config, **kwargs)
