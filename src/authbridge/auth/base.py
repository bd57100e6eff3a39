"""Abstract interface shared by the configured and unconfigured bridges.

Callers (the CLI, a deep-link gateway, a host application's UI layer) hold
an :class:`AuthBridge` and never need to know whether sign-in is actually
configured: :class:`~authbridge.auth.session.SessionManager` implements the
real flow and :class:`~authbridge.auth.session.UnconfiguredSessionManager`
fails every operation with
:class:`~authbridge.exceptions.ConfigurationError`.

See Also:
    :func:`~authbridge.auth.session.create_session_manager` -- picks the
    implementation from the resolved configuration.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Optional

from authbridge.models import (
    AuthState,
    AuthStatus,
    CallbackResult,
    LoginStart,
    StoredCredential,
    UserProfile,
)


class AuthBridge(ABC):
    """The public operations of a desktop sign-in bridge.

    Every operation except :meth:`get_auth_status`,
    :meth:`get_stored_credentials` and :attr:`state` is a coroutine, and
    implementations serialise them so that callbacks, restores and sign-outs
    never interleave.
    """

    @property
    @abstractmethod
    def configured(self) -> bool:
        """Whether sign-in is backed by a real identity provider."""
        ...

    @property
    @abstractmethod
    def state(self) -> AuthState:
        """Current lifecycle state."""
        ...

    @abstractmethod
    async def start_login(self) -> LoginStart:
        """Begin a login attempt and return the URL to open in the browser.

        Raises:
            ConfigurationError: If sign-in is not configured.
        """
        ...

    @abstractmethod
    async def process_callback(self, token: str, state: str) -> CallbackResult:
        """Complete a login from a callback carrying *token* and *state*.

        Expected failures (state mismatch, expired request, rejected token,
        storage failure) are reported in the returned
        :class:`~authbridge.models.CallbackResult`, never raised.
        """
        ...

    @abstractmethod
    async def process_direct_link(self, token: str) -> CallbackResult:
        """Complete a login from a callback that carries no state value."""
        ...

    @abstractmethod
    async def restore_session(self) -> Optional[UserProfile]:
        """Re-establish the session from stored credentials, if possible."""
        ...

    @abstractmethod
    async def sign_out(self) -> None:
        """Forget the session and every stored credential."""
        ...

    @abstractmethod
    def get_auth_status(self) -> AuthStatus:
        """Snapshot of the current authentication state."""
        ...

    @abstractmethod
    def get_stored_credentials(self) -> Optional[StoredCredential]:
        """The raw stored credential, for callers that attach it to requests."""
        ...

    async def aclose(self) -> None:
        """Release network clients and timers.  The default does nothing."""
        return None

    async def __aenter__(self) -> AuthBridge:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()
