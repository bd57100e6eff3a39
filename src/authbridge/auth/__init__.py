"""Desktop sign-in state, credential storage and profile lookup.

The main entry points are:

- :class:`AuthBridge` -- the interface every bridge implements.
- :class:`SessionManager` -- the login state machine.
- :class:`UnconfiguredSessionManager` -- used when sign-in is not configured.
- :func:`create_session_manager` -- factory that resolves configuration and
  returns one of the two.
- :class:`CredentialStore` -- the credential kept in the OS keychain.

Typical usage::

    from authbridge.auth import create_session_manager

    manager = create_session_manager()
    user = await manager.restore_session()
    if user is None:
        start = await manager.start_login()
        webbrowser.open(start.auth_url)
"""

from authbridge.auth.base import AuthBridge
from authbridge.auth.credential_store import CredentialStore
from authbridge.auth.directory import UserDirectory
from authbridge.auth.pending import PendingRequestTracker, generate_state
from authbridge.auth.secret_store import SecretStore
from authbridge.auth.session import (
    SessionManager,
    UnconfiguredSessionManager,
    create_session_manager,
)

__all__ = [
    "AuthBridge",
    "CredentialStore",
    "PendingRequestTracker",
    "SecretStore",
    "SessionManager",
    "UnconfiguredSessionManager",
    "UserDirectory",
    "create_session_manager",
    "generate_state",
]
