"""authbridge -- desktop-to-web sign-in bridge.

A desktop application delegates sign-in to a hosted identity provider page
in the system browser.  The page hands a signed bearer token back through a
custom-URI-scheme deep link; authbridge checks the anti-CSRF state, verifies
the token against the provider's published keys, keeps the credential in the
OS keychain and restores it on the next launch.

Typical usage::

    from authbridge.auth import create_session_manager

    manager = create_session_manager()
    start = await manager.start_login()
    # ... the OS delivers authbridge://auth/callback?token=...&state=...
    result = await manager.process_callback(token, state)

Modules:
    app: Typer application and CLI entry point.
    auth: Session manager, pending-login tracker and credential storage.
    verification: Key resolution, rate limiting and token verification.
    deeplink: Custom-URI-scheme link parsing and dispatch.
    config: Configuration model and XDG-aware resolution.
    exceptions: Exception hierarchy with exit-code mapping.
    output: stdout/stderr formatting with Rich support.
"""

import logging

__version__ = "0.1.0"

logging.getLogger(__name__).addHandler(logging.NullHandler())
