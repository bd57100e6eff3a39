"""Sign-in commands -- drive the desktop login flow from a terminal.

Provides the ``login``, ``open-url``, ``status`` and ``logout`` commands.
Each builds a session manager from the resolved configuration, runs one
operation to completion with :func:`asyncio.run`, and reports the outcome
through :mod:`authbridge.output`.

Typical workflow::

    authbridge login        # opens the browser, then paste the callback link
    authbridge status       # restores the stored session and shows it
    authbridge logout
"""

from __future__ import annotations

import asyncio
import webbrowser
from pathlib import Path
from typing import Any, Awaitable, Optional

import typer

from authbridge.auth import SessionManager, UnconfiguredSessionManager, create_session_manager
from authbridge.deeplink import DeepLinkGateway
from authbridge.exceptions import AuthBridgeError, ConfigurationError
from authbridge.exit_codes import EXIT_AUTH_FAILURE, EXIT_INVALID_USAGE
from authbridge.models import AuthStatus, CallbackResult
from authbridge.output import error, info, print_data, print_record, success, suggest, warning


def _config_path(ctx: typer.Context) -> Optional[Path]:
    return ctx.obj.get("config_path") if ctx.obj else None


def _load_manager(ctx: typer.Context) -> SessionManager:
    bridge = create_session_manager(config_path=_config_path(ctx))
    if isinstance(bridge, UnconfiguredSessionManager):
        raise ConfigurationError(bridge.reason)
    assert isinstance(bridge, SessionManager)
    return bridge


def _run(operation: Awaitable[Any]) -> Any:
    """Run *operation*, turning bridge errors into a clean exit."""
    try:
        return asyncio.run(operation)
    except ConfigurationError as exc:
        error(str(exc))
        suggest("Set AUTHBRIDGE_ISSUER_HOST or add 'issuer_host' to the config file")
        raise typer.Exit(code=exc.exit_code) from None
    except AuthBridgeError as exc:
        error(str(exc))
        raise typer.Exit(code=exc.exit_code) from None


def _status_record(status: AuthStatus) -> dict[str, Any]:
    user = status.user
    return {
        "authenticated": status.authenticated,
        "state": status.state.value,
        "user_id": user.id if user else None,
        "email": user.email if user else None,
        "name": user.name if user else None,
        "session_id": user.session_id if user else None,
        "session_valid": status.session_valid,
        "expires_at": status.expires_at.isoformat() if status.expires_at else None,
    }


def _report(result: CallbackResult, manager: SessionManager) -> None:
    if not result.authenticated:
        error(result.error or "Sign-in failed.")
        suggest("Start again: authbridge login")
        raise typer.Exit(code=EXIT_AUTH_FAILURE)
    user = result.user
    label = (user.name or user.email or user.id) if user else "unknown user"
    success(f"Signed in as {label}.")
    print_record(_status_record(manager.get_auth_status()), title="Session")


def login_command(
    ctx: typer.Context,
    no_browser: bool = typer.Option(
        False, "--no-browser", help="Print the sign-in URL instead of opening it."
    ),
) -> None:
    """Sign in through the browser.

    Starts a login, opens the identity provider's sign-in page and waits
    for the callback link, which the user pastes back when the desktop
    scheme is not registered with the operating system.  An existing valid
    stored session is reused.

    Example::

        authbridge login
        authbridge login --no-browser
    """

    async def _login() -> None:
        async with _load_manager(ctx) as manager:
            user = await manager.restore_session()
            if user is not None:
                info(f"Already signed in as {user.name or user.email or user.id}.")
                suggest("Sign out first to switch accounts: authbridge logout")
                return

            start = await manager.start_login()
            if no_browser or not webbrowser.open(start.auth_url):
                info("Open this URL in your browser to sign in:")
                print_data(start.auth_url)
            else:
                info("Opened the sign-in page in your browser.")

            link = typer.prompt("Paste the callback link").strip()
            gateway = DeepLinkGateway(manager, manager.config.url_schemes)
            result = await gateway.dispatch(link)
            if result is None:
                error("That is not a sign-in link for this application.")
                raise typer.Exit(code=EXIT_INVALID_USAGE)
            _report(result, manager)

    _run(_login())


def open_url_command(
    ctx: typer.Context,
    url: str = typer.Argument(help="Deep link delivered by the operating system."),
) -> None:
    """Handle a sign-in deep link.

    Registered as the handler for the application's URL schemes.  Direct
    links (``auth/direct``) only succeed when ``allow_direct_link`` is
    enabled; callback links need the login that issued their state to be
    pending in the same process.
    """

    async def _open() -> None:
        async with _load_manager(ctx) as manager:
            gateway = DeepLinkGateway(manager, manager.config.url_schemes)
            result = await gateway.dispatch(url)
            if result is None:
                warning("Ignoring a link this application does not handle.")
                raise typer.Exit(code=EXIT_INVALID_USAGE)
            _report(result, manager)

    _run(_open())


def status_command(ctx: typer.Context) -> None:
    """Show the current sign-in status.

    Restores the stored session (verifying its token) and prints the
    status record.  Exits with code 3 when not signed in.
    """

    async def _status() -> AuthStatus:
        async with _load_manager(ctx) as manager:
            await manager.restore_session()
            return manager.get_auth_status()

    status = _run(_status())
    print_record(_status_record(status), title="Session")
    if not status.authenticated:
        suggest("Sign in: authbridge login")
        raise typer.Exit(code=EXIT_AUTH_FAILURE)


def logout_command(ctx: typer.Context) -> None:
    """Sign out and remove the stored session from the system keychain."""

    async def _logout() -> None:
        async with _load_manager(ctx) as manager:
            await manager.sign_out()

    _run(_logout())
    success("Signed out.")
