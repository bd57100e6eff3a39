"""Typer application and CLI entry point for authbridge.

The :func:`main` function is the console-script entry point declared in
``pyproject.toml``.  It installs a SIGINT handler, registers the sign-in
commands and invokes the Typer app.  :class:`~authbridge.exceptions.AuthBridgeError`
instances that escape a command exit with their ``exit_code``.

See Also:
    :mod:`authbridge.config`: Configuration resolution.
    :mod:`authbridge.output`: Output formatting initialised in :func:`main_callback`.
"""

from __future__ import annotations

import logging
import signal
import sys
from pathlib import Path
from typing import Any, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler

from authbridge import __version__
from authbridge.commands.auth import (
    login_command,
    logout_command,
    open_url_command,
    status_command,
)
from authbridge.exit_codes import EXIT_GENERIC_FAILURE

app = typer.Typer(
    name="authbridge",
    help="Sign a desktop application in through the system browser.",
    no_args_is_help=True,
    add_completion=False,
    rich_markup_mode="rich",
)

app.command("login")(login_command)
app.command("open-url")(open_url_command)
app.command("status")(status_command)
app.command("logout")(logout_command)


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"authbridge {__version__}")
        raise typer.Exit()


def _configure_logging(verbose: bool) -> None:
    """Send library logs to stderr through Rich when ``--verbose`` is set."""
    if not verbose:
        return
    handler = RichHandler(console=Console(stderr=True), show_path=False, markup=False)
    logging.basicConfig(level=logging.DEBUG, format="%(message)s", handlers=[handler])
    logging.getLogger("authbridge").setLevel(logging.DEBUG)


@app.callback()
def main_callback(
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        callback=_version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
    config_path: Optional[Path] = typer.Option(
        None, "--config", help="Config file to use instead of the default."
    ),
    json_output: bool = typer.Option(False, "--json", help="JSON output format."),
    plain_output: bool = typer.Option(False, "--plain", help="Plain text output."),
    no_color: bool = typer.Option(False, "--no-color", help="Disable color output."),
    quiet: bool = typer.Option(
        False, "--quiet", "-q", help="Suppress non-essential output."
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug output."),
) -> None:
    """Root callback executed before every command.

    Initialises the global :class:`~authbridge.output.OutputManager` from
    CLI flags and stores shared options in ``ctx.obj``.
    """
    from authbridge.output import OutputFormat, OutputManager, set_output

    fmt = OutputFormat.AUTO
    if json_output:
        fmt = OutputFormat.JSON
    elif plain_output:
        fmt = OutputFormat.PLAIN

    set_output(OutputManager(format=fmt, no_color=no_color, quiet=quiet, verbose=verbose))
    _configure_logging(verbose)

    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path
    ctx.obj["verbose"] = verbose


def _setup_signal_handlers() -> None:
    """Install a SIGINT handler so Ctrl-C exits cleanly."""

    def _handler(signum: int, frame: Any) -> None:  # noqa: ANN401
        sys.stderr.write("\nCancelled.\n")
        sys.exit(130)

    signal.signal(signal.SIGINT, _handler)


def main() -> None:
    """CLI entry point invoked by the ``authbridge`` console script.

    Raises:
        SystemExit: Always raised (either by Typer or explicitly).
    """
    _setup_signal_handlers()
    try:
        app()
    except SystemExit:
        raise
    except KeyboardInterrupt:
        sys.stderr.write("\nCancelled.\n")
        sys.exit(130)
    except Exception as exc:
        from authbridge.exceptions import AuthBridgeError
        from authbridge.output import error

        if isinstance(exc, AuthBridgeError):
            error(str(exc))
            sys.exit(exc.exit_code)
        logging.getLogger(__name__).debug("Unhandled error", exc_info=True)
        error(f"Unexpected error: {exc}")
        sys.exit(EXIT_GENERIC_FAILURE)
