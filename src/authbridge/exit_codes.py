"""Numeric process exit codes for the ``authbridge`` command line.

Each constant maps to a failure category and is referenced by the
corresponding :class:`~authbridge.exceptions.AuthBridgeError` subclass.
Desktop launchers and shell wrappers can inspect the exit code to decide
whether to prompt for a fresh login, report a broken install, or retry
later, without parsing stderr.

Example::

    $ authbridge status
    $ echo $?
    3   # EXIT_AUTH_FAILURE -- no verified session
"""

EXIT_SUCCESS = 0
"""The command completed successfully."""

EXIT_GENERIC_FAILURE = 1
"""An unclassified error occurred."""

EXIT_INVALID_USAGE = 2
"""The command was invoked with invalid arguments (e.g. a malformed deep link)."""

EXIT_AUTH_FAILURE = 3
"""Authentication failed: CSRF state rejected or token verification failed."""

EXIT_STORAGE_ERROR = 5
"""The OS secret store was unavailable, locked, or refused a write."""

EXIT_CONNECTION_ERROR = 6
"""A network-level error occurred while talking to the identity provider."""

EXIT_CONFIG_ERROR = 7
"""Required identity-provider settings are missing or invalid."""
