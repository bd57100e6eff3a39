"""Exception hierarchy for authbridge.

All exceptions inherit from :class:`AuthBridgeError`, which carries an
``exit_code`` attribute mapped to a constant from :mod:`authbridge.exit_codes`
and a stable machine-readable ``error_code`` string.  Components translate
third-party failures (httpx, keyring, PyJWT) into this hierarchy at their own
boundary, so nothing outside it ever escapes
:class:`~authbridge.auth.session.SessionManager`.

Subclass hierarchy::

    AuthBridgeError (exit 1)
    +-- ConfigurationError       (exit 7)
    +-- CsrfError                (exit 3)
    +-- TokenVerificationError   (exit 3)
    |   +-- KeyResolutionError   (exit 3)
    |       +-- RateLimitedError (exit 3)
    +-- NetworkError             (exit 6)
    +-- StorageError             (exit 5)
    +-- InvalidDeepLinkError     (exit 2)
"""

from __future__ import annotations

import enum

from authbridge.exit_codes import (
    EXIT_AUTH_FAILURE,
    EXIT_CONFIG_ERROR,
    EXIT_CONNECTION_ERROR,
    EXIT_GENERIC_FAILURE,
    EXIT_INVALID_USAGE,
    EXIT_STORAGE_ERROR,
)


class AuthBridgeError(Exception):
    """Base exception for all authbridge errors.

    Every subclass sets a class-level ``exit_code`` corresponding to one of
    the constants in :mod:`authbridge.exit_codes`.  The CLI entry point
    catches this exception type and calls ``sys.exit(exc.exit_code)``.

    Args:
        message: Human-readable error description.  Must never contain a
            token, state value, or any other secret.
        exit_code: Optional override for the class-level exit code.
    """

    exit_code: int = EXIT_GENERIC_FAILURE

    def __init__(self, message: str, exit_code: int | None = None):
        super().__init__(message)
        if exit_code is not None:
            self.exit_code = exit_code

    @property
    def error_code(self) -> str:
        """Stable identifier surfaced in structured results."""
        return "error"


class ConfigurationError(AuthBridgeError):
    """Raised when required identity-provider settings are missing or invalid.

    This is the only error the public surface raises rather than folding
    into a structured result.
    """

    exit_code = EXIT_CONFIG_ERROR

    @property
    def error_code(self) -> str:
        return "not_configured"


class CsrfReason(str, enum.Enum):
    """Why a callback's state parameter was rejected."""

    MISSING = "missing"
    EXPIRED = "expired"
    MISMATCH = "mismatch"


class CsrfError(AuthBridgeError):
    """The callback state did not match a live pending login request.

    Both an expired and a tampered state are rejected identically; the
    :attr:`reason` only exists so telemetry can tell them apart.
    """

    exit_code = EXIT_AUTH_FAILURE

    def __init__(self, reason: CsrfReason, message: str | None = None):
        self.reason = reason
        super().__init__(message or _CSRF_MESSAGES[reason])

    @property
    def error_code(self) -> str:
        return f"csrf_{self.reason.value}"


_CSRF_MESSAGES = {
    CsrfReason.MISSING: "No login is pending; start a new login and try again",
    CsrfReason.EXPIRED: "The login request expired; start a new login and try again",
    CsrfReason.MISMATCH: (
        "The login callback does not match the pending request; "
        "start a new login and try again"
    ),
}


class VerificationCheck(str, enum.Enum):
    """The individual token check that failed."""

    STRUCTURE = "structure"
    KEY = "key"
    SIGNATURE = "signature"
    ISSUER = "issuer"
    EXPIRY = "expiry"


class TokenVerificationError(AuthBridgeError):
    """A bearer token failed verification.

    Args:
        check: Which verification step rejected the token.
        message: Diagnostic description (never includes the token).
    """

    exit_code = EXIT_AUTH_FAILURE

    def __init__(self, check: VerificationCheck, message: str):
        self.check = check
        super().__init__(message)

    @property
    def error_code(self) -> str:
        return f"token_{self.check.value}"


class KeyResolutionError(TokenVerificationError):
    """The signing key for a token could not be resolved.

    Args:
        message: Diagnostic description.
        transient: ``True`` when the failure is a network problem or rate
            limit rather than a definitive answer from the key set (such as
            an unknown key id).  Callers still reject the token either way.
    """

    def __init__(self, message: str, transient: bool = False):
        self.transient = transient
        super().__init__(VerificationCheck.KEY, message)


class RateLimitedError(KeyResolutionError):
    """Too many key-set fetches in the current window."""

    def __init__(self, retry_after_seconds: int):
        self.retry_after_seconds = retry_after_seconds
        super().__init__(
            f"Key set fetch rate limit reached. Retry after {retry_after_seconds} seconds.",
            transient=True,
        )


class NetworkError(AuthBridgeError):
    """Raised on network-level failures talking to the identity provider."""

    exit_code = EXIT_CONNECTION_ERROR

    @property
    def error_code(self) -> str:
        return "network_error"


class StorageError(AuthBridgeError):
    """The OS secret store refused a read, write, or delete."""

    exit_code = EXIT_STORAGE_ERROR

    @property
    def error_code(self) -> str:
        return "storage_error"


class InvalidDeepLinkError(AuthBridgeError):
    """A deep link for a recognised route was missing required parameters."""

    exit_code = EXIT_INVALID_USAGE

    @property
    def error_code(self) -> str:
        return "invalid_deep_link"
