"""Routing of custom-URI-scheme links into the session manager.

The operating system hands the application URLs such as::

    authbridge://auth/callback?token=<jwt>&state=<state>
    authbridge://auth/direct?token=<jwt>

:class:`DeepLinkGateway` parses them, ignores anything that is not one of
the registered schemes and known routes, and dispatches the rest to an
:class:`~authbridge.auth.base.AuthBridge`.  When the application is already
running, the second launch's command line carries the URL;
:func:`find_deep_link` extracts it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable, Optional, Sequence
from urllib.parse import parse_qs, urlsplit

from authbridge.auth.base import AuthBridge
from authbridge.exceptions import InvalidDeepLinkError
from authbridge.models import CallbackResult

logger = logging.getLogger(__name__)

CALLBACK_ROUTE = "auth/callback"
DIRECT_ROUTE = "auth/direct"
TOKEN_PARAMS = ("token", "access_token")


@dataclass
class CallbackParams:
    """A recognised sign-in link, parsed but not yet verified."""

    route: str
    token: str = field(repr=False)
    state: Optional[str] = field(default=None, repr=False)


def _normalise_schemes(schemes: Iterable[str]) -> frozenset[str]:
    return frozenset(s.lower().rstrip(":/") for s in schemes)


def find_deep_link(argv: Sequence[str], schemes: Iterable[str]) -> Optional[str]:
    """Return the first argument that is a URL in one of *schemes*.

    Example::

        >>> find_deep_link(["app", "--flag", "authbridge://auth/callback?x=1"], ["authbridge"])
        'authbridge://auth/callback?x=1'
    """
    prefixes = tuple(f"{s}://" for s in _normalise_schemes(schemes))
    for arg in argv:
        if arg.lower().startswith(prefixes):
            return arg
    return None


class DeepLinkGateway:
    """Filters and dispatches sign-in deep links.

    Args:
        bridge: Session manager receiving recognised links.
        schemes: Registered custom URI schemes, without ``://``.
    """

    def __init__(self, bridge: AuthBridge, schemes: Iterable[str]) -> None:
        self._bridge = bridge
        self._schemes = _normalise_schemes(schemes)

    @property
    def schemes(self) -> frozenset[str]:
        return self._schemes

    def parse(self, url: str) -> Optional[CallbackParams]:
        """Parse *url* into :class:`CallbackParams`.

        Returns:
            ``None`` if the scheme is not registered or the route is not a
            sign-in route.

        Raises:
            InvalidDeepLinkError: If a sign-in route lacks its token, or a
                callback lacks its state.
        """
        parts = urlsplit(url.strip())
        if parts.scheme.lower() not in self._schemes:
            logger.debug("Ignoring link with unregistered scheme '%s'", parts.scheme)
            return None

        # "scheme://auth/callback" puts "auth" in the netloc.
        route = "/".join(p for p in (parts.netloc, parts.path.strip("/")) if p).lower()
        if route not in (CALLBACK_ROUTE, DIRECT_ROUTE):
            logger.debug("Ignoring link with unknown route '%s'", route)
            return None

        query = parse_qs(parts.query)
        token = next((query[name][0] for name in TOKEN_PARAMS if query.get(name)), None)
        if not token:
            raise InvalidDeepLinkError("Sign-in link has no token")
        if route == DIRECT_ROUTE:
            return CallbackParams(route=route, token=token)

        state = (query.get("state") or [None])[0]
        if not state:
            raise InvalidDeepLinkError("Sign-in callback has no state")
        return CallbackParams(route=route, token=token, state=state)

    async def dispatch(self, url: str) -> Optional[CallbackResult]:
        """Parse *url* and hand it to the session manager.

        Returns:
            The callback outcome, or ``None`` if the link was ignored.

        Raises:
            InvalidDeepLinkError: As for :meth:`parse`.
            ConfigurationError: If sign-in is not configured.
        """
        params = self.parse(url)
        if params is None:
            return None
        logger.info("Handling sign-in link (%s)", params.route)
        if params.route == DIRECT_ROUTE:
            return await self._bridge.process_direct_link(params.token)
        assert params.state is not None
        return await self._bridge.process_callback(params.token, params.state)
