"""Best-effort user profile enrichment from the identity provider.

:class:`UserDirectory` looks a user up by token subject in the provider's
user API (Clerk's ``GET /v1/users/{id}`` shape by default) and returns a
:class:`~authbridge.models.UserProfile`.  Every failure is translated into
:class:`~authbridge.exceptions.NetworkError`; the session manager treats
that as "use bare identifiers" and never lets it block a login.
"""

from __future__ import annotations

import logging
from typing import Optional
from urllib.parse import quote

import httpx

from authbridge.exceptions import NetworkError
from authbridge.models import UserProfile

logger = logging.getLogger(__name__)


class UserDirectory:
    """Client for the identity provider's user directory API.

    Args:
        base_url: API base URL, e.g. ``https://api.clerk.com/v1``.
        secret_key: Server-side API key sent as a bearer token.
        client: Optional pre-configured :class:`httpx.AsyncClient`.
        timeout: Request timeout for the lazily created client.
    """

    def __init__(
        self,
        base_url: str,
        secret_key: str,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 10.0,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._secret_key = secret_key
        self._client = client
        self._owns_client = client is None
        self._timeout = timeout

    async def fetch_profile(self, user_id: str, session_id: str) -> UserProfile:
        """Fetch the profile of *user_id*.

        Raises:
            NetworkError: On transport errors, non-2xx responses, or a
                response that is not a user record.
        """
        url = f"{self._base_url}/users/{quote(user_id, safe='')}"
        try:
            response = await self._get_client().get(
                url,
                headers={
                    "Authorization": f"Bearer {self._secret_key}",
                    "Accept": "application/json",
                },
            )
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as exc:
            raise NetworkError(
                f"User lookup failed with status {exc.response.status_code}"
            ) from exc
        except httpx.HTTPError as exc:
            raise NetworkError(f"User lookup failed: {exc}") from exc
        except ValueError as exc:
            raise NetworkError(f"User lookup returned invalid JSON: {exc}") from exc

        if not isinstance(data, dict):
            raise NetworkError("User lookup returned an unexpected payload")
        try:
            profile = UserProfile.from_directory(data, session_id=session_id)
        except (KeyError, TypeError, ValueError) as exc:
            raise NetworkError(f"User lookup returned an unexpected payload: {exc}") from exc
        logger.debug("Fetched directory profile for user '%s'", user_id)
        return profile

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout)
        return self._client
