"""Token verification against the identity provider's published key set.

- :class:`KeyResolver` -- fetches and caches the JWKS and resolves a key id.
- :class:`FetchRateLimiter` -- caps outbound key-set fetches.
- :class:`TokenVerifier` -- the single trust boundary; turns a bearer token
  into a :class:`~authbridge.models.TokenPayload` or rejects it.
"""

from authbridge.verification.key_resolver import KeyResolver
from authbridge.verification.rate_limiter import FetchRateLimiter
from authbridge.verification.token_verifier import TokenVerifier

__all__ = ["FetchRateLimiter", "KeyResolver", "TokenVerifier"]
