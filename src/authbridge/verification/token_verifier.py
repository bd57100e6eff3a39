"""Bearer token verification -- the bridge's single trust boundary.

:class:`TokenVerifier` turns an untrusted token string into a
:class:`~authbridge.models.TokenPayload` only after all of the following
hold:

1. **structure** -- three dot-separated segments, a decodable header with a
   ``kid``, and the ``sub``/``exp``/``iss`` claims plus a session id;
2. **algorithm** -- the header names one of the configured asymmetric
   algorithms (``none`` and HMAC algorithms are never accepted);
3. **signature** -- valid against the key the
   :class:`~authbridge.verification.key_resolver.KeyResolver` returns;
4. **issuer** -- the ``iss`` claim equals the configured issuer exactly;
5. **expiry** -- ``exp`` is in the future, within the clock-skew tolerance.

Any failure raises :class:`~authbridge.exceptions.TokenVerificationError`
naming the failed check.  Error messages never include the token.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

import jwt
from jwt.exceptions import (
    DecodeError,
    ExpiredSignatureError,
    ImmatureSignatureError,
    InvalidAlgorithmError,
    InvalidIssuerError,
    InvalidSignatureError,
    MissingRequiredClaimError,
    PyJWTError,
)

from authbridge.config import ASYMMETRIC_ALGORITHMS
from authbridge.exceptions import TokenVerificationError, VerificationCheck
from authbridge.models import TokenPayload
from authbridge.verification.key_resolver import KeyResolver

logger = logging.getLogger(__name__)

DEFAULT_CLOCK_SKEW_SECONDS = 10
REQUIRED_CLAIMS = ["exp", "iss", "sub"]


class TokenVerifier:
    """Verifies bearer tokens against the identity provider's key set.

    Args:
        resolver: Source of signing keys.
        issuer: Expected ``iss`` claim, compared exactly.
        algorithms: Accepted signing algorithms; asymmetric only.
        clock_skew_seconds: Tolerance applied to the expiry check.

    Raises:
        ValueError: If *algorithms* is empty or names a symmetric algorithm.
    """

    def __init__(
        self,
        resolver: KeyResolver,
        issuer: str,
        algorithms: list[str] | None = None,
        clock_skew_seconds: int = DEFAULT_CLOCK_SKEW_SECONDS,
    ) -> None:
        algorithms = list(algorithms or ["RS256"])
        unsupported = [alg for alg in algorithms if alg not in ASYMMETRIC_ALGORITHMS]
        if unsupported:
            raise ValueError(f"Symmetric or unknown algorithms are not allowed: {unsupported}")
        self._resolver = resolver
        self._issuer = issuer
        self._algorithms = algorithms
        self._leeway = clock_skew_seconds

    @property
    def issuer(self) -> str:
        return self._issuer

    @property
    def resolver(self) -> KeyResolver:
        return self._resolver

    async def verify(self, token: str) -> TokenPayload:
        """Verify *token* and return its trusted payload.

        Raises:
            TokenVerificationError: With ``check`` set to the failed step.
            KeyResolutionError: If the signing key cannot be resolved.
        """
        header = self._read_header(token)
        key_id = header["kid"]
        key = await self._resolver.resolve(key_id)

        try:
            claims: dict[str, Any] = jwt.decode(
                token,
                key.key,
                algorithms=self._algorithms,
                issuer=self._issuer,
                leeway=self._leeway,
                options={"require": REQUIRED_CLAIMS, "verify_aud": False},
            )
        except ExpiredSignatureError as exc:
            raise self._reject(VerificationCheck.EXPIRY, "Token has expired") from exc
        except ImmatureSignatureError as exc:
            raise self._reject(VerificationCheck.EXPIRY, "Token is not valid yet") from exc
        except InvalidIssuerError as exc:
            raise self._reject(VerificationCheck.ISSUER, "Token issuer does not match") from exc
        except (InvalidSignatureError, InvalidAlgorithmError) as exc:
            raise self._reject(VerificationCheck.SIGNATURE, f"Invalid signature: {exc}") from exc
        except MissingRequiredClaimError as exc:
            raise self._reject(VerificationCheck.STRUCTURE, f"Token is missing a claim: {exc}") from exc
        except DecodeError as exc:
            raise self._reject(VerificationCheck.STRUCTURE, f"Token could not be decoded: {exc}") from exc
        except (PyJWTError, TypeError, ValueError) as exc:
            raise self._reject(VerificationCheck.SIGNATURE, f"Token rejected: {exc}") from exc

        session_id = claims.get("sid") or claims.get("jti")
        if not session_id:
            raise self._reject(VerificationCheck.STRUCTURE, "Token carries no session id claim")

        logger.debug("Token verified for key '%s'", key_id)
        return TokenPayload(
            subject=str(claims["sub"]),
            session_id=str(session_id),
            issuer=str(claims["iss"]),
            expires_at=datetime.fromtimestamp(float(claims["exp"]), tz=timezone.utc),
            key_id=key_id,
            claims=claims,
        )

    def _read_header(self, token: str) -> dict[str, Any]:
        if not isinstance(token, str) or token.count(".") != 2:
            raise self._reject(
                VerificationCheck.STRUCTURE, "Token is not a three-part signed token"
            )
        try:
            header = jwt.get_unverified_header(token)
        except PyJWTError as exc:
            raise self._reject(
                VerificationCheck.STRUCTURE, f"Token header could not be decoded: {exc}"
            ) from exc

        algorithm = header.get("alg")
        if algorithm not in self._algorithms:
            raise self._reject(
                VerificationCheck.SIGNATURE, f"Signing algorithm {algorithm!r} is not accepted"
            )
        key_id = header.get("kid")
        if not key_id or not isinstance(key_id, str):
            raise self._reject(VerificationCheck.STRUCTURE, "Token header has no key id")
        return header

    @staticmethod
    def _reject(check: VerificationCheck, message: str) -> TokenVerificationError:
        logger.warning("Token verification failed (%s): %s", check.value, message)
        return TokenVerificationError(check, message)
