"""Canonical Pydantic models shared across authbridge modules.

The models fall into three groups:

**Login state** -- :class:`PendingAuthRequest` and :class:`AuthState`, owned
by :class:`~authbridge.auth.pending.PendingRequestTracker` and
:class:`~authbridge.auth.session.SessionManager`.

**Identity** -- :class:`TokenPayload` (produced only by the token
verifier), :class:`StoredCredential` (the at-rest form kept in the OS
keychain), :class:`Session` (in-memory only), and :class:`UserProfile`.

**Results** -- :class:`LoginStart`, :class:`CallbackResult`, and
:class:`AuthStatus`, the structured values returned by the public
session-manager operations.

None of the result models expose the raw bearer token.
"""

from __future__ import annotations

import enum
from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class AuthState(str, enum.Enum):
    """Lifecycle states of a :class:`~authbridge.auth.session.SessionManager`."""

    IDLE = "idle"
    LOGIN_STARTED = "login_started"
    AWAITING_CALLBACK = "awaiting_callback"
    AUTHENTICATED = "authenticated"


# --- Login state ---


class PendingAuthRequest(BaseModel):
    """The single in-flight login attempt.

    Instances are immutable and compared by identity by the tracker: the
    expiry timer of one request can never clear another, even if both
    happen to carry equal field values.
    """

    model_config = ConfigDict(frozen=True)

    state: str = Field(repr=False, description="Unguessable single-use state value")
    created_at: datetime
    expires_at: datetime


# --- Identity ---


class TokenPayload(BaseModel):
    """Claims of a bearer token that passed every verification check."""

    model_config = ConfigDict(frozen=True)

    subject: str
    session_id: str
    issuer: str
    expires_at: datetime
    key_id: str
    claims: dict[str, Any] = Field(default_factory=dict, repr=False)


class StoredCredential(BaseModel):
    """Durable credential kept in the OS secret store."""

    token: str = Field(repr=False)
    user_id: str
    session_id: str


class Session(BaseModel):
    """In-memory session derived from a verified token."""

    token: str = Field(repr=False)
    session_id: str
    user_id: str
    expires_at: datetime
    created_at: datetime

    def is_valid(self, now: datetime) -> bool:
        """Cheap liveness check: the token expiry is still ahead of *now*."""
        return self.expires_at > now


class UserProfile(BaseModel):
    """User identity returned to the UI.

    Only ``id`` and ``session_id`` are guaranteed; the rest come from the
    identity provider's user directory when it is reachable.
    """

    id: str
    session_id: str
    email: Optional[str] = None
    name: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    image_url: Optional[str] = None

    @classmethod
    def bare(cls, user_id: str, session_id: str) -> UserProfile:
        """Profile carrying only the identifiers from the token."""
        return cls(id=user_id, session_id=session_id)

    @classmethod
    def from_directory(cls, data: dict[str, Any], session_id: str) -> UserProfile:
        """Build a profile from a user-directory record.

        Accepts both the nested Clerk-style record (``email_addresses``,
        ``first_name``, ``image_url``) and a flat OIDC userinfo-style record
        (``email``, ``name``, ``picture``).

        Raises:
            KeyError: If the record has no ``id`` or ``sub``.
        """
        user_id = data.get("id") or data["sub"]
        email = data.get("email")
        addresses = data.get("email_addresses") or []
        if email is None and addresses:
            primary_id = data.get("primary_email_address_id")
            primary = next(
                (a for a in addresses if a.get("id") == primary_id), addresses[0]
            )
            email = primary.get("email_address")
        first_name = data.get("first_name") or data.get("given_name")
        last_name = data.get("last_name") or data.get("family_name")
        name = data.get("name") or " ".join(
            part for part in (first_name, last_name) if part
        ) or None
        return cls(
            id=str(user_id),
            session_id=session_id,
            email=email,
            name=name,
            first_name=first_name,
            last_name=last_name,
            image_url=data.get("image_url") or data.get("picture"),
        )


# --- Results ---


class LoginStart(BaseModel):
    """Result of :meth:`~authbridge.auth.session.SessionManager.start_login`."""

    state: str
    auth_url: str


class CallbackResult(BaseModel):
    """Outcome of processing a login callback.

    ``error`` is a human-readable message suitable for display and
    ``error_code`` a stable identifier (e.g. ``"csrf_expired"``,
    ``"token_signature"``, ``"storage_error"``).
    """

    authenticated: bool
    user: Optional[UserProfile] = None
    error: Optional[str] = None
    error_code: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.authenticated


class AuthStatus(BaseModel):
    """Snapshot returned by :meth:`~authbridge.auth.session.SessionManager.get_auth_status`."""

    authenticated: bool
    user: Optional[UserProfile] = None
    session_valid: bool = False
    state: AuthState = AuthState.IDLE
    expires_at: Optional[datetime] = None
