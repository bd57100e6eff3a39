"""Anti-CSRF state for the single in-flight login attempt.

:class:`PendingRequestTracker` owns one slot holding at most one
:class:`~authbridge.models.PendingAuthRequest`.  Starting a login fills the
slot (superseding whatever was there); a callback empties it whether or not
its state matched, so every state value is usable at most once.

A background :class:`threading.Timer` clears the slot when the request
expires.  Each timer is bound to the request instance it was started for and
only clears the slot if that same instance is still there, so a stale timer
can never clear a newer request.  Validation also checks the deadline
against the tracker clock, so expiry holds even if the timer has not fired
yet.
"""

from __future__ import annotations

import hmac
import logging
import secrets
import threading
import time
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from authbridge.exceptions import CsrfError, CsrfReason
from authbridge.models import PendingAuthRequest

logger = logging.getLogger(__name__)

DEFAULT_LOGIN_TTL_SECONDS = 300
STATE_BYTES = 32


def generate_state() -> str:
    """Return a URL-safe state value with 256 bits of entropy."""
    return secrets.token_urlsafe(STATE_BYTES)


class PendingRequestTracker:
    """Owns the single pending login request and its expiry timer.

    Args:
        ttl_seconds: Lifetime of a pending request.
        clock: Wall-clock source returning POSIX seconds.  Tests inject a
            fake clock to simulate expiry.
        use_timer: Start a background timer per request to clear it on
            expiry.  Disable in tests that drive expiry through ``clock``.
    """

    def __init__(
        self,
        ttl_seconds: int = DEFAULT_LOGIN_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
        use_timer: bool = True,
    ) -> None:
        self._ttl = ttl_seconds
        self._clock = clock
        self._use_timer = use_timer
        self._lock = threading.Lock()
        self._pending: Optional[PendingAuthRequest] = None
        self._deadline: Optional[float] = None
        self._timer: Optional[threading.Timer] = None

    @property
    def pending(self) -> Optional[PendingAuthRequest]:
        """The current pending request, if any."""
        with self._lock:
            return self._pending

    def has_pending(self) -> bool:
        """Whether an unexpired request is waiting for its callback."""
        with self._lock:
            return self._deadline is not None and not self._is_expired(self._deadline)

    def begin(self) -> str:
        """Start a new login attempt and return its state value.

        Any previous pending request is discarded and its timer cancelled;
        its state can never validate again.
        """
        started = self._clock()
        now = datetime.fromtimestamp(started, tz=timezone.utc)
        request = PendingAuthRequest(
            state=generate_state(),
            created_at=now,
            expires_at=now + timedelta(seconds=self._ttl),
        )
        with self._lock:
            superseded = self._pending is not None
            self._clear_locked()
            self._pending = request
            self._deadline = started + self._ttl
            if self._use_timer:
                timer = threading.Timer(self._ttl, self._on_expire, args=(request,))
                timer.daemon = True
                self._timer = timer
                timer.start()
        if superseded:
            logger.info("Superseded an unfinished login attempt")
        return request.state

    def check(self, received_state: Optional[str]) -> None:
        """Validate and consume the pending request.

        The slot is emptied on every call that finds a request, whether the
        state matched or not.

        Raises:
            CsrfError: With reason ``missing`` if nothing is pending,
                ``expired`` if the request outlived its TTL, or ``mismatch``
                if *received_state* differs from the pending state.
        """
        with self._lock:
            request, deadline = self._pending, self._deadline
            if request is None or deadline is None:
                raise CsrfError(CsrfReason.MISSING)
            self._clear_locked()

        if self._is_expired(deadline):
            logger.warning("Login callback arrived after the pending request expired")
            raise CsrfError(CsrfReason.EXPIRED)
        if not received_state or not hmac.compare_digest(
            request.state.encode("utf-8"), received_state.encode("utf-8")
        ):
            logger.warning("Login callback state mismatch; possible forged callback")
            raise CsrfError(CsrfReason.MISMATCH)
        logger.debug("Login state validated")

    def validate(self, received_state: Optional[str]) -> bool:
        """Return ``True`` iff *received_state* matches the live pending request.

        Single use: the pending request is consumed on success and cleared on
        failure.
        """
        try:
            self.check(received_state)
        except CsrfError:
            return False
        return True

    def cancel(self) -> None:
        """Discard any pending request and its timer."""
        with self._lock:
            self._clear_locked()

    def _is_expired(self, deadline: float) -> bool:
        return self._clock() >= deadline

    def _clear_locked(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        self._pending = None
        self._deadline = None

    def _on_expire(self, request: PendingAuthRequest) -> None:
        with self._lock:
            if self._pending is not request:
                return
            self._pending = None
            self._deadline = None
            self._timer = None
        logger.info("Login request timed out; clearing pending state")
