"""Security event trail for the login bridge.

Events are written to the ``authbridge.security`` logger with structured
``extra`` fields (``event``, ``user_id``, ``session_id``, ``reason``) so a
host application can route them to its own audit sink.  Events never carry
tokens, state values, or secret-store contents.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Optional


class SecurityEvent(Enum):
    """Login bridge security event types."""

    LOGIN_STARTED = "login_started"
    CSRF_REJECTED = "csrf_rejected"
    TOKEN_REJECTED = "token_rejected"
    LOGIN_SUCCEEDED = "login_succeeded"
    DIRECT_LINK_REJECTED = "direct_link_rejected"
    SESSION_RESTORED = "session_restored"
    SESSION_PURGED = "session_purged"
    SIGNED_OUT = "signed_out"
    STORAGE_FAILED = "storage_failed"


_WARNING_EVENTS = {
    SecurityEvent.CSRF_REJECTED,
    SecurityEvent.TOKEN_REJECTED,
    SecurityEvent.DIRECT_LINK_REJECTED,
    SecurityEvent.STORAGE_FAILED,
}


class SecurityEventLog:
    """Emits :class:`SecurityEvent` records onto a logger.

    Args:
        logger: Destination logger.  Defaults to ``authbridge.security``.
    """

    def __init__(self, logger: Optional[logging.Logger] = None) -> None:
        self._logger = logger or logging.getLogger("authbridge.security")

    def log(
        self,
        event: SecurityEvent,
        user_id: str | None = None,
        session_id: str | None = None,
        reason: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Record one security event."""
        level = logging.WARNING if event in _WARNING_EVENTS else logging.INFO
        message = f"security event: {event.value}"
        if reason:
            message = f"{message} ({reason})"
        self._logger.log(
            level,
            message,
            extra={
                "event": event.value,
                "user_id": user_id,
                "session_id": session_id,
                "reason": reason,
                "details": details or {},
            },
        )
