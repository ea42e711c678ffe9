"""
Session roles, lifecycle states and disconnect classification.
"""

from __future__ import annotations

import asyncio
from enum import Enum
from typing import Dict, Optional


class SessionRole(str, Enum):
    PRIMARY = "primary"
    SECONDARY = "secondary"

    def __str__(self) -> str:
        return self.value


class SessionState(str, Enum):
    """Per-session state machine: bootstrapping -> connecting -> open -> closed."""

    BOOTSTRAPPING = "bootstrapping"
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSED = "closed"

    def __str__(self) -> str:
        return self.value


class DisconnectKind(Enum):
    """Diagnostic taxonomy for connection drops."""

    LOGGED_OUT = "logged-out"
    SESSION_EXPIRED = "session-expired"
    CONNECTION_CLOSED = "connection-closed"
    CONNECTION_LOST = "connection-lost"
    CONNECTION_REPLACED = "connection-replaced"
    TIMED_OUT = "timed-out"
    BAD_SESSION = "bad-session"
    RESTART_REQUIRED = "restart-required"
    UNKNOWN = "unknown"

    def __str__(self) -> str:
        return self.value

    @property
    def label(self) -> str:
        return DISCONNECT_LABELS[self]

    @property
    def purges_credentials(self) -> bool:
        """Whether stored credentials are useless after this kind of drop."""
        return self in (DisconnectKind.LOGGED_OUT, DisconnectKind.SESSION_EXPIRED)


DISCONNECT_LABELS: Dict[DisconnectKind, str] = {
    DisconnectKind.LOGGED_OUT: "Logged out from the device",
    DisconnectKind.SESSION_EXPIRED: "Session expired",
    DisconnectKind.CONNECTION_CLOSED: "Connection closed",
    DisconnectKind.CONNECTION_LOST: "Connection lost",
    DisconnectKind.CONNECTION_REPLACED: "Connection replaced by another client",
    DisconnectKind.TIMED_OUT: "Connection timed out",
    DisconnectKind.BAD_SESSION: "Invalid session",
    DisconnectKind.RESTART_REQUIRED: "Restart required",
    DisconnectKind.UNKNOWN: "Unknown reason",
}

# Status codes reported by the protocol library on close
DISCONNECT_STATUS_CODES: Dict[int, DisconnectKind] = {
    401: DisconnectKind.LOGGED_OUT,
    408: DisconnectKind.CONNECTION_LOST,
    419: DisconnectKind.SESSION_EXPIRED,
    428: DisconnectKind.CONNECTION_CLOSED,
    440: DisconnectKind.CONNECTION_REPLACED,
    500: DisconnectKind.BAD_SESSION,
    515: DisconnectKind.RESTART_REQUIRED,
}


def classify_disconnect(status_code: Optional[int], error: Optional[BaseException] = None) -> DisconnectKind:
    """
    Map a close status code (and the error that caused it) onto a :class:`DisconnectKind`.

    A close without a status code caused by a timeout is reported as
    ``TIMED_OUT``; unlisted codes are ``UNKNOWN``.
    """
    if status_code is not None:
        return DISCONNECT_STATUS_CODES.get(status_code, DisconnectKind.UNKNOWN)
    if isinstance(error, (asyncio.TimeoutError, TimeoutError)):
        return DisconnectKind.TIMED_OUT
    return DisconnectKind.UNKNOWN
