"""Domain models for messaging-channel sessions."""

import re
from dataclasses import dataclass, field
from enum import StrEnum

_SESSION_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]{1,64}$")


class InvalidSessionIdError(ValueError):
    """Raised when a session id cannot be used as a client id or path segment."""


class SessionStatus(StrEnum):
    """Lifecycle states of a session, valued by their wire tokens."""

    STARTING = "starting"
    AWAITING_SCAN = "qr"
    AUTHENTICATED = "authenticated"
    READY = "ready"
    DISCONNECTED = "disconnected"
    ERROR = "error"
    EXITED = "exited"


class EventKind(StrEnum):
    """Kinds of lifecycle events published for a session."""

    STATUS = "status"
    QR_ISSUED = "qr"
    ERROR = "error"


@dataclass(frozen=True)
class LifecycleEvent:
    """An observable change in a session's state."""

    session_id: str
    kind: EventKind
    status: SessionStatus
    payload: dict[str, object] = field(default_factory=dict)

    @property
    def qr(self) -> str | None:
        """Return the pairing artifact carried by a QR event."""
        if self.kind is not EventKind.QR_ISSUED:
            return None
        value = self.payload.get("qr")
        return value if isinstance(value, str) else None

    def to_message(self) -> dict[str, object]:
        """Render the event as a subscriber-facing message."""
        if self.kind is EventKind.QR_ISSUED:
            return {
                "type": "qr",
                "sessionId": self.session_id,
                "status": str(self.status),
                "qr": self.qr,
            }
        message: dict[str, object] = {
            "type": "status",
            "sessionId": self.session_id,
            "status": str(self.status),
        }
        for key, value in self.payload.items():
            message.setdefault(key, value)
        return message


@dataclass
class ReconnectState:
    """Reconnection bookkeeping for a session."""

    attempts: int = 0
    last_error: str | None = None


@dataclass(frozen=True)
class SessionState:
    """Point-in-time view of a session for the control surface."""

    id: str
    status: SessionStatus
    qr: str | None
    attempts: int
    last_error: str | None
    exit_code: int | None = None
    exit_signal: int | None = None


def validate_session_id(session_id: str) -> str:
    """Return the session id if it is usable, otherwise raise."""
    if not _SESSION_ID_PATTERN.match(session_id):
        raise InvalidSessionIdError(
            "Session ids may only contain letters, digits, '_' and '-' "
            "(1-64 characters)."
        )
    return session_id


def to_chat_id(recipient: str) -> str:
    """Build a chat id from a phone number, keeping explicit ids untouched."""
    value = recipient.strip()
    if "@" in value:
        return value
    return f"{digits_only(value)}@c.us"


def digits_only(value: str) -> str:
    """Strip everything but digits from a phone number."""
    return re.sub(r"\D", "", value)
