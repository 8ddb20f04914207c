"""Normalized transport events."""

from dataclasses import dataclass
from enum import StrEnum


class TransportEventKind(StrEnum):
    """Event vocabulary shared by every transport implementation."""

    QR = "qr"
    QR_RAW = "qr_raw"
    AUTHENTICATED = "authenticated"
    READY = "ready"
    DISCONNECTED = "disconnected"
    ERROR = "error"
    EXITED = "exited"


@dataclass(frozen=True)
class TransportEvent:
    """A lifecycle event reported by a transport."""

    kind: TransportEventKind
    payload: str | None = None
    detail: str | None = None
    exit_code: int | None = None
    exit_signal: int | None = None
