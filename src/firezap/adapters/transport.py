"""Transport interface shared by in-process and supervised-process clients."""

from collections.abc import Callable
from typing import Protocol

from firezap.domain.transport import TransportEvent

EventHandler = Callable[[TransportEvent], None]


class TransportError(RuntimeError):
    """Base error for transport failures."""


class TransportStartError(TransportError):
    """Raised when a transport cannot be started."""


class UnsupportedOperationError(TransportError):
    """Raised when a transport kind does not support an operation."""


class Transport(Protocol):
    """Connection to the messaging network for a single session."""

    session_id: str

    def on_event(self, handler: EventHandler) -> None:
        """Register the single consumer of this transport's events."""

    async def start(self) -> None:
        """Start the transport; raise TransportStartError on failure."""

    async def stop(self) -> None:
        """Stop the transport. Safe to call repeatedly or before start."""

    async def send_text(self, chat_id: str, text: str) -> dict[str, object]:
        """Send a text message and return its id and timestamp."""

    async def is_registered(self, number: str) -> bool:
        """Return whether a phone number has an account on the network."""


TransportFactory = Callable[[str], Transport]
