"""In-process transport wrapping a callback-driven messaging client."""

import asyncio
import contextlib
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol

from firezap.adapters.transport import EventHandler, TransportError
from firezap.domain.sessions import digits_only
from firezap.domain.transport import TransportEvent, TransportEventKind

logger = logging.getLogger(__name__)


class MessagingClient(Protocol):
    """Client object that speaks the pairing protocol inside this process."""

    def on(self, event: str, callback: Callable[..., None]) -> None:
        """Register a callback for a named client event."""

    async def initialize(self) -> None:
        """Open the connection and begin pairing."""

    async def destroy(self) -> None:
        """Close the connection and release its resources."""

    async def send_message(self, chat_id: str, text: str) -> dict[str, object]:
        """Send a text message and return its id and timestamp."""

    async def get_number_id(self, number: str) -> object | None:
        """Return the account id for a phone number, if registered."""

    async def is_registered_user(self, chat_id: str) -> bool:
        """Return whether a chat id belongs to a registered account."""


MessagingClientFactory = Callable[[str, Path], MessagingClient]


@dataclass
class InProcessTransport:
    """Re-shapes a client's native callbacks into transport events."""

    session_id: str
    client: MessagingClient
    _handler: EventHandler | None = field(default=None, init=False, repr=False)
    _init_task: asyncio.Task[None] | None = field(
        default=None, init=False, repr=False
    )
    _stopped: bool = field(default=False, init=False, repr=False)

    def __post_init__(self) -> None:
        self.client.on("qr", self._on_qr)
        self.client.on("authenticated", self._on_authenticated)
        self.client.on("ready", self._on_ready)
        self.client.on("disconnected", self._on_disconnected)
        self.client.on("auth_failure", self._on_auth_failure)

    def on_event(self, handler: EventHandler) -> None:
        """Register the consumer of normalized events."""
        self._handler = handler

    async def start(self) -> None:
        """Initialize the client in the background."""
        if self._init_task is not None or self._stopped:
            return
        self._init_task = asyncio.create_task(
            self._initialize(), name=f"client-init-{self.session_id}"
        )

    async def stop(self) -> None:
        """Destroy the client. Repeated calls are no-ops."""
        if self._stopped:
            return
        self._stopped = True
        if self._init_task is None:
            return
        if not self._init_task.done():
            self._init_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._init_task
        try:
            await self.client.destroy()
        except Exception:
            logger.exception("Failed to destroy client for session %s", self.session_id)

    async def send_text(self, chat_id: str, text: str) -> dict[str, object]:
        """Send a text message through the client."""
        try:
            return await self.client.send_message(chat_id, text)
        except Exception as exc:
            raise TransportError(f"Failed to send message: {exc}") from exc

    async def is_registered(self, number: str) -> bool:
        """Look the number up, falling back to the chat-id check."""
        digits = digits_only(number)
        try:
            return await self.client.get_number_id(digits) is not None
        except Exception:
            logger.debug("Number id lookup failed, trying chat id", exc_info=True)
        try:
            return await self.client.is_registered_user(f"{digits}@c.us")
        except Exception as exc:
            raise TransportError(f"Failed to validate number: {exc}") from exc

    async def _initialize(self) -> None:
        try:
            await self.client.initialize()
        except Exception as exc:
            logger.exception("Client init failed for session %s", self.session_id)
            self._emit(
                TransportEvent(kind=TransportEventKind.ERROR, detail=f"init:{exc}")
            )

    def _on_qr(self, qr: str) -> None:
        self._emit(TransportEvent(kind=TransportEventKind.QR, payload=qr))

    def _on_authenticated(self, *_args: object) -> None:
        self._emit(TransportEvent(kind=TransportEventKind.AUTHENTICATED))

    def _on_ready(self, *_args: object) -> None:
        self._emit(TransportEvent(kind=TransportEventKind.READY))

    def _on_disconnected(self, reason: object = None) -> None:
        detail = str(reason) if reason else None
        self._emit(TransportEvent(kind=TransportEventKind.DISCONNECTED, detail=detail))

    def _on_auth_failure(self, message: object = None) -> None:
        detail = f"auth_failure:{message}" if message else "auth_failure"
        self._emit(TransportEvent(kind=TransportEventKind.ERROR, detail=detail))

    def _emit(self, event: TransportEvent) -> None:
        if self._handler is None or self._stopped:
            return
        self._handler(event)
