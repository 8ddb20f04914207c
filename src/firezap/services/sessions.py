"""Session state machine for messaging-channel connections.

Each session owns one transport at a time and a queue drained by a single
consumer task. Transport callbacks only enqueue, so status, QR artifact and
reconnect bookkeeping are written by exactly one task.
"""

import asyncio
import contextlib
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol

from firezap.adapters.transport import EventHandler, Transport, TransportFactory
from firezap.domain.sessions import (
    EventKind,
    LifecycleEvent,
    ReconnectState,
    SessionState,
    SessionStatus,
    to_chat_id,
)
from firezap.domain.transport import TransportEvent, TransportEventKind

logger = logging.getLogger(__name__)

_ACTIVE = {
    SessionStatus.STARTING,
    SessionStatus.AWAITING_SCAN,
    SessionStatus.AUTHENTICATED,
    SessionStatus.READY,
}

_ALLOWED_FROM: dict[TransportEventKind, set[SessionStatus]] = {
    TransportEventKind.QR: {SessionStatus.STARTING, SessionStatus.AWAITING_SCAN},
    TransportEventKind.AUTHENTICATED: {
        SessionStatus.STARTING,
        SessionStatus.AWAITING_SCAN,
    },
    TransportEventKind.READY: {
        SessionStatus.STARTING,
        SessionStatus.AWAITING_SCAN,
        SessionStatus.AUTHENTICATED,
    },
    TransportEventKind.DISCONNECTED: _ACTIVE,
    TransportEventKind.ERROR: _ACTIVE | {SessionStatus.DISCONNECTED},
    TransportEventKind.EXITED: set(SessionStatus) - {SessionStatus.EXITED},
}

RECONNECTS_EXHAUSTED = "reconnect attempts exhausted"


class CredentialStore(Protocol):
    """Storage for per-session authentication material."""

    def path_for(self, session_id: str) -> Path:
        """Return the credential location for a session."""

    def wipe(self, session_id: str) -> bool:
        """Delete a session's credentials, returning whether any existed."""


class EventPublisher(Protocol):
    """Receiver of lifecycle events."""

    async def publish(self, session_id: str, event: LifecycleEvent) -> None:
        """Deliver an event for a session."""

    def forget(self, session_id: str) -> None:
        """Release anything kept for a session that no longer exists."""


class SessionNotReadyError(RuntimeError):
    """Raised when an outbound operation targets a session that is not ready."""


@dataclass(frozen=True)
class ReconnectPolicy:
    """Bounded exponential backoff for lost connections."""

    base_delay: float = 1.5
    max_delay: float = 60.0
    max_attempts: int = 5

    def delay_for(self, attempt: int) -> float | None:
        """Return the delay before a 1-based attempt, or None once exhausted."""
        if attempt > self.max_attempts:
            return None
        return min(self.base_delay * 2 ** (attempt - 1), self.max_delay)


@dataclass(frozen=True)
class _TransportItem:
    generation: int
    event: TransportEvent


@dataclass(frozen=True)
class _Connect:
    """Replace the transport. `reason` is one of start, reconnect or restart."""

    reason: str = "start"
    done: asyncio.Future[None] | None = field(default=None, compare=False)


class Session:
    """Lifecycle of one logical connection."""

    def __init__(
        self,
        session_id: str,
        transport_factory: TransportFactory,
        publisher: EventPublisher,
        credentials: CredentialStore,
        policy: ReconnectPolicy | None = None,
    ) -> None:
        self.id = session_id
        self.status = SessionStatus.STARTING
        self.qr: str | None = None
        self.reconnect = ReconnectState()
        self.exit_code: int | None = None
        self.exit_signal: int | None = None
        self._transport_factory = transport_factory
        self._publisher = publisher
        self._credentials = credentials
        self._policy = policy or ReconnectPolicy()
        self._transport: Transport | None = None
        self._generation = 0
        self._queue: asyncio.Queue[_TransportItem | _Connect] = asyncio.Queue()
        self._consumer: asyncio.Task[None] | None = None
        self._reconnect_timer: asyncio.Task[None] | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._closed = False

    @property
    def transport(self) -> Transport | None:
        """Return the live transport, if any."""
        return self._transport

    @property
    def closed(self) -> bool:
        return self._closed

    def state(self) -> SessionState:
        """Return a consistent view of the session."""
        return SessionState(
            id=self.id,
            status=self.status,
            qr=self.qr,
            attempts=self.reconnect.attempts,
            last_error=self.reconnect.last_error,
            exit_code=self.exit_code,
            exit_signal=self.exit_signal,
        )

    async def start(self) -> None:
        """Start the consumer and the first transport. Later calls are no-ops."""
        if self._consumer is not None or self._closed:
            return
        self._loop = asyncio.get_running_loop()
        self._consumer = asyncio.create_task(
            self._consume(), name=f"session-{self.id}"
        )
        await self._submit("start")

    async def restart(self) -> None:
        """Replace the transport on operator request, resetting reconnect attempts."""
        if self._closed:
            return
        if self._consumer is None:
            await self.start()
            return
        self._cancel_reconnect()
        await self._submit("restart")

    async def drain(self) -> None:
        """Wait until every queued event has been handled."""
        await self._queue.join()

    async def send_text(self, to: str, text: str) -> dict[str, object]:
        """Send a text message through a ready session."""
        transport = self._require_ready()
        return await transport.send_text(to_chat_id(to), text)

    async def is_registered(self, number: str) -> bool:
        """Check whether a phone number has an account, through a ready session."""
        transport = self._require_ready()
        return await transport.is_registered(number)

    async def teardown(self) -> None:
        """Stop the transport, wipe credentials and announce the disconnect."""
        if self._closed:
            return
        await self._shutdown()
        wiped = await asyncio.to_thread(self._credentials.wipe, self.id)
        logger.info("Session %s torn down (credentials wiped=%s)", self.id, wiped)
        await self._transition(SessionStatus.DISCONNECTED)
        self._publisher.forget(self.id)

    async def close(self) -> None:
        """Stop the transport without touching credentials."""
        if self._closed:
            return
        await self._shutdown()

    async def _shutdown(self) -> None:
        self._closed = True
        self._cancel_reconnect()
        if self._consumer is not None:
            self._consumer.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._consumer
        self._release_pending()
        await self._close_transport()

    def _require_ready(self) -> Transport:
        if self.status is not SessionStatus.READY or self._transport is None:
            raise SessionNotReadyError(
                f"Session {self.id} is not ready (status={self.status})"
            )
        return self._transport

    async def _submit(self, reason: str) -> None:
        loop = asyncio.get_running_loop()
        done: asyncio.Future[None] = loop.create_future()
        self._queue.put_nowait(_Connect(reason=reason, done=done))
        await done

    def _release_pending(self) -> None:
        while not self._queue.empty():
            item = self._queue.get_nowait()
            if isinstance(item, _Connect) and item.done and not item.done.done():
                item.done.set_result(None)
            self._queue.task_done()

    def _enqueue(self, item: _TransportItem | _Connect) -> None:
        loop = self._loop
        if loop is None or self._closed:
            return
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is loop:
            self._queue.put_nowait(item)
        else:
            loop.call_soon_threadsafe(self._queue.put_nowait, item)

    def _event_sink(self, generation: int) -> EventHandler:
        def sink(event: TransportEvent) -> None:
            self._enqueue(_TransportItem(generation=generation, event=event))

        return sink

    async def _consume(self) -> None:
        while True:
            item = await self._queue.get()
            try:
                if isinstance(item, _Connect):
                    await self._connect(item)
                else:
                    await self._apply(item)
            except Exception:
                logger.exception("Session %s failed to handle %r", self.id, item)
            finally:
                if isinstance(item, _Connect) and item.done and not item.done.done():
                    item.done.set_result(None)
                self._queue.task_done()

    async def _connect(self, command: _Connect) -> None:
        stale = self.status is not SessionStatus.DISCONNECTED
        if command.reason == "reconnect" and stale:
            logger.info(
                "Session %s skipped a reconnect while %s", self.id, self.status
            )
            return
        if command.reason == "restart":
            self.reconnect.attempts = 0
            self.reconnect.last_error = None
        await self._close_transport()
        self._generation += 1
        self.exit_code = None
        self.exit_signal = None
        try:
            transport = self._transport_factory(self.id)
            transport.on_event(self._event_sink(self._generation))
            self._transport = transport
        except Exception as exc:
            logger.exception("Session %s could not build a transport", self.id)
            await self._fail(str(exc))
            return
        await self._transition(SessionStatus.STARTING)
        try:
            await transport.start()
        except Exception as exc:
            logger.exception("Session %s transport failed to start", self.id)
            await self._fail(str(exc))

    async def _apply(self, item: _TransportItem) -> None:
        event = item.event
        if item.generation != self._generation:
            logger.debug(
                "Session %s dropped %s from a replaced transport", self.id, event.kind
            )
            return
        if event.kind is TransportEventKind.QR_RAW:
            logger.debug("Session %s received a raw pairing payload", self.id)
            return
        if self.status not in _ALLOWED_FROM[event.kind]:
            logger.warning(
                "Session %s ignored %s while %s", self.id, event.kind, self.status
            )
            return

        if event.kind is TransportEventKind.QR:
            await self._transition(SessionStatus.AWAITING_SCAN, qr=event.payload)
        elif event.kind is TransportEventKind.AUTHENTICATED:
            await self._transition(SessionStatus.AUTHENTICATED)
        elif event.kind is TransportEventKind.READY:
            self.reconnect.attempts = 0
            await self._transition(SessionStatus.READY)
        elif event.kind is TransportEventKind.DISCONNECTED:
            await self._transition(SessionStatus.DISCONNECTED, reason=event.detail)
            await self._schedule_reconnect(event.detail)
        elif event.kind is TransportEventKind.ERROR:
            self._cancel_reconnect()
            await self._fail(event.detail or "error")
        elif event.kind is TransportEventKind.EXITED:
            self._cancel_reconnect()
            self.exit_code = event.exit_code
            self.exit_signal = event.exit_signal
            await self._transition(
                SessionStatus.EXITED,
                exitCode=event.exit_code,
                exitSignal=event.exit_signal,
            )

    async def _fail(self, message: str) -> None:
        self.reconnect.last_error = message
        await self._transition(SessionStatus.ERROR, error=message)

    async def _schedule_reconnect(self, reason: str | None) -> None:
        attempt = self.reconnect.attempts + 1
        delay = self._policy.delay_for(attempt)
        if delay is None:
            logger.warning(
                "Session %s gave up after %s reconnects", self.id, attempt - 1
            )
            await self._fail(RECONNECTS_EXHAUSTED)
            return
        self.reconnect.attempts = attempt
        self.reconnect.last_error = reason or "disconnected"
        self._cancel_reconnect()
        logger.info(
            "Session %s reconnecting in %.1fs (attempt %s)", self.id, delay, attempt
        )
        self._reconnect_timer = asyncio.create_task(
            self._reconnect_after(delay), name=f"reconnect-{self.id}"
        )

    async def _reconnect_after(self, delay: float) -> None:
        await asyncio.sleep(delay)
        self._reconnect_timer = None
        self._enqueue(_Connect(reason="reconnect"))

    def _cancel_reconnect(self) -> None:
        if self._reconnect_timer is not None:
            self._reconnect_timer.cancel()
            self._reconnect_timer = None

    async def _close_transport(self) -> None:
        transport, self._transport = self._transport, None
        if transport is None:
            return
        try:
            await transport.stop()
        except Exception:
            logger.exception("Session %s transport failed to stop", self.id)

    async def _transition(
        self, status: SessionStatus, qr: str | None = None, **detail: object
    ) -> None:
        self.status = status
        self.qr = qr if status is SessionStatus.AWAITING_SCAN else None
        payload = {key: value for key, value in detail.items() if value is not None}
        if status is SessionStatus.AWAITING_SCAN:
            event = LifecycleEvent(
                self.id, EventKind.QR_ISSUED, status, {"qr": self.qr}
            )
        elif status is SessionStatus.ERROR:
            event = LifecycleEvent(self.id, EventKind.ERROR, status, payload)
        else:
            event = LifecycleEvent(self.id, EventKind.STATUS, status, payload)
        logger.info("Session %s is now %s", self.id, status)
        await self._publisher.publish(self.id, event)
