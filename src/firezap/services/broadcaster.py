"""Per-session publish/subscribe fan-out of lifecycle events."""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Protocol

from firezap.domain.sessions import EventKind, LifecycleEvent, SessionStatus
from firezap.services.locks import KeyedLocks

logger = logging.getLogger(__name__)

EventListener = Callable[[LifecycleEvent], Awaitable[None]]


class Subscriber(Protocol):
    """Remote party receiving session messages."""

    async def send(self, message: dict[str, object]) -> None:
        """Deliver one message."""


@dataclass
class SessionSnapshot:
    """Latest known status and pairing artifact of a session."""

    status_event: LifecycleEvent | None = None
    qr_event: LifecycleEvent | None = None

    def apply(self, event: LifecycleEvent) -> None:
        """Fold an event into the snapshot."""
        if event.kind is EventKind.QR_ISSUED:
            self.status_event = LifecycleEvent(
                event.session_id, EventKind.STATUS, SessionStatus.AWAITING_SCAN
            )
            self.qr_event = event
            return
        self.status_event = event
        self.qr_event = None

    def to_messages(self) -> list[dict[str, object]]:
        """Render the snapshot as the messages a new subscriber receives."""
        messages = []
        if self.status_event is not None:
            messages.append(self.status_event.to_message())
        if self.qr_event is not None:
            messages.append(self.qr_event.to_message())
        return messages


class EventBroadcaster:
    """Delivers each session's events to the subscribers joined to it."""

    def __init__(
        self,
        send_timeout: float = 2.0,
        listeners: list[EventListener] | None = None,
    ) -> None:
        self.send_timeout = send_timeout
        self._listeners = list(listeners or [])
        self._groups: dict[str, set[Subscriber]] = {}
        self._snapshots: dict[str, SessionSnapshot] = {}
        self._locks = KeyedLocks()

    def add_listener(self, listener: EventListener) -> None:
        """Register an in-process consumer of every published event."""
        self._listeners.append(listener)

    def snapshot(self, session_id: str) -> SessionSnapshot | None:
        return self._snapshots.get(session_id)

    def subscribers(self, session_id: str) -> set[Subscriber]:
        """Return the subscribers currently joined to a session."""
        return set(self._groups.get(session_id, ()))

    async def subscribe(self, session_id: str, subscriber: Subscriber) -> None:
        """Replay the session's snapshot to the subscriber, then join its group.

        Publishes for the same session wait until the replay has been sent.
        """
        async with self._locks.hold(session_id):
            snapshot = self._snapshots.get(session_id)
            messages = snapshot.to_messages() if snapshot is not None else []
            for message in messages:
                if not await self._deliver(session_id, subscriber, message):
                    return
            self._groups.setdefault(session_id, set()).add(subscriber)

    def unsubscribe(self, session_id: str, subscriber: Subscriber) -> None:
        """Leave a session's group."""
        group = self._groups.get(session_id)
        if group is None:
            return
        group.discard(subscriber)
        if not group:
            del self._groups[session_id]

    def forget(self, session_id: str) -> None:
        """Drop the snapshot of a session that no longer exists."""
        self._snapshots.pop(session_id, None)

    def unsubscribe_all(self, subscriber: Subscriber) -> None:
        """Leave every group the subscriber joined."""
        for session_id in list(self._groups):
            self.unsubscribe(session_id, subscriber)

    async def publish(self, session_id: str, event: LifecycleEvent) -> None:
        """Record the event as the snapshot and fan it out."""
        async with self._locks.hold(session_id):
            self._snapshots.setdefault(session_id, SessionSnapshot()).apply(event)
            message = event.to_message()
            subscribers = self.subscribers(session_id)
            if subscribers:
                await asyncio.gather(
                    *(self._deliver(session_id, sub, message) for sub in subscribers)
                )
        for listener in self._listeners:
            try:
                await listener(event)
            except Exception:
                logger.exception("Event listener failed for session %s", session_id)

    async def _deliver(
        self, session_id: str, subscriber: Subscriber, message: dict[str, object]
    ) -> bool:
        try:
            await asyncio.wait_for(subscriber.send(message), timeout=self.send_timeout)
        except Exception:
            logger.warning(
                "Dropping subscriber of session %s after failed delivery",
                session_id,
                exc_info=True,
            )
            self.unsubscribe(session_id, subscriber)
            return False
        return True
