"""Mirror of session status into the dashboard's chip records."""

import asyncio
import logging
from dataclasses import dataclass
from typing import Protocol

from firezap.domain.sessions import LifecycleEvent, SessionStatus

logger = logging.getLogger(__name__)

_CHIP_STATUSES: dict[SessionStatus, tuple[str, bool]] = {
    SessionStatus.STARTING: ("connecting", False),
    SessionStatus.AWAITING_SCAN: ("connecting", False),
    SessionStatus.AUTHENTICATED: ("connecting", False),
    SessionStatus.READY: ("active", True),
    SessionStatus.DISCONNECTED: ("disconnected", False),
    SessionStatus.EXITED: ("disconnected", False),
    SessionStatus.ERROR: ("error", False),
}


class ChipRepository(Protocol):
    """Persistence interface for chip connection state."""

    def update_status(self, phone_number: str, status: str, connected: bool) -> None:
        """Update the status of the chip registered with a phone number."""


@dataclass
class ChipStatusService:
    """Keeps chip rows in step with their sessions."""

    repository: ChipRepository

    async def on_event(self, event: LifecycleEvent) -> None:
        """Mirror a lifecycle event for sessions named by a phone number."""
        if not event.session_id.isdigit():
            return
        chip_status, connected = _CHIP_STATUSES[event.status]
        try:
            await asyncio.to_thread(
                self.repository.update_status,
                f"+{event.session_id}",
                chip_status,
                connected,
            )
        except Exception:
            logger.exception(
                "Failed to mirror chip status",
                extra={"session_id": event.session_id},
            )
