"""Registry of live sessions keyed by session id."""

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field

from firezap.domain.sessions import validate_session_id
from firezap.services.locks import KeyedLocks
from firezap.services.sessions import Session

logger = logging.getLogger(__name__)

SessionFactory = Callable[[str], Session]


@dataclass
class SessionRegistry:
    """Creates sessions on demand and tears them down on request.

    Operations on the same id are serialized by a per-id lock; different ids
    never wait on each other.
    """

    session_factory: SessionFactory
    _sessions: dict[str, Session] = field(default_factory=dict, init=False)
    _locks: KeyedLocks = field(default_factory=KeyedLocks, init=False)

    async def ensure(self, session_id: str) -> Session:
        """Return the session for the id, creating and starting it if needed."""
        validate_session_id(session_id)
        async with self._locks.hold(session_id):
            session = self._sessions.get(session_id)
            if session is not None:
                return session
            session = self.session_factory(session_id)
            self._sessions[session_id] = session
            logger.info("Created session %s", session_id)
            await session.start()
            return session

    def get(self, session_id: str) -> Session | None:
        """Return the session for the id without creating it."""
        return self._sessions.get(session_id)

    def list(self) -> list[str]:
        """Return every known session id."""
        return list(self._sessions)

    async def remove(self, session_id: str) -> bool:
        """Tear down and forget a session. Unknown ids are a no-op."""
        if session_id not in self._sessions:
            return False
        async with self._locks.hold(session_id):
            session = self._sessions.get(session_id)
            if session is None:
                return False
            await session.teardown()
            del self._sessions[session_id]
        logger.info("Removed session %s", session_id)
        return True

    async def restart(self, session_id: str) -> Session | None:
        """Restart an existing session's transport."""
        if session_id not in self._sessions:
            return None
        async with self._locks.hold(session_id):
            session = self._sessions.get(session_id)
            if session is None:
                return None
            await session.restart()
            return session

    async def close(self) -> None:
        """Stop every session's transport, keeping credentials for next start."""
        sessions = list(self._sessions.values())
        await asyncio.gather(*(session.close() for session in sessions))
