"""
Session registry.

Maps session identifiers to live engine connections. Entries are added by
``create`` and removed only through the connection's own close signal, so
each entry is removed exactly once. Idle eviction closes the
connection and lets that signal do the removal.
"""

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Optional

from ..config import DEFAULT_IDLE_TIMEOUT_SECONDS
from ..errors import SessionNotFound
from ..metrics import get_metrics_emitter
from ..tracing import get_tracer
from .engine import EngineConnection, EngineFactory

logger = logging.getLogger(__name__)


@dataclass
class Session:
    """Binding between a session identifier and one engine connection."""
    id: str
    connection: EngineConnection
    created_at: float = field(default_factory=time.time)
    last_seen: float = field(default_factory=time.time)

    def touch(self) -> None:
        self.last_seen = time.time()


class SessionRegistry:
    """
    Concurrency-safe table of live sessions.

    All mutations go through one asyncio lock.

    Attributes:
        idle_timeout_seconds: Sessions idle longer than this are closed by
            ``sweep_idle`` (0 disables eviction; one hour by default)
    """

    def __init__(self, idle_timeout_seconds: float = DEFAULT_IDLE_TIMEOUT_SECONDS):
        self.idle_timeout_seconds = idle_timeout_seconds
        self._sessions: dict[str, Session] = {}
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    def _new_id(self) -> str:
        session_id = str(uuid.uuid4())
        while session_id in self._sessions:
            session_id = str(uuid.uuid4())
        return session_id

    async def create(self, engine_factory: EngineFactory) -> Session:
        """
        Open a new engine connection and register it under a fresh identifier.

        Args:
            engine_factory: Builds the connection for the new session id

        Returns:
            The registered Session
        """
        with get_tracer().start_as_current_span("session.create") as span:
            async with self._lock:
                session_id = self._new_id()

            connection = await engine_factory(session_id)
            session = Session(id=session_id, connection=connection)
            connection.on_close = lambda: self.remove(session_id, connection)
            async with self._lock:
                self._sessions[session_id] = session

            span.set_attribute("session.id", session_id)
            get_metrics_emitter().record_session_event("created", session_id)
            logger.info(f"Session created: {session_id}")
            return session

    async def get(self, session_id: str) -> Session:
        """
        Look up a live session.

        Raises:
            SessionNotFound: If the id is unknown or already removed
        """
        async with self._lock:
            session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFound(f"Unknown or expired session: {session_id}")
        session.touch()
        return session

    async def remove(self, session_id: str, connection: Optional[EngineConnection] = None) -> bool:
        """
        Drop a session entry.

        Args:
            session_id: Session to drop
            connection: When given, only drop the entry if it still maps to
                this connection

        Returns:
            True if an entry was removed
        """
        async with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                return False
            if connection is not None and session.connection is not connection:
                return False
            del self._sessions[session_id]

        get_metrics_emitter().record_session_event("removed", session_id)
        logger.info(f"Session removed: {session_id}")
        return True

    async def sweep_idle(self, now: Optional[float] = None) -> list[str]:
        """
        Close sessions idle longer than ``idle_timeout_seconds``.

        Returns:
            Ids of the sessions that were closed
        """
        if self.idle_timeout_seconds <= 0:
            return []
        now = now if now is not None else time.time()
        async with self._lock:
            stale = [
                s for s in self._sessions.values()
                if now - s.last_seen > self.idle_timeout_seconds
            ]

        for session in stale:
            logger.info(f"Closing idle session {session.id}")
            await self._close(session)
        return [session.id for session in stale]

    async def close_all(self) -> None:
        """Close every live connection (used on shutdown)."""
        async with self._lock:
            sessions = list(self._sessions.values())
        for session in sessions:
            await self._close(session)

    async def _close(self, session: Session) -> None:
        try:
            await session.connection.close()
        finally:
            # No-op when the close signal already removed the entry
            await self.remove(session.id, session.connection)
