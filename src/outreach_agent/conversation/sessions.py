"""Session arena.

Live conversation sessions keyed by call handle. Sessions are created
when a call is answered and torn down on hangup, on error, or at
shutdown. Audio or callbacks for a handle without a session are dropped.
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable

from outreach_agent.conversation.base import ConversationSession
from outreach_agent.core.logging import get_logger

log = get_logger(__name__)


class SessionArena:
    """Concurrency-safe registry of live sessions."""

    def __init__(self) -> None:
        self._sessions: dict[str, ConversationSession] = {}
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, handle: str) -> bool:
        return handle in self._sessions

    @property
    def handles(self) -> list[str]:
        return list(self._sessions)

    async def open(
        self,
        handle: str,
        opener: Callable[[], Awaitable[ConversationSession]],
    ) -> ConversationSession:
        """Register the session built by ``opener`` under ``handle``.

        An existing session for the handle is returned as is. The opener
        runs under the arena lock, so two events for the same call never
        open two sessions.
        """
        async with self._lock:
            existing = self._sessions.get(handle)
            if existing is not None:
                return existing
            session = await opener()
            self._sessions[handle] = session

        log.info("Conversation session registered", call_control_id=handle, active=len(self))
        return session

    def get(self, handle: str) -> ConversationSession | None:
        return self._sessions.get(handle)

    async def send_audio(self, handle: str, payload: str) -> bool:
        """Forward a caller audio frame; False when no session exists."""
        session = self._sessions.get(handle)
        if session is None:
            log.debug("No session for audio, dropping", call_control_id=handle)
            return False
        await session.send_audio(payload)
        return True

    async def close(self, handle: str) -> ConversationSession | None:
        """Remove and close the session for ``handle``.

        Returns:
            The closed session (its transcript stays readable), or None
        """
        async with self._lock:
            session = self._sessions.pop(handle, None)

        if session is None:
            log.debug("No session to close", call_control_id=handle)
            return None

        try:
            await session.close()
        except Exception as e:
            log.warning("Error closing session", call_control_id=handle, error=str(e))
        log.info("Conversation session closed", call_control_id=handle, active=len(self))
        return session

    async def close_all(self) -> int:
        """Close every session (shutdown). Returns how many were closed."""
        handles = self.handles
        for handle in handles:
            await self.close(handle)
        return len(handles)
