"""
Session manager for live feed sessions.

Each client session owns one FeedController (its own cache, behavior
profile, swipe exclusions and realtime channels). Sessions expire after
``ttl_seconds`` without access; expired controllers are closed so their
realtime channels and background tasks are released.

In production, run a single worker or pin clients to a worker: sessions
live in process memory.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Dict, Generic, List, Optional, TypeVar

from core.logging import LoggerMixin
from core.utils import utc_now
from feed.controller import FeedController


T = TypeVar("T")


@dataclass
class SessionData(Generic[T]):
    """Container for session data with access metadata."""

    data: T
    viewer_id: str
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)
    ttl_seconds: int = 3600

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        """Expired when idle for longer than the TTL."""
        now = now or utc_now()
        return now > self.updated_at + timedelta(seconds=self.ttl_seconds)

    def touch(self, now: Optional[datetime] = None) -> None:
        self.updated_at = now or utc_now()


def new_session_id() -> str:
    return f"sess_{uuid.uuid4().hex}"


class FeedSessionManager(LoggerMixin):
    """
    In-memory registry of feed sessions.

    Usage:
        manager = FeedSessionManager(ttl_seconds=3600)

        session_id = manager.add(controller)
        controller = manager.get(session_id)

        await manager.close_session(session_id)
    """

    def __init__(self, ttl_seconds: int = 3600, clock: Callable[[], datetime] = utc_now):
        self._ttl_seconds = ttl_seconds
        self._clock = clock
        self._sessions: Dict[str, SessionData[FeedController]] = {}

    def add(self, controller: FeedController, session_id: Optional[str] = None) -> str:
        session_id = session_id or new_session_id()
        now = self._clock()
        self._sessions[session_id] = SessionData(
            data=controller,
            viewer_id=controller.viewer_id,
            created_at=now,
            updated_at=now,
            ttl_seconds=self._ttl_seconds,
        )
        self.logger.info("Feed session created", session_id=session_id, viewer_id=controller.viewer_id)
        return session_id

    def get(self, session_id: str) -> Optional[FeedController]:
        """
        Get the controller of a session.

        Expired sessions are not returned; they are closed by the next
        ``clear_expired()`` sweep.
        """
        session = self._sessions.get(session_id)
        if session is None:
            return None
        now = self._clock()
        if session.is_expired(now):
            return None
        session.touch(now)
        return session.data

    async def close_session(self, session_id: str) -> bool:
        session = self._sessions.pop(session_id, None)
        if session is None:
            return False
        await session.data.close()
        self.logger.info("Feed session closed", session_id=session_id)
        return True

    async def clear_expired(self) -> int:
        """
        Close every expired session.

        Returns:
            Number of sessions closed
        """
        now = self._clock()
        expired = [key for key, value in self._sessions.items() if value.is_expired(now)]
        for session_id in expired:
            await self.close_session(session_id)
        if expired:
            self.logger.info("Cleared expired feed sessions", count=len(expired))
        return len(expired)

    async def close_all(self) -> None:
        for session_id in list(self._sessions):
            await self.close_session(session_id)

    def session_ids(self) -> List[str]:
        return list(self._sessions)

    def get_stats(self) -> Dict[str, int]:
        now = self._clock()
        return {
            "sessions": len(self._sessions),
            "expired": sum(1 for value in self._sessions.values() if value.is_expired(now)),
        }

    def __len__(self) -> int:
        return len(self._sessions)

