import logging
import time
from abc import ABC, abstractmethod
from typing import Dict, Optional, Tuple

from .models import Session

logger = logging.getLogger(__name__)


class SessionStore(ABC):
    """
    Persistence seam for in-progress sessions. Every call stores or returns a
    full Session document; callers never share a live object with the store.
    """

    @abstractmethod
    async def create(self, session: Session) -> None:
        ...

    @abstractmethod
    async def get(self, session_id: str) -> Optional[Session]:
        ...

    @abstractmethod
    async def update(self, session: Session) -> None:
        ...

    @abstractmethod
    async def mark_complete(self, session: Session) -> None:
        """Persists a completed session and shortens its retention."""
        ...

    async def ping(self) -> bool:
        return True


class InMemorySessionStore(SessionStore):
    """Process-local store with TTL expiry. Used for development and tests."""

    def __init__(self, ttl_seconds: int = 86400, completed_retention_seconds: int = 3600, clock=time.monotonic):
        self.ttl_seconds = ttl_seconds
        self.completed_retention_seconds = completed_retention_seconds
        self._clock = clock
        self._data: Dict[str, Tuple[str, float]] = {}

    def _purge_expired(self) -> None:
        now = self._clock()
        for session_id in [sid for sid, (_, expires_at) in self._data.items() if now >= expires_at]:
            del self._data[session_id]

    def _put(self, session: Session, ttl: int) -> None:
        self._purge_expired()
        self._data[session.session_id] = (session.model_dump_json(), self._clock() + ttl)

    async def create(self, session: Session) -> None:
        self._put(session, self.ttl_seconds)

    async def get(self, session_id: str) -> Optional[Session]:
        entry = self._data.get(session_id)
        if entry is None:
            return None
        payload, expires_at = entry
        if self._clock() >= expires_at:
            logger.info("Session expired", extra={"session_id": session_id})
            del self._data[session_id]
            return None
        return Session.model_validate_json(payload)

    async def update(self, session: Session) -> None:
        ttl = self.completed_retention_seconds if session.is_closed else self.ttl_seconds
        self._put(session, ttl)

    async def mark_complete(self, session: Session) -> None:
        self._put(session, self.completed_retention_seconds)
