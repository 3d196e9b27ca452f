import logging
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Optional

logger = logging.getLogger(__name__)


class SessionState(Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZED = "initialized"


@dataclass
class Session:
    """Protocol state for one caller."""

    session_id: str
    state: SessionState = SessionState.UNINITIALIZED
    created_at: float = 0.0
    last_seen: float = 0.0
    client_info: Dict[str, Any] = field(default_factory=dict)
    protocol_version: Optional[str] = None

    @property
    def initialized(self) -> bool:
        return self.state is SessionState.INITIALIZED


class SessionStore:
    """
    In-memory sessions with a sliding TTL.

    Expired sessions are dropped on lookup, and every create() purges the
    rest, so the map never outgrows the sessions active within one TTL.
    """

    def __init__(self, ttl: float = 3600, clock: Callable[[], float] = time.monotonic):
        self.ttl = ttl
        self._clock = clock
        self._sessions: Dict[str, Session] = {}

    def create(self) -> Session:
        purged = self.purge_expired()
        if purged:
            logger.info(f"Purged {purged} expired sessions")
        now = self._clock()
        session = Session(session_id=uuid.uuid4().hex, created_at=now, last_seen=now)
        self._sessions[session.session_id] = session
        logger.debug(f"Created session {session.session_id}")
        return session

    def get(self, session_id: str) -> Optional[Session]:
        """Look up a live session and refresh its TTL."""
        session = self._sessions.get(session_id)
        if session is None:
            return None
        now = self._clock()
        if now - session.last_seen > self.ttl:
            del self._sessions[session_id]
            logger.info(f"Session {session_id} expired")
            return None
        session.last_seen = now
        return session

    def delete(self, session_id: str) -> bool:
        return self._sessions.pop(session_id, None) is not None

    def purge_expired(self) -> int:
        now = self._clock()
        expired = [sid for sid, s in self._sessions.items() if now - s.last_seen > self.ttl]
        for sid in expired:
            del self._sessions[sid]
        return len(expired)

    def __len__(self) -> int:
        return len(self._sessions)
