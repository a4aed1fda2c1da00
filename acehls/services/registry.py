from __future__ import annotations
import threading
import logging
from typing import Dict, List, Optional
from ..models.schemas import StreamSession, SessionStatus

logger = logging.getLogger(__name__)

class SessionRegistry:
    """In-memory store of active stream sessions keyed by session id.

    Values handed out are copies; the registry keeps the only canonical
    instance of each session, and every mutation happens under the lock.
    """

    def __init__(self):
        self._lock = threading.RLock()
        self._sessions: Dict[str, StreamSession] = {}

    def insert(self, session: StreamSession) -> StreamSession:
        with self._lock:
            if session.id in self._sessions:
                raise ValueError(f"Session {session.id} already registered")
            self._sessions[session.id] = session.model_copy()
            return session.model_copy()

    def get(self, session_id: str) -> Optional[StreamSession]:
        with self._lock:
            session = self._sessions.get(session_id)
            return session.model_copy() if session else None

    def delete(self, session_id: str) -> Optional[StreamSession]:
        """Remove a session and return its last state, or None if it was absent."""
        with self._lock:
            return self._sessions.pop(session_id, None)

    def update_status(self, session_id: str, status: SessionStatus,
                      expected: Optional[SessionStatus] = None) -> Optional[StreamSession]:
        """Atomically set a session's status.

        Returns the updated copy, or None when the session no longer exists or
        its current status differs from ``expected``.
        """
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                return None
            if expected is not None and session.status != expected:
                return None
            # Replace rather than mutate so outstanding copies stay consistent
            updated = session.model_copy(update={"status": status})
            self._sessions[session_id] = updated
            return updated.model_copy()

    def snapshot(self) -> List[StreamSession]:
        with self._lock:
            return [s.model_copy() for s in self._sessions.values()]

    def __contains__(self, session_id: str) -> bool:
        with self._lock:
            return session_id in self._sessions

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)
