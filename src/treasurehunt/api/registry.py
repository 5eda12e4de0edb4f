"""
In-process registry of live game sessions.

Sessions hold smoother state and the current phase, so they live in the API
process for their lifetime. The registry is shared by all request threads.

Clients can disappear without closing their session, so a session that has not
been looked up for `idle_seconds` is closed and dropped. The sweep runs on every
`add` and `get`; no background thread is needed.
"""

from __future__ import annotations

import logging
import threading

from treasurehunt.core.time import Clock, now_ms
from treasurehunt.game.session import GameSession

logger = logging.getLogger(__name__)


class SessionRegistry:
    def __init__(self, idle_seconds: float | None = None, clock: Clock = now_ms) -> None:
        self._lock = threading.Lock()
        self._sessions: dict[str, GameSession] = {}
        self._last_used_ms: dict[str, int] = {}
        self._idle_ms = int(idle_seconds * 1000) if idle_seconds else None
        self._clock = clock

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def _evict_idle_locked(self, now: int) -> None:
        if self._idle_ms is None:
            return
        expired = [sid for sid, used in self._last_used_ms.items() if now - used >= self._idle_ms]
        for sid in expired:
            session = self._sessions.pop(sid)
            del self._last_used_ms[sid]
            session.close()
        if expired:
            logger.info("Evicted %s idle sessions", len(expired))

    def add(self, session: GameSession) -> GameSession:
        now = self._clock()
        with self._lock:
            self._evict_idle_locked(now)
            self._sessions[session.session_id] = session
            self._last_used_ms[session.session_id] = now
        return session

    def get(self, session_id: str) -> GameSession | None:
        """Look up a live session and mark it as used."""
        now = self._clock()
        with self._lock:
            self._evict_idle_locked(now)
            session = self._sessions.get(session_id)
            if session is not None:
                self._last_used_ms[session_id] = now
            return session

    def remove(self, session_id: str) -> GameSession | None:
        with self._lock:
            self._last_used_ms.pop(session_id, None)
            return self._sessions.pop(session_id, None)
