"""Tracking of open SSH connections and their lifetimes."""

from __future__ import annotations

import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

DEFAULT_SESSION_EXPIRY = 30 * 60.0
DEFAULT_CLEANUP_INTERVAL = 5 * 60.0


def _now() -> datetime:
    return datetime.now().astimezone()


class SessionNotFoundError(LookupError):
    """Raised when no session exists under the requested identifier."""

    def __init__(self, session_id: str) -> None:
        super().__init__("session not found")
        self.session_id = session_id


@dataclass(eq=False)
class Session:
    """An open SSH connection and its bookkeeping."""

    id: str
    client: Any
    host: str
    username: str
    created_at: datetime
    last_activity: datetime

    def close(self) -> None:
        """Close the underlying connection, if any."""
        if self.client is not None:
            self.client.close()


class SessionManager:
    """Thread-safe registry of sessions that expire after inactivity."""

    def __init__(self, session_expiry: float = DEFAULT_SESSION_EXPIRY) -> None:
        if session_expiry <= 0:
            session_expiry = DEFAULT_SESSION_EXPIRY
        self.session_expiry = float(session_expiry)
        self._sessions: dict[str, Session] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        with self._lock:
            return session_id in self._sessions

    def add_session(self, session_id: str, client: Any, host: str, username: str) -> Session:
        """Register a connection under ``session_id`` and return its session."""
        now = _now()
        session = Session(
            id=session_id,
            client=client,
            host=host,
            username=username,
            created_at=now,
            last_activity=now,
        )
        with self._lock:
            self._sessions[session_id] = session
        return session

    def get_session(self, session_id: str) -> Session:
        """Return the session and mark it active."""
        with self._lock:
            try:
                session = self._sessions[session_id]
            except KeyError:
                raise SessionNotFoundError(session_id) from None
            session.last_activity = _now()
            return session

    def remove_session(self, session_id: str) -> None:
        """Close the session's connection and forget it."""
        with self._lock:
            try:
                session = self._sessions.pop(session_id)
            except KeyError:
                raise SessionNotFoundError(session_id) from None
            session.close()

    def list_sessions(self) -> list[Session]:
        """Return all registered sessions."""
        with self._lock:
            return list(self._sessions.values())

    def cleanup_expired_sessions(self) -> int:
        """Close and drop inactive sessions; return how many were removed."""
        limit = timedelta(seconds=self.session_expiry)
        with self._lock:
            now = _now()
            expired = [s for s in self._sessions.values() if now - s.last_activity > limit]
            for session in expired:
                session.close()
                del self._sessions[session.id]
            return len(expired)

    def start_cleanup_routine(self, interval: float = DEFAULT_CLEANUP_INTERVAL) -> threading.Event:
        """Run cleanup_expired_sessions periodically in a daemon thread.

        A non-positive interval falls back to 5 minutes. Setting the returned
        event stops the thread.
        """
        if interval <= 0:
            interval = DEFAULT_CLEANUP_INTERVAL
        stop = threading.Event()

        def run() -> None:
            while not stop.wait(interval):
                self.cleanup_expired_sessions()

        threading.Thread(target=run, name="session-cleanup", daemon=True).start()
        return stop