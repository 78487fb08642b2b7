"""
Session Store - In-Memory Session Management

Provides thread-safe session storage. Expired sessions are removed when they
are read, and a full sweep runs inline every ``SWEEP_THRESHOLD`` writes.
"""

import secrets
import threading
from contextlib import contextmanager
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional

DEFAULT_SESSION_LIFETIME = timedelta(hours=4)
SWEEP_THRESHOLD = 1000


class SessionNotFound(LookupError):
    """No session is stored under the requested id."""


class SessionExpired(SessionNotFound):
    """The session existed but its expiry has passed; it has been deleted."""


@dataclass
class Session:
    """One browser session. An empty ``user`` means anonymous."""
    user: str = ""
    expires_at: Optional[datetime] = None


def generate_session_id() -> str:
    """Return a random 128-bit id formatted as 8-4-4-4-12 uppercase hex."""
    raw = secrets.token_hex(16).upper()
    return "-".join((raw[0:8], raw[8:12], raw[12:16], raw[16:20], raw[20:]))


def _now() -> datetime:
    return datetime.now(timezone.utc)


class ReadWriteLock:
    """Many concurrent readers or a single writer.

    Waiting writers block new readers so a steady stream of lookups cannot
    starve ``put``/``delete``.
    """

    def __init__(self):
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    @contextmanager
    def read_locked(self):
        with self._cond:
            while self._writer or self._writers_waiting:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if not self._readers:
                    self._cond.notify_all()

    @contextmanager
    def write_locked(self):
        with self._cond:
            self._writers_waiting += 1
            try:
                while self._writer or self._readers:
                    self._cond.wait()
            finally:
                self._writers_waiting -= 1
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


class SessionStore:
    """Thread-safe in-memory session storage."""

    def __init__(self, session_lifetime: timedelta = DEFAULT_SESSION_LIFETIME,
                 sweep_threshold: int = SWEEP_THRESHOLD):
        self._sessions: Dict[str, Session] = {}
        self._lock = ReadWriteLock()
        self._writes = 0
        self.session_lifetime = session_lifetime
        self.sweep_threshold = sweep_threshold

    def put(self, session_id: str, session: Session) -> None:
        """Insert or overwrite a session, filling in a default expiry."""
        if session.expires_at is None:
            session = Session(user=session.user, expires_at=_now() + self.session_lifetime)

        with self._lock.write_locked():
            self._sessions[session_id] = session
            self._writes += 1
            if self._writes >= self.sweep_threshold:
                self._sweep_expired(_now())
                self._writes = 0

    def get(self, session_id: str) -> Session:
        """Return the session or raise SessionNotFound / SessionExpired."""
        with self._lock.read_locked():
            session = self._sessions.get(session_id)

        if session is None:
            raise SessionNotFound("SessionID not found")

        if session.expires_at < _now():
            with self._lock.write_locked():
                # Only drop the entry we saw; a concurrent put may have replaced it
                if self._sessions.get(session_id) is session:
                    del self._sessions[session_id]
            raise SessionExpired("SessionID expired")

        return replace(session)

    def delete(self, session_id: str) -> None:
        """Delete a session. Deleting a missing id is not an error."""
        with self._lock.write_locked():
            self._sessions.pop(session_id, None)

    def session_count(self) -> int:
        """Get count of stored sessions, expired ones included."""
        with self._lock.read_locked():
            return len(self._sessions)

    def _sweep_expired(self, now: datetime) -> int:
        # Caller holds the write lock
        expired_ids = [sid for sid, s in self._sessions.items() if s.expires_at < now]
        for session_id in expired_ids:
            del self._sessions[session_id]
        return len(expired_ids)
