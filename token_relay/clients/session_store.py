"""Server-side storage for authorization sessions."""

from __future__ import annotations

import json
import logging
import secrets
import threading
from datetime import datetime, timedelta, timezone
from typing import Optional, Protocol

from token_relay.clients.sqlite_store import (
    Clock,
    SQLiteConnectionManager,
    format_timestamp,
    parse_timestamp,
    utcnow,
)
from token_relay.models.oauth import AuthorizationSession

logger = logging.getLogger(__name__)

# Unreadable rows are reported as long expired so the reaper removes them.
_UNREADABLE_EXPIRY = datetime(1970, 1, 1, tzinfo=timezone.utc)

SESSION_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS sessions (
        sid TEXT PRIMARY KEY,
        data TEXT NOT NULL,
        expires TEXT NOT NULL
    )
    """,
)


class SessionStore(Protocol):
    """Keyed session storage used by the login flow and the session reaper."""

    def create(self) -> AuthorizationSession:
        ...

    def get(self, session_id: str) -> Optional[AuthorizationSession]:
        ...

    def save(self, session: AuthorizationSession) -> None:
        ...

    def destroy(self, session_id: str) -> None:
        ...

    def all(self) -> list[AuthorizationSession]:
        ...

    def close(self) -> None:
        ...


class SQLiteSessionStore:
    """Persist sessions as JSON blobs keyed by session id with an ``expires`` column."""

    def __init__(
        self,
        db_path: str,
        *,
        ttl_seconds: int = 1800,
        reconnect_backoff_seconds: float = 5.0,
        clock: Clock = utcnow,
    ) -> None:
        self._ttl = timedelta(seconds=ttl_seconds)
        self._clock = clock
        self._db = SQLiteConnectionManager(
            db_path,
            schema=SESSION_SCHEMA,
            reconnect_backoff_seconds=reconnect_backoff_seconds,
        )

    def close(self) -> None:
        self._db.close()

    def create(self) -> AuthorizationSession:
        session = AuthorizationSession(
            session_id=secrets.token_urlsafe(32),
            expires_at=self._clock() + self._ttl,
        )
        self.save(session)
        return session

    def get(self, session_id: str) -> Optional[AuthorizationSession]:
        """Return the live session for ``session_id``; expired sessions read as absent."""
        with self._db.transaction() as conn:
            row = conn.execute(
                "SELECT sid, data, expires FROM sessions WHERE sid = ?",
                (session_id,),
            ).fetchone()
        if not row:
            return None
        session = self._to_session(row["sid"], row["data"], row["expires"])
        if session.is_expired(self._clock()):
            return None
        return session

    def save(self, session: AuthorizationSession) -> None:
        data = json.dumps({"oauth_state": session.oauth_state})
        with self._db.transaction() as conn:
            conn.execute(
                """
                INSERT INTO sessions (sid, data, expires)
                VALUES (?, ?, ?)
                ON CONFLICT(sid) DO UPDATE SET data = excluded.data, expires = excluded.expires
                """,
                (session.session_id, data, format_timestamp(session.expires_at)),
            )

    def destroy(self, session_id: str) -> None:
        with self._db.transaction() as conn:
            conn.execute("DELETE FROM sessions WHERE sid = ?", (session_id,))

    def all(self) -> list[AuthorizationSession]:
        """Enumerate every stored session, expired or not."""
        with self._db.transaction() as conn:
            rows = conn.execute(
                "SELECT sid, data, expires FROM sessions ORDER BY expires ASC"
            ).fetchall()
        return [self._to_session(row["sid"], row["data"], row["expires"]) for row in rows]

    @staticmethod
    def _to_session(sid: str, data: str, expires: str) -> AuthorizationSession:
        try:
            payload = json.loads(data) if data else {}
            if not isinstance(payload, dict):
                raise ValueError("session data is not an object")
            return AuthorizationSession(
                session_id=sid,
                oauth_state=payload.get("oauth_state"),
                expires_at=parse_timestamp(expires),
            )
        except (TypeError, ValueError) as exc:
            logger.warning("Unreadable session row %s treated as expired: %s", sid, exc)
            return AuthorizationSession(session_id=sid, expires_at=_UNREADABLE_EXPIRY)


class InMemorySessionStore:
    """Dictionary-backed session store for single-process deployments and tests."""

    def __init__(self, *, ttl_seconds: int = 1800, clock: Clock = utcnow) -> None:
        self._ttl = timedelta(seconds=ttl_seconds)
        self._clock = clock
        self._sessions: dict[str, AuthorizationSession] = {}
        self._lock = threading.Lock()

    def close(self) -> None:
        with self._lock:
            self._sessions.clear()

    def create(self) -> AuthorizationSession:
        session = AuthorizationSession(
            session_id=secrets.token_urlsafe(32),
            expires_at=self._clock() + self._ttl,
        )
        self.save(session)
        return session

    def get(self, session_id: str) -> Optional[AuthorizationSession]:
        with self._lock:
            session = self._sessions.get(session_id)
        if session is None or session.is_expired(self._clock()):
            return None
        return session.model_copy()

    def save(self, session: AuthorizationSession) -> None:
        with self._lock:
            self._sessions[session.session_id] = session.model_copy()

    def destroy(self, session_id: str) -> None:
        with self._lock:
            self._sessions.pop(session_id, None)

    def all(self) -> list[AuthorizationSession]:
        with self._lock:
            return [session.model_copy() for session in self._sessions.values()]


__all__ = ["InMemorySessionStore", "SQLiteSessionStore", "SESSION_SCHEMA", "SessionStore"]
