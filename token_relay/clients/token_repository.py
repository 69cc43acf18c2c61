"""SQLite-backed repository holding the current refresh token per subject."""

from __future__ import annotations

import sqlite3
from datetime import timedelta
from typing import Optional

from token_relay.clients.sqlite_store import (
    Clock,
    ConnectionState,
    SQLiteConnectionManager,
    format_timestamp,
    parse_timestamp,
    utcnow,
)
from token_relay.core.errors import OAuthTokenNotFoundError
from token_relay.models.oauth import RefreshTokenRecord

REFRESH_TOKEN_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS refresh_tokens (
        sub TEXT PRIMARY KEY,
        refresh_token TEXT NOT NULL,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_refresh_tokens_updated_at ON refresh_tokens (updated_at)",
)


def _to_record(row: sqlite3.Row) -> RefreshTokenRecord:
    return RefreshTokenRecord(
        sub=row["sub"],
        refresh_token=row["refresh_token"],
        created_at=parse_timestamp(row["created_at"]),
        updated_at=parse_timestamp(row["updated_at"]),
    )


class TokenRepository:
    """Upsert, lookup and staleness queries over the ``refresh_tokens`` table."""

    def __init__(
        self,
        db_path: str,
        *,
        reconnect_backoff_seconds: float = 5.0,
        clock: Clock = utcnow,
        connection: Optional[SQLiteConnectionManager] = None,
    ) -> None:
        self._clock = clock
        self._db = connection or SQLiteConnectionManager(
            db_path,
            schema=REFRESH_TOKEN_SCHEMA,
            reconnect_backoff_seconds=reconnect_backoff_seconds,
        )

    @property
    def connection_state(self) -> ConnectionState:
        return self._db.state

    def connect(self) -> None:
        self._db.connect()

    def close(self) -> None:
        self._db.close()

    def upsert_refresh_token(self, sub: str, refresh_token: str) -> None:
        """Insert the subject's token, or replace it and bump ``updated_at``."""
        now = format_timestamp(self._clock())
        with self._db.transaction() as conn:
            conn.execute(
                """
                INSERT INTO refresh_tokens (sub, refresh_token, created_at, updated_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(sub) DO UPDATE SET
                    refresh_token = excluded.refresh_token,
                    updated_at = excluded.updated_at
                """,
                (sub, refresh_token, now, now),
            )

    def get_refresh_token(self, sub: str) -> Optional[str]:
        with self._db.transaction() as conn:
            row = conn.execute(
                "SELECT refresh_token FROM refresh_tokens WHERE sub = ?",
                (sub,),
            ).fetchone()
        if not row:
            return None
        return row["refresh_token"]

    def get_record(self, sub: str) -> Optional[RefreshTokenRecord]:
        with self._db.transaction() as conn:
            row = conn.execute(
                "SELECT sub, refresh_token, created_at, updated_at FROM refresh_tokens WHERE sub = ?",
                (sub,),
            ).fetchone()
        if not row:
            return None
        return _to_record(row)

    def update_refresh_token(self, sub: str, refresh_token: str) -> None:
        """Replace the token of an existing subject; raises when the subject is unknown."""
        now = format_timestamp(self._clock())
        with self._db.transaction() as conn:
            cursor = conn.execute(
                "UPDATE refresh_tokens SET refresh_token = ?, updated_at = ? WHERE sub = ?",
                (refresh_token, now, sub),
            )
            if cursor.rowcount == 0:
                raise OAuthTokenNotFoundError(f"No refresh token stored for subject {sub}.")

    def replace_refresh_token(self, sub: str, expected: str, refresh_token: str) -> bool:
        """
        Swap ``expected`` for ``refresh_token`` only if ``expected`` is still stored.

        Returns ``False`` when the subject is gone or holds a different token,
        e.g. after a new login wrote a fresher one.
        """
        now = format_timestamp(self._clock())
        with self._db.transaction() as conn:
            cursor = conn.execute(
                """
                UPDATE refresh_tokens SET refresh_token = ?, updated_at = ?
                WHERE sub = ? AND refresh_token = ?
                """,
                (refresh_token, now, sub, expected),
            )
        return cursor.rowcount > 0

    def delete_refresh_token(self, sub: str) -> bool:
        with self._db.transaction() as conn:
            cursor = conn.execute("DELETE FROM refresh_tokens WHERE sub = ?", (sub,))
        return cursor.rowcount > 0

    def list_stale(self, max_age_days: float) -> list[RefreshTokenRecord]:
        """Return records whose last write is older than ``max_age_days``, oldest first."""
        cutoff = format_timestamp(self._clock() - timedelta(days=max_age_days))
        with self._db.transaction() as conn:
            rows = conn.execute(
                """
                SELECT sub, refresh_token, created_at, updated_at
                FROM refresh_tokens
                WHERE updated_at < ?
                ORDER BY updated_at ASC, sub ASC
                """,
                (cutoff,),
            ).fetchall()
        return [_to_record(row) for row in rows]

    def list_all(self) -> list[RefreshTokenRecord]:
        with self._db.transaction() as conn:
            rows = conn.execute(
                """
                SELECT sub, refresh_token, created_at, updated_at
                FROM refresh_tokens
                ORDER BY updated_at DESC, sub ASC
                """
            ).fetchall()
        return [_to_record(row) for row in rows]


__all__ = ["REFRESH_TOKEN_SCHEMA", "TokenRepository"]
