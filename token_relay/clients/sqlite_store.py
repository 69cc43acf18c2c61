"""SQLite connection ownership shared by the token repository and session store."""

from __future__ import annotations

import contextlib
import logging
import sqlite3
import threading
import time
from contextlib import contextmanager
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Callable, Iterator, Optional, Sequence

from token_relay.core.errors import RepositoryUnavailableError, TokenRepositoryError

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]

_TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def format_timestamp(value: datetime) -> str:
    """Render a timestamp as fixed-width UTC text so lexical order is chronological."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime(_TIMESTAMP_FORMAT)


def parse_timestamp(value: str) -> datetime:
    return datetime.strptime(value, _TIMESTAMP_FORMAT).replace(tzinfo=timezone.utc)


def _is_contention(exc: sqlite3.OperationalError) -> bool:
    message = str(exc).lower()
    return "locked" in message or "busy" in message


class ConnectionState(str, Enum):
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    RECONNECTING = "reconnecting"


class SQLiteConnectionManager:
    """
    Own a single process-wide SQLite connection and its health.

    The connection moves ``CONNECTED -> DISCONNECTED`` on a storage failure and
    back through ``RECONNECTING`` on the next use once ``reconnect_backoff_seconds``
    has elapsed. Callers inside the backoff window get ``RepositoryUnavailableError``.
    All statements run under one lock, so writers never interleave.
    """

    def __init__(
        self,
        db_path: str,
        *,
        schema: Sequence[str] = (),
        reconnect_backoff_seconds: float = 5.0,
        connect: Optional[Callable[[], sqlite3.Connection]] = None,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        self._db_path = Path(db_path)
        self._schema = tuple(schema)
        self._backoff = reconnect_backoff_seconds
        self._connect_factory = connect or self._open
        self._monotonic = monotonic
        self._lock = threading.RLock()
        self._conn: Optional[sqlite3.Connection] = None
        self._state = ConnectionState.DISCONNECTED
        self._failed_at: Optional[float] = None

    @property
    def state(self) -> ConnectionState:
        return self._state

    def _open(self) -> sqlite3.Connection:
        if str(self._db_path) != ":memory:" and not self._db_path.parent.exists():
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(self._db_path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        return conn

    def connect(self) -> None:
        """Establish the connection eagerly, e.g. at application startup."""
        with self._lock:
            self._ensure_connected()

    def close(self) -> None:
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                logger.info("Database connection closed", extra={"db_path": str(self._db_path)})
            self._conn = None
            self._state = ConnectionState.DISCONNECTED
            self._failed_at = None

    def _ensure_connected(self) -> sqlite3.Connection:
        if self._conn is not None and self._state is ConnectionState.CONNECTED:
            return self._conn

        if self._failed_at is not None:
            waited = self._monotonic() - self._failed_at
            if waited < self._backoff:
                raise RepositoryUnavailableError(
                    f"Token store unavailable; reconnecting in {self._backoff - waited:.1f}s."
                )

        self._state = ConnectionState.RECONNECTING
        try:
            conn = self._connect_factory()
            with conn:
                for statement in self._schema:
                    conn.execute(statement)
        except sqlite3.Error as exc:
            logger.error("Failed to open database: %s", exc)
            self._mark_disconnected()
            raise TokenRepositoryError(f"Unable to open token store: {exc}") from exc

        self._conn = conn
        self._state = ConnectionState.CONNECTED
        self._failed_at = None
        logger.info("Connected to the SQLite database", extra={"db_path": str(self._db_path)})
        return conn

    def _mark_disconnected(self) -> None:
        if self._conn is not None:
            with contextlib.suppress(sqlite3.Error):
                self._conn.close()
        self._conn = None
        self._state = ConnectionState.DISCONNECTED
        self._failed_at = self._monotonic()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Yield the shared connection inside a commit-or-rollback block."""
        with self._lock:
            conn = self._ensure_connected()
            try:
                with conn:
                    yield conn
            except (sqlite3.IntegrityError, sqlite3.ProgrammingError) as exc:
                raise TokenRepositoryError(str(exc)) from exc
            except sqlite3.OperationalError as exc:
                if _is_contention(exc):
                    # Lock contention leaves the connection usable.
                    logger.warning("Database busy: %s", exc)
                    raise TokenRepositoryError(str(exc)) from exc
                logger.error("Database error: %s", exc)
                self._mark_disconnected()
                raise TokenRepositoryError(str(exc)) from exc
            except sqlite3.Error as exc:
                logger.error("Database error: %s", exc)
                self._mark_disconnected()
                raise TokenRepositoryError(str(exc)) from exc


__all__ = [
    "Clock",
    "ConnectionState",
    "SQLiteConnectionManager",
    "format_timestamp",
    "parse_timestamp",
    "utcnow",
]
