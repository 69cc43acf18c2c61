"""Hourly cleanup of expired authorization sessions."""

from __future__ import annotations

import asyncio
import logging

from token_relay.clients.session_store import SessionStore
from token_relay.clients.sqlite_store import Clock, utcnow

logger = logging.getLogger(__name__)


class SessionReaper:
    def __init__(self, session_store: SessionStore, *, clock: Clock = utcnow) -> None:
        self._sessions = session_store
        self._clock = clock

    async def run_once(self) -> int:
        """Destroy every session past expiry; returns how many were removed."""
        try:
            sessions = await asyncio.to_thread(self._sessions.all)
        except Exception:  # pylint: disable=broad-except
            logger.exception("Error during session cleanup")
            return 0

        now = self._clock()
        reaped = 0
        for session in sessions:
            if not session.is_expired(now):
                continue
            try:
                await asyncio.to_thread(self._sessions.destroy, session.session_id)
            except Exception:  # pylint: disable=broad-except
                logger.exception(
                    "Failed to destroy expired session", extra={"session_id": session.session_id}
                )
                continue
            reaped += 1
            logger.info("Cleaned up expired session: %s", session.session_id)

        logger.info("Session cleanup completed", extra={"reaped": reaped})
        return reaped


__all__ = ["SessionReaper"]
