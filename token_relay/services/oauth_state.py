"""
CSRF protection for the authorization flow.

``OAuthStateValidator`` binds a one-time random state value to the browser's
server-side session; ``SessionCookieSigner`` guards the cookie that carries the
session id so a browser can only present ids this process handed out.
"""

from __future__ import annotations

import base64
import hmac
import logging
import secrets
from hashlib import sha256
from typing import Optional

from token_relay.clients.session_store import SessionStore
from token_relay.core.errors import OAuthStateError
from token_relay.models.oauth import AuthorizationSession

logger = logging.getLogger(__name__)

STATE_ENTROPY_BYTES = 16


class SessionCookieSigner:
    """Sign and verify session ids placed in the browser cookie."""

    def __init__(self, secret_key: str) -> None:
        if not secret_key:
            raise ValueError("Session secret must be provided.")
        self._secret_key = secret_key.encode("utf-8")

    def _signature(self, session_id: str) -> str:
        digest = hmac.new(self._secret_key, session_id.encode("utf-8"), sha256).digest()
        return base64.urlsafe_b64encode(digest).decode("ascii").rstrip("=")

    def sign(self, session_id: str) -> str:
        return f"{session_id}.{self._signature(session_id)}"

    def unsign(self, cookie_value: Optional[str]) -> Optional[str]:
        """Return the session id when the signature checks out, otherwise ``None``."""
        if not cookie_value:
            return None
        session_id, sep, signature = cookie_value.rpartition(".")
        if not sep or not session_id:
            return None
        if not hmac.compare_digest(
            signature.encode("utf-8"), self._signature(session_id).encode("utf-8")
        ):
            return None
        return session_id


class OAuthStateValidator:
    """Issue and verify the single-use ``state`` parameter of a login attempt."""

    def __init__(self, session_store: SessionStore) -> None:
        self._sessions = session_store

    def issue(self, session: AuthorizationSession) -> str:
        state = secrets.token_hex(STATE_ENTROPY_BYTES)
        session.oauth_state = state
        self._sessions.save(session)
        return state

    def verify(self, session_id: Optional[str], returned_state: Optional[str]) -> AuthorizationSession:
        """
        Check ``returned_state`` against the state stored on the session.

        Any failure destroys the session so the stored value cannot be replayed,
        then raises ``OAuthStateError``.
        """
        session = self._sessions.get(session_id) if session_id else None
        expected = session.oauth_state if session else None

        if expected and returned_state and hmac.compare_digest(
            expected.encode("utf-8"), returned_state.encode("utf-8")
        ):
            return session  # type: ignore[return-value]

        if session is None:
            reason = "no session"
        elif not expected:
            reason = "no state issued"
        else:
            reason = "state mismatch"
        logger.warning("Rejected OAuth callback state", extra={"reason": reason})
        if session_id:
            self._sessions.destroy(session_id)
        raise OAuthStateError()


__all__ = ["OAuthStateValidator", "STATE_ENTROPY_BYTES", "SessionCookieSigner"]
