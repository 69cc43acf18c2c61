"""
Authorization-code flow orchestration.

``AuthorizationFlowService.begin_login`` opens a session and issues its state;
``complete_callback`` walks the callback through state verification, code
exchange, subject extraction and persistence, and always closes the session.
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from token_relay.clients.session_store import SessionStore
from token_relay.clients.token_exchange import TokenExchangeClient
from token_relay.clients.token_repository import TokenRepository
from token_relay.core.errors import (
    IdentityTokenError,
    InputValidationError,
    OAuthStateError,
    OAuthTokenExchangeError,
    TokenRepositoryError,
)
from token_relay.models.oauth import AuthorizationSession
from token_relay.services.oauth_state import OAuthStateValidator

logger = logging.getLogger(__name__)

NO_CODE_MESSAGE = "No authorization code received"
GENERIC_FAILURE_MESSAGE = "Error during authentication"


class CallbackStage(str, Enum):
    AWAITING_CODE = "awaiting_code"
    STATE_VERIFIED = "state_verified"
    TOKEN_EXCHANGED = "token_exchanged"
    SUBJECT_RESOLVED = "subject_resolved"
    PERSISTED = "persisted"
    SESSION_CLOSED = "session_closed"
    ERROR = "error"


@dataclass
class CallbackOutcome:
    """Result of one callback attempt, safe to hand to the view layer."""

    stage: CallbackStage = CallbackStage.AWAITING_CODE
    access_token: Optional[str] = None
    sub: Optional[str] = None
    expires_in: Optional[int] = None
    error: Optional[str] = None
    persisted: bool = False
    persist_failed: bool = False
    trail: list[CallbackStage] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def degraded(self) -> bool:
        """Access token delivered but the refresh token could not be stored."""
        return self.ok and self.persist_failed

    def advance(self, stage: CallbackStage) -> None:
        self.stage = stage
        self.trail.append(stage)

    def fail(self, message: str) -> "CallbackOutcome":
        self.error = message
        self.access_token = None
        self.advance(CallbackStage.ERROR)
        return self

    def view_data(self) -> Dict[str, Any]:
        if not self.ok:
            return {"error": self.error}
        return {
            "access_token": self.access_token,
            "sub": self.sub,
            "expires_in": self.expires_in,
        }


def decode_identity_token(id_token: Optional[str]) -> Dict[str, Any]:
    """Decode the claims segment of a JWT without verifying its signature."""
    if not id_token:
        raise IdentityTokenError("No identity token returned by provider.")
    segments = id_token.split(".")
    if len(segments) < 2 or not segments[1]:
        raise IdentityTokenError("Identity token is not a dot-delimited JWT.")

    payload = segments[1]
    padded = payload + "=" * (-len(payload) % 4)
    try:
        claims = json.loads(base64.urlsafe_b64decode(padded.encode("ascii")))
    except (binascii.Error, UnicodeError, ValueError) as exc:
        raise IdentityTokenError("Identity token payload could not be decoded.") from exc

    if not isinstance(claims, dict):
        raise IdentityTokenError("Identity token payload is not a claims object.")
    return claims


class AuthorizationFlowService:
    """Drive the browser login from ``/login`` through ``/callback``."""

    def __init__(
        self,
        *,
        session_store: SessionStore,
        state_validator: OAuthStateValidator,
        exchange_client: TokenExchangeClient,
        repository: TokenRepository,
    ) -> None:
        self._sessions = session_store
        self._state = state_validator
        self._exchange = exchange_client
        self._repository = repository

    async def begin_login(self) -> Tuple[AuthorizationSession, str]:
        """Create a session, bind a fresh state to it and build the IdP redirect."""
        session = await asyncio.to_thread(self._sessions.create)
        state = await asyncio.to_thread(self._state.issue, session)
        logger.info("Started authorization", extra={"session_id": session.session_id})
        return session, self._exchange.build_authorization_url(state)

    async def complete_callback(
        self,
        *,
        session_id: Optional[str],
        code: Optional[str],
        state: Optional[str],
        provider_error: Optional[str] = None,
        provider_error_description: Optional[str] = None,
    ) -> CallbackOutcome:
        outcome = CallbackOutcome()
        outcome.trail.append(CallbackStage.AWAITING_CODE)
        try:
            await self._run(outcome, session_id, code, state, provider_error, provider_error_description)
        except Exception:  # pylint: disable=broad-except
            logger.exception("Unexpected failure while completing authorization")
            outcome.fail(GENERIC_FAILURE_MESSAGE)
        finally:
            await self._close_session(session_id)

        if outcome.ok:
            outcome.advance(CallbackStage.SESSION_CLOSED)
        return outcome

    async def _run(
        self,
        outcome: CallbackOutcome,
        session_id: Optional[str],
        code: Optional[str],
        state: Optional[str],
        provider_error: Optional[str],
        provider_error_description: Optional[str],
    ) -> None:
        if not code:
            if provider_error:
                logger.info("Provider returned an authorization error", extra={"error": provider_error})
                outcome.fail(provider_error_description or provider_error)
            else:
                outcome.fail(NO_CODE_MESSAGE)
            return

        try:
            await asyncio.to_thread(self._state.verify, session_id, state)
        except OAuthStateError as exc:
            outcome.fail(str(exc))
            return
        outcome.advance(CallbackStage.STATE_VERIFIED)

        try:
            grant = await self._exchange.exchange_authorization_code(code)
        except OAuthTokenExchangeError as exc:
            logger.error(
                "Error during token exchange",
                extra={"error": exc.error, "status_code": exc.status_code},
            )
            outcome.fail(exc.provider_message)
            return
        outcome.advance(CallbackStage.TOKEN_EXCHANGED)

        try:
            claims = decode_identity_token(grant.id_token)
            sub = claims.get("sub")
            if not sub or not isinstance(sub, str):
                raise IdentityTokenError("Identity token has no subject claim.")
        except InputValidationError as exc:
            logger.error("Failed to resolve subject: %s", exc)
            outcome.fail(str(exc))
            return
        outcome.sub = sub
        outcome.access_token = grant.access_token
        outcome.expires_in = grant.expires_in
        outcome.advance(CallbackStage.SUBJECT_RESOLVED)

        if grant.refresh_token:
            try:
                await asyncio.to_thread(
                    self._repository.upsert_refresh_token, sub, grant.refresh_token
                )
            except TokenRepositoryError:
                logger.exception(
                    "Failed to store refresh token; continuing without persistence",
                    extra={"sub": sub},
                )
                outcome.persist_failed = True
            else:
                outcome.persisted = True
                outcome.advance(CallbackStage.PERSISTED)
        else:
            logger.info("Provider returned no refresh token", extra={"sub": sub})

    async def _close_session(self, session_id: Optional[str]) -> None:
        if not session_id:
            return
        try:
            await asyncio.to_thread(self._sessions.destroy, session_id)
        except Exception:  # pylint: disable=broad-except
            logger.exception("Error destroying session", extra={"session_id": session_id})


__all__ = [
    "AuthorizationFlowService",
    "CallbackOutcome",
    "CallbackStage",
    "decode_identity_token",
]
