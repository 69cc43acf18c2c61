from __future__ import annotations

from urllib.parse import parse_qs, urlsplit

import httpx
import pytest

from conftest import make_id_token
from token_relay.clients.session_store import InMemorySessionStore
from token_relay.clients.token_exchange import TokenExchangeClient
from token_relay.core.errors import IdentityTokenError, TokenRepositoryError
from token_relay.services.authorization import (
    AuthorizationFlowService,
    CallbackStage,
    decode_identity_token,
)
from token_relay.services.oauth_state import OAuthStateValidator


class BrokenRepository:
    def __init__(self) -> None:
        self.calls = 0

    def upsert_refresh_token(self, sub: str, refresh_token: str) -> None:
        self.calls += 1
        raise TokenRepositoryError("disk full")


@pytest.fixture
def sessions(clock) -> InMemorySessionStore:
    return InMemorySessionStore(clock=clock)


@pytest.fixture
def flow(sessions, exchange_client, repository) -> AuthorizationFlowService:
    return AuthorizationFlowService(
        session_store=sessions,
        state_validator=OAuthStateValidator(sessions),
        exchange_client=exchange_client,
        repository=repository,
    )


async def _login(flow: AuthorizationFlowService):
    session, url = await flow.begin_login()
    state = parse_qs(urlsplit(url).query)["state"][0]
    return session.session_id, state


@pytest.mark.anyio
async def test_begin_login_binds_state_to_session(flow, sessions) -> None:
    session, url = await flow.begin_login()

    query = parse_qs(urlsplit(url).query)
    assert query["state"] == [sessions.get(session.session_id).oauth_state]
    assert query["response_type"] == ["code"]


@pytest.mark.anyio
async def test_successful_callback_persists_refresh_token(flow, sessions, repository, idp) -> None:
    session_id, state = await _login(flow)

    outcome = await flow.complete_callback(session_id=session_id, code="good-code", state=state)

    assert outcome.ok
    assert not outcome.degraded
    assert outcome.view_data() == {"access_token": "A", "sub": "user-42", "expires_in": 3600}
    assert repository.get_refresh_token("user-42") == "R"
    assert sessions.get(session_id) is None
    assert outcome.trail == [
        CallbackStage.AWAITING_CODE,
        CallbackStage.STATE_VERIFIED,
        CallbackStage.TOKEN_EXCHANGED,
        CallbackStage.SUBJECT_RESOLVED,
        CallbackStage.PERSISTED,
        CallbackStage.SESSION_CLOSED,
    ]
    assert idp.requests[0]["code"] == "good-code"


@pytest.mark.anyio
async def test_second_login_replaces_stored_token(flow, repository, idp) -> None:
    session_id, state = await _login(flow)
    await flow.complete_callback(session_id=session_id, code="first", state=state)

    idp.requests.clear()
    session_id, state = await _login(flow)
    await flow.complete_callback(session_id=session_id, code="second", state=state)

    assert [record.sub for record in repository.list_all()] == ["user-42"]


@pytest.mark.anyio
async def test_callback_without_refresh_token_still_succeeds(flow, repository, idp) -> None:
    idp.issue_refresh_token = False
    session_id, state = await _login(flow)

    outcome = await flow.complete_callback(session_id=session_id, code="c", state=state)

    assert outcome.ok
    assert not outcome.persisted
    assert not outcome.degraded
    assert repository.get_refresh_token("user-42") is None


@pytest.mark.anyio
async def test_state_mismatch_never_reaches_token_endpoint(flow, sessions, idp) -> None:
    session_id, _ = await _login(flow)

    outcome = await flow.complete_callback(session_id=session_id, code="c", state="forged")

    assert outcome.error == "Invalid state parameter"
    assert outcome.stage is CallbackStage.ERROR
    assert idp.requests == []
    assert sessions.get(session_id) is None


@pytest.mark.anyio
async def test_callback_without_session_fails_state_check(flow, idp) -> None:
    outcome = await flow.complete_callback(session_id=None, code="c", state="s")

    assert outcome.error == "Invalid state parameter"
    assert idp.requests == []


@pytest.mark.anyio
async def test_missing_code_reports_error(flow, sessions) -> None:
    session_id, state = await _login(flow)

    outcome = await flow.complete_callback(session_id=session_id, code=None, state=state)

    assert outcome.view_data() == {"error": "No authorization code received"}
    assert sessions.get(session_id) is None


@pytest.mark.anyio
async def test_provider_error_parameter_is_reported(flow) -> None:
    outcome = await flow.complete_callback(
        session_id=None,
        code=None,
        state=None,
        provider_error="access_denied",
        provider_error_description="The user denied access",
    )

    assert outcome.error == "The user denied access"


@pytest.mark.anyio
async def test_exchange_failure_destroys_session_and_stores_nothing(flow, sessions, repository) -> None:
    session_id, state = await _login(flow)

    outcome = await flow.complete_callback(session_id=session_id, code="expired-code", state=state)

    assert outcome.error == "Authorization code expired"
    assert outcome.access_token is None
    assert sessions.get(session_id) is None
    assert repository.list_all() == []


@pytest.mark.anyio
async def test_undecodable_identity_token_is_an_error(flow, repository, oauth_settings) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            json={"access_token": "A", "id_token": "not-a-jwt", "refresh_token": "R"},
        )

    flow._exchange = TokenExchangeClient(oauth_settings, transport=httpx.MockTransport(handler))
    session_id, state = await _login(flow)

    outcome = await flow.complete_callback(session_id=session_id, code="c", state=state)

    assert not outcome.ok
    assert outcome.access_token is None
    assert repository.list_all() == []


@pytest.mark.anyio
async def test_repository_failure_degrades_but_delivers_access_token(
    sessions, exchange_client
) -> None:
    repository = BrokenRepository()
    flow = AuthorizationFlowService(
        session_store=sessions,
        state_validator=OAuthStateValidator(sessions),
        exchange_client=exchange_client,
        repository=repository,
    )
    session_id, state = await _login(flow)

    outcome = await flow.complete_callback(session_id=session_id, code="c", state=state)

    assert outcome.ok
    assert outcome.degraded
    assert outcome.access_token == "A"
    assert repository.calls == 1
    assert CallbackStage.PERSISTED not in outcome.trail
    assert sessions.get(session_id) is None


def test_decode_identity_token_handles_unpadded_payload() -> None:
    claims = decode_identity_token(make_id_token({"sub": "abc"}))
    assert claims["sub"] == "abc"


@pytest.mark.parametrize("token", [None, "", "single-segment", "a.!!!.c", "a.bnVsbA.c"])
def test_decode_identity_token_rejects_malformed_tokens(token) -> None:
    with pytest.raises(IdentityTokenError):
        decode_identity_token(token)
