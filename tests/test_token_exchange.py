from __future__ import annotations

from urllib.parse import parse_qs, urlsplit

import httpx
import pytest

from token_relay.clients.token_exchange import TokenExchangeClient
from token_relay.core.config import OAuthSettings
from token_relay.core.errors import OAuthTokenExchangeError


def _client(oauth_settings: OAuthSettings, handler) -> TokenExchangeClient:
    return TokenExchangeClient(oauth_settings, transport=httpx.MockTransport(handler))


def test_build_authorization_url_carries_required_parameters(oauth_settings) -> None:
    client = TokenExchangeClient(oauth_settings)

    url = client.build_authorization_url("abc123")

    parts = urlsplit(url)
    assert f"{parts.scheme}://{parts.netloc}{parts.path}" == "https://idp.example.com/oauth2/authorize"
    query = parse_qs(parts.query)
    assert query == {
        "response_type": ["code"],
        "client_id": ["relay-client"],
        "redirect_uri": ["https://relay.example.com/callback"],
        "scope": ["openid offline_access"],
        "state": ["abc123"],
    }


def test_build_authorization_url_keeps_existing_query() -> None:
    settings = OAuthSettings(
        AUTHORIZATION_URL="https://idp.example.com/authorize?tenant=acme",
        TOKEN_URL="https://idp.example.com/token",
        CLIENT_ID="c",
        CLIENT_SECRET="s",
        REDIRECT_URI="https://relay.example.com/callback",
        SCOPE="openid",
    )

    query = parse_qs(urlsplit(TokenExchangeClient(settings).build_authorization_url("xyz")).query)

    assert query["tenant"] == ["acme"]
    assert query["state"] == ["xyz"]
    assert query["scope"] == ["openid"]


@pytest.mark.anyio
async def test_authorization_code_exchange_posts_form_encoded_grant(exchange_client, idp) -> None:
    grant = await exchange_client.exchange_authorization_code("the-code")

    assert grant.access_token == "A"
    assert grant.refresh_token == "R"
    assert grant.expires_in == 3600
    assert idp.requests == [
        {
            "grant_type": "authorization_code",
            "code": "the-code",
            "redirect_uri": "https://relay.example.com/callback",
            "client_id": "relay-client",
            "client_secret": "relay-secret",
        }
    ]


@pytest.mark.anyio
async def test_refresh_exchange_posts_refresh_grant(exchange_client, idp) -> None:
    grant = await exchange_client.refresh("stored-token")

    assert grant.access_token == "access-for-stored-token"
    assert grant.refresh_token == "stored-token-rotated"
    assert idp.requests[0]["grant_type"] == "refresh_token"
    assert idp.requests[0]["refresh_token"] == "stored-token"
    assert idp.requests[0]["client_secret"] == "relay-secret"


@pytest.mark.anyio
async def test_refresh_without_rotation_returns_no_refresh_token(exchange_client, idp) -> None:
    idp.rotate = False

    grant = await exchange_client.refresh("stored-token")

    assert grant.refresh_token is None


@pytest.mark.anyio
async def test_provider_error_carries_error_and_description(exchange_client) -> None:
    with pytest.raises(OAuthTokenExchangeError) as excinfo:
        await exchange_client.exchange_authorization_code("expired-code")

    assert excinfo.value.error == "invalid_grant"
    assert excinfo.value.description == "Authorization code expired"
    assert excinfo.value.status_code == 400
    assert excinfo.value.provider_message == "Authorization code expired"


@pytest.mark.anyio
async def test_non_json_error_body_yields_generic_message(oauth_settings) -> None:
    client = _client(oauth_settings, lambda request: httpx.Response(502, text="<html>Bad gateway</html>"))

    with pytest.raises(OAuthTokenExchangeError) as excinfo:
        await client.refresh("token")

    assert excinfo.value.error is None
    assert excinfo.value.provider_message == OAuthTokenExchangeError.GENERIC_MESSAGE


@pytest.mark.anyio
async def test_success_without_access_token_is_a_failure(oauth_settings) -> None:
    client = _client(oauth_settings, lambda request: httpx.Response(200, json={"expires_in": 10}))

    with pytest.raises(OAuthTokenExchangeError):
        await client.refresh("token")


@pytest.mark.anyio
async def test_code_exchange_without_id_token_is_a_failure(oauth_settings) -> None:
    client = _client(
        oauth_settings,
        lambda request: httpx.Response(200, json={"access_token": "A", "expires_in": 10}),
    )

    with pytest.raises(OAuthTokenExchangeError):
        await client.exchange_authorization_code("code")


@pytest.mark.anyio
async def test_timeout_is_reported_as_exchange_failure(oauth_settings) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    with pytest.raises(OAuthTokenExchangeError, match="timed out"):
        await _client(oauth_settings, handler).refresh("token")


@pytest.mark.anyio
async def test_connection_error_is_reported_as_exchange_failure(oauth_settings) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(OAuthTokenExchangeError, match="unreachable"):
        await _client(oauth_settings, handler).refresh("token")
