"""Pytest configuration shared across the suite."""

try:
    from . import _bootstrap  # noqa: F401
except Exception:  # pragma: no cover
    import _bootstrap  # type: ignore # noqa: F401

import base64
import json
from datetime import datetime, timedelta, timezone
from urllib.parse import parse_qsl

import httpx
import pytest

from token_relay.clients.token_exchange import TokenExchangeClient
from token_relay.clients.token_repository import TokenRepository
from token_relay.core.config import OAuthSettings


@pytest.fixture
def anyio_backend() -> str:
    """Force AnyIO-powered tests to run against asyncio backend only."""
    return "asyncio"


class FrozenClock:
    """Manually advanced UTC clock."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta: float) -> None:
        self.now += timedelta(**delta)


def make_id_token(claims: dict) -> str:
    def segment(value: dict) -> str:
        raw = json.dumps(value).encode("utf-8")
        return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")

    return f"{segment({'alg': 'RS256', 'typ': 'JWT'})}.{segment(claims)}.signature"


class FakeIdentityProvider:
    """Token endpoint double served through ``httpx.MockTransport``."""

    def __init__(self) -> None:
        self.requests: list[dict[str, str]] = []
        self.sub = "user-42"
        self.issue_refresh_token = True
        self.rotate = True
        self.failing_refresh_tokens: set[str] = set()

    def handler(self, request: httpx.Request) -> httpx.Response:
        form = dict(parse_qsl(request.content.decode("utf-8")))
        self.requests.append(form)

        if form.get("grant_type") == "authorization_code":
            if form.get("code") == "expired-code":
                return httpx.Response(
                    400,
                    json={"error": "invalid_grant", "error_description": "Authorization code expired"},
                )
            body = {
                "access_token": "A",
                "id_token": make_id_token({"sub": self.sub, "email": "user@example.com"}),
                "expires_in": 3600,
                "token_type": "Bearer",
            }
            if self.issue_refresh_token:
                body["refresh_token"] = "R"
            return httpx.Response(200, json=body)

        refresh_token = form.get("refresh_token", "")
        if refresh_token in self.failing_refresh_tokens:
            return httpx.Response(400, json={"error": "invalid_grant"})
        body = {"access_token": f"access-for-{refresh_token}", "expires_in": 1800}
        if self.rotate:
            body["refresh_token"] = f"{refresh_token}-rotated"
        return httpx.Response(200, json=body)

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def oauth_settings() -> OAuthSettings:
    return OAuthSettings(
        AUTHORIZATION_URL="https://idp.example.com/oauth2/authorize",
        TOKEN_URL="https://idp.example.com/oauth2/token",
        CLIENT_ID="relay-client",
        CLIENT_SECRET="relay-secret",
        REDIRECT_URI="https://relay.example.com/callback",
        SCOPE="openid offline_access",
    )


@pytest.fixture
def idp() -> FakeIdentityProvider:
    return FakeIdentityProvider()


@pytest.fixture
def exchange_client(oauth_settings: OAuthSettings, idp: FakeIdentityProvider) -> TokenExchangeClient:
    return TokenExchangeClient(oauth_settings, transport=idp.transport())


@pytest.fixture
def repository(tmp_path, clock: FrozenClock):
    repo = TokenRepository(str(tmp_path / "tokens.db"), clock=clock)
    yield repo
    repo.close()
