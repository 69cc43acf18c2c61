"""
Identity provider token endpoint client.

Builds authorization URLs and performs the authorization-code and refresh-token
grants, normalizing provider responses and errors.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

import httpx
from pydantic import ValidationError

from token_relay.core.config import OAuthSettings
from token_relay.core.errors import OAuthTokenExchangeError
from token_relay.models.oauth import TokenGrant

logger = logging.getLogger(__name__)


class TokenExchangeClient:
    """Talk to the IdP's authorization and token endpoints."""

    def __init__(
        self,
        oauth_settings: OAuthSettings,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._oauth = oauth_settings
        self._transport = transport

    def build_authorization_url(self, state: str) -> str:
        """Construct the IdP consent URL, keeping any query already configured on it."""
        parts = urlsplit(str(self._oauth.authorization_url))
        params = parse_qsl(parts.query, keep_blank_values=True)
        params.extend(
            [
                ("response_type", "code"),
                ("client_id", self._oauth.client_id),
                ("redirect_uri", str(self._oauth.redirect_uri)),
                ("scope", self._oauth.scope),
                ("state", state),
            ]
        )
        return urlunsplit(parts._replace(query=urlencode(params)))

    async def exchange_authorization_code(self, code: str) -> TokenGrant:
        """Exchange an authorization code for access, identity and refresh tokens."""
        grant = await self._post(
            {
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": str(self._oauth.redirect_uri),
            }
        )
        if not grant.id_token:
            raise OAuthTokenExchangeError("Token response did not include an id_token.")
        return grant

    async def refresh(self, refresh_token: str) -> TokenGrant:
        """Obtain a new access token, and possibly a rotated refresh token."""
        return await self._post(
            {
                "grant_type": "refresh_token",
                "refresh_token": refresh_token,
            }
        )

    async def _post(self, form: Dict[str, str]) -> TokenGrant:
        payload = {
            **form,
            "client_id": self._oauth.client_id,
            "client_secret": self._oauth.client_secret,
        }
        try:
            async with httpx.AsyncClient(
                timeout=self._oauth.exchange_timeout_seconds,
                transport=self._transport,
            ) as client:
                response = await client.post(str(self._oauth.token_url), data=payload)
        except httpx.TimeoutException as exc:
            raise OAuthTokenExchangeError("Token endpoint timed out.") from exc
        except httpx.HTTPError as exc:
            raise OAuthTokenExchangeError(f"Token endpoint unreachable: {exc}") from exc

        body = _json_or_none(response)

        if response.is_error:
            error = description = None
            if isinstance(body, dict):
                error = _as_text(body.get("error"))
                description = _as_text(body.get("error_description"))
            logger.warning(
                "Token endpoint returned an error",
                extra={
                    "grant_type": form["grant_type"],
                    "status_code": response.status_code,
                    "error": error,
                },
            )
            raise OAuthTokenExchangeError(
                error=error,
                description=description,
                status_code=response.status_code,
            )

        if not isinstance(body, dict):
            raise OAuthTokenExchangeError("Malformed token response from provider.")

        try:
            return TokenGrant.model_validate(body)
        except ValidationError as exc:
            raise OAuthTokenExchangeError("Incomplete token payload returned from provider.") from exc


def _json_or_none(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return None


def _as_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    return str(value)


__all__ = ["TokenExchangeClient"]
