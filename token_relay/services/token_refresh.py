"""
Helpers for obtaining fresh access tokens from stored refresh tokens.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional, TypedDict

from token_relay.clients.token_exchange import TokenExchangeClient
from token_relay.clients.token_repository import TokenRepository
from token_relay.core.errors import (
    InputValidationError,
    OAuthTokenNotFoundError,
    TokenRepositoryError,
)

logger = logging.getLogger(__name__)


class RefreshedAccess(TypedDict):
    access_token: str
    expires_in: Optional[int]


class TokenRefreshService:
    """Exchange a subject's stored refresh token and persist any rotated token."""

    def __init__(
        self,
        repository: TokenRepository,
        exchange_client: TokenExchangeClient,
    ) -> None:
        self._repository = repository
        self._exchange = exchange_client

    async def refresh_for_subject(self, sub: Optional[str]) -> RefreshedAccess:
        if not sub:
            raise InputValidationError("No sub provided")

        refresh_token = await asyncio.to_thread(self._repository.get_refresh_token, sub)
        if not refresh_token:
            raise OAuthTokenNotFoundError("No refresh token found for this user")

        grant = await self._exchange.refresh(refresh_token)

        if grant.refresh_token:
            # A failed write never withholds the access token already minted.
            try:
                replaced = await asyncio.to_thread(
                    self._repository.replace_refresh_token,
                    sub,
                    refresh_token,
                    grant.refresh_token,
                )
            except TokenRepositoryError:
                logger.exception("Failed to store refreshed token", extra={"sub": sub})
            else:
                if replaced:
                    logger.info("Stored refresh token returned by provider", extra={"sub": sub})
                else:
                    logger.info(
                        "Stored token changed during refresh; keeping the newer token",
                        extra={"sub": sub},
                    )

        return {"access_token": grant.access_token, "expires_in": grant.expires_in}


__all__ = ["RefreshedAccess", "TokenRefreshService"]
