"""Exception taxonomy shared by the clients, services and routes."""

from __future__ import annotations

from typing import Optional


class TokenRelayError(Exception):
    """Base class for errors raised by the token relay."""


class InputValidationError(TokenRelayError):
    """Raised when client input is malformed or missing."""


class IdentityTokenError(InputValidationError):
    """Raised when the identity token payload cannot be decoded into claims."""


class OAuthStateError(TokenRelayError):
    """Raised when the callback state does not match the session's issued state."""

    def __init__(self, message: str = "Invalid state parameter") -> None:
        super().__init__(message)


class OAuthTokenExchangeError(TokenRelayError):
    """Raised when the token endpoint rejects a request or cannot be reached."""

    GENERIC_MESSAGE = "Error during token exchange"

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        error: Optional[str] = None,
        description: Optional[str] = None,
        status_code: Optional[int] = None,
    ) -> None:
        self.error = error
        self.description = description
        self.status_code = status_code
        super().__init__(message or description or error or self.GENERIC_MESSAGE)

    @property
    def provider_message(self) -> str:
        """Human readable message preferring the provider's own description."""
        return self.description or self.error or str(self)


class OAuthTokenNotFoundError(TokenRelayError):
    """Raised when no persisted refresh token is available for a subject."""


class TokenRepositoryError(TokenRelayError):
    """Raised when the token store cannot complete an operation."""


class RepositoryUnavailableError(TokenRepositoryError):
    """Raised while the token store is waiting out its reconnect backoff."""


__all__ = [
    "IdentityTokenError",
    "InputValidationError",
    "OAuthStateError",
    "OAuthTokenExchangeError",
    "OAuthTokenNotFoundError",
    "RepositoryUnavailableError",
    "TokenRelayError",
    "TokenRepositoryError",
]
