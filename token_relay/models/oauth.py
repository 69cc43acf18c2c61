"""
Domain models for refresh token persistence and authorization sessions.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class RefreshTokenRecord(BaseModel):
    """Represents the single current refresh token stored for a subject."""

    sub: str = Field(..., description="Stable subject identifier from the identity token.")
    refresh_token: str
    created_at: datetime
    updated_at: datetime


class AuthorizationSession(BaseModel):
    """Server-side state for one in-flight browser login."""

    session_id: str
    oauth_state: Optional[str] = None
    expires_at: datetime

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at <= now


class TokenGrant(BaseModel):
    """Normalized token endpoint response."""

    access_token: str
    expires_in: Optional[int] = None
    refresh_token: Optional[str] = None
    id_token: Optional[str] = None
    token_type: Optional[str] = None
    scope: Optional[str] = None


__all__ = ["AuthorizationSession", "RefreshTokenRecord", "TokenGrant"]
