"""Schemas for the refresh and admin token endpoints."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class RefreshRequest(BaseModel):
    """Body of ``POST /api/refresh``."""

    sub: Optional[str] = Field(None, description="Subject whose stored refresh token is exchanged.")


class RefreshResponse(BaseModel):
    access_token: str
    expires_in: Optional[int] = None


class TokenRecordResponse(BaseModel):
    """Administrative view of one stored refresh token."""

    sub: str
    refresh_token: str
    created_at: datetime
    updated_at: datetime


class DeleteTokenResponse(BaseModel):
    success: bool = True


class HealthResponse(BaseModel):
    status: str = "ok"
    repository: str


__all__ = [
    "DeleteTokenResponse",
    "HealthResponse",
    "RefreshRequest",
    "RefreshResponse",
    "TokenRecordResponse",
]
