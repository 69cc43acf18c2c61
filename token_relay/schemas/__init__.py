"""Public schema exports."""

from .auth import (
    DeleteTokenResponse,
    HealthResponse,
    RefreshRequest,
    RefreshResponse,
    TokenRecordResponse,
)

__all__ = [
    "DeleteTokenResponse",
    "HealthResponse",
    "RefreshRequest",
    "RefreshResponse",
    "TokenRecordResponse",
]
