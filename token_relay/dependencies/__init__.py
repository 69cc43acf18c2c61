"""Expose dependency helpers for FastAPI routers."""

from .clients import (
    build_refresh_scheduler,
    build_session_reaper,
    get_authorization_service,
    get_exchange_client,
    get_session_cookie_signer,
    get_session_store,
    get_state_validator,
    get_token_refresh_service,
    get_token_repository,
    reset_dependency_cache,
)
from .config import SettingsDependency, get_app_settings

__all__ = [
    "SettingsDependency",
    "build_refresh_scheduler",
    "build_session_reaper",
    "get_app_settings",
    "get_authorization_service",
    "get_exchange_client",
    "get_session_cookie_signer",
    "get_session_store",
    "get_state_validator",
    "get_token_refresh_service",
    "get_token_repository",
    "reset_dependency_cache",
]
