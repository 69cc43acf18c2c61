"""
Factory functions to provide shared clients and services as FastAPI dependencies.

Stores and the exchange client are process-wide singletons; the services that
combine them are assembled per request from overridable dependencies.
"""

from functools import lru_cache

from fastapi import Depends

from token_relay.clients import (
    SQLiteSessionStore,
    SessionStore,
    TokenExchangeClient,
    TokenRepository,
)
from token_relay.core.config import get_settings
from token_relay.dependencies.config import _settings_singleton
from token_relay.services import (
    AuthorizationFlowService,
    OAuthStateValidator,
    RefreshScheduler,
    SessionCookieSigner,
    SessionReaper,
    TokenRefreshService,
)


@lru_cache()
def _settings():
    """Internal helper to cache settings for client factories."""
    return get_settings()


@lru_cache()
def get_token_repository() -> TokenRepository:
    """Provide the shared refresh token repository."""
    settings = _settings()
    return TokenRepository(
        settings.database_path,
        reconnect_backoff_seconds=settings.database_reconnect_backoff_seconds,
    )


@lru_cache()
def get_session_store() -> SessionStore:
    """Provide the shared server-side session store."""
    settings = _settings()
    return SQLiteSessionStore(
        settings.database_path,
        ttl_seconds=settings.session.ttl_seconds,
        reconnect_backoff_seconds=settings.database_reconnect_backoff_seconds,
    )


@lru_cache()
def get_exchange_client() -> TokenExchangeClient:
    """Create a singleton token endpoint client."""
    return TokenExchangeClient(_settings().oauth)


@lru_cache()
def get_session_cookie_signer() -> SessionCookieSigner:
    """Provide the signer for the session cookie derived from the session secret."""
    return SessionCookieSigner(_settings().session.secret)


def get_state_validator(
    session_store: SessionStore = Depends(get_session_store),
) -> OAuthStateValidator:
    return OAuthStateValidator(session_store)


def get_authorization_service(
    session_store: SessionStore = Depends(get_session_store),
    state_validator: OAuthStateValidator = Depends(get_state_validator),
    exchange_client: TokenExchangeClient = Depends(get_exchange_client),
    repository: TokenRepository = Depends(get_token_repository),
) -> AuthorizationFlowService:
    """Build the login/callback orchestrator."""
    return AuthorizationFlowService(
        session_store=session_store,
        state_validator=state_validator,
        exchange_client=exchange_client,
        repository=repository,
    )


def get_token_refresh_service(
    repository: TokenRepository = Depends(get_token_repository),
    exchange_client: TokenExchangeClient = Depends(get_exchange_client),
) -> TokenRefreshService:
    """Build the on-demand refresh service."""
    return TokenRefreshService(repository, exchange_client)


def build_refresh_scheduler() -> RefreshScheduler:
    """Build the stale token renewal job from the shared clients."""
    settings = _settings()
    return RefreshScheduler(
        get_token_repository(),
        get_exchange_client(),
        stale_after_days=settings.scheduler.stale_after_days,
        concurrency=settings.scheduler.refresh_concurrency,
    )


def build_session_reaper() -> SessionReaper:
    """Build the expired session cleanup job."""
    return SessionReaper(get_session_store())


def reset_dependency_cache() -> None:
    """Drop cached singletons so the next lookup reflects current settings."""
    for factory in (
        get_settings,
        _settings_singleton,
        _settings,
        get_token_repository,
        get_session_store,
        get_exchange_client,
        get_session_cookie_signer,
    ):
        factory.cache_clear()


__all__ = [
    "build_refresh_scheduler",
    "build_session_reaper",
    "get_authorization_service",
    "get_exchange_client",
    "get_session_cookie_signer",
    "get_session_store",
    "get_state_validator",
    "get_token_refresh_service",
    "get_token_repository",
    "reset_dependency_cache",
]
