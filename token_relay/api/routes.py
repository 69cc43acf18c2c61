"""
FastAPI routes for the token relay.

``router`` carries the browser-facing login/callback pair; ``api_router`` the
JSON refresh and admin endpoints mounted under ``/api``.
"""

from __future__ import annotations

import asyncio
import hmac
import logging
from http import HTTPStatus
from typing import Annotated, Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import HTMLResponse, RedirectResponse

from token_relay.api.views import render_callback_error, render_callback_success
from token_relay.core.config import AppSettings
from token_relay.core.errors import (
    InputValidationError,
    OAuthTokenExchangeError,
    OAuthTokenNotFoundError,
    TokenRepositoryError,
)
from token_relay.dependencies import (
    get_app_settings,
    get_authorization_service,
    get_session_cookie_signer,
    get_token_refresh_service,
    get_token_repository,
)
from token_relay.schemas import (
    DeleteTokenResponse,
    HealthResponse,
    RefreshRequest,
    RefreshResponse,
    TokenRecordResponse,
)

router = APIRouter()
api_router = APIRouter()
logger = logging.getLogger(__name__)


def _store_unavailable(exc: TokenRepositoryError) -> HTTPException:
    logger.error("Token store error: %s", exc)
    return HTTPException(
        status_code=HTTPStatus.SERVICE_UNAVAILABLE,
        detail="Token store unavailable",
    )


def require_refresh_credential(
    request: Request,
    settings: Annotated[AppSettings, Depends(get_app_settings)],
) -> None:
    """Enforce the optional bearer key guarding ``POST /api/refresh``."""
    expected = settings.refresh_api_key
    if not expected:
        return
    scheme, _, presented = request.headers.get("authorization", "").partition(" ")
    if scheme.lower() != "bearer" or not hmac.compare_digest(
        presented.strip().encode("utf-8"), expected.encode("utf-8")
    ):
        raise HTTPException(
            status_code=HTTPStatus.UNAUTHORIZED,
            detail="Missing or invalid refresh credential",
            headers={"WWW-Authenticate": "Bearer"},
        )


@router.get("/login", status_code=HTTPStatus.TEMPORARY_REDIRECT)
async def start_login(
    service: Annotated[Any, Depends(get_authorization_service)],
    signer: Annotated[Any, Depends(get_session_cookie_signer)],
    settings: Annotated[AppSettings, Depends(get_app_settings)],
) -> RedirectResponse:
    """Open an authorization session and send the browser to the provider."""
    try:
        session, authorization_url = await service.begin_login()
    except TokenRepositoryError as exc:
        raise _store_unavailable(exc) from exc

    response = RedirectResponse(
        url=authorization_url, status_code=HTTPStatus.TEMPORARY_REDIRECT
    )
    response.set_cookie(
        key=settings.session.cookie_name,
        value=signer.sign(session.session_id),
        max_age=settings.session.ttl_seconds,
        httponly=True,
        secure=settings.session.cookie_secure,
        samesite="lax",
    )
    return response


@router.get("/callback", response_class=HTMLResponse)
async def oauth_callback(
    request: Request,
    service: Annotated[Any, Depends(get_authorization_service)],
    signer: Annotated[Any, Depends(get_session_cookie_signer)],
    settings: Annotated[AppSettings, Depends(get_app_settings)],
    code: Optional[str] = Query(default=None, description="Authorization code from the provider."),
    state: Optional[str] = Query(default=None, description="State echoed back by the provider."),
    error: Optional[str] = Query(default=None),
    error_description: Optional[str] = Query(default=None),
) -> HTMLResponse:
    """Complete the authorization attempt and render its outcome."""
    session_id = signer.unsign(request.cookies.get(settings.session.cookie_name))
    outcome = await service.complete_callback(
        session_id=session_id,
        code=code,
        state=state,
        provider_error=error,
        provider_error_description=error_description,
    )

    if outcome.ok:
        content = render_callback_success(outcome.view_data())
    else:
        content = render_callback_error(outcome.error or "Error during authentication")

    response = HTMLResponse(content=content, status_code=HTTPStatus.OK)
    response.delete_cookie(
        key=settings.session.cookie_name,
        httponly=True,
        secure=settings.session.cookie_secure,
        samesite="lax",
    )
    return response


@api_router.get("/health", response_model=HealthResponse)
async def healthcheck(
    repository: Annotated[Any, Depends(get_token_repository)],
) -> HealthResponse:
    """Simple health endpoint for monitoring."""
    return HealthResponse(repository=repository.connection_state.value)


@api_router.post(
    "/refresh",
    response_model=RefreshResponse,
    dependencies=[Depends(require_refresh_credential)],
)
async def refresh_access_token(
    service: Annotated[Any, Depends(get_token_refresh_service)],
    payload: Optional[RefreshRequest] = None,
) -> RefreshResponse:
    """Exchange the stored refresh token of ``sub`` for a new access token."""
    sub = payload.sub if payload else None
    try:
        result = await service.refresh_for_subject(sub)
    except InputValidationError as exc:
        raise HTTPException(status_code=HTTPStatus.BAD_REQUEST, detail=str(exc)) from exc
    except OAuthTokenNotFoundError as exc:
        raise HTTPException(status_code=HTTPStatus.NOT_FOUND, detail=str(exc)) from exc
    except OAuthTokenExchangeError as exc:
        logger.error(
            "Error during token refresh",
            extra={"sub": sub, "error": exc.error, "status_code": exc.status_code},
        )
        raise HTTPException(
            status_code=HTTPStatus.INTERNAL_SERVER_ERROR,
            detail="Token refresh failed",
        ) from exc
    except TokenRepositoryError as exc:
        raise _store_unavailable(exc) from exc

    return RefreshResponse(**result)


@api_router.get("/admin/tokens", response_model=list[TokenRecordResponse])
async def list_tokens(
    repository: Annotated[Any, Depends(get_token_repository)],
) -> list[TokenRecordResponse]:
    """Return every stored refresh token, most recently updated first."""
    try:
        records = await asyncio.to_thread(repository.list_all)
    except TokenRepositoryError as exc:
        raise _store_unavailable(exc) from exc
    return [TokenRecordResponse(**record.model_dump()) for record in records]


@api_router.delete("/admin/tokens/{sub}", response_model=DeleteTokenResponse)
async def delete_token(
    sub: str,
    repository: Annotated[Any, Depends(get_token_repository)],
) -> DeleteTokenResponse:
    """Remove a subject's stored refresh token; absent subjects succeed too."""
    try:
        removed = await asyncio.to_thread(repository.delete_refresh_token, sub)
    except TokenRepositoryError as exc:
        raise _store_unavailable(exc) from exc
    logger.info("Deleted refresh token", extra={"sub": sub, "removed": removed})
    return DeleteTokenResponse(success=True)


__all__ = ["api_router", "require_refresh_credential", "router"]
