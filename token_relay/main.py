"""
FastAPI application entrypoint for the token relay.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from http import HTTPStatus
from typing import AsyncIterator

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from token_relay import __version__
from token_relay.api.routes import api_router, router
from token_relay.core.config import AppSettings, get_settings
from token_relay.core.errors import TokenRepositoryError
from token_relay.core.logging import configure_logging
from token_relay.dependencies import (
    build_refresh_scheduler,
    build_session_reaper,
    get_session_store,
    get_token_repository,
)
from token_relay.services import PeriodicTask

logger = logging.getLogger(__name__)


def build_background_tasks(settings: AppSettings) -> list[PeriodicTask]:
    """Create the refresh and session cleanup jobs owned by the app lifespan."""
    return [
        PeriodicTask(
            "token-refresh",
            build_refresh_scheduler().run_once,
            interval_seconds=settings.scheduler.refresh_interval_seconds,
        ),
        PeriodicTask(
            "session-cleanup",
            build_session_reaper().run_once,
            interval_seconds=settings.scheduler.session_reap_interval_seconds,
        ),
    ]


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Connect storage, start the background jobs, and tear both down on shutdown."""
    settings = get_settings()
    repository = get_token_repository()
    try:
        repository.connect()
    except TokenRepositoryError:
        logger.exception("Token store unavailable at startup; will reconnect on first use")

    if not settings.refresh_api_key:
        logger.warning(
            "REFRESH_API_KEY is not set: POST /api/refresh will mint access tokens "
            "for any caller that knows a subject identifier"
        )

    tasks: list[PeriodicTask] = []
    if settings.scheduler.enabled:
        tasks = build_background_tasks(settings)
        for task in tasks:
            await task.start()
    app.state.background_tasks = tasks

    try:
        yield
    finally:
        for task in tasks:
            await task.stop()
        repository.close()
        get_session_store().close()


async def _http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Render HTTP errors as ``{"error": ...}`` bodies."""
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.detail},
        headers=getattr(exc, "headers", None),
    )


async def _request_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Report malformed client input as a 400 in the same ``{"error": ...}`` shape."""
    problems = [
        f"{'.'.join(str(part) for part in error.get('loc', ()))}: {error.get('msg', 'invalid')}"
        for error in exc.errors()
    ]
    logger.info("Rejected malformed request to %s: %s", request.url.path, problems)
    return JSONResponse(
        status_code=HTTPStatus.BAD_REQUEST,
        content={"error": "Invalid request: " + "; ".join(problems)},
    )


async def _unhandled_exception(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path, exc_info=exc)
    return JSONResponse(
        status_code=HTTPStatus.INTERNAL_SERVER_ERROR,
        content={"error": "Internal server error"},
    )


def create_app() -> FastAPI:
    """Factory for the FastAPI application."""
    settings = get_settings()
    configure_logging(settings.log_level)

    app = FastAPI(
        title="OAuth Token Relay",
        version=__version__,
        description="Authorization-code relay with persisted, self-renewing refresh tokens.",
        lifespan=lifespan,
    )
    app.add_exception_handler(StarletteHTTPException, _http_error)
    app.add_exception_handler(RequestValidationError, _request_validation_error)
    app.add_exception_handler(Exception, _unhandled_exception)
    app.include_router(router)
    app.include_router(api_router, prefix="/api")
    return app


app = create_app()

__all__ = ["app", "build_background_tasks", "create_app", "lifespan"]
