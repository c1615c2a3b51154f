"""FastAPI application factory."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from marketfeed.api.deps import AppState, MarketData, get_request_id
from marketfeed.api.routes import router
from marketfeed.api.schemas import ERROR_CACHE
from marketfeed.core.config import MarketFeedConfig, load_config
from marketfeed.core.exceptions import (
    ConfigError,
    MarketFeedError,
    NotFound,
    UpstreamError,
    ValidationError,
)
from marketfeed.service import MarketDataService

logger = logging.getLogger(__name__)

_STATUS_MAP: dict[type[MarketFeedError], int] = {
    ValidationError: 400,
    NotFound: 404,
    ConfigError: 500,
    UpstreamError: 502,
}


def status_for(exc: MarketFeedError) -> int:
    """HTTP status for a domain exception (most specific class wins)."""
    for cls in type(exc).__mro__:
        if cls in _STATUS_MAP:
            return _STATUS_MAP[cls]
    return 500


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup/shutdown lifecycle."""
    config = app.state._pending_config or load_config()
    service = app.state._pending_service
    owned: MarketDataService | None = None
    if service is None:
        owned = service = MarketDataService(config)

    app.state.app_state = AppState(config=config, service=service)

    yield

    if owned is not None:
        await owned.close()


def _internal_error(request: Request, exc: Exception) -> JSONResponse:
    return JSONResponse(
        status_code=500,
        content={
            "error": "Internal server error",
            "details": str(exc) or type(exc).__name__,
            "requestId": get_request_id(request),
        },
    )


def create_app(
    config: MarketFeedConfig | None = None,
    service: MarketData | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    ``service`` replaces the MarketDataService built at startup (tests).
    """
    import marketfeed

    app = FastAPI(
        title="marketfeed API",
        description="Multi-provider quote and history aggregation",
        version=marketfeed.__version__,
        lifespan=lifespan,
    )

    # Stash config and service so lifespan can retrieve them
    app.state._pending_config = config
    app.state._pending_service = service

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.api.cors_origins if config else ["*"],
        allow_methods=["GET", "POST", "OPTIONS", "HEAD"],
        allow_headers=["Content-Type"],
    )

    app.include_router(router, prefix="/api")

    # Exception handlers
    @app.exception_handler(MarketFeedError)
    async def marketfeed_exception_handler(request: Request, exc: MarketFeedError):
        status = status_for(exc)
        if status >= 500 and not isinstance(exc, UpstreamError):
            logger.error("Internal error on %s: %s", request.url.path, exc)
            return _internal_error(request, exc)
        if status >= 500:
            logger.error("Upstream failure on %s: %s", request.url.path, exc)
        return JSONResponse(
            status_code=status,
            content={"error": str(exc)},
            headers={"Cache-Control": ERROR_CACHE} if status >= 500 else None,
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        if exc.status_code == 405:
            return JSONResponse(status_code=405, content={"error": "Method not allowed"})
        return JSONResponse(status_code=exc.status_code, content={"error": str(exc.detail)})

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=400,
            content={"error": "Invalid request", "details": str(exc.errors()[:3])},
        )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s", request.url.path)
        return _internal_error(request, exc)

    return app
