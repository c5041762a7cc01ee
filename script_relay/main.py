"""Script Relay server.

Holds a single Google OAuth credential for one operator and relays
privileged Apps Script calls (create, push, run) through it.
Entry point: GET /authorize, then POST /callback with the code.
"""

import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from script_relay import api
from script_relay.config import get_settings
from script_relay.exceptions import RelayError
from script_relay.logging import configure_logging
from script_relay.relay import Relay


async def relay_error_handler(request: Request, exc: RelayError) -> JSONResponse:
    """Render relay errors as structured bodies with their status code."""
    log = logger.warning if exc.status_code < 500 else logger.error
    log(
        "Request failed",
        extra={"path": request.url.path, "error": exc.kind, "detail": exc.message},
    )
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Global handler for unhandled exceptions."""
    logger.exception(
        "Unhandled exception",
        extra={"path": request.url.path, "error": str(exc)},
    )
    return JSONResponse(
        status_code=500,
        content={"error": "InternalError", "detail": "Internal server error"},
    )


def rate_limit_exceeded_handler(request: Request, _exc: Exception) -> JSONResponse:
    """Handle rate limit exceeded errors."""
    logger.warning(
        "Rate limit exceeded",
        extra={"path": request.url.path, "client": get_remote_address(request)},
    )
    return JSONResponse(
        status_code=429,
        content={"error": "RateLimitExceeded", "detail": "Rate limit exceeded. Please try again later."},
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    settings = get_settings()

    logger.info(f"Starting script relay on port {settings.port}")

    # include_granted_scopes may return more scopes than requested
    os.environ.setdefault("OAUTHLIB_RELAX_TOKEN_SCOPE", "1")

    # A relay may be preset by create_app (tests inject fakes this way)
    relay: Relay | None = getattr(app.state, "relay", None)
    if relay is None:
        relay = Relay.from_settings(settings)
        app.state.relay = relay
    relay.start()

    if relay.tokens.is_authenticated:
        logger.info("Ready for Apps Script automation")
    else:
        logger.info(
            "Authorization needed: GET /authorize, visit the returned URL, "
            "then POST the code to /callback"
        )

    yield

    logger.info("Shutting down script relay")
    relay.close()


def create_app(relay: Relay | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    configure_logging(
        is_production=settings.is_production,
        log_level=settings.log_level,
    )

    app = FastAPI(
        title="Script Relay",
        description="Credentialed relay for Google Apps Script automation",
        version="1.0.0",
        lifespan=lifespan,
        docs_url="/docs" if not settings.is_production else None,
        redoc_url="/redoc" if not settings.is_production else None,
        openapi_url="/openapi.json" if not settings.is_production else None,
    )
    if relay is not None:
        app.state.relay = relay

    # Exception handlers
    app.add_exception_handler(RelayError, relay_error_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
    app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)

    # Rate limiting - use the limiter from api module
    app.state.limiter = api.limiter

    app.add_middleware(
        CORSMiddleware,  # type: ignore[arg-type]
        allow_origins=settings.get_cors_origins(),
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(api.router)

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "script_relay.main:app",
        host="0.0.0.0",
        port=settings.port,
        reload=not settings.is_production,
    )
