"""MessageMind API application.

Run with ``uvicorn messagemind.main:app``. Shutdown waits for queued
analyses to finish (or be failed and refunded) before the process exits.
"""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from messagemind.api.deps import drain_dispatcher
from messagemind.api.v1.router import router as v1_router
from messagemind.core.config import settings
from messagemind.core.errors import APIError
from messagemind.core.rate_limiting import limiter, rate_limit_exceeded_handler
from messagemind.core.responses import error_response

logger = structlog.get_logger()

# The API serves JSON only, so nothing may frame or load resources from it
_SECURITY_HEADERS = {
    "X-Frame-Options": "DENY",
    "X-Content-Type-Options": "nosniff",
    "Referrer-Policy": "strict-origin-when-cross-origin",
    "Content-Security-Policy": "default-src 'none'; frame-ancestors 'none'",
}
_HSTS = "max-age=31536000; includeSubDomains"


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Hardening headers on every response.

    API responses (balances, analysis results) are also marked
    ``no-store``. HSTS is sent in production only, where TLS terminates
    at the reverse proxy.
    """

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        response = await call_next(request)
        response.headers.update(_SECURITY_HEADERS)
        if request.url.path.startswith("/api/"):
            response.headers["Cache-Control"] = "no-store, max-age=0"
        if settings.environment == "production":
            response.headers["Strict-Transport-Security"] = _HSTS
        return response


def api_error_handler(_request: Request, exc: APIError) -> JSONResponse:
    """Render an APIError with its own status code, code and details.

    Client errors are expected traffic (balance too low, quota used up,
    tier restrictions) and are logged at info with the code only.
    """
    if exc.status_code < 500:
        logger.info("api_error", code=exc.code, status=exc.status_code)
    else:
        logger.warning("api_error", code=exc.code, status=exc.status_code)
    return error_response(exc.status_code, exc.code, exc.message, details=exc.details)


def validation_error_handler(
    _request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Render request-body and query validation failures as 400.

    Only location, message and type are returned; submitted message text
    is never echoed back.
    """
    return error_response(
        400,
        "VALIDATION_ERROR",
        "Request validation failed",
        details=[
            {"loc": list(e["loc"]), "msg": e["msg"], "type": e["type"]}
            for e in exc.errors()
        ],
    )


def internal_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all: log the exception and return a generic 500."""
    logger.exception("unhandled_exception", exc_info=exc, path=str(request.url.path))
    return error_response(500, "INTERNAL_ERROR", "An unexpected error occurred")


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    """Configure logging on startup; finish in-flight analyses on shutdown."""
    logging.basicConfig(level=settings.log_level.upper())
    yield
    logger.info("shutdown_draining_analyses")
    await drain_dispatcher()


def create_app() -> FastAPI:
    """Build the application: middleware, error handlers and the v1 routes."""
    app = FastAPI(
        title="MessageMind API",
        version="1.0.0",
        description="AI dating and texting coach",
        lifespan=lifespan,
    )

    # Starlette runs middleware last-added first; CORS must see preflights first
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Accept", "Authorization", "Idempotency-Key"],
        expose_headers=["Idempotency-Replayed", "Retry-After"],
    )

    app.add_exception_handler(APIError, api_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)
    app.add_exception_handler(Exception, internal_error_handler)

    app.state.limiter = limiter
    app.include_router(v1_router, prefix="/api/v1")

    @app.get("/health")
    def health_check() -> dict:
        return {"status": "healthy"}

    return app


app = create_app()
