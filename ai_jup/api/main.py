"""FastAPI application configuration and setup.

Main entry point for the HTTP API with CORS, rate limiting, error
handling and lifecycle management.
"""

import asyncio
import logging
import uuid
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from contextvars import ContextVar
from typing import Any

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from ai_jup import __version__
from ai_jup.api.deps import AdapterFactory, build_services
from ai_jup.api.rate_limit import MAX_REQUEST_BODY_BYTES, limiter
from ai_jup.api.routes import api_router, public_router
from ai_jup.api.utils import sanitize_error
from ai_jup.exceptions import (
    AiJupError,
    ExecutionBackendUnavailable,
    InvalidRequest,
    Unauthorized,
)
from ai_jup.execution.backend import ExecutionBackend
from ai_jup.logging_config import configure_logging
from ai_jup.settings import Settings, get_settings

logger = logging.getLogger(__name__)

API_PREFIX = "/api/v1"

# Context variable for correlation ID (async-safe)
_correlation_id: ContextVar[str | None] = ContextVar("correlation_id", default=None)

_app: FastAPI | None = None

_STATUS_BY_ERROR: dict[type[AiJupError], int] = {
    InvalidRequest: 400,
    Unauthorized: 403,
    ExecutionBackendUnavailable: 503,
}

_SHUTDOWN_DRAIN_SECONDS = 10.0


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager.

    Shutdown waits briefly for abandoned tool calls to finish so session
    locks are released in order, then closes the execution backend.
    """
    yield

    services = app.state.services
    try:
        async with asyncio.timeout(_SHUTDOWN_DRAIN_SECONDS):
            await services.dispatcher.drain()
    except TimeoutError:
        logger.warning("Tool calls still running at shutdown")
    await services.backend.aclose()


def create_app(
    settings: Settings | None = None,
    *,
    backend: ExecutionBackend | None = None,
    adapter_factory: AdapterFactory | None = None,
) -> FastAPI:
    """Create and configure a FastAPI application instance.

    Args:
        settings: Optional settings override (uses get_settings() if not provided)
        backend: Execution backend override (defaults to the configured one)
        adapter_factory: Builds the model stream adapter for a model name

    Returns:
        Configured FastAPI application
    """
    if settings is None:
        settings = get_settings()

    configure_logging(settings.log_level)

    app = FastAPI(
        title="ai-jup",
        description="Streaming LLM prompts with live notebook tools",
        version=__version__,
        docs_url="/api/docs" if settings.debug else None,
        redoc_url=None,
        openapi_url="/api/openapi.json" if settings.debug else None,
        lifespan=lifespan,
    )
    app.state.services = build_services(
        settings, backend=backend, adapter_factory=adapter_factory
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=_get_allowed_origins(settings),
        allow_credentials=True,
        allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "X-API-Key", "X-Correlation-ID"],
    )

    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    app.middleware("http")(_body_size_limit_middleware)
    app.middleware("http")(_correlation_middleware)

    app.include_router(public_router, prefix=API_PREFIX)
    app.include_router(api_router, prefix=API_PREFIX)

    _register_exception_handlers(app, settings)

    return app


def _get_allowed_origins(settings: Settings) -> list[str]:
    """Get allowed CORS origins.

    Explicit ALLOWED_ORIGINS wins; development allows any origin, other
    environments allow only a local Jupyter server.
    """
    if settings.allowed_origins:
        return [o.strip() for o in settings.allowed_origins.split(",") if o.strip()]
    if settings.environment in ("development", "testing"):
        return ["*"]
    return ["http://localhost:8888", "http://127.0.0.1:8888"]


async def _body_size_limit_middleware(request: Request, call_next):
    """Reject requests whose declared body exceeds MAX_REQUEST_BODY_BYTES."""
    content_length = request.headers.get("content-length", "")
    if content_length.isdigit() and int(content_length) > MAX_REQUEST_BODY_BYTES:
        return JSONResponse(
            status_code=413,
            content={
                "error": f"Request body exceeds {MAX_REQUEST_BODY_BYTES} bytes",
                "type": "InvalidRequest",
                "field": "body",
            },
        )
    return await call_next(request)


async def _correlation_middleware(request: Request, call_next):
    """Generate and propagate a correlation ID per request."""
    correlation_id = request.headers.get("X-Correlation-ID") or str(uuid.uuid4())
    _correlation_id.set(correlation_id)
    response = await call_next(request)
    response.headers["X-Correlation-ID"] = correlation_id
    return response


def get_correlation_id() -> str | None:
    """Get the current request's correlation ID from context."""
    return _correlation_id.get()


def _status_for(exc: AiJupError) -> int:
    for error_cls, status_code in _STATUS_BY_ERROR.items():
        if isinstance(exc, error_cls):
            return status_code
    return 500


def _register_exception_handlers(app: FastAPI, settings: Settings) -> None:
    """Register exception handlers.

    Error bodies are flat: ``{"error": message, "type": name, "field"?,
    "correlation_id"}``; notebook clients read ``body.error``.
    """

    @app.exception_handler(AiJupError)
    async def ai_jup_error_handler(request: Request, exc: AiJupError) -> JSONResponse:
        correlation_id = get_correlation_id() or exc.correlation_id
        status_code = _status_for(exc)
        if status_code >= 500:
            logger.error("%s: %s (correlation_id=%s)", exc.error_type, exc, correlation_id)
        else:
            logger.info("Rejected request: %s (%s)", exc.error_type, exc.message)

        message = exc.message
        if status_code == 500 and not settings.debug:
            message = f"An error occurred. Correlation ID: {correlation_id}"
        content: dict[str, Any] = {
            "error": message,
            "type": exc.error_type,
            "correlation_id": correlation_id,
        }
        if isinstance(exc, InvalidRequest):
            content["field"] = exc.field
        return JSONResponse(
            status_code=status_code,
            content=content,
            headers={"X-Correlation-ID": correlation_id},
        )

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        correlation_id = get_correlation_id() or str(uuid.uuid4())
        errors = exc.errors()
        loc = [str(part) for part in errors[0].get("loc", ()) if part != "body"] if errors else []
        field = ".".join(loc) or "body"
        return JSONResponse(
            status_code=400,
            content={
                "error": f"Invalid value for '{field}'",
                "type": InvalidRequest.error_type,
                "field": field,
                "correlation_id": correlation_id,
            },
            headers={"X-Correlation-ID": correlation_id},
        )

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
        correlation_id = get_correlation_id() or str(uuid.uuid4())
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "error": exc.detail,
                "type": "http_error",
                "correlation_id": correlation_id,
            },
            headers={"X-Correlation-ID": correlation_id},
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        correlation_id = get_correlation_id() or str(uuid.uuid4())
        detail = sanitize_error(exc, context=f"Request {correlation_id}")
        return JSONResponse(
            status_code=500,
            content={
                "error": detail,
                "type": "InternalError",
                "correlation_id": correlation_id,
            },
            headers={"X-Correlation-ID": correlation_id},
        )


def get_app() -> FastAPI:
    """Get or create the singleton FastAPI application."""
    global _app
    if _app is None:
        _app = create_app()
    return _app


# For uvicorn: use "ai_jup.api.main:get_app" with --factory,
# or "ai_jup.api.main:app" which initializes on first access.
def __getattr__(name: str) -> Any:
    if name == "app":
        return get_app()
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
