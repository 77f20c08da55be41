from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from codegate.app import __version__
from codegate.app.api.code_assist import NO_CACHE_HEADERS, router as code_assist_router
from codegate.app.api.health import router as health_router
from codegate.app.core.config import settings
from codegate.app.core.logging import get_logger, setup_logging
from codegate.app.core.utils import generate_session_id, utc_timestamp
from codegate.app.exceptions import GatewayException
from codegate.app.middleware.auth import AuthGate
from codegate.app.middleware.rate_limit import RateLimiter
from codegate.app.middleware.request_size import RequestSizeLimitMiddleware
from codegate.app.providers.assistant import AssistantExecutor
from codegate.app.providers.mock import MockProcessRunner
from codegate.app.services.orchestrator import RequestOrchestrator


def _error_response(request: Request, status_code: int, code: str, message: str) -> JSONResponse:
    session_id = request.headers.get("x-session-id") or generate_session_id()
    return JSONResponse(
        status_code=status_code,
        content={
            "success": False,
            "error": {"code": code, "message": message},
            "metadata": {"timestamp": utc_timestamp(), "executionTime": 0, "sessionId": session_id},
        },
        headers=NO_CACHE_HEADERS,
    )


def create_app(
    auth_gate: Optional[AuthGate] = None,
    rate_limiter: Optional[RateLimiter] = None,
    executor: Optional[AssistantExecutor] = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Components default to ones built from settings; tests pass their own.

    Returns:
        Configured FastAPI application instance
    """
    setup_logging()
    logger = get_logger(__name__)

    auth_gate = auth_gate or AuthGate()
    rate_limiter = rate_limiter or RateLimiter()
    if executor is None:
        if settings.assistant_mock:
            logger.warning("ASSISTANT_MOCK is enabled, answering with canned responses")
            executor = AssistantExecutor(runner=MockProcessRunner())
        else:
            executor = AssistantExecutor()
    if not settings.api_secret:
        logger.warning("API_SECRET is not set; every code-assist request will be rejected")

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Start the rate limit sweeper on startup and stop it on shutdown."""
        await rate_limiter.start()
        logger.info(
            "Application startup complete",
            extra={
                "assistant_command": executor.command,
                "rate_limit_window_ms": rate_limiter.window_ms,
                "rate_limit_max_requests": rate_limiter.max_requests,
                "debug_mode": settings.debug,
            },
        )

        yield

        await rate_limiter.stop()
        logger.info("Application shutdown complete")

    app = FastAPI(
        title="CodeGate",
        description="Authenticated, rate limited gateway to a code-assistant CLI",
        version=__version__,
        lifespan=lifespan,
    )

    app.state.rate_limiter = rate_limiter
    app.state.orchestrator = RequestOrchestrator(auth_gate, rate_limiter, executor)

    # Add middleware (order matters: last added = first executed)
    app.add_middleware(RequestSizeLimitMiddleware, max_body_size=settings.max_body_size)

    # CORS middleware (outermost - handles preflight requests first)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials="*" not in settings.cors_origins,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=[
            "Content-Type",
            "Authorization",
            "X-Session-ID",
            "X-Requested-With",
        ],
        expose_headers=["X-RateLimit-Limit", "X-RateLimit-Remaining", "X-RateLimit-Reset", "Retry-After"],
        max_age=600,
    )

    app.include_router(code_assist_router)
    app.include_router(health_router)

    @app.exception_handler(GatewayException)
    async def gateway_exception_handler(request: Request, exc: GatewayException) -> JSONResponse:
        """Render a GatewayException escaping a route as an error envelope."""
        return _error_response(request, exc.status_code, exc.code, exc.message)

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Global exception handler for unhandled exceptions.

        Full details are logged server-side; only debug/development
        deployments return the exception message.
        """
        logger.exception(
            "Unhandled exception",
            extra={
                "session_id": request.headers.get("x-session-id"),
                "exception_type": type(exc).__name__,
            },
        )
        message = str(exc) if settings.expose_error_details else "An unexpected error occurred"
        return _error_response(request, 500, "INTERNAL_ERROR", message)

    return app


# Create the application instance
app = create_app()
