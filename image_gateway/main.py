"""
Main FastAPI application entry point.
"""

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from image_gateway.api.v1 import health
from image_gateway.core.config import Settings, get_settings
from image_gateway.gateway.adapters import FalClient
from image_gateway.gateway.errors import GatewayError
from image_gateway.gateway.middleware import (
    REQUEST_ID_HEADER,
    Horizon,
    RateLimiter,
    SSRFGuard,
    extract_or_generate_request_id,
    set_request_id,
)
from image_gateway.gateway.routers import playground_router
from image_gateway.gateway.services import ImageFetcher, RequestGateway


def configure_logging(settings: Settings) -> None:
    """Configure stdlib logging and structlog once per process."""
    logging.basicConfig(format="%(message)s", level=settings.log.level.upper())

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer() if settings.log.format == "json" else structlog.dev.ConsoleRenderer(),
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


logger = structlog.get_logger(__name__)


# ============================================================================
# Gateway Components
# ============================================================================


def build_quota_limiter(settings: Settings) -> RateLimiter:
    """Per-client generation quota over an hourly and a daily horizon."""
    rl = settings.rate_limit
    return RateLimiter(
        [
            Horizon("hourly", rl.hourly, rl.hourly_window),
            Horizon("daily", rl.daily, rl.daily_window),
        ],
        dev_mode=settings.app.is_development,
        sweep_interval=rl.sweep_interval,
        name="quota",
    )


def build_api_limiter(settings: Settings) -> RateLimiter:
    """Coarse limit over all gateway API traffic."""
    rl = settings.rate_limit
    return RateLimiter(
        [Horizon("hourly", rl.api, rl.api_window)],
        dev_mode=settings.app.is_development,
        sweep_interval=rl.sweep_interval,
        name="api",
    )


def init_gateway_state(app: FastAPI, settings: Settings) -> None:
    """Create the gateway components and attach them to app.state."""
    guard = SSRFGuard(
        allowed_origins=settings.security.allowed_image_domains_list,
        production=settings.app.is_production,
    )
    app.state.settings = settings
    app.state.guard = guard
    app.state.provider = FalClient(
        credentials=settings.fal.key or None,
        run_url=settings.fal.run_url,
        rest_url=settings.fal.rest_url,
        timeout=settings.fal.timeout,
    )
    app.state.image_fetcher = ImageFetcher(
        guard,
        resolve_dns=settings.security.ssrf_resolve_dns,
        max_bytes=settings.security.image_fetch_max_bytes,
        timeout=settings.security.image_fetch_timeout,
    )
    app.state.gateway = RequestGateway(
        quota_limiter=build_quota_limiter(settings),
        api_limiter=build_api_limiter(settings),
        guard=guard,
        timeout=settings.fal.timeout,
    )


async def sweep_rate_limits(gateway: RequestGateway, interval: float) -> None:
    """Periodically drop expired rate limit state."""
    while True:
        await asyncio.sleep(interval)
        removed = gateway.quota_limiter.sweep() + gateway.api_limiter.sweep()
        logger.debug("Rate limit state swept", removed=removed)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan manager.

    Handles startup and shutdown events.
    """
    settings: Settings = app.state.settings

    # Startup
    logger.info("Starting application", version=settings.app.app_version, env=settings.app.app_env)

    if not settings.fal.key:
        logger.warning("FAL_KEY is not set; only bring-your-own-key requests will succeed")

    # Log important configuration
    logger.info(
        "Configuration loaded",
        app_name=settings.app.app_name,
        rate_limiting=not settings.app.is_development,
        hourly_limit=settings.rate_limit.hourly,
        daily_limit=settings.rate_limit.daily,
        api_limit=settings.rate_limit.api,
        allowed_image_domains=settings.security.allowed_image_domains_list,
        cors_origins=settings.app.cors_origins_list,
    )

    sweeper = asyncio.create_task(
        sweep_rate_limits(app.state.gateway, settings.rate_limit.sweep_interval)
    )

    yield

    # Shutdown
    logger.info("Shutting down application")
    sweeper.cancel()
    try:
        await sweeper
    except asyncio.CancelledError:
        pass

    await app.state.provider.aclose()


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        settings: Configuration to use, defaults to the cached environment settings
    """
    settings = settings or get_settings()

    app = FastAPI(
        title=settings.app.app_name,
        version=settings.app.app_version,
        description="Image Playground Gateway - admission control and outbound safety for fal.ai",
        docs_url="/docs" if settings.docs_enabled else None,
        redoc_url="/redoc" if settings.docs_enabled else None,
        lifespan=lifespan,
    )
    init_gateway_state(app, settings)

    # ========================================================================
    # Middleware
    # ========================================================================

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.app.cors_origins_list,
        allow_credentials=settings.app.cors_credentials,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=[
            REQUEST_ID_HEADER,
            "X-RateLimit-Limit",
            "X-RateLimit-Remaining",
            "X-RateLimit-Reset",
            "Retry-After",
        ],
    )

    # Request logging middleware
    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        """Log all requests and add request ID."""
        request_id = extract_or_generate_request_id(request.headers)
        request.state.request_id = request_id
        set_request_id(request_id)

        start_time = time.time()

        if settings.log.requests:
            logger.info(
                "Request started",
                method=request.method,
                path=request.url.path,
            )

        try:
            response = await call_next(request)
            response.headers[REQUEST_ID_HEADER] = request_id

            # Log response
            duration = time.time() - start_time
            if settings.log.requests:
                logger.info(
                    "Request completed",
                    method=request.method,
                    path=request.url.path,
                    status_code=response.status_code,
                    duration_ms=round(duration * 1000, 2),
                )

            return response

        except Exception as e:
            duration = time.time() - start_time
            logger.error(
                "Request failed",
                method=request.method,
                path=request.url.path,
                error=str(e),
                duration_ms=round(duration * 1000, 2),
            )
            raise

    # ========================================================================
    # Exception Handlers
    # ========================================================================

    @app.exception_handler(GatewayError)
    async def gateway_exception_handler(request: Request, exc: GatewayError):
        """Handle gateway errors."""
        return JSONResponse(
            status_code=exc.status_code,
            content=exc.to_response(),
            headers=exc.headers(),
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        """Handle HTTP exceptions."""
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.detail, "type": "http_error"},
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """Handle validation errors."""
        errors = []
        for error in exc.errors():
            field = ".".join(str(loc) for loc in error["loc"])
            errors.append({
                "field": field,
                "message": error["msg"],
                "type": error["type"],
            })

        return JSONResponse(
            status_code=400,
            content={
                "error": "Request validation failed",
                "type": "invalid_request_error",
                "details": errors,
            },
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        """Handle general exceptions."""
        logger.error(
            "Unhandled exception",
            path=request.url.path,
            error=str(exc),
            exc_info=exc,
        )

        return JSONResponse(
            status_code=500,
            content={
                "error": "An internal error occurred" if not settings.app.app_debug else str(exc),
                "type": "internal_error",
            },
        )

    # ========================================================================
    # Routes
    # ========================================================================

    app.include_router(health.router, prefix="/api/v1")
    app.include_router(playground_router)

    return app


configure_logging(get_settings())

# Create FastAPI app
app = create_app()
