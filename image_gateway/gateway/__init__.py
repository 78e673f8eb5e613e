"""
Image Playground Gateway Package.

The gateway sits between the playground UI and fal.ai. Every request
passes admission control and outbound safety checks before anything is
sent upstream.

Features:
- Per-client hourly and daily generation quota
- Coarse API-wide rate limit with X-RateLimit-* headers
- Closed allowlist of upstream models and workflows
- SSRF protection for caller-supplied URLs the server fetches
- Bring-your-own-key callers skip the quota, never the safety checks

Architecture:
- middleware: identity, rate limiting, allowlist, SSRF guard, tracing
- services: request gateway, image fetching and merging
- adapters: fal.ai client and result models
- routers: playground HTTP endpoints

Usage:
    from image_gateway.gateway.routers import playground_router

    app.include_router(playground_router)
"""

from image_gateway.gateway.adapters import FalClient, ProviderBase
from image_gateway.gateway.errors import (
    AdmissionDenied,
    GatewayError,
    MalformedRequest,
    UpstreamError,
    UpstreamTimeout,
    ValidationRejected,
)
from image_gateway.gateway.middleware import (
    RateLimiter,
    SSRFGuard,
    resolve_identity,
)
from image_gateway.gateway.services import RequestGateway

__all__ = [
    # Adapters
    "FalClient",
    "ProviderBase",
    # Errors
    "AdmissionDenied",
    "GatewayError",
    "MalformedRequest",
    "UpstreamError",
    "UpstreamTimeout",
    "ValidationRejected",
    # Middleware
    "RateLimiter",
    "SSRFGuard",
    "resolve_identity",
    # Services
    "RequestGateway",
]
