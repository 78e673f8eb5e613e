"""
Gateway Middleware Package.

This module provides the admission and outbound-safety components of
the gateway:
- Identity: per-client key derived from request headers
- Rate Limiting: in-memory multi-horizon request limits
- Model Allowlist: closed set of permitted upstream models
- SSRF Guard: protection against server-side request forgery
- Tracing: request ID generation and timing

Usage:
    from image_gateway.gateway.middleware import (
        RateLimiter,
        SSRFGuard,
        is_model_allowed,
        resolve_identity,
    )
"""

from image_gateway.gateway.middleware.identity import (
    UNKNOWN_IDENTITY,
    resolve_identity,
)
from image_gateway.gateway.middleware.model_allowlist import (
    ALLOWED_MODELS,
    EDIT_MODEL,
    VISION_MODEL,
    get_model_validation_error,
    is_model_allowed,
)
from image_gateway.gateway.middleware.rate_limit import (
    UNLIMITED_SENTINEL,
    Horizon,
    RateLimitDecision,
    RateLimiter,
    RateWindowState,
    format_time_remaining,
)
from image_gateway.gateway.middleware.ssrf_guard import (
    RejectionReason,
    SSRFError,
    SSRFGuard,
    UrlSafetyVerdict,
)
from image_gateway.gateway.middleware.trace import (
    REQUEST_ID_HEADER,
    RequestTimer,
    extract_or_generate_request_id,
    generate_request_id,
    get_request_id,
    set_request_id,
)

__all__ = [
    # Identity
    "UNKNOWN_IDENTITY",
    "resolve_identity",
    # Model allowlist
    "ALLOWED_MODELS",
    "EDIT_MODEL",
    "VISION_MODEL",
    "get_model_validation_error",
    "is_model_allowed",
    # Rate Limiting
    "UNLIMITED_SENTINEL",
    "Horizon",
    "RateLimitDecision",
    "RateLimiter",
    "RateWindowState",
    "format_time_remaining",
    # SSRF Protection
    "RejectionReason",
    "SSRFError",
    "SSRFGuard",
    "UrlSafetyVerdict",
    # Tracing
    "REQUEST_ID_HEADER",
    "RequestTimer",
    "extract_or_generate_request_id",
    "generate_request_id",
    "get_request_id",
    "set_request_id",
]
