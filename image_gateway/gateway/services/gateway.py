"""
Request Gateway.

Composes the admission and safety checks in front of every upstream
call. For each request the order is fixed and short-circuits on the
first failure:

    identity -> rate limits -> model allowlist -> URL safety -> upstream

Request bodies are validated before the gateway is consulted, so a
malformed request never consumes quota.
"""

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Dict, Iterable, Optional, TypeVar

import structlog

from image_gateway.gateway.errors import AdmissionDenied, UpstreamTimeout, ValidationRejected
from image_gateway.gateway.middleware.model_allowlist import (
    get_model_validation_error,
    is_model_allowed,
)
from image_gateway.gateway.middleware.rate_limit import RateLimitDecision, RateLimiter
from image_gateway.gateway.middleware.ssrf_guard import SSRFGuard
from image_gateway.gateway.services.image_merge import is_data_url

logger = structlog.get_logger(__name__)

T = TypeVar("T")


@dataclass
class Admission:
    """Decisions recorded while admitting a request."""

    identity: str
    byok: bool = False
    api: Optional[RateLimitDecision] = None
    quota: Optional[RateLimitDecision] = None

    def limits(self) -> Optional[Dict[str, Dict[str, object]]]:
        """Post-admission quota remaining, for display by the client."""
        if self.quota is None:
            return None
        return self.quota.to_limits()

    def headers(self) -> Dict[str, str]:
        """X-RateLimit-* headers from the API-wide limiter."""
        if self.api is None:
            return {}
        return self.api.to_headers()


class RequestGateway:
    """
    Admission control and outbound safety for upstream calls.

    Callers that bring their own upstream credential (BYOK) skip the
    generation quota, but never the API-wide limit or the allowlist and
    URL checks.
    """

    def __init__(
        self,
        quota_limiter: RateLimiter,
        api_limiter: RateLimiter,
        guard: SSRFGuard,
        timeout: float = 100,
    ):
        self.quota_limiter = quota_limiter
        self.api_limiter = api_limiter
        self.guard = guard
        self.timeout = timeout

    def admit(self, identity: str, *, byok: bool = False, quota: bool = True) -> Admission:
        """
        Check rate limits for a request.

        Args:
            identity: Resolved client identity
            byok: Caller supplied its own upstream credential; skips the quota only
            quota: Also charge the per-client generation quota

        Raises:
            AdmissionDenied: If any applicable limiter is exhausted
        """
        admission = Admission(identity=identity, byok=byok)

        # The API-wide limit applies whatever credential is sent
        admission.api = self.api_limiter.check(identity)
        if not admission.api.allowed:
            raise AdmissionDenied(
                admission.api,
                scope="api",
                limit=self.api_limiter.limits.get(self.api_limiter.horizons[0].name),
                message="Too many requests. Please try again later.",
            )

        if quota and not byok:
            admission.quota = self.quota_limiter.check(identity)
            if not admission.quota.allowed:
                raise AdmissionDenied(admission.quota, scope="quota")

        return admission

    def validate_model(self, identifier: str) -> str:
        """
        Raises:
            ValidationRejected: If the identifier is not allowlisted
        """
        if not is_model_allowed(identifier):
            logger.warning("Rejected model identifier", model=str(identifier)[:100])
            raise ValidationRejected(get_model_validation_error())
        return identifier

    def validate_fetch_urls(self, urls: Iterable[Optional[str]]) -> None:
        """
        Check every URL the server is about to fetch.

        Inline data URLs are not fetched and are skipped.

        Raises:
            SSRFError: On the first unsafe URL
        """
        for url in urls:
            if url is None or is_data_url(url):
                continue
            self.guard.validate_url(url)

    async def call_upstream(self, awaitable: Awaitable[T]) -> T:
        """
        Await an upstream call within the wall-clock budget.

        Raises:
            UpstreamTimeout: If the budget is exceeded
        """
        try:
            return await asyncio.wait_for(awaitable, timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.warning("Upstream call timed out", timeout=self.timeout)
            raise UpstreamTimeout(self.timeout)
