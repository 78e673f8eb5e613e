"""
Gateway error taxonomy.

Every failure the gateway can produce for a single request is one of
these exceptions. They are converted to JSON responses by the
application's exception handler, so none of them escape as an
unhandled fault.

- MalformedRequest: missing or invalid fields, rejected before admission
- AdmissionDenied: rate limit exhausted, recoverable after reset
- ValidationRejected: disallowed model/workflow or unsafe URL
- UpstreamError / UpstreamTimeout: the external provider failed
"""

from typing import TYPE_CHECKING, Any, Dict, Optional

if TYPE_CHECKING:
    from image_gateway.gateway.middleware.rate_limit import RateLimitDecision


class GatewayError(Exception):
    """Base class for errors surfaced to gateway callers."""

    status_code: int = 500
    error_type: str = "gateway_error"

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        error_type: Optional[str] = None,
        detail: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.detail = detail
        if status_code is not None:
            self.status_code = status_code
        if error_type is not None:
            self.error_type = error_type

    def to_response(self) -> Dict[str, Any]:
        """Convert to the JSON body returned to the caller."""
        body: Dict[str, Any] = {"error": self.message, "type": self.error_type}
        if self.detail:
            body["message"] = self.detail
        return body

    def headers(self) -> Dict[str, str]:
        return {}


class MalformedRequest(GatewayError):
    """Required fields are missing or have the wrong type."""

    status_code = 400
    error_type = "invalid_request_error"


class ValidationRejected(GatewayError):
    """A requested model or URL failed a safety check."""

    status_code = 400
    error_type = "validation_error"


class AdmissionDenied(GatewayError):
    """The caller exhausted one of its rate limit horizons."""

    status_code = 429
    error_type = "rate_limit_exceeded"

    def __init__(
        self,
        decision: "RateLimitDecision",
        *,
        scope: str,
        limit: Optional[int] = None,
        message: Optional[str] = None,
    ):
        from image_gateway.gateway.middleware.rate_limit import format_time_remaining

        self.decision = decision
        self.scope = scope
        self.limit = limit
        retry_in = format_time_remaining(decision.retry_after_ms)
        super().__init__(
            "Rate limit exceeded",
            detail=message or f"You've reached your generation limit. Try again in {retry_in}.",
        )

    def to_response(self) -> Dict[str, Any]:
        body = super().to_response()
        body["scope"] = self.scope
        body["limits"] = self.decision.to_limits(include_reset=True)
        if self.limit is not None:
            body["limit"] = self.limit
        return body

    def headers(self) -> Dict[str, str]:
        retry_after = max(1, -(-self.decision.retry_after_ms // 1000))
        headers = {"Retry-After": str(retry_after)}
        if self.scope == "api":
            headers.update(self.decision.to_headers())
        return headers


class UpstreamError(GatewayError):
    """The external provider returned an error."""

    status_code = 500
    error_type = "upstream_error"

    def __init__(
        self,
        message: str,
        *,
        status_code: int = 500,
        upstream_status: Optional[int] = None,
        detail: Optional[str] = None,
    ):
        super().__init__(message, status_code=status_code, detail=detail)
        self.upstream_status = upstream_status

    @classmethod
    def from_status(cls, upstream_status: int, detail: Optional[str] = None) -> "UpstreamError":
        """Map a provider status to the category shown to callers."""
        if upstream_status == 401 or upstream_status == 403:
            return cls("Invalid API key", status_code=401, upstream_status=upstream_status)
        if upstream_status == 422:
            return cls(
                "Invalid request - check image format",
                status_code=422,
                upstream_status=upstream_status,
            )
        return cls(
            "FAL API error",
            status_code=500,
            upstream_status=upstream_status,
            detail=detail or "Unknown error",
        )


class UpstreamTimeout(UpstreamError):
    """The external call exceeded its wall-clock budget."""

    error_type = "upstream_timeout"

    def __init__(self, timeout_seconds: float):
        super().__init__(
            "Upstream request timed out",
            status_code=504,
            detail=f"No response from provider within {timeout_seconds:g}s",
        )
        self.timeout_seconds = timeout_seconds
