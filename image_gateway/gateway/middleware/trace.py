"""
Request Tracing.

Request ID generation and propagation for the gateway, plus a small
timer used to report upstream latency in logs. The current request ID
is bound to structlog's context, so every log line emitted while
handling a request carries it.
"""

import secrets
import time
from typing import Mapping, Optional

import structlog

REQUEST_ID_HEADER = "X-Request-ID"


def generate_request_id() -> str:
    """
    Generate a unique request ID.

    Format: req_<timestamp_hex>_<random>
    Example: req_18d5b3f2_a7b9c4d2e1f0
    """
    timestamp = int(time.time() * 1000)
    random_part = secrets.token_hex(6)
    return f"req_{timestamp:x}_{random_part}"


def extract_or_generate_request_id(headers: Mapping[str, str]) -> str:
    """Reuse the caller's request ID when present."""
    return headers.get(REQUEST_ID_HEADER) or generate_request_id()


def get_request_id() -> Optional[str]:
    """Get current request ID from the logging context."""
    return structlog.contextvars.get_contextvars().get("request_id")


def set_request_id(request_id: str) -> None:
    """Start a fresh logging context for the current request."""
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(request_id=request_id)


class RequestTimer:
    """Timer for measuring request duration."""

    def __init__(self):
        self.start_time: Optional[float] = None
        self.end_time: Optional[float] = None

    def start(self) -> "RequestTimer":
        self.start_time = time.perf_counter()
        return self

    def stop(self) -> None:
        self.end_time = time.perf_counter()

    @property
    def total_ms(self) -> Optional[float]:
        """Get total duration in milliseconds."""
        if self.start_time is None:
            return None
        end = self.end_time or time.perf_counter()
        return round((end - self.start_time) * 1000, 2)
