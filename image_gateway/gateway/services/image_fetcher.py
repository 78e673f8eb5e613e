"""
SSRF-safe image fetching.

Downloads caller-supplied image URLs. Every URL, including each redirect
target, passes the SSRF guard before a connection is opened.
"""

from typing import Optional, Tuple
from urllib.parse import urljoin

import httpx
import structlog

from image_gateway.gateway.errors import GatewayError, UpstreamTimeout
from image_gateway.gateway.middleware.ssrf_guard import SSRFGuard

logger = structlog.get_logger(__name__)


class ImageFetchError(GatewayError):
    """The remote image could not be retrieved."""

    status_code = 502
    error_type = "fetch_error"


class ImageFetcher:
    """Fetch remote images with SSRF protection."""

    MAX_REDIRECTS = 3
    REDIRECT_STATUSES = {301, 302, 303, 307, 308}

    def __init__(
        self,
        guard: SSRFGuard,
        resolve_dns: bool = True,
        max_bytes: int = 20 * 1024 * 1024,
        timeout: float = 30,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.guard = guard
        self.resolve_dns = resolve_dns
        self.max_bytes = max_bytes
        self.timeout = timeout
        self._transport = transport

    async def fetch(self, url: str) -> Tuple[bytes, str]:
        """
        Download an image.

        Returns:
            Tuple of (content, content type)

        Raises:
            SSRFError: If the URL or a redirect target is unsafe
            ImageFetchError: If the remote server fails or the body is too large
            UpstreamTimeout: If the download exceeds its budget
        """
        async with httpx.AsyncClient(
            timeout=httpx.Timeout(self.timeout),
            transport=self._transport,
            follow_redirects=False,  # Handle redirects manually for validation
        ) as client:
            current = url
            for _ in range(self.MAX_REDIRECTS + 1):
                await self._validate(current)

                try:
                    async with client.stream("GET", current) as response:
                        if response.status_code in self.REDIRECT_STATUSES:
                            location = response.headers.get("location")
                            if not location:
                                raise ImageFetchError("Redirect without location")
                            current = urljoin(current, location)
                            continue

                        if response.status_code >= 400:
                            raise ImageFetchError(
                                f"Failed to fetch image: HTTP {response.status_code}"
                            )

                        content = await self._read_limited(response)
                        content_type = response.headers.get("content-type", "application/octet-stream")
                        return content, content_type.split(";")[0].strip()
                except httpx.TimeoutException:
                    raise UpstreamTimeout(self.timeout)
                except httpx.HTTPError as e:
                    logger.warning("Image fetch failed", error=type(e).__name__)
                    raise ImageFetchError("Failed to fetch image")

        raise ImageFetchError("Too many redirects")

    async def _validate(self, url: str) -> None:
        if self.resolve_dns:
            await self.guard.validate_resolved(url)
        else:
            self.guard.validate_url(url)

    async def _read_limited(self, response: httpx.Response) -> bytes:
        declared = response.headers.get("content-length")
        if declared and declared.isdigit() and int(declared) > self.max_bytes:
            raise ImageFetchError("Image is too large")

        buffer = bytearray()
        async for chunk in response.aiter_bytes():
            buffer.extend(chunk)
            if len(buffer) > self.max_bytes:
                raise ImageFetchError("Image is too large")
        return bytes(buffer)
