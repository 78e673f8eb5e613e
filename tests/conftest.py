"""Shared test fixtures for the image playground gateway.

Provides settings, a controllable clock, a fake fal.ai backend served
through httpx.MockTransport, and an ASGI client bound to a fresh app.
"""

import base64
import io
import json
from collections.abc import AsyncGenerator
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

import httpx
import pytest
from httpx import ASGITransport, AsyncClient
from PIL import Image

from image_gateway.core.config import (
    AppSettings,
    FalSettings,
    LogSettings,
    RateLimitSettings,
    SecuritySettings,
    Settings,
)
from image_gateway.gateway.adapters import FalClient
from image_gateway.gateway.middleware import SSRFGuard
from image_gateway.gateway.services import ImageFetcher
from image_gateway.main import create_app

FAL_RUN_URL = "https://fal.test"
FAL_REST_URL = "https://rest.fal.test"
FAL_KEY = "server-fal-key"


# =============================================================================
# FAKES
# =============================================================================


class FakeClock:
    """Manually advanced replacement for time.time."""

    def __init__(self, start: float = 1_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


Handler = Union[Callable[[httpx.Request], httpx.Response], Exception]


class FakeUpstream:
    """
    In-process HTTP backend for httpx.MockTransport.

    Routes are keyed by (method, path). Each call builds a fresh
    response, so a route can be hit any number of times.
    """

    def __init__(self):
        self.routes: Dict[Tuple[str, str], Handler] = {}
        self.requests: List[httpx.Request] = []

    def on(
        self,
        method: str,
        path: str,
        status_code: int = 200,
        json_body: Any = None,
        content: Optional[bytes] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> None:
        def respond(request: httpx.Request) -> httpx.Response:
            if json_body is not None:
                return httpx.Response(status_code, json=json_body, headers=headers)
            return httpx.Response(status_code, content=content or b"", headers=headers)

        self.routes[(method, path)] = respond

    def on_call(self, method: str, path: str, handler: Handler) -> None:
        self.routes[(method, path)] = handler

    def on_sse(self, path: str, events: List[Any], status_code: int = 200) -> None:
        """Serve a server-sent event stream of JSON-encoded events."""
        body = "".join(f"data: {json.dumps(event)}\n\n" for event in events)
        self.on(
            "POST",
            path,
            status_code=status_code,
            content=body.encode(),
            headers={"content-type": "text/event-stream"},
        )

    def paths(self) -> List[str]:
        return [request.url.path for request in self.requests]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        route = self.routes.get((request.method, request.url.path))
        if route is None:
            return httpx.Response(404, json={"detail": "Not found"})
        if isinstance(route, Exception):
            raise route
        return route(request)


def make_png(color: Tuple[int, int, int] = (200, 30, 30), size: Tuple[int, int] = (64, 48)) -> bytes:
    """Small in-memory PNG."""
    buffer = io.BytesIO()
    Image.new("RGB", size, color).save(buffer, format="PNG")
    return buffer.getvalue()


def make_data_url(content: bytes, mime: str = "image/png") -> str:
    return f"data:{mime};base64,{base64.b64encode(content).decode('ascii')}"


# =============================================================================
# SETTINGS
# =============================================================================


@pytest.fixture
def test_settings() -> Settings:
    """Provide test settings with small limits and no DNS lookups."""
    return Settings(
        app=AppSettings(app_env="production", cors_origins="http://localhost:3000"),
        rate_limit=RateLimitSettings(hourly=3, daily=5, api=50),
        security=SecuritySettings(allowed_image_domains="", ssrf_resolve_dns=False),
        fal=FalSettings(key=FAL_KEY, run_url=FAL_RUN_URL, rest_url=FAL_REST_URL, timeout=5),
        log=LogSettings(format="text", requests=False),
    )


# =============================================================================
# CLOCK
# =============================================================================


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


# =============================================================================
# UPSTREAM
# =============================================================================


@pytest.fixture
def fal_upstream() -> FakeUpstream:
    """Fake fal.ai backend."""
    return FakeUpstream()


@pytest.fixture
def image_host() -> FakeUpstream:
    """Fake remote image host for server-side fetches."""
    return FakeUpstream()


@pytest.fixture
async def fal_client(fal_upstream: FakeUpstream) -> AsyncGenerator[FalClient, None]:
    client = FalClient(
        credentials=FAL_KEY,
        run_url=FAL_RUN_URL,
        rest_url=FAL_REST_URL,
        timeout=5,
        transport=httpx.MockTransport(fal_upstream.handler),
    )
    yield client
    await client.aclose()


# =============================================================================
# APPLICATION
# =============================================================================


@pytest.fixture
def app(test_settings: Settings, fal_client: FalClient, image_host: FakeUpstream):
    """Fresh application wired to the fake upstreams."""
    application = create_app(test_settings)
    guard: SSRFGuard = application.state.guard

    application.state.provider = fal_client
    application.state.image_fetcher = ImageFetcher(
        guard,
        resolve_dns=False,
        transport=httpx.MockTransport(image_host.handler),
    )
    return application


@pytest.fixture
async def async_client(app) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client bound to the application."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client


@pytest.fixture
def client_headers() -> Dict[str, str]:
    """Headers identifying a single test client."""
    return {"x-forwarded-for": "203.0.113.7"}


# =============================================================================
# IMAGES
# =============================================================================


@pytest.fixture
def person_png() -> bytes:
    return make_png((220, 180, 150), (120, 160))


@pytest.fixture
def object_png() -> bytes:
    return make_png((30, 60, 200), (200, 100))


@pytest.fixture
def person_data_url(person_png: bytes) -> str:
    return make_data_url(person_png)


@pytest.fixture
def object_data_url(object_png: bytes) -> str:
    return make_data_url(object_png)
