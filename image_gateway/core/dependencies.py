"""
Dependency injection utilities for FastAPI.
"""

import json
from typing import Any, Callable, Coroutine, Type, TypeVar

from fastapi import Request
from pydantic import ValidationError

from image_gateway.core.config import Settings
from image_gateway.gateway.adapters import FalClient
from image_gateway.gateway.errors import MalformedRequest
from image_gateway.gateway.middleware import resolve_identity
from image_gateway.gateway.services import ImageFetcher, RequestGateway
from image_gateway.schemas.playground import PlaygroundRequest

RequestModel = TypeVar("RequestModel", bound=PlaygroundRequest)


# ============================================================================
# Gateway Components
# ============================================================================


def get_app_settings(request: Request) -> Settings:
    """Settings the application was built with."""
    return request.app.state.settings


def get_gateway(request: Request) -> RequestGateway:
    """Request gateway built by the application factory."""
    return request.app.state.gateway


def get_provider(request: Request) -> FalClient:
    return request.app.state.provider


def get_image_fetcher(request: Request) -> ImageFetcher:
    return request.app.state.image_fetcher


def get_client_identity(request: Request) -> str:
    """Rate limit key for the calling client."""
    return resolve_identity(request.headers)


# ============================================================================
# Request Bodies
# ============================================================================


def parse_body(
    schema: Type[RequestModel],
) -> Callable[[Request], Coroutine[Any, Any, RequestModel]]:
    """
    Build a dependency that validates the JSON body against a schema.

    Failures raise MalformedRequest, which is answered with 400 before
    the route body (and therefore any rate limit check) runs.
    """

    async def dependency(request: Request) -> RequestModel:
        try:
            payload = await request.json()
        except (json.JSONDecodeError, UnicodeDecodeError):
            raise MalformedRequest("Invalid JSON body")

        if not isinstance(payload, dict):
            raise MalformedRequest(schema.missing_fields_message)

        try:
            return schema.model_validate(payload)
        except ValidationError:
            raise MalformedRequest(schema.missing_fields_message)

    return dependency
