"""
Gateway Provider Adapters Package.

Each adapter handles communication with one upstream image-generation
provider. Only fal.ai is wired in today.

Usage:
    from image_gateway.gateway.adapters import FalClient

    provider = FalClient(credentials=settings.fal.key)
    result = await provider.subscribe(model, {"prompt": "..."})
"""

from image_gateway.gateway.adapters.base import ProviderBase, UpstreamRequest
from image_gateway.gateway.adapters.fal import FalClient
from image_gateway.gateway.adapters.results import (
    FalImage,
    FalPayload,
    FalResult,
    FalStreamResult,
)

__all__ = [
    "ProviderBase",
    "UpstreamRequest",
    "FalClient",
    "FalImage",
    "FalPayload",
    "FalResult",
    "FalStreamResult",
]
