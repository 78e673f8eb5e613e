"""
Upstream Provider Base Class.

This module defines the interface the gateway uses to talk to an
image-generation provider. The gateway only ever hands a provider
requests that already passed admission and safety checks.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Optional

from image_gateway.gateway.adapters.results import FalResult, FalStreamResult


@dataclass
class UpstreamRequest:
    """Request to send to upstream provider."""

    method: str
    url: str
    headers: Dict[str, str]
    body: Optional[Dict[str, Any]] = None


class ProviderBase(ABC):
    """
    Base class for upstream providers.

    Implementations must:
    1. subscribe() - run a model and wait for its result
    2. stream() - run a model over a streaming endpoint
    3. upload() - store binary input and return a fetchable URL

    Providers raise UpstreamError (or UpstreamTimeout) on failure and
    must never include credentials in error messages.
    """

    PROVIDER_TYPE: str = "base"

    @abstractmethod
    async def subscribe(
        self,
        model: str,
        input: Dict[str, Any],
        credentials: Optional[str] = None,
    ) -> FalResult:
        pass

    @abstractmethod
    async def stream(
        self,
        model: str,
        input: Dict[str, Any],
        credentials: Optional[str] = None,
    ) -> FalStreamResult:
        pass

    @abstractmethod
    async def upload(
        self,
        content: bytes,
        content_type: str,
        file_name: str,
        credentials: Optional[str] = None,
    ) -> str:
        pass

    async def aclose(self) -> None:
        """Release pooled connections."""
        return None
