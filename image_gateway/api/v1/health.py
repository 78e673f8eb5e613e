"""
Health check endpoint.
"""

from fastapi import APIRouter, Request
from pydantic import BaseModel

router = APIRouter(tags=["Health"])


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str
    tracked_identities: int = 0


@router.get("/healthz", response_model=HealthResponse)
async def health_check(request: Request):
    """
    Basic health check endpoint.

    Returns the service status and the number of client identities the
    quota limiter currently tracks.
    """
    gateway = request.app.state.gateway
    return HealthResponse(
        status="healthy",
        version=request.app.version,
        tracked_identities=len(gateway.quota_limiter),
    )
