"""
Gateway Routers Package.

Usage:
    from image_gateway.gateway.routers import playground_router

    app.include_router(playground_router)
"""

from image_gateway.gateway.routers.playground import router as playground_router

__all__ = [
    "playground_router",
]
