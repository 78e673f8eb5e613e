#!/usr/bin/env python
"""
Image Playground Gateway - Application Entry Point

This is the main entry point for running the gateway server with hot reload support.

Usage:
    # Development mode (with hot reload):
    python main.py

    # Or use uvicorn directly:
    uvicorn image_gateway.main:app --host 0.0.0.0 --port 8000 --reload

Environment Variables:
    - APP_DEBUG=true: Enable debug mode
    - DEV_AUTO_RELOAD=true: Enable hot reload
    - APP_ENV=development: Development environment, rate limiting disabled
"""

from pathlib import Path

import uvicorn

from image_gateway.core.config import settings

root_dir = Path(__file__).parent.resolve()


def main() -> None:
    """Run the FastAPI application with hot reload in development mode."""

    # Show startup info
    print("=" * 60)
    print("Starting Image Playground Gateway")
    print("=" * 60)
    print(f"   Environment: {settings.app.app_env}")
    print(f"   Debug Mode: {settings.app.app_debug}")
    print(f"   Rate Limiting: {not settings.app.is_development}")
    print(f"   Hot Reload: {settings.app.app_debug and settings.dev_auto_reload}")
    print(f"   Host: {settings.app.api_host}:{settings.app.api_port}")
    print("=" * 60)
    print()

    # Rate limit state is per process, so a single worker keeps one view of it
    uvicorn.run(
        "image_gateway.main:app",
        host=settings.app.api_host,
        port=settings.app.api_port,
        reload=settings.app.app_debug and settings.dev_auto_reload,
        workers=1,
        log_level=settings.log.level.lower(),
        access_log=settings.log.requests,
        reload_dirs=[str(root_dir / "image_gateway")] if settings.app.app_debug else None,
        reload_delay=0.5,  # Debounce time for file changes
    )


if __name__ == "__main__":
    main()
