"""
FastAPI Application Entry Point.

Creates and configures the FastAPI application for the provider-router
service: logging, routes and context warmup.

Usage:
    # Run with uvicorn
    uvicorn provider_router.main:app --host 0.0.0.0 --port 8000

    # Or use the module directly
    python -m provider_router.main
"""

from __future__ import annotations

import os
from contextlib import asynccontextmanager

from fastapi import FastAPI

from provider_router import __version__
from provider_router.api.routes import router, warmup
from provider_router.core.logging import configure_logging


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Hydrate usage/cache before serving (unless PROVIDER_ROUTER_SKIP_WARMUP=1)
    await warmup()
    yield


def create_app() -> FastAPI:
    """
    Create and configure the FastAPI application.

    This factory function:
        1. Configures structured logging (PROVIDER_ROUTER_LOG_LEVEL etc.)
        2. Creates a FastAPI instance with the service title
        3. Registers the routes
        4. Hydrates the RouterContext on startup

    Returns:
        FastAPI: Configured application instance ready to serve requests.
    """
    configure_logging()

    app = FastAPI(title="provider-router", version=__version__, lifespan=lifespan)
    app.include_router(router)
    return app


# Global application instance for ASGI servers (uvicorn, gunicorn, etc.)
app = create_app()


def run() -> None:
    import uvicorn

    uvicorn.run(
        "provider_router.main:app",
        host=os.getenv("PROVIDER_ROUTER_HOST", "127.0.0.1"),
        port=int(os.getenv("PROVIDER_ROUTER_PORT", "8000")),
    )


if __name__ == "__main__":
    run()
