"""
FastAPI Dependency Injection Providers.

Shared resources for API endpoints, injected with Depends().

Architecture:
    1. get_settings() - Loads and caches application configuration
    2. get_context() - Creates/returns the RouterContext for this process
    3. warmup_context() - Hydrates usage and cache from the store on startup

    The app holds exactly one RouterContext: usage, cache and the active
    provider are process-wide. Tests swap it with app.dependency_overrides.

Usage in Route Handlers:
    from fastapi import Depends
    from provider_router.api.dependencies import get_context

    @router.get("/v1/usage")
    async def usage(context: RouterContext = Depends(get_context)):
        return await context.usage()

Lifecycle:
    1. Application startup (main.py)
       └── warmup() calls warmup_context()
           └── get_context() calls get_settings()
               └── get_settings() loads $PROVIDER_ROUTER_SETTINGS
                   (default config/settings.yaml; missing file = defaults)
    2. Request handling
       └── Route handler receives the same RouterContext via Depends()
"""
from __future__ import annotations

import os
from functools import lru_cache

from provider_router.core.config import Settings, load_settings
from provider_router.services.context import RouterContext


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Load and cache application settings.

    The path comes from PROVIDER_ROUTER_SETTINGS (default
    config/settings.yaml). A missing file means built-in defaults.
    """
    return load_settings(os.getenv("PROVIDER_ROUTER_SETTINGS", "config/settings.yaml"), missing_ok=True)


@lru_cache(maxsize=1)
def get_context() -> RouterContext:
    """Get the process-wide RouterContext, created on first call."""
    return RouterContext(get_settings())


async def warmup_context() -> None:
    """
    Hydrate the context before the first request.

    Can be skipped via PROVIDER_ROUTER_SKIP_WARMUP=1; the context then
    hydrates lazily on its first operation.
    """
    await get_context().initialise()
