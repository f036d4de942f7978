"""Main entry point for the RoleGate verification service."""

from __future__ import annotations

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware

from rolegate.api.v1 import system_router, verification_router
from rolegate.core.settings import settings
from rolegate.services.assets import get_asset_provider
from rolegate.services.discord import get_platform_role_api
from rolegate.services.sweeper import ReverificationSweeper, get_sweeper

logger = logging.getLogger(__name__)

# Initialize FastAPI app
app = FastAPI(
    title=settings.app_name,
    description="Wallet-signature verification and holdings-based role assignment",
    version=settings.app_version,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=settings.cors_allow_credentials,
    allow_methods=settings.cors_allow_methods,
    allow_headers=settings.cors_allow_headers,
)

# Add GZip middleware for compression
app.add_middleware(GZipMiddleware)

# Include API routers
app.include_router(verification_router, prefix="/api/v1")
app.include_router(system_router, prefix="/api/v1")


@app.on_event("startup")
async def on_startup() -> None:
    if settings.reverify_enabled:
        sweeper = get_sweeper()
        await sweeper.start()
        app.state.sweeper = sweeper
        logger.info("Reverification sweeper started (every %ss)", settings.reverify_interval_seconds)
    else:
        app.state.sweeper = None


@app.on_event("shutdown")
async def on_shutdown() -> None:
    sweeper: ReverificationSweeper | None = getattr(app.state, "sweeper", None)
    if sweeper:
        await sweeper.stop()
    await get_asset_provider().close()  # type: ignore[attr-defined]
    await get_platform_role_api().close()  # type: ignore[attr-defined]


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint to verify the service is running."""
    return {"status": "ok"}


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint with basic information about the API."""
    return {
        "name": settings.app_name,
        "version": settings.app_version,
        "description": "Wallet-signature verification and holdings-based role assignment",
        "docs": "/docs",
        "redoc": "/redoc",
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("rolegate.main:app", host="0.0.0.0", port=8000, reload=settings.debug)
