"""
Storybeat API

FastAPI application that streams AI-generated prose into beat markers.
"""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from collections.abc import AsyncIterator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from storybeat.api.routes import beats, health, stories
from storybeat.config import settings
from storybeat.services.runtime import close_runtime, get_runtime

# Configure logging
logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan handler."""
    logger.info(f"Starting {settings.app_name} v{settings.app_version}")
    logger.info(f"Selected model: {settings.selected_model or '(none)'}")
    for name in ("gemini", "openrouter"):
        provider = settings.provider_settings(name)
        logger.info(f"Provider {name}: {'ready' if provider.is_usable else 'unconfigured'} ({provider.model})")
    get_runtime()

    yield

    # Cleanup
    logger.info("Shutting down...")
    await close_runtime()


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Storybeat: AI beats streamed into your prose.",
    lifespan=lifespan,
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
    openapi_url="/openapi.json" if settings.debug else None,
)

# CORS middleware
if "*" in settings.cors_origins:
    logger.warning(
        "SECURITY WARNING: CORS allows all origins. "
        "set STORYBEAT_CORS_ORIGINS to specific domains in production."
    )
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(health.router, tags=["health"])
app.include_router(stories.router, prefix="/api/v1", tags=["stories"])
app.include_router(beats.router, prefix="/api/v1", tags=["beats"])


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint with service info."""
    return {
        "service": settings.app_name,
        "version": settings.app_version,
        "docs": "/docs",
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
