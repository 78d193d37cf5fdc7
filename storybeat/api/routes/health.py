"""Health check endpoints."""
from __future__ import annotations

from typing import Any

from fastapi import APIRouter

from storybeat.config import settings
from storybeat.services.runtime import get_runtime

router = APIRouter()


@router.get("/health")
async def health_check() -> dict[str, str]:
    """Basic health check."""
    return {
        "status": "ok",
        "service": settings.app_name,
        "version": settings.app_version,
    }


@router.get("/health/full")
async def full_health_check() -> dict[str, Any]:
    """
    Health check including generation state.

    Reports:
    - providers: enabled with an API key
    - active generations and open SSE streams
    - the most recent provider requests
    """
    runtime = get_runtime()
    providers = {
        name: {
            "status": "ok" if runtime.settings.provider_settings(name).is_usable else "unconfigured",
            "model": runtime.settings.provider_settings(name).model,
        }
        for name in ("gemini", "openrouter")
    }
    any_ok = any(p["status"] == "ok" for p in providers.values())
    return {
        "status": "ok" if any_ok else "degraded",
        "service": settings.app_name,
        "version": settings.app_version,
        "selectedModel": runtime.settings.selected_model,
        "providers": providers,
        "activeGenerations": runtime.orchestrator.active_beats,
        "activeStreams": runtime.broadcaster.active_streams,
        "recentRequests": [entry.to_dict() for entry in runtime.request_log.entries()[:10]],
    }
