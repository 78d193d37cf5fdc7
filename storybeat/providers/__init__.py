"""Text-generation provider adapters keyed by the provider tag of a model id."""
from __future__ import annotations

from typing import Any, Optional

import httpx

from storybeat.config import Settings
from storybeat.errors import ConfigurationError
from storybeat.providers.base import GenerationRequest, ProviderAdapter, UniformChunk
from storybeat.providers.gemini import GeminiAdapter
from storybeat.providers.openrouter import OpenRouterAdapter
from storybeat.services.request_log import RequestLog

ADAPTERS: dict[str, type[ProviderAdapter]] = {
    GeminiAdapter.name: GeminiAdapter,
    OpenRouterAdapter.name: OpenRouterAdapter,
}


def create_adapter(
    provider: str,
    app_settings: Settings,
    *,
    client: Optional[httpx.AsyncClient] = None,
    request_log: Optional[RequestLog] = None,
) -> ProviderAdapter:
    """Build the adapter for a provider tag.

    Raises ConfigurationError for unknown tags.
    """
    adapter_cls = ADAPTERS.get(provider)
    if adapter_cls is None:
        raise ConfigurationError(f"Unknown provider '{provider}'")
    extra: dict[str, Any] = {}
    if adapter_cls is OpenRouterAdapter:
        extra = {"referer": app_settings.openrouter_referer, "title": app_settings.openrouter_title}
    return adapter_cls(
        app_settings.provider_settings(provider),
        timeout=app_settings.llm_timeout,
        client=client,
        request_log=request_log,
        **extra,
    )


__all__ = [
    "ADAPTERS",
    "create_adapter",
    "GenerationRequest",
    "ProviderAdapter",
    "UniformChunk",
    "GeminiAdapter",
    "OpenRouterAdapter",
]
