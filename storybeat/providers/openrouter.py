"""OpenRouter adapter (OpenAI-compatible chat completions)."""
from __future__ import annotations

from typing import Any, Optional

from storybeat.config import ProviderSettings
from storybeat.errors import ContentFilterError, TransportError
from storybeat.providers.base import GenerationRequest, ProviderAdapter, UniformChunk

DEFAULT_BASE_URL = "https://openrouter.ai/api/v1"
DEFAULT_REFERER = "https://storybeat.local"
DEFAULT_TITLE = "Storybeat"


class OpenRouterAdapter(ProviderAdapter):
    name = "openrouter"

    def __init__(
        self,
        provider_settings: ProviderSettings,
        *,
        referer: str = DEFAULT_REFERER,
        title: str = DEFAULT_TITLE,
        **kwargs: Any,
    ):
        super().__init__(provider_settings, **kwargs)
        self.referer = referer
        self.title = title

    @property
    def base_url(self) -> str:
        return (self.settings.base_url or DEFAULT_BASE_URL).rstrip("/")

    def headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.settings.api_key or ''}",
            "Content-Type": "application/json",
            "HTTP-Referer": self.referer,
            "X-Title": self.title,
        }

    def stream_url(self, request: GenerationRequest) -> str:
        return f"{self.base_url}/chat/completions"

    def generate_url(self, request: GenerationRequest) -> str:
        return f"{self.base_url}/chat/completions"

    def build_payload(self, request: GenerationRequest, stream: bool) -> dict[str, Any]:
        return {
            "model": request.model,
            "messages": [m.to_dict() for m in request.resolved_messages()],
            "max_tokens": request.max_output_tokens,
            "temperature": request.temperature if request.temperature is not None else self.settings.temperature,
            "top_p": request.top_p if request.top_p is not None else self.settings.top_p,
            "stream": stream,
        }

    def normalize(self, frame: dict[str, Any]) -> Optional[UniformChunk]:
        if "error" in frame:
            error = frame["error"] if isinstance(frame["error"], dict) else {"message": str(frame["error"])}
            code = error.get("code")
            raise TransportError(
                str(error.get("message") or "OpenRouter stream error"),
                code="stream_error",
                http_status=code if isinstance(code, int) else None,
                details=error,
            )

        choices = frame.get("choices") or []
        if not choices:
            return None
        choice = choices[0]
        delta = choice.get("delta") or choice.get("message") or {}
        text = delta.get("content") or ""
        finish_reason = choice.get("finish_reason")
        if finish_reason == "content_filter":
            raise ContentFilterError(
                "OpenRouter output was filtered",
                finish_reason=finish_reason,
            )
        return UniformChunk(text=text, is_complete=finish_reason is not None, finish_reason=finish_reason)
