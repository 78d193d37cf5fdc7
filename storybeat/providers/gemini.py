"""
Google Gemini adapter.

Streams via ``:streamGenerateContent?alt=sse``; each SSE event carries a full
GenerateContentResponse whose text sits in
``candidates[0].content.parts[].text``. The non-streaming fallback uses
``:generateContent`` with the identical payload.
"""
from __future__ import annotations

import logging
from typing import Any, Optional

from storybeat.config import DEFAULT_SAFETY_THRESHOLD, GEMINI_SAFETY_CATEGORIES
from storybeat.errors import ContentFilterError, TransportError
from storybeat.providers.base import GenerationRequest, ProviderAdapter, UniformChunk

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://generativelanguage.googleapis.com/v1beta/models"

# Finish reasons that mean the output was withheld for policy reasons.
BLOCKING_FINISH_REASONS = frozenset({
    "SAFETY",
    "PROHIBITED_CONTENT",
    "BLOCKLIST",
    "SPII",
    "RECITATION",
    "IMAGE_SAFETY",
})

_UNSPECIFIED_FINISH = "FINISH_REASON_UNSPECIFIED"


def _blocked_category(ratings: Optional[list[dict[str, Any]]]) -> Optional[str]:
    for rating in ratings or []:
        if rating.get("blocked"):
            return rating.get("category")
    for rating in ratings or []:
        if rating.get("probability") in ("HIGH", "MEDIUM"):
            return rating.get("category")
    return None


class GeminiAdapter(ProviderAdapter):
    name = "gemini"

    @property
    def base_url(self) -> str:
        return (self.settings.base_url or DEFAULT_BASE_URL).rstrip("/")

    def headers(self) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "x-goog-api-key": self.settings.api_key or "",
        }

    def stream_url(self, request: GenerationRequest) -> str:
        return f"{self.base_url}/{request.model}:streamGenerateContent?alt=sse"

    def generate_url(self, request: GenerationRequest) -> str:
        return f"{self.base_url}/{request.model}:generateContent"

    def safety_settings(self) -> list[dict[str, str]]:
        thresholds = self.settings.content_filter_thresholds
        return [
            {"category": category, "threshold": thresholds.get(key, DEFAULT_SAFETY_THRESHOLD)}
            for key, category in GEMINI_SAFETY_CATEGORIES.items()
        ]

    def build_contents(self, request: GenerationRequest) -> list[dict[str, Any]]:
        """Gemini has no system role in ``contents``: system text becomes a user turn."""
        contents: list[dict[str, Any]] = []
        for message in request.resolved_messages():
            if message.role == "system":
                contents.append({"role": "user", "parts": [{"text": f"System: {message.content}"}]})
            elif message.role == "assistant":
                contents.append({"role": "model", "parts": [{"text": message.content}]})
            else:
                contents.append({"role": "user", "parts": [{"text": message.content}]})
        return contents

    def build_payload(self, request: GenerationRequest, stream: bool) -> dict[str, Any]:
        temperature = request.temperature if request.temperature is not None else self.settings.temperature
        top_p = request.top_p if request.top_p is not None else self.settings.top_p
        return {
            "contents": self.build_contents(request),
            "generationConfig": {
                "temperature": temperature,
                "topP": top_p,
                "maxOutputTokens": request.max_output_tokens,
            },
            "safetySettings": self.safety_settings(),
        }

    def normalize(self, frame: dict[str, Any]) -> Optional[UniformChunk]:
        if "error" in frame:
            error = frame["error"] if isinstance(frame["error"], dict) else {"message": str(frame["error"])}
            raise TransportError(
                str(error.get("message") or "Gemini stream error"),
                code="stream_error",
                http_status=error.get("code") if isinstance(error.get("code"), int) else None,
                details=error,
            )

        feedback = frame.get("promptFeedback") or {}
        block_reason = feedback.get("blockReason")
        if block_reason:
            raise ContentFilterError(
                f"Prompt blocked by Gemini: {block_reason}",
                blocked_category=_blocked_category(feedback.get("safetyRatings")),
                finish_reason=block_reason,
            )

        candidates = frame.get("candidates") or []
        if not candidates:
            return None
        candidate = candidates[0]
        parts = (candidate.get("content") or {}).get("parts") or []
        # thought parts are the model's reasoning, never story text
        text = "".join(part.get("text", "") for part in parts if not part.get("thought"))

        finish_reason = candidate.get("finishReason")
        if finish_reason in BLOCKING_FINISH_REASONS:
            raise ContentFilterError(
                f"Gemini stopped generation: {finish_reason}",
                blocked_category=_blocked_category(candidate.get("safetyRatings")),
                finish_reason=finish_reason,
            )

        is_complete = bool(finish_reason) and finish_reason != _UNSPECIFIED_FINISH
        if finish_reason == "MAX_TOKENS":
            logger.info("[gemini] output hit maxOutputTokens")
        return UniformChunk(text=text, is_complete=is_complete, finish_reason=finish_reason)
