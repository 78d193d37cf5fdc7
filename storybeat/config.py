"""
Storybeat Configuration

Environment-based configuration for beat generation. Provider blocks are
nested, e.g. ``STORYBEAT_GEMINI__API_KEY`` or ``STORYBEAT_OPENROUTER__MODEL``.
"""
from __future__ import annotations

import logging
from functools import lru_cache
from typing import Optional

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


# Gemini safety categories keyed by the short names hosts use in settings.
GEMINI_SAFETY_CATEGORIES: dict[str, str] = {
    "harassment": "HARM_CATEGORY_HARASSMENT",
    "hateSpeech": "HARM_CATEGORY_HATE_SPEECH",
    "sexuallyExplicit": "HARM_CATEGORY_SEXUALLY_EXPLICIT",
    "dangerousContent": "HARM_CATEGORY_DANGEROUS_CONTENT",
    "civicIntegrity": "HARM_CATEGORY_CIVIC_INTEGRITY",
}

DEFAULT_SAFETY_THRESHOLD = "BLOCK_NONE"


class ProviderSettings(BaseModel):
    """Settings for one text-generation backend."""

    enabled: bool = False
    api_key: Optional[str] = None
    model: str = ""
    temperature: float = 0.7
    top_p: float = 1.0
    base_url: Optional[str] = None
    content_filter_thresholds: dict[str, str] = Field(default_factory=dict)

    @property
    def is_usable(self) -> bool:
        """True when the provider is switched on and has a key."""
        return self.enabled and bool(self.api_key)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="STORYBEAT_",
        env_file=".env",
        env_nested_delimiter="__",
        extra="ignore",
    )

    # Application
    app_name: str = "Storybeat"
    app_version: str = "0.4.0"
    debug: bool = False
    cors_origins: list[str] = Field(default_factory=lambda: ["http://localhost:4200"])

    # Model selection: "<provider>:<modelId>", e.g. "gemini:gemini-2.5-flash"
    selected_model: str = ""

    gemini: ProviderSettings = Field(
        default_factory=lambda: ProviderSettings(model="gemini-2.5-flash")
    )
    openrouter: ProviderSettings = Field(default_factory=ProviderSettings)

    # HTTP referer and title sent to OpenRouter for attribution
    openrouter_referer: str = "https://storybeat.local"
    openrouter_title: str = "Storybeat"

    # Generation
    default_word_count: int = 400
    min_word_count: int = 10
    max_word_count: int = 50000
    tokens_per_word: float = 1.3
    codex_max_tokens: int = 1000

    # None means no client-side timeout: a hung stream stays in flight until
    # the host stops it.
    llm_timeout: Optional[float] = None

    # Bounded history of provider requests
    request_log_size: int = 50

    def provider_settings(self, provider: str) -> ProviderSettings:
        """Return the settings block for a provider tag.

        Raises KeyError for tags with no settings block.
        """
        if provider == "gemini":
            return self.gemini
        if provider == "openrouter":
            return self.openrouter
        raise KeyError(provider)

    def clamp_word_count(self, word_count: Optional[int]) -> int:
        """Clamp a requested word count into the supported range."""
        if word_count is None:
            return self.default_word_count
        return max(self.min_word_count, min(self.max_word_count, int(word_count)))

    def max_output_tokens(self, word_count: int) -> int:
        """Output token budget for a target word count."""
        return max(1, int(round(word_count * self.tokens_per_word)))


def parse_model_id(model_id: str) -> tuple[str, str]:
    """Split ``"<provider>:<modelId>"`` into ``(provider, model)``.

    The model part may itself contain colons or slashes
    (``openrouter:anthropic/claude-3.7-sonnet:beta``). Returns ``("", "")``
    for an empty id and ``(provider, "")`` when no model part is present.
    """
    model_id = (model_id or "").strip()
    if not model_id:
        return "", ""
    provider, _, model = model_id.partition(":")
    return provider.strip().lower(), model.strip()


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
