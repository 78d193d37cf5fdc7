"""Pytest configuration and fixtures."""
from __future__ import annotations

import asyncio
from typing import Any, AsyncIterator, Optional

import pytest

from storybeat.config import ProviderSettings, Settings
from storybeat.providers.base import GenerationRequest, ProviderAdapter, UniformChunk


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def test_settings() -> Settings:
    """Settings with Gemini switched on and a dummy key; nothing read from the environment matters."""
    return Settings(
        selected_model="gemini:gemini-2.5-flash",
        gemini=ProviderSettings(enabled=True, api_key="test-key", model="gemini-2.5-flash"),
        openrouter=ProviderSettings(enabled=True, api_key="or-key", model="anthropic/claude-3.7-sonnet"),
    )


class ScriptedAdapter(ProviderAdapter):
    """
    Provider adapter that plays back scripted streams instead of calling HTTP.

    Each ``stream_generate`` call consumes the next entry of ``streams``. A
    script step is either text (yielded as a chunk), an ``asyncio.Event``
    (awaited, to hold the stream open) or an exception (raised).
    ``retries`` feeds ``generate`` the same way: text or an exception.
    """

    name = "gemini"

    def __init__(self, provider_settings: Optional[ProviderSettings] = None):
        super().__init__(provider_settings or ProviderSettings(enabled=True, api_key="k", model="gemini-2.5-flash"))
        self.streams: list[list[Any]] = []
        self.retries: list[Any] = []
        self.requests: list[GenerationRequest] = []
        self.retry_requests: list[GenerationRequest] = []
        self.aborted: list[str] = []

    def stream_url(self, request: GenerationRequest) -> str:
        return "https://example.invalid/stream"

    def generate_url(self, request: GenerationRequest) -> str:
        return "https://example.invalid/generate"

    def build_payload(self, request: GenerationRequest, stream: bool) -> dict[str, Any]:
        return {"prompt": request.prompt, "stream": stream}

    def normalize(self, frame: dict[str, Any]) -> Optional[UniformChunk]:
        return UniformChunk(text=frame.get("text", ""))

    async def stream_generate(self, request: GenerationRequest) -> AsyncIterator[UniformChunk]:
        self.requests.append(request)
        script = self.streams.pop(0) if self.streams else []
        for step in script:
            if isinstance(step, asyncio.Event):
                await step.wait()
            elif isinstance(step, BaseException):
                raise step
            else:
                yield UniformChunk(text=step)

    async def generate(self, request: GenerationRequest) -> str:
        self.retry_requests.append(request)
        step = self.retries.pop(0) if self.retries else ""
        if isinstance(step, BaseException):
            raise step
        return step

    def abort(self, request_id: str) -> bool:
        self.aborted.append(request_id)
        return True


@pytest.fixture
def adapter() -> ScriptedAdapter:
    return ScriptedAdapter()
