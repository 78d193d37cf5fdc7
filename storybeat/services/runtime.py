"""Process-wide service graph used by the HTTP layer."""
from __future__ import annotations

import logging
from typing import Optional

import httpx

from storybeat.config import Settings, get_settings
from storybeat.providers.base import ProviderAdapter
from storybeat.services.broadcaster import GenerationBroadcaster
from storybeat.services.context_builder import BeatContextBuilder
from storybeat.services.orchestrator import GenerationOrchestrator
from storybeat.services.repositories import InMemoryKnowledgeBase, InMemoryStoryRepository
from storybeat.services.request_log import RequestLog
from storybeat.services.session import SessionStore

logger = logging.getLogger(__name__)


class Runtime:
    """Repositories, orchestrator and open sessions wired together."""

    def __init__(
        self,
        app_settings: Optional[Settings] = None,
        client: Optional[httpx.AsyncClient] = None,
        adapters: Optional[dict[str, ProviderAdapter]] = None,
    ):
        self.settings = app_settings or get_settings()
        self.stories = InMemoryStoryRepository()
        self.knowledge = InMemoryKnowledgeBase()
        self.broadcaster = GenerationBroadcaster()
        self.request_log = RequestLog(self.settings.request_log_size)
        self.orchestrator = GenerationOrchestrator(
            self.settings,
            broadcaster=self.broadcaster,
            request_log=self.request_log,
            client=client,
            adapters=adapters,
        )
        self.context_builder = BeatContextBuilder(self.stories, self.knowledge, self.settings)
        self.sessions = SessionStore(self.orchestrator, self.context_builder)

    async def close(self) -> None:
        self.sessions.clear()
        await self.orchestrator.close()
        self.broadcaster.clear()


_runtime: Optional[Runtime] = None


def get_runtime() -> Runtime:
    """Get the singleton Runtime instance."""
    global _runtime
    if _runtime is None:
        _runtime = Runtime()
    return _runtime


def set_runtime(runtime: Optional[Runtime]) -> None:
    """Swap the singleton (for testing)."""
    global _runtime
    _runtime = runtime


async def close_runtime() -> None:
    global _runtime
    if _runtime is not None:
        await _runtime.close()
        _runtime = None
        logger.info("Runtime closed")
