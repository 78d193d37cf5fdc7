"""Story repository and knowledge base interfaces, with in-memory implementations."""
from __future__ import annotations

from typing import Optional, Protocol

from storybeat.models.codex import CodexCategory
from storybeat.models.story import Scene, Story


class StoryRepository(Protocol):
    async def get_story(self, story_id: str) -> Optional[Story]: ...

    async def get_scene(self, story_id: str, chapter_id: str, scene_id: str) -> Optional[Scene]: ...


class KnowledgeBase(Protocol):
    async def get_all_entries(self, story_id: str) -> list[CodexCategory]: ...


class InMemoryStoryRepository:
    def __init__(self) -> None:
        self._stories: dict[str, Story] = {}

    def put(self, story: Story) -> None:
        self._stories[story.id] = story

    async def get_story(self, story_id: str) -> Optional[Story]:
        return self._stories.get(story_id)

    async def get_scene(self, story_id: str, chapter_id: str, scene_id: str) -> Optional[Scene]:
        story = self._stories.get(story_id)
        if story is None:
            return None
        for chapter in story.chapters:
            if chapter.id != chapter_id:
                continue
            for scene in chapter.scenes:
                if scene.id == scene_id:
                    return scene
        return None

    def clear(self) -> None:
        self._stories.clear()


class InMemoryKnowledgeBase:
    def __init__(self) -> None:
        self._codex: dict[str, list[CodexCategory]] = {}

    def put(self, story_id: str, categories: list[CodexCategory]) -> None:
        self._codex[story_id] = list(categories)

    async def get_all_entries(self, story_id: str) -> list[CodexCategory]:
        return list(self._codex.get(story_id, []))

    def clear(self) -> None:
        self._codex.clear()
