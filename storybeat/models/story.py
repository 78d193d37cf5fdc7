"""Story structure as the story repository hands it over."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from pydantic import Field

from storybeat.models.base import CamelModel


class Scene(CamelModel):
    id: str
    title: str = ""
    content: str = ""  # stored HTML
    summary: Optional[str] = None
    order: int = 0


class Chapter(CamelModel):
    id: str
    title: str = ""
    order: int = 0
    scenes: list[Scene] = Field(default_factory=list)


class StorySettings(CamelModel):
    system_message: Optional[str] = None
    beat_template: Optional[str] = None
    writing_style: Optional[str] = None


class Story(CamelModel):
    id: str
    title: str = ""
    chapters: list[Chapter] = Field(default_factory=list)
    settings: StorySettings = Field(default_factory=StorySettings)

    def find_scene(self, scene_id: str) -> Optional[Scene]:
        for chapter in self.chapters:
            for scene in chapter.scenes:
                if scene.id == scene_id:
                    return scene
        return None


@dataclass(frozen=True)
class FlatScene:
    """A scene placed in reading order across all chapters."""

    chapter_id: str
    chapter_title: str
    scene: Scene
    global_order: int


def flatten_scenes(story: Story) -> list[FlatScene]:
    """Scenes in reading order: chapters by order, then scenes by order."""
    flat: list[FlatScene] = []
    for chapter in sorted(story.chapters, key=lambda c: c.order):
        for scene in sorted(chapter.scenes, key=lambda s: s.order):
            flat.append(FlatScene(chapter.id, chapter.title, scene, len(flat)))
    return flat
