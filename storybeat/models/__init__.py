"""Pydantic models shared across storybeat."""
from storybeat.models.base import CamelModel, to_camel
from storybeat.models.beat import (
    Beat,
    BeatAction,
    BeatPromptEvent,
    BeatType,
    CustomContext,
    new_beat_id,
)
from storybeat.models.codex import (
    CodexCategory,
    CodexEntry,
    CustomField,
    EntryCategory,
    Importance,
    KnowledgeEntry,
)
from storybeat.models.story import Chapter, FlatScene, Scene, Story, StorySettings

__all__ = [
    "CamelModel",
    "to_camel",
    "Beat",
    "BeatAction",
    "BeatPromptEvent",
    "BeatType",
    "CustomContext",
    "new_beat_id",
    "CodexCategory",
    "CodexEntry",
    "CustomField",
    "EntryCategory",
    "Importance",
    "KnowledgeEntry",
    "Chapter",
    "FlatScene",
    "Scene",
    "Story",
    "StorySettings",
]
