"""
Beat prompt building.

Gathers everything a beat prompt needs (scene context, story-so-far,
relevant codex entries, point of view), then renders the story's template.
Knowledge base entries are read-only here; mention statistics from earlier
generations live in a separate MentionTracker and are merged in at
selection time.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional

from storybeat.config import Settings, get_settings
from storybeat.core import codex_format, relevance
from storybeat.core.prompt_assembly import (
    DEFAULT_BEAT_TEMPLATE,
    PromptMessage,
    assemble,
    build_placeholders,
    parse_messages,
)
from storybeat.core.story_context import (
    extract_full_text,
    extract_text_before_beat,
    resolve_scene_context,
    serialize_story_so_far,
)
from storybeat.core.tokens import count_prompt_tokens
from storybeat.models.beat import BeatPromptEvent, BeatType
from storybeat.models.codex import EntryCategory, KnowledgeEntry, to_knowledge_entry
from storybeat.models.story import FlatScene, Story, flatten_scenes
from storybeat.services.repositories import KnowledgeBase, StoryRepository

logger = logging.getLogger(__name__)


@dataclass
class BeatPrompt:
    """A rendered prompt plus what went into it."""

    prompt: str
    messages: list[PromptMessage]
    word_count: int
    codex_entries: list[KnowledgeEntry] = field(default_factory=list)
    estimated_tokens: int = 0
    protagonist: Optional[str] = None


class MentionTracker:
    """Per-story mention statistics for codex entries."""

    def __init__(self) -> None:
        # story_id -> entry_id -> (last_mentioned, mention_count)
        self._mentions: dict[str, dict[str, tuple[int, int]]] = {}

    def apply(self, story_id: str, entries: list[KnowledgeEntry]) -> list[KnowledgeEntry]:
        known = self._mentions.get(story_id)
        if not known:
            return entries
        merged: list[KnowledgeEntry] = []
        for entry in entries:
            if entry.id in known:
                last, count = known[entry.id]
                entry = entry.model_copy(update={"last_mentioned": last, "mention_count": count})
            merged.append(entry)
        return merged

    def record(self, story_id: str, entries: list[KnowledgeEntry], generated_text: str, position: int) -> None:
        updated = relevance.update_mention_tracking(self.apply(story_id, entries), generated_text, position)
        store = self._mentions.setdefault(story_id, {})
        for entry in updated:
            if entry.last_mentioned is not None:
                store[entry.id] = (entry.last_mentioned, entry.mention_count)

    def clear(self) -> None:
        self._mentions.clear()


class BeatContextBuilder:
    def __init__(
        self,
        stories: StoryRepository,
        knowledge: KnowledgeBase,
        app_settings: Optional[Settings] = None,
        mentions: Optional[MentionTracker] = None,
    ):
        self.stories = stories
        self.knowledge = knowledge
        self.settings = app_settings or get_settings()
        self.mentions = mentions or MentionTracker()

    async def _load_entries(self, story_id: Optional[str]) -> list[KnowledgeEntry]:
        if not story_id:
            return []
        categories = await self.knowledge.get_all_entries(story_id)
        entries: list[KnowledgeEntry] = []
        for category in sorted(categories, key=lambda c: c.order):
            for entry in sorted(category.entries, key=lambda e: e.order):
                entries.append(to_knowledge_entry(entry, category.title))
        return self.mentions.apply(story_id, entries)

    @staticmethod
    def _selected_texts(event: BeatPromptEvent, flat: list[FlatScene]) -> dict[str, str]:
        texts = dict(event.custom_context.selected_scene_texts)
        wanted = set(event.custom_context.selected_scenes) - set(texts)
        for item in flat:
            if item.scene.id in wanted:
                texts[item.scene.id] = extract_full_text(item.scene.content)
        return texts

    def select_entries(
        self,
        entries: list[KnowledgeEntry],
        scene_context: str,
        prompt: str,
    ) -> list[KnowledgeEntry]:
        """Relevance-filtered entries, with notes always included in full."""
        notes = [e for e in entries if e.category == EntryCategory.NOTES]
        others = [e for e in entries if e.category != EntryCategory.NOTES]
        selected = relevance.select(others, scene_context, prompt, self.settings.codex_max_tokens)
        return selected + notes

    async def build(self, event: BeatPromptEvent, scene_html: Optional[str] = None) -> BeatPrompt:
        """
        Render the prompt for a beat prompt event.

        ``scene_html`` is the live document of the beat's scene; when given
        it takes precedence over the stored scene content.
        """
        word_count = self.settings.clamp_word_count(event.word_count)
        prompt_text = event.prompt or ""

        story: Optional[Story] = None
        if event.story_id:
            story = await self.stories.get_story(event.story_id)
            if story is None:
                logger.warning(f"Story {event.story_id} not found, building prompt without story context")
        flat = flatten_scenes(story) if story else []

        if event.scene_id and flat:
            scene_context = resolve_scene_context(flat, event.scene_id, event.beat_id, scene_html)
        else:
            scene_context = extract_text_before_beat(scene_html, event.beat_id) if scene_html else ""

        story_so_far = ""
        if (
            event.beat_type == BeatType.STORY
            and event.custom_context.include_story_outline
            and event.scene_id
            and flat
        ):
            story_so_far = serialize_story_so_far(flat, event.scene_id, self._selected_texts(event, flat))

        entries = await self._load_entries(event.story_id)
        selected = self.select_entries(entries, scene_context, prompt_text)
        protagonist = codex_format.find_protagonist(entries)

        story_settings = story.settings if story else None
        template = (story_settings.beat_template if story_settings else None) or DEFAULT_BEAT_TEMPLATE
        placeholders = build_placeholders(
            system_message=story_settings.system_message if story_settings else None,
            codex_entries=codex_format.serialize_entries(selected),
            story_so_far=story_so_far,
            scene_full_text=scene_context,
            word_count=word_count,
            prompt=prompt_text,
            point_of_view=codex_format.point_of_view(entries),
            writing_style=story_settings.writing_style if story_settings else None,
        )
        prompt = assemble(template, placeholders)
        estimated = count_prompt_tokens(prompt)
        logger.info(
            f"Built prompt for beat {event.beat_id}: ~{estimated} tokens, "
            f"{len(selected)}/{len(entries)} codex entries, {word_count} words requested"
        )
        return BeatPrompt(
            prompt=prompt,
            messages=parse_messages(prompt),
            word_count=word_count,
            codex_entries=selected,
            estimated_tokens=estimated,
            protagonist=protagonist.title if protagonist else None,
        )

    def record_generation(self, story_id: Optional[str], entries: list[KnowledgeEntry], text: str, position: int) -> None:
        """Feed finished output back into mention tracking."""
        if story_id and entries and text:
            self.mentions.record(story_id, entries, text, position)
