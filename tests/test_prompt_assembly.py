"""Tests for prompt assembly, codex serialization and story context extraction."""
from __future__ import annotations

import pytest

from storybeat.config import Settings
from storybeat.core import codex_format
from storybeat.core.prompt_assembly import (
    DEFAULT_BEAT_TEMPLATE,
    DEFAULT_SYSTEM_MESSAGE,
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
from storybeat.models.beat import BeatPromptEvent, BeatType, CustomContext
from storybeat.models.codex import (
    CodexCategory,
    CodexEntry,
    CustomField,
    EntryCategory,
    Importance,
    KnowledgeEntry,
    classify_category,
    to_knowledge_entry,
)
from storybeat.models.story import Chapter, Scene, Story, StorySettings, flatten_scenes
from storybeat.services.context_builder import BeatContextBuilder, MentionTracker
from storybeat.services.repositories import InMemoryKnowledgeBase, InMemoryStoryRepository


def _story() -> Story:
    return Story(
        id="s1",
        title="The Harbor",
        chapters=[
            Chapter(id="c2", title="Two", order=2, scenes=[
                Scene(id="sc3", content="<p>Third scene.</p>", order=1),
            ]),
            Chapter(id="c1", title="One", order=1, scenes=[
                Scene(id="sc1", content="<p>First scene text.</p>", summary="Mira arrives.", order=1),
                Scene(id="sc2", content="<p>Second scene.</p><p></p><p>More.</p>", order=2),
            ]),
        ],
    )


# =============================================================================
# assemble
# =============================================================================

class TestAssemble:
    """Single-pass placeholder substitution."""

    def test_basic_substitution(self) -> None:
        result = assemble("{prompt} / {wordCount} words", {"prompt": "He opens the door", "wordCount": "400"})
        assert result == "He opens the door / 400 words"

    def test_none_becomes_empty(self) -> None:
        result = assemble("[{writingStyle}]", {"writingStyle": None})
        assert result == "[]"
        assert "None" not in result

    def test_unknown_placeholder_left_as_written(self) -> None:
        assert assemble("{prompt} {mystery}", {"prompt": "x"}) == "x {mystery}"

    def test_values_are_not_rescanned(self) -> None:
        result = assemble("{prompt}|{wordCount}", {"prompt": "say {wordCount}", "wordCount": 5})
        assert result == "say {wordCount}|5"

    def test_every_occurrence_replaced(self) -> None:
        assert assemble("{a}-{a}", {"a": "z"}) == "z-z"

    def test_legacy_aliases(self) -> None:
        result = assemble("{SystemMessage}:{summariesOfScenesBefore}", {"systemMessage": "S", "storySoFar": "T"})
        assert result == "S:T"

    def test_default_template_never_leaks_null(self) -> None:
        placeholders = build_placeholders(
            system_message=None,
            codex_entries="",
            story_so_far="",
            scene_full_text="",
            word_count=400,
            prompt="She runs.",
            point_of_view="",
            writing_style=None,
        )
        prompt = assemble(DEFAULT_BEAT_TEMPLATE, placeholders)
        for token in ("None", "null", "undefined"):
            assert token not in prompt
        assert DEFAULT_SYSTEM_MESSAGE in prompt
        assert "about 400 words" in prompt


class TestParseMessages:
    def test_messages_format(self) -> None:
        prompt = '<message role="system">Be brief.</message><message role="user">Go.</message>'
        assert parse_messages(prompt) == [
            PromptMessage("system", "Be brief."),
            PromptMessage("user", "Go."),
        ]

    def test_plain_prompt_becomes_user_message(self) -> None:
        assert parse_messages("  Just write.  ") == [PromptMessage("user", "Just write.")]


# =============================================================================
# Codex serialization
# =============================================================================

class TestCodexFormat:
    """XML rendering of codex entries."""

    def test_serialize_character(self) -> None:
        entry = KnowledgeEntry(
            id="1",
            title="Mira <Vell>",
            category=EntryCategory.CHARACTER,
            content="Captain & pilot",
            aliases=["Cap"],
            story_role="Protagonist",
            custom_fields=[CustomField(name="Hair Color", value="red")],
            metadata={"age": 31, "aliases": ["Cap"], "nested": {"x": 1}},
        )
        xml = codex_format.serialize_entry(entry)
        assert xml.splitlines() == [
            '<character name="Mira &lt;Vell&gt;" aliases="Cap" storyRole="Protagonist">',
            "  <description>Captain &amp; pilot</description>",
            "  <hairColor>red</hairColor>",
            "  <age>31</age>",
            "</character>",
        ]

    def test_unknown_category_uses_other_tag(self) -> None:
        entry = KnowledgeEntry(id="1", title="Tide", category=EntryCategory.LORE)
        assert codex_format.serialize_entry(entry).startswith('<other name="Tide">')

    @pytest.mark.parametrize("name,expected", [
        ("Hair Color", "hairColor"),
        ("Age (years)", "ageYears"),
        ("2nd name", "field2ndName"),
        ("!!!", "field"),
    ])
    def test_sanitize_tag_name(self, name: str, expected: str) -> None:
        assert codex_format.sanitize_tag_name(name) == expected

    def test_point_of_view(self) -> None:
        entries = [
            KnowledgeEntry(id="1", title="Tomas", category=EntryCategory.CHARACTER),
            KnowledgeEntry(id="2", title="Mira", category=EntryCategory.CHARACTER, story_role="protagonist"),
        ]
        pov = codex_format.point_of_view(entries)
        assert pov.startswith('<pointOfView character="Mira">')
        assert codex_format.point_of_view(entries[:1]) == ""


class TestCodexModel:
    @pytest.mark.parametrize("title,category", [
        ("Characters", EntryCategory.CHARACTER),
        ("Figuren", EntryCategory.CHARACTER),
        ("Locations", EntryCategory.LOCATION),
        ("Orte", EntryCategory.LOCATION),
        ("Items", EntryCategory.ITEM),
        ("World Lore", EntryCategory.LORE),
        ("Notes", EntryCategory.NOTES),
        ("Factions", EntryCategory.OTHER),
    ])
    def test_classify_category(self, title: str, category: EntryCategory) -> None:
        assert classify_category(title) == category

    def test_to_knowledge_entry(self) -> None:
        entry = CodexEntry(
            id="e1",
            title="Mira",
            tags=["pilot"],
            always_include=True,
            metadata={"aliases": "Cap, Captain", "importance": "major"},
        )
        knowledge = to_knowledge_entry(entry, "Characters")
        assert knowledge.aliases == ["Cap", "Captain"]
        assert knowledge.keywords == ["pilot"]
        assert knowledge.importance == Importance.MAJOR
        assert knowledge.global_include
        assert knowledge.category == EntryCategory.CHARACTER


# =============================================================================
# Story context
# =============================================================================

class TestStoryContext:
    """Scene text extraction and story-so-far."""

    def test_extract_full_text_skips_beats(self) -> None:
        html = (
            '<p>One.</p><div class="beat-ai-node" data-id="b1" data-prompt="x"></div>'
            "<p>Two [Beat: hidden]</p><p></p><p>Three.</p>"
        )
        assert extract_full_text(html) == "One.\n\nTwo\n\nThree."

    def test_extract_text_before_beat(self) -> None:
        html = (
            '<p>One.</p><div class="beat-ai-node" data-id="b0"></div><p>Two.</p>'
            '<div class="beat-ai-node" data-id="b1"></div><p>After.</p>'
        )
        assert extract_text_before_beat(html, "b1") == "One.\n\nTwo."

    def test_missing_beat_falls_back_to_full_text(self) -> None:
        assert extract_text_before_beat("<p>Only.</p>", "nope") == "Only."

    def test_story_so_far_excludes_target_and_later(self) -> None:
        flat = flatten_scenes(_story())
        text = serialize_story_so_far(flat, "sc2")
        assert text == "## One\n\nMira arrives."
        assert "Second" not in text and "Third" not in text

    def test_story_so_far_chapter_headers(self) -> None:
        flat = flatten_scenes(_story())
        text = serialize_story_so_far(flat, "sc3", use_summaries=False)
        assert text == "## One\n\nFirst scene text.\n\nSecond scene.\n\nMore."

    def test_story_so_far_selected_texts(self) -> None:
        flat = flatten_scenes(_story())
        text = serialize_story_so_far(flat, "sc2", {"sc1": "Full first scene."})
        assert text == "## One\n\nFull first scene."

    def test_story_so_far_unknown_target(self) -> None:
        assert serialize_story_so_far(flatten_scenes(_story()), "missing") == ""

    def test_empty_scene_falls_back_to_previous_scene(self) -> None:
        flat = flatten_scenes(_story())
        html = '<div class="beat-ai-node" data-id="b1"></div><p>Later.</p>'
        assert resolve_scene_context(flat, "sc3", "b1", html) == "Second scene.\n\nMore."


# =============================================================================
# BeatContextBuilder
# =============================================================================

def _builder(test_settings: Settings, story: Story | None = None) -> BeatContextBuilder:
    stories = InMemoryStoryRepository()
    knowledge = InMemoryKnowledgeBase()
    story = story or _story()
    stories.put(story)
    knowledge.put(story.id, [
        CodexCategory(id="chars", title="Characters", entries=[
            CodexEntry(id="mira", title="Mira", content="The captain.", story_role="protagonist"),
            CodexEntry(id="tomas", title="Tomas", content="The smuggler."),
        ]),
        CodexCategory(id="notes", title="Notes", order=1, entries=[
            CodexEntry(id="n1", title="Tone", content="Keep it bleak."),
        ]),
    ])
    return BeatContextBuilder(stories, knowledge, test_settings)


class TestBeatContextBuilder:

    @pytest.mark.anyio
    async def test_build_prompt(self, test_settings: Settings) -> None:
        builder = _builder(test_settings)
        event = BeatPromptEvent(
            beat_id="b1",
            prompt="Mira says goodbye",
            word_count=5,
            story_id="s1",
            chapter_id="c2",
            scene_id="sc3",
        )
        html = '<p>The dock was empty.</p><div class="beat-ai-node" data-id="b1"></div>'
        result = await builder.build(event, scene_html=html)

        assert result.word_count == test_settings.min_word_count
        assert result.protagonist == "Mira"
        assert [e.id for e in result.codex_entries] == ["mira", "n1"]
        assert "The dock was empty." in result.prompt
        assert "## One" in result.prompt
        assert '<pointOfView character="Mira">' in result.prompt
        assert "Keep it bleak." in result.prompt
        assert "The smuggler." not in result.prompt
        assert [m.role for m in result.messages] == ["system", "user"]
        assert result.estimated_tokens > 0

    @pytest.mark.anyio
    async def test_scene_beat_omits_story_so_far(self, test_settings: Settings) -> None:
        builder = _builder(test_settings)
        event = BeatPromptEvent(beat_id="b1", prompt="x", story_id="s1", scene_id="sc3", beat_type=BeatType.SCENE)
        result = await builder.build(event)
        assert "## One" not in result.prompt

    @pytest.mark.anyio
    async def test_outline_switched_off(self, test_settings: Settings) -> None:
        builder = _builder(test_settings)
        event = BeatPromptEvent(
            beat_id="b1", prompt="x", story_id="s1", scene_id="sc3",
            custom_context=CustomContext(include_story_outline=False),
        )
        result = await builder.build(event)
        assert "Mira arrives." not in result.prompt

    @pytest.mark.anyio
    async def test_story_template(self, test_settings: Settings) -> None:
        story = _story().model_copy(update={"settings": StorySettings(beat_template="{prompt} / {wordCount} words")})
        builder = _builder(test_settings, story)
        event = BeatPromptEvent(beat_id="b1", prompt="He opens the door", word_count=400, story_id="s1", scene_id="sc1")
        result = await builder.build(event)
        assert result.prompt == "He opens the door / 400 words"
        assert result.messages == [PromptMessage("user", "He opens the door / 400 words")]

    @pytest.mark.anyio
    async def test_unknown_story_still_builds(self, test_settings: Settings) -> None:
        builder = _builder(test_settings)
        event = BeatPromptEvent(beat_id="b1", prompt="Go", story_id="missing")
        result = await builder.build(event)
        assert "Go" in result.prompt
        assert result.codex_entries == []


class TestMentionTracker:
    def test_record_and_apply(self) -> None:
        tracker = MentionTracker()
        entries = [KnowledgeEntry(id="1", title="Mira"), KnowledgeEntry(id="2", title="Tomas")]
        tracker.record("s1", entries, "Mira and Mira.", 120)
        applied = tracker.apply("s1", entries)
        assert applied[0].last_mentioned == 120
        assert applied[0].mention_count == 2
        assert applied[1].last_mentioned is None
        assert tracker.apply("other", entries) is entries
