"""
Tests for beat editor sessions: prompt events in, prose in the document out.

A session wires the editor, mutation engine, node views, context builder and
the shared orchestrator. These tests drive it with a scripted provider.
"""
from __future__ import annotations

import asyncio

import pytest

from storybeat.config import Settings
from storybeat.errors import ConfigurationError
from storybeat.models.beat import BeatAction, BeatPromptEvent
from storybeat.models.codex import CodexCategory, CodexEntry, KnowledgeEntry
from storybeat.models.story import Story
from storybeat.services.context_builder import BeatContextBuilder
from storybeat.services.orchestrator import GenerationOrchestrator
from storybeat.services.repositories import InMemoryKnowledgeBase, InMemoryStoryRepository
from storybeat.services.session import BeatEditorSession, SessionStore
from storybeat.views.beat_view import ViewContext

BEAT_HTML = '<p>Intro</p><div class="beat-ai-node" data-id="beat-1" data-prompt="She waits"></div>'


async def _drain(rounds: int = 30) -> None:
    for _ in range(rounds):
        await asyncio.sleep(0)


class BlockingKnowledgeBase(InMemoryKnowledgeBase):
    """Knowledge base whose lookups wait until the test opens the gate."""

    def __init__(self) -> None:
        super().__init__()
        self.entered = asyncio.Event()
        self.gate = asyncio.Event()

    async def get_all_entries(self, story_id: str) -> list[CodexCategory]:
        self.entered.set()
        await self.gate.wait()
        return await super().get_all_entries(story_id)


@pytest.fixture
def stories() -> InMemoryStoryRepository:
    return InMemoryStoryRepository()


@pytest.fixture
def knowledge() -> InMemoryKnowledgeBase:
    return InMemoryKnowledgeBase()


@pytest.fixture
def orchestrator(test_settings, adapter) -> GenerationOrchestrator:
    return GenerationOrchestrator(test_settings, adapters={"gemini": adapter})


@pytest.fixture
def builder(test_settings, stories, knowledge) -> BeatContextBuilder:
    return BeatContextBuilder(stories, knowledge, test_settings)


@pytest.fixture
def session(orchestrator, builder) -> BeatEditorSession:
    return BeatEditorSession("s1", orchestrator, builder, BEAT_HTML)


def _texts(session: BeatEditorSession) -> list[str]:
    return [b.text for b in session.editor.doc.blocks if b.is_paragraph]


def _event(action: BeatAction = BeatAction.GENERATE, **fields) -> BeatPromptEvent:
    return BeatPromptEvent(beat_id="beat-1", action=action, **fields)


# =============================================================================
# Generate
# =============================================================================


class TestGenerate:
    @pytest.mark.anyio
    async def test_streams_into_document(self, session, adapter):
        adapter.streams = [["Hello", " world", "\nNext"]]

        record = await session.submit(_event())
        await record.task

        assert _texts(session) == ["Intro", "Hello world", "Next"]
        beat = session.get_beat("beat-1")
        assert beat.generated_content == "Hello world\nNext"
        assert not beat.is_generating
        assert beat.word_count == 400
        assert not session.views.get("beat-1").is_generating

    @pytest.mark.anyio
    async def test_prompt_carries_scene_and_beat_prompt(self, session, adapter):
        adapter.streams = [["x"]]

        record = await session.submit(_event())
        await record.task

        prompt = adapter.requests[0].prompt
        assert "Intro" in prompt
        assert "She waits" in prompt
        assert adapter.requests[0].messages

    @pytest.mark.anyio
    async def test_generating_state_while_streaming(self, session, adapter):
        gate = asyncio.Event()
        adapter.streams = [["Part", gate, " done"]]

        record = await session.submit(_event(prompt="New prompt", word_count=120))
        await _drain()

        beat = session.get_beat("beat-1")
        assert beat.is_generating
        assert beat.prompt == "New prompt"
        assert beat.word_count == 120
        assert session.views.get("beat-1").is_generating
        assert _texts(session) == ["Intro", "Part"]

        gate.set()
        await record.task
        assert _texts(session) == ["Intro", "Part done"]
        assert not session.get_beat("beat-1").is_generating

    @pytest.mark.anyio
    async def test_cleanup_rewrites_document(self, session, adapter):
        adapter.streams = [["Hello\n\n\n\n\nWorld"]]

        record = await session.submit(_event())
        await record.task

        assert _texts(session) == ["Intro", "Hello", "", "World"]
        assert session.get_beat("beat-1").generated_content == "Hello\n\nWorld"

    @pytest.mark.anyio
    async def test_view_submit_runs_generation(self, session, adapter):
        adapter.streams = [["From view"]]

        session.views.get("beat-1").submit("Typed prompt")
        await _drain()

        assert _texts(session) == ["Intro", "From view"]
        assert session.get_beat("beat-1").prompt == "Typed prompt"

    @pytest.mark.anyio
    async def test_unknown_beat_is_ignored(self, session, adapter):
        assert await session.submit(BeatPromptEvent(beat_id="nope")) is None
        assert adapter.requests == []

    @pytest.mark.anyio
    async def test_failure_writes_placeholder(self, session, adapter):
        from storybeat.errors import ContentFilterError

        adapter.streams = [[ContentFilterError("blocked")]]

        record = await session.submit(_event())
        await record.task

        beat = session.get_beat("beat-1")
        assert beat.generated_content
        assert _texts(session)[1:] == beat.generated_content.split("\n")
        assert not beat.is_generating


# =============================================================================
# Regenerate, delete-after, stop
# =============================================================================


class TestBeatActions:
    @pytest.mark.anyio
    async def test_regenerate_replaces_previous_output(self, session, adapter):
        adapter.streams = [["Old text"], ["New text"]]

        await (await session.submit(_event())).task
        await (await session.submit(_event(BeatAction.REGENERATE))).task

        assert _texts(session) == ["Intro", "New text"]

    @pytest.mark.anyio
    async def test_generate_again_keeps_previous_output(self, session, adapter):
        adapter.streams = [["Old"], ["New"]]

        await (await session.submit(_event())).task
        await (await session.submit(_event())).task

        assert _texts(session) == ["Intro", "New", "Old"]

    @pytest.mark.anyio
    async def test_regenerate_after_reload_uses_stored_content(self, session, adapter):
        adapter.streams = [["Old one\nOld two"], ["Fresh"]]
        await (await session.submit(_event())).task

        session.load_html(session.to_html() + "<p>Outro</p>")
        await (await session.submit(_event(BeatAction.REGENERATE))).task

        assert _texts(session) == ["Intro", "Fresh", "Outro"]

    @pytest.mark.anyio
    async def test_delete_after(self, orchestrator, builder):
        session = BeatEditorSession(
            "s2", orchestrator, builder,
            '<div class="beat-ai-node" data-id="beat-1"></div><p>a</p><p>b</p>',
        )

        assert await session.submit(_event(BeatAction.DELETE_AFTER)) is None

        assert [b.type for b in session.editor.doc.blocks] == ["beat"]

    @pytest.mark.anyio
    async def test_stop_keeps_partial_output(self, session, adapter):
        gate = asyncio.Event()
        adapter.streams = [["Partial", gate, " more"]]

        await session.submit(_event())
        await _drain()
        assert session.stop("beat-1")
        gate.set()
        await _drain()

        assert _texts(session) == ["Intro", "Partial"]
        beat = session.get_beat("beat-1")
        assert beat.generated_content == "Partial"
        assert not beat.is_generating
        assert not session.views.get("beat-1").is_generating

    @pytest.mark.anyio
    async def test_stop_while_prompt_is_built(self, orchestrator, stories, test_settings, adapter):
        knowledge = BlockingKnowledgeBase()
        builder = BeatContextBuilder(stories, knowledge, test_settings)
        session = BeatEditorSession("s5", orchestrator, builder, BEAT_HTML, ViewContext(story_id="story-1"))
        events = []
        orchestrator.add_listener(events.append)
        adapter.streams = [["Hello world"]]

        submit = asyncio.ensure_future(session.submit(_event()))
        await knowledge.entered.wait()
        assert session.get_beat("beat-1").is_generating

        assert session.stop("beat-1")
        assert not session.get_beat("beat-1").is_generating
        assert not session.views.get("beat-1").is_generating
        assert [e.is_complete for e in events] == [True]

        knowledge.gate.set()
        assert await submit is None
        await _drain()

        assert _texts(session) == ["Intro"]
        assert adapter.requests == []
        assert len(events) == 1
        assert not session.stop("beat-1")

    @pytest.mark.anyio
    async def test_delete_beat_mid_stream(self, session, adapter):
        gate = asyncio.Event()
        adapter.streams = [["Part", gate, " more"]]

        await session.submit(_event())
        await _drain()
        assert session.delete_beat("beat-1")
        gate.set()
        await _drain()

        assert session.get_beat("beat-1") is None
        assert _texts(session) == ["Intro", "Part"]
        assert len(session.views) == 0

    @pytest.mark.anyio
    async def test_configuration_error_releases_beat(self, adapter, builder):
        orchestrator = GenerationOrchestrator(Settings(_env_file=None, selected_model=""), adapters={"gemini": adapter})
        session = BeatEditorSession("s3", orchestrator, builder, BEAT_HTML)

        with pytest.raises(ConfigurationError):
            await session.submit(_event())

        assert not session.get_beat("beat-1").is_generating
        assert not session.views.get("beat-1").is_generating
        assert _texts(session) == ["Intro"]
        assert adapter.requests == []


# =============================================================================
# Sessions and context
# =============================================================================


class TestSessions:
    @pytest.mark.anyio
    async def test_sessions_only_apply_their_own_beats(self, orchestrator, builder, adapter):
        store = SessionStore(orchestrator, builder)
        a = store.open("a", '<div class="beat-ai-node" data-id="beat-a"></div>')
        b = store.open("b", '<p>Untouched</p><div class="beat-ai-node" data-id="beat-b"></div>')
        adapter.streams = [["Only in A"]]

        await (await a.submit(BeatPromptEvent(beat_id="beat-a"))).task

        assert _texts(a) == ["Only in A"]
        assert _texts(b) == ["Untouched"]
        assert len(store) == 2

    @pytest.mark.anyio
    async def test_reopen_reloads_document(self, orchestrator, builder):
        store = SessionStore(orchestrator, builder)
        first = store.open("a", "<p>one</p>")
        again = store.open("a", "<p>two</p>", ViewContext(story_id="s1"))

        assert again is first
        assert _texts(again) == ["two"]
        assert again.context.story_id == "s1"

    @pytest.mark.anyio
    async def test_close_detaches_from_orchestrator(self, orchestrator, builder):
        store = SessionStore(orchestrator, builder)
        store.open("a", BEAT_HTML)

        assert store.close("a")
        assert not store.close("a")
        assert orchestrator._listeners == []
        assert orchestrator._finalizers == []

    @pytest.mark.anyio
    async def test_insert_beat_defaults_to_end(self, session):
        beat = session.insert_beat()
        assert session.editor.doc.blocks[-1].attrs["id"] == beat.id
        assert beat.id in session.views

    @pytest.mark.anyio
    async def test_mentions_recorded_after_generation(self, orchestrator, builder, stories, knowledge, adapter):
        stories.put(Story(id="story-1"))
        knowledge.put("story-1", [
            CodexCategory(id="cat", title="Characters", entries=[CodexEntry(id="c1", title="Mira")]),
        ])
        session = BeatEditorSession(
            "s4", orchestrator, builder,
            '<p>Intro</p><div class="beat-ai-node" data-id="beat-1" data-prompt="Mira opens the door"></div>',
            ViewContext(story_id="story-1"),
        )
        adapter.streams = [["Mira smiles."]]

        await (await session.submit(_event())).task

        assert "Mira" in adapter.requests[0].prompt
        tracked = builder.mentions.apply("story-1", [KnowledgeEntry(id="c1", title="Mira")])[0]
        assert tracked.mention_count == 1
        assert tracked.last_mentioned == 7
