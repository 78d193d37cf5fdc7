"""
Tests for beat views and the node view registry.

The registry must keep exactly one view per beat node, refresh it from
attribute changes without clobbering a running generation, and destroy it
when the node leaves the document.
"""
from __future__ import annotations

from storybeat.document import schema
from storybeat.document.editor import Editor
from storybeat.document.model import Document, paragraph
from storybeat.models.beat import Beat, BeatAction, BeatType, CustomContext
from storybeat.protocol.events import GenerationEvent
from storybeat.views.beat_view import BeatView, EventTarget, ViewCallbacks, ViewContext, ViewEvent
from storybeat.views.registry import NodeViewRegistry


def _beat_node(beat_id: str = "beat-1", **fields):
    return schema.create_beat_node(Beat(id=beat_id, **fields))


def _set_attrs(editor: Editor, beat_id: str, attrs: dict) -> None:
    pos, _, _ = schema.find_beat(editor.doc, beat_id)
    editor.dispatch(editor.transaction().set_node_attrs(pos, attrs))


# =============================================================================
# BeatView
# =============================================================================


class TestBeatView:
    def test_from_node_copies_state(self):
        view = BeatView.from_node(_beat_node(prompt="p", is_generating=True))
        assert view.beat_id == "beat-1"
        assert view.beat.prompt == "p"
        assert view.is_generating

    def test_submit_emits_prompt_event(self):
        events = []
        view = BeatView.from_node(
            _beat_node(prompt="old", word_count=300, beat_type=BeatType.SCENE, model="gemini:flash"),
            context=ViewContext(story_id="s1", chapter_id="c1", scene_id="sc1"),
            callbacks=ViewCallbacks(on_prompt_submit=events.append),
        )

        event = view.submit("She runs", custom_context=CustomContext(include_story_outline=False))

        assert events == [event]
        assert event.beat_id == "beat-1"
        assert event.prompt == "She runs"
        assert event.word_count == 300
        assert event.model == "gemini:flash"
        assert event.beat_type == BeatType.SCENE
        assert (event.story_id, event.chapter_id, event.scene_id) == ("s1", "c1", "sc1")
        assert not event.custom_context.include_story_outline
        assert view.is_generating

    def test_delete_after_does_not_start_generating(self):
        view = BeatView.from_node(_beat_node())
        event = view.submit(action=BeatAction.DELETE_AFTER)
        assert event.action == BeatAction.DELETE_AFTER
        assert not view.is_generating

    def test_callbacks_are_optional(self):
        view = BeatView.from_node(_beat_node())
        view.stop()
        view.request_delete()
        view.focus()
        view.update_prompt("new")
        assert view.beat.prompt == "new"

    def test_action_callbacks(self):
        calls = []
        view = BeatView.from_node(
            _beat_node(),
            callbacks=ViewCallbacks(
                on_stop=lambda b: calls.append(("stop", b)),
                on_delete=lambda b: calls.append(("delete", b)),
                on_focus=lambda b: calls.append(("focus", b)),
                on_content_update=lambda beat: calls.append(("update", beat.prompt)),
            ),
        )
        view.stop()
        view.request_delete()
        view.focus()
        view.start_editing()
        assert view.is_editing
        view.update_prompt("edited")

        assert calls == [("stop", "beat-1"), ("delete", "beat-1"), ("focus", "beat-1"), ("update", "edited")]
        assert not view.is_editing

    def test_update_while_generating_keeps_ui_state(self):
        view = BeatView.from_node(_beat_node(prompt="p"))
        view.submit()

        node = _beat_node(prompt="p2", generated_content="partial", is_generating=False)
        assert view.update_from_node(node)

        assert view.is_generating
        assert view.beat.prompt == "p2"
        assert view.beat.generated_content == "partial"

    def test_update_when_idle_takes_everything(self):
        view = BeatView.from_node(_beat_node())
        view.update_from_node(_beat_node(is_editing=True, word_count=50))
        assert view.is_editing
        assert view.beat.word_count == 50

    def test_update_rejects_other_nodes(self):
        view = BeatView.from_node(_beat_node())
        assert not view.update_from_node(paragraph("x"))

    def test_finish_generation_releases_state(self):
        view = BeatView.from_node(_beat_node())
        view.submit()
        view.finish_generation(_beat_node(generated_content="done"))
        assert not view.is_generating
        assert view.beat.generated_content == "done"

    def test_stop_event_for_interactive_targets(self):
        view = BeatView.from_node(_beat_node())
        button = EventTarget("button")
        nested = EventTarget("span", parent=EventTarget("div", content_editable=True))
        plain = EventTarget("div", parent=EventTarget("section"))

        assert view.stop_event(ViewEvent("keydown", button))
        assert view.stop_event(ViewEvent("input", nested))
        assert not view.stop_event(ViewEvent("mousedown", plain))
        assert view.ignore_mutation()


# =============================================================================
# NodeViewRegistry
# =============================================================================


class TestNodeViewRegistry:
    def test_views_created_for_existing_beats(self):
        editor = Editor(Document([_beat_node("a"), paragraph("x"), _beat_node("b")]))
        registry = NodeViewRegistry(editor)
        assert len(registry) == 2
        assert "a" in registry and "b" in registry

    def test_view_created_on_insert_and_destroyed_on_delete(self):
        editor = Editor()
        registry = NodeViewRegistry(editor)

        tr = editor.transaction()
        schema.insert_beat(tr, 0, Beat(id="new"))
        editor.dispatch(tr)
        view = registry.get("new")
        assert view is not None

        tr = editor.transaction()
        schema.delete_beat(tr, "new")
        editor.dispatch(tr)
        assert registry.get("new") is None
        assert view.destroyed

    def test_one_view_per_beat_across_edits(self):
        editor = Editor(Document([_beat_node()]))
        registry = NodeViewRegistry(editor)
        view = registry.get("beat-1")

        editor.dispatch(editor.transaction().insert_blocks(0, [paragraph("a")]))
        _set_attrs(editor, "beat-1", {"prompt": "changed"})

        assert registry.get("beat-1") is view
        assert view.beat.prompt == "changed"
        assert len(registry) == 1

    def test_duplicate_ids_bind_first_node(self):
        editor = Editor(Document([_beat_node("dup", prompt="first"), _beat_node("dup", prompt="second")]))
        registry = NodeViewRegistry(editor)
        assert len(registry) == 1
        assert registry.get("dup").beat.prompt == "first"

    def test_partial_content_does_not_reset_generating_view(self):
        editor = Editor(Document([_beat_node()]))
        registry = NodeViewRegistry(editor)
        view = registry.get("beat-1")
        view.submit()

        _set_attrs(editor, "beat-1", {"generatedContent": "partial", "isGenerating": False})

        assert view.is_generating
        assert view.beat.generated_content == "partial"

    def test_completion_event_releases_view(self):
        editor = Editor(Document([_beat_node()]))
        registry = NodeViewRegistry(editor)
        view = registry.get("beat-1")
        view.submit()
        _set_attrs(editor, "beat-1", {"generatedContent": "final", "isGenerating": False})

        registry.handle_event(GenerationEvent(beat_id="beat-1", chunk="more"))
        assert view.is_generating

        registry.handle_event(GenerationEvent.completion("beat-1"))
        assert not view.is_generating
        assert view.beat.generated_content == "final"

    def test_callbacks_reach_views(self):
        submitted = []
        editor = Editor(Document([_beat_node()]))
        registry = NodeViewRegistry(editor, callbacks=ViewCallbacks(on_prompt_submit=submitted.append))

        registry.get("beat-1").submit("go")

        assert [e.prompt for e in submitted] == ["go"]

    def test_destroy_detaches(self):
        editor = Editor(Document([_beat_node()]))
        registry = NodeViewRegistry(editor)
        view = registry.get("beat-1")

        registry.destroy()
        tr = editor.transaction()
        schema.insert_beat(tr, 1, Beat(id="later"))
        editor.dispatch(tr)

        assert view.destroyed
        assert len(registry) == 0
