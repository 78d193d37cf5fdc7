"""
Beat editor sessions.

A session is one open scene document: an Editor, the MutationEngine that
writes streamed output into it, and the NodeViewRegistry that binds a view
to every beat node. Sessions share one GenerationOrchestrator and only react
to events for beats they started.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Optional

from storybeat.document import schema
from storybeat.document.editor import Editor
from storybeat.document.mutation import MutationEngine
from storybeat.errors import ConfigurationError
from storybeat.models.beat import Beat, BeatAction, BeatPromptEvent
from storybeat.protocol.events import GenerationEvent
from storybeat.services.context_builder import BeatContextBuilder, BeatPrompt
from storybeat.services.orchestrator import GenerationOrchestrator, GenerationRecord, GenerationResult
from storybeat.views.beat_view import ViewCallbacks, ViewContext
from storybeat.views.registry import NodeViewRegistry

logger = logging.getLogger(__name__)


class BeatEditorSession:
    def __init__(
        self,
        session_id: str,
        orchestrator: GenerationOrchestrator,
        context_builder: BeatContextBuilder,
        html: Optional[str] = None,
        context: Optional[ViewContext] = None,
    ):
        self.session_id = session_id
        self.orchestrator = orchestrator
        self.context_builder = context_builder
        self.context = context or ViewContext()
        self.editor = Editor.from_html(html)
        self.mutation = MutationEngine(self.editor)
        self.views = NodeViewRegistry(
            self.editor,
            self.context,
            ViewCallbacks(
                on_prompt_submit=self._schedule_submit,
                on_stop=self.stop,
                on_delete=self.delete_beat,
            ),
        )
        # beat_id -> prompt of the generation this session started
        self._active: dict[str, BeatPrompt] = {}
        # beat_id -> token of the submit whose prompt is still being built
        self._building: dict[str, object] = {}
        self._pending: set[asyncio.Task] = set()
        orchestrator.add_listener(self._on_event)
        orchestrator.add_finalizer(self._on_finalized)

    # ------------------------------------------------------------------
    # Document
    # ------------------------------------------------------------------

    def to_html(self) -> str:
        return self.editor.to_html()

    def load_html(self, html: Optional[str], context: Optional[ViewContext] = None) -> None:
        """Replace the document; running generations of this session are stopped."""
        for beat_id in self._running_beats():
            self.stop(beat_id)
        if context is not None:
            self.context = context
            self.views.context = context
        self.editor.load(schema.from_html(html))
        self.mutation.reset()

    def insert_beat(self, pos: Optional[int] = None, beat: Optional[Beat] = None) -> Beat:
        """Insert a beat node, at the end of the document by default."""
        beat = beat or Beat()
        tr = self.editor.transaction("user")
        schema.insert_beat(tr, tr.doc.content_size if pos is None else pos, beat)
        self.editor.dispatch(tr)
        logger.info(f"Inserted beat {beat.id} into session {self.session_id}")
        return beat

    def get_beat(self, beat_id: str) -> Optional[Beat]:
        found = schema.find_beat(self.editor.doc, beat_id)
        return schema.beat_from_node(found[2]) if found else None

    def delete_beat(self, beat_id: str) -> bool:
        self.stop(beat_id)
        tr = self.editor.transaction("user")
        if not schema.delete_beat(tr, beat_id):
            return False
        self.editor.dispatch(tr)
        self.orchestrator.broadcaster.close_stream(beat_id)
        return True

    # ------------------------------------------------------------------
    # Beat actions
    # ------------------------------------------------------------------

    def _schedule_submit(self, event: BeatPromptEvent) -> None:
        task = asyncio.ensure_future(self.submit(event))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def submit(self, event: BeatPromptEvent) -> Optional[GenerationRecord]:
        """
        Handle a beat prompt event.

        ``generate`` writes fresh output right after the beat, ``regenerate``
        replaces what the beat produced last time, and ``deleteAfter`` cuts
        the document after the beat. Raises ConfigurationError, with the
        beat's generating flag cleared, when no provider is usable.
        """
        beat = self.get_beat(event.beat_id)
        if beat is None:
            logger.warning(f"Beat {event.beat_id} not in session {self.session_id}, ignoring {event.action.value}")
            return None

        if event.action == BeatAction.DELETE_AFTER:
            self.mutation.delete_after_beat(event.beat_id)
            return None

        try:
            self.orchestrator.resolve_model(event.model)
        except ConfigurationError:
            self._release(event.beat_id)
            raise

        event = event.model_copy(
            update={
                "story_id": event.story_id or self.context.story_id,
                "chapter_id": event.chapter_id or self.context.chapter_id,
                "scene_id": event.scene_id or self.context.scene_id,
            }
        )
        prompt_text = event.prompt if event.prompt is not None else beat.prompt
        attrs = {"prompt": prompt_text, "wordCount": self.context_builder.settings.clamp_word_count(event.word_count or beat.word_count)}
        if event.model:
            attrs["model"] = event.model
        view = self.views.get(event.beat_id)
        if view is not None:
            view.is_generating = True
        self.mutation.sync_beat_attrs(event.beat_id, is_generating=True, **attrs)

        token = object()
        self._building[event.beat_id] = token
        try:
            beat_prompt = await self.context_builder.build(
                event.model_copy(update={"prompt": prompt_text}),
                scene_html=self.editor.to_html(),
            )
        except Exception:
            if self._building.get(event.beat_id) is token:
                del self._building[event.beat_id]
                self._release(event.beat_id)
            raise
        if self._building.get(event.beat_id) is not token:
            logger.info(f"Beat {event.beat_id} was stopped while its prompt was built")
            return None
        del self._building[event.beat_id]
        self.mutation.prepare_generation(
            event.beat_id,
            replace_previous=event.action == BeatAction.REGENERATE,
            previous_content=beat.generated_content,
        )
        try:
            record = self.orchestrator.start_generation(
                event.beat_id,
                beat_prompt.prompt,
                model_id=event.model,
                messages=beat_prompt.messages,
                word_count=beat_prompt.word_count,
                character_name=beat_prompt.protagonist,
            )
        except ConfigurationError:
            self._release(event.beat_id)
            raise
        self._active[event.beat_id] = beat_prompt
        return record

    def stop(self, beat_id: str) -> bool:
        """Stop a beat, including one whose prompt is still being built."""
        building = self._building.pop(beat_id, None) is not None
        stopped = self.orchestrator.stop(beat_id)
        if building:
            self._release(beat_id)
            if not stopped:
                self.orchestrator.complete_unstarted(beat_id)
        return building or stopped

    def _running_beats(self) -> list[str]:
        return list(dict.fromkeys([*self._active, *self._building]))

    def _release(self, beat_id: str) -> None:
        self.mutation.sync_beat_attrs(beat_id, is_generating=False)
        view = self.views.get(beat_id)
        if view is not None:
            found = schema.find_beat(self.editor.doc, beat_id)
            view.finish_generation(found[2] if found else None)

    # ------------------------------------------------------------------
    # Orchestrator hooks
    # ------------------------------------------------------------------

    def _on_event(self, event: GenerationEvent) -> None:
        if event.beat_id not in self._active:
            return
        self.mutation.handle_event(event)
        self.views.handle_event(event)
        if event.is_complete:
            self._active.pop(event.beat_id, None)

    def _on_finalized(self, result: GenerationResult) -> None:
        beat_prompt = self._active.get(result.beat_id)
        if beat_prompt is None:
            return
        if result.cleaned:
            self.mutation.replace_generated_content(result.beat_id, result.text)
        self.mutation.sync_beat_attrs(result.beat_id, generated_content=result.text, is_generating=False)
        found = schema.find_beat(self.editor.doc, result.beat_id)
        if found is not None:
            self.context_builder.record_generation(
                self.context.story_id, beat_prompt.codex_entries, result.text, found[0]
            )

    def close(self) -> None:
        for beat_id in self._running_beats():
            self.stop(beat_id)
        for task in list(self._pending):
            task.cancel()
        self.orchestrator.remove_listener(self._on_event)
        self.orchestrator.remove_finalizer(self._on_finalized)
        self.views.destroy()
        self.mutation.detach()


class SessionStore:
    """Open sessions by id."""

    def __init__(self, orchestrator: GenerationOrchestrator, context_builder: BeatContextBuilder):
        self.orchestrator = orchestrator
        self.context_builder = context_builder
        self._sessions: dict[str, BeatEditorSession] = {}

    def get(self, session_id: str) -> Optional[BeatEditorSession]:
        return self._sessions.get(session_id)

    def open(
        self,
        session_id: str,
        html: Optional[str] = None,
        context: Optional[ViewContext] = None,
    ) -> BeatEditorSession:
        """Create the session or reload an existing one with new content."""
        session = self._sessions.get(session_id)
        if session is None:
            session = BeatEditorSession(session_id, self.orchestrator, self.context_builder, html, context)
            self._sessions[session_id] = session
            logger.info(f"Opened session {session_id}")
        else:
            session.load_html(html, context)
        return session

    def close(self, session_id: str) -> bool:
        session = self._sessions.pop(session_id, None)
        if session is None:
            return False
        session.close()
        return True

    def clear(self) -> None:
        for session_id in list(self._sessions):
            self.close(session_id)

    def __len__(self) -> int:
        return len(self._sessions)
