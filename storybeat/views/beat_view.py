"""
Interactive view bound to one beat node.

The view owns UI-local state (``is_generating``, ``is_editing``) and talks to
the host only through callbacks. Node attribute changes arriving while a
generation runs refresh the data fields but never the UI-local state, so a
re-render mid-stream cannot flip the view back to idle.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Optional

from storybeat.document import schema
from storybeat.document.model import Node
from storybeat.models.beat import Beat, BeatAction, BeatPromptEvent, CustomContext

logger = logging.getLogger(__name__)

# Events from these controls belong to the view, not the document.
INTERACTIVE_TAGS = frozenset({"INPUT", "TEXTAREA", "BUTTON", "SELECT"})


@dataclass
class EventTarget:
    """The element an input event was dispatched to."""

    tag_name: str
    content_editable: bool = False
    parent: Optional[EventTarget] = None

    def is_interactive(self) -> bool:
        return self.tag_name.upper() in INTERACTIVE_TAGS or self.content_editable


@dataclass
class ViewEvent:
    type: str
    target: EventTarget


@dataclass(frozen=True)
class ViewContext:
    story_id: Optional[str] = None
    chapter_id: Optional[str] = None
    scene_id: Optional[str] = None


@dataclass
class ViewCallbacks:
    """Host hooks. Any of them may be left out."""

    on_prompt_submit: Optional[Callable[[BeatPromptEvent], None]] = None
    on_stop: Optional[Callable[[str], None]] = None
    on_delete: Optional[Callable[[str], None]] = None
    on_focus: Optional[Callable[[str], None]] = None
    on_content_update: Optional[Callable[[Beat], None]] = None


@dataclass
class BeatView:
    beat: Beat
    context: ViewContext = field(default_factory=ViewContext)
    callbacks: ViewCallbacks = field(default_factory=ViewCallbacks)
    is_generating: bool = False
    is_editing: bool = False
    destroyed: bool = False

    @classmethod
    def from_node(
        cls,
        node: Node,
        context: Optional[ViewContext] = None,
        callbacks: Optional[ViewCallbacks] = None,
    ) -> BeatView:
        beat = schema.beat_from_node(node)
        return cls(
            beat=beat,
            context=context or ViewContext(),
            callbacks=callbacks or ViewCallbacks(),
            is_generating=beat.is_generating,
            is_editing=beat.is_editing,
        )

    @property
    def beat_id(self) -> str:
        return self.beat.id

    def update_from_node(self, node: Node) -> bool:
        """Refresh from the node's attributes. False if the node is not a beat."""
        if not schema.is_beat(node):
            return False
        incoming = schema.beat_from_node(node)
        if self.is_generating:
            self.beat = self.beat.model_copy(
                update={
                    "prompt": incoming.prompt,
                    "generated_content": incoming.generated_content,
                    "created_at": incoming.created_at,
                    "updated_at": incoming.updated_at,
                }
            )
        else:
            self.beat = incoming
            self.is_generating = incoming.is_generating
            self.is_editing = incoming.is_editing
        return True

    def finish_generation(self, node: Optional[Node] = None) -> None:
        """The stream for this beat ended: back to idle, then take the node's data."""
        self.is_generating = False
        if node is not None:
            self.update_from_node(node)

    # ------------------------------------------------------------------
    # User actions
    # ------------------------------------------------------------------

    def submit(
        self,
        prompt: Optional[str] = None,
        action: BeatAction = BeatAction.GENERATE,
        word_count: Optional[int] = None,
        model: Optional[str] = None,
        custom_context: Optional[CustomContext] = None,
    ) -> BeatPromptEvent:
        if prompt is not None:
            self.beat = self.beat.model_copy(update={"prompt": prompt})
        event = BeatPromptEvent(
            beat_id=self.beat.id,
            action=action,
            prompt=self.beat.prompt,
            word_count=word_count or self.beat.word_count,
            model=model or self.beat.model or None,
            story_id=self.context.story_id,
            chapter_id=self.context.chapter_id,
            scene_id=self.context.scene_id,
            beat_type=self.beat.beat_type,
            custom_context=custom_context or CustomContext(),
        )
        if action in (BeatAction.GENERATE, BeatAction.REGENERATE):
            self.is_generating = True
            self.is_editing = False
        if self.callbacks.on_prompt_submit:
            self.callbacks.on_prompt_submit(event)
        return event

    def stop(self) -> None:
        if self.callbacks.on_stop:
            self.callbacks.on_stop(self.beat.id)

    def start_editing(self) -> None:
        self.is_editing = True

    def update_prompt(self, prompt: str) -> None:
        self.beat = self.beat.model_copy(update={"prompt": prompt})
        self.is_editing = False
        if self.callbacks.on_content_update:
            self.callbacks.on_content_update(self.beat)

    def request_delete(self) -> None:
        if self.callbacks.on_delete:
            self.callbacks.on_delete(self.beat.id)

    def focus(self) -> None:
        if self.callbacks.on_focus:
            self.callbacks.on_focus(self.beat.id)

    # ------------------------------------------------------------------
    # Editor integration
    # ------------------------------------------------------------------

    def stop_event(self, event: ViewEvent) -> bool:
        """True when the event targets a control inside the view."""
        target: Optional[EventTarget] = event.target
        while target is not None:
            if target.is_interactive():
                return True
            target = target.parent
        return False

    def ignore_mutation(self) -> bool:
        # The view renders its own DOM; the editor never re-reads it.
        return True

    def destroy(self) -> None:
        self.destroyed = True
        logger.debug(f"Destroyed view for beat {self.beat.id}")
