"""
Node view registry.

Keeps exactly one ``BeatView`` per beat node id, driven only by dispatched
transactions: new beat nodes get a view, changed nodes update theirs, and
views whose node left the document are destroyed.
"""
from __future__ import annotations

import logging
from typing import Optional

from storybeat.document import schema
from storybeat.document.editor import Editor
from storybeat.document.model import Document, Node, Transaction
from storybeat.protocol.events import GenerationEvent
from storybeat.views.beat_view import BeatView, ViewCallbacks, ViewContext

logger = logging.getLogger(__name__)


class NodeViewRegistry:
    def __init__(
        self,
        editor: Editor,
        context: Optional[ViewContext] = None,
        callbacks: Optional[ViewCallbacks] = None,
    ):
        self.editor = editor
        self.context = context or ViewContext()
        self.callbacks = callbacks or ViewCallbacks()
        self._views: dict[str, BeatView] = {}
        self._attrs: dict[str, dict] = {}
        editor.add_listener(self._on_transaction)
        self.sync(editor.doc)

    def __len__(self) -> int:
        return len(self._views)

    def __contains__(self, beat_id: object) -> bool:
        return beat_id in self._views

    def get(self, beat_id: str) -> Optional[BeatView]:
        return self._views.get(beat_id)

    def views(self) -> list[BeatView]:
        return list(self._views.values())

    def _on_transaction(self, tr: Transaction, editor: Editor) -> None:
        self.sync(editor.doc)

    def sync(self, doc: Document) -> None:
        seen: set[str] = set()
        for _, node in schema.beat_nodes(doc):
            beat_id = node.attrs.get("id") or ""
            if beat_id in seen:
                logger.warning(f"Duplicate beat id {beat_id} in document; only the first is bound")
                continue
            seen.add(beat_id)
            view = self._views.get(beat_id)
            if view is None:
                self._views[beat_id] = BeatView.from_node(node, self.context, self.callbacks)
                self._attrs[beat_id] = dict(node.attrs)
                logger.debug(f"Created view for beat {beat_id}")
            elif self._attrs.get(beat_id) != node.attrs:
                view.update_from_node(node)
                self._attrs[beat_id] = dict(node.attrs)

        for beat_id in [b for b in self._views if b not in seen]:
            self._views.pop(beat_id).destroy()
            self._attrs.pop(beat_id, None)

    def _node(self, beat_id: str) -> Optional[Node]:
        found = schema.find_beat(self.editor.doc, beat_id)
        return found[2] if found else None

    def handle_event(self, event: GenerationEvent) -> None:
        """Generation listener: release a view's generating state on completion."""
        if not event.is_complete:
            return
        view = self._views.get(event.beat_id)
        if view is not None:
            view.finish_generation(self._node(event.beat_id))

    def destroy(self) -> None:
        self.editor.remove_listener(self._on_transaction)
        for view in self._views.values():
            view.destroy()
        self._views.clear()
        self._attrs.clear()
