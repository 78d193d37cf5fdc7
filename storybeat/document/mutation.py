"""
Document Mutation Engine.

Turns generation events into document edits. Per beat it keeps:

    - a generated range ``[start, end]``: the block boundaries enclosing the
      paragraphs the beat produced
    - while streaming, a cursor: the text position where the next chunk goes

Both are mapped through every transaction the editor dispatches, so user
edits anywhere in the document (or another beat streaming elsewhere) never
leave them pointing at the wrong place. A cursor that no longer resolves
inside a paragraph is recomputed from the range before use.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional

from storybeat.document import schema
from storybeat.document.editor import Editor
from storybeat.document.model import Document, Transaction, paragraph
from storybeat.models.beat import utc_now
from storybeat.protocol.events import GenerationEvent

logger = logging.getLogger(__name__)

ORIGIN = "beat-stream"
META_BEAT_ID = "beatId"


@dataclass
class GeneratedRange:
    start: int
    end: int

    @property
    def empty(self) -> bool:
        return self.end <= self.start


class MutationEngine:
    """Applies streamed beat output to an editor."""

    def __init__(self, editor: Editor):
        self.editor = editor
        self._ranges: dict[str, GeneratedRange] = {}
        self._cursors: dict[str, int] = {}
        editor.add_listener(self._on_transaction)

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    def reset(self) -> None:
        """Forget every cursor and range."""
        self._ranges.clear()
        self._cursors.clear()

    def detach(self) -> None:
        self.editor.remove_listener(self._on_transaction)

    def cursor(self, beat_id: str) -> Optional[int]:
        return self._cursors.get(beat_id)

    def generated_range(self, beat_id: str) -> Optional[tuple[int, int]]:
        rng = self._ranges.get(beat_id)
        return (rng.start, rng.end) if rng else None

    def is_streaming(self, beat_id: str) -> bool:
        return beat_id in self._cursors

    def generated_text(self, beat_id: str) -> str:
        """Paragraph texts inside the beat's range joined by newlines."""
        rng = self._ranges.get(beat_id)
        if rng is None or rng.empty:
            return ""
        texts = [
            node.text
            for start, _, node in self.editor.doc.iter_blocks()
            if node.is_paragraph and start >= rng.start and start + node.node_size <= rng.end
        ]
        return "\n".join(texts)

    def _on_transaction(self, tr: Transaction, editor: Editor) -> None:
        owner = tr.meta.get(META_BEAT_ID)
        live_ids = {node.attrs.get("id") for _, node in schema.beat_nodes(editor.doc)}

        for beat_id in list(self._ranges):
            if beat_id not in live_ids:
                self._ranges.pop(beat_id, None)
                self._cursors.pop(beat_id, None)
                continue
            if beat_id == owner:
                continue
            rng = self._ranges[beat_id]
            start = tr.map(rng.start, 1)
            end = max(start, tr.map(rng.end, -1))
            self._ranges[beat_id] = GeneratedRange(start, end)

        for beat_id in list(self._cursors):
            if beat_id == owner or beat_id not in live_ids:
                continue
            self._cursors[beat_id] = tr.map(self._cursors[beat_id], 1)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _transaction(self, beat_id: str) -> Transaction:
        return self.editor.transaction(ORIGIN).set_meta(META_BEAT_ID, beat_id)

    @staticmethod
    def _valid_cursor(doc: Document, pos: Optional[int]) -> bool:
        if pos is None or pos < 0 or pos > doc.content_size:
            return False
        rp = doc.resolve(pos)
        return rp.in_paragraph and doc.blocks[rp.index].is_paragraph

    def _recompute_cursor(self, doc: Document, beat_id: str) -> Optional[int]:
        """End of the last paragraph in the beat's range, if any."""
        rng = self._ranges.get(beat_id)
        if rng is None or rng.empty:
            return None
        cursor = None
        for start, _, node in doc.iter_blocks():
            end = start + node.node_size
            if start >= rng.start and end <= rng.end and node.is_paragraph:
                cursor = end - 1
        return cursor

    def _range_is_valid(self, doc: Document, rng: GeneratedRange) -> bool:
        if rng.start < 0 or rng.end > doc.content_size or rng.end < rng.start:
            return False
        return doc.resolve(rng.start).is_boundary and doc.resolve(rng.end).is_boundary

    # ------------------------------------------------------------------
    # Streaming
    # ------------------------------------------------------------------

    def prepare_generation(
        self,
        beat_id: str,
        replace_previous: bool = False,
        previous_content: str = "",
    ) -> None:
        """Reset streaming state before a new generation for a beat.

        With ``replace_previous`` the beat's earlier output is deleted first.
        """
        self._cursors.pop(beat_id, None)
        if replace_previous:
            self.remove_generated_content(beat_id, previous_content)

    def append_chunk(self, beat_id: str, text: str, is_first_chunk: bool) -> bool:
        """
        Insert one streamed chunk after the beat.

        Returns False (and changes nothing) when the beat is no longer in the
        document.
        """
        doc = self.editor.doc
        found = schema.find_beat(doc, beat_id)
        if found is None:
            logger.warning(f"Beat {beat_id} is gone, dropping chunk of {len(text)} chars")
            self._cursors.pop(beat_id, None)
            self._ranges.pop(beat_id, None)
            return False
        beat_pos, _, _ = found

        if not is_first_chunk:
            cursor = self._cursors.get(beat_id)
            if not self._valid_cursor(doc, cursor):
                cursor = self._recompute_cursor(doc, beat_id)
                if cursor is not None:
                    logger.debug(f"Recomputed cursor for beat {beat_id} at {cursor}")
            if cursor is None:
                is_first_chunk = True

        if is_first_chunk:
            self._insert_first(beat_id, beat_pos, text)
        else:
            assert cursor is not None
            self._insert_next(beat_id, cursor, text)
        return True

    def _insert_first(self, beat_id: str, beat_pos: int, text: str) -> None:
        nodes = [paragraph(segment) for segment in text.split("\n")]
        start = beat_pos + 1
        size = sum(n.node_size for n in nodes)
        tr = self._transaction(beat_id).insert_blocks(start, nodes)
        self.editor.dispatch(tr)

        # Output of an earlier generation that was not replaced now sits
        # after this range and is no longer tracked.
        end = start + size
        self._ranges[beat_id] = GeneratedRange(start, end)
        self._cursors[beat_id] = end - 1

    def _insert_next(self, beat_id: str, cursor: int, text: str) -> None:
        tr = self._transaction(beat_id)
        rng = self._ranges.get(beat_id) or GeneratedRange(cursor, cursor)
        end = rng.end

        # (a) a stray empty paragraph right after the cursor paragraph, inside the range
        rp = tr.doc.resolve(cursor)
        cursor_block = tr.doc.blocks[rp.index]
        after = rp.block_start + cursor_block.node_size
        if rp.index + 1 < len(tr.doc.blocks):
            following = tr.doc.blocks[rp.index + 1]
            if following.is_paragraph and not following.text and after + 2 <= end:
                tr.delete_blocks(after, after + 2)
                end -= 2

        segments = text.split("\n")
        first, rest = segments[0], segments[1:]

        # (b) text up to the first newline continues the cursor paragraph
        if first:
            tr.insert_text(cursor, first)
            cursor += len(first)
            end += len(first)

        # (c) each further segment becomes a new paragraph
        if rest:
            rp = tr.doc.resolve(cursor)
            para_end = rp.block_start + tr.doc.blocks[rp.index].node_size
            nodes = [paragraph(segment) for segment in rest]
            size = sum(n.node_size for n in nodes)
            tr.insert_blocks(para_end, nodes)
            end += size
            cursor = para_end + size - 1

        self.editor.dispatch(tr)
        self._ranges[beat_id] = GeneratedRange(rng.start, max(end, cursor + 1))
        self._cursors[beat_id] = cursor

    def finish_stream(self, beat_id: str) -> None:
        """Drop the cursor; the range stays for later regeneration."""
        self._cursors.pop(beat_id, None)

    def handle_event(self, event: GenerationEvent) -> None:
        """Generation listener: apply chunks, close the stream on completion."""
        if event.chunk:
            self.append_chunk(event.beat_id, event.chunk, is_first_chunk=not self.is_streaming(event.beat_id))
        if event.is_complete:
            self.finish_stream(event.beat_id)

    # ------------------------------------------------------------------
    # Structural edits
    # ------------------------------------------------------------------

    def remove_generated_content(self, beat_id: str, previous_content: str = "") -> bool:
        """
        Delete what the beat generated last time.

        Uses the tracked range when it is still valid; otherwise deletes as
        many paragraphs after the beat as ``previous_content`` has lines,
        stopping at the next non-paragraph block.
        """
        doc = self.editor.doc
        found = schema.find_beat(doc, beat_id)
        if found is None:
            return False
        beat_pos, index, _ = found

        rng = self._ranges.get(beat_id)
        tr = self._transaction(beat_id)
        if rng is not None and self._range_is_valid(doc, rng) and rng.start > beat_pos:
            if rng.empty:
                return False
            tr.delete_blocks(rng.start, rng.end)
        else:
            count = len(previous_content.split("\n")) if previous_content else 0
            start = beat_pos + 1
            end = start
            for node in doc.blocks[index + 1 : index + 1 + count]:
                if not node.is_paragraph:
                    break
                end += node.node_size
            if end == start:
                return False
            tr.delete_blocks(start, end)

        self.editor.dispatch(tr)
        self._ranges.pop(beat_id, None)
        self._cursors.pop(beat_id, None)
        return True

    def replace_generated_content(self, beat_id: str, text: str) -> bool:
        """Swap the beat's tracked output for ``text`` (used after cleanup)."""
        rng = self._ranges.get(beat_id)
        if rng is None or not self._range_is_valid(self.editor.doc, rng):
            return False
        self.remove_generated_content(beat_id)
        if text:
            found = schema.find_beat(self.editor.doc, beat_id)
            if found is None:
                return False
            self._insert_first(beat_id, found[0], text)
            self._cursors.pop(beat_id, None)
        return True

    def delete_after_beat(self, beat_id: str) -> bool:
        """Delete everything after the beat node to the end of the document."""
        doc = self.editor.doc
        found = schema.find_beat(doc, beat_id)
        if found is None:
            return False
        beat_pos, _, _ = found
        start = beat_pos + 1
        if start >= doc.content_size:
            return False
        tr = self._transaction(beat_id).delete_blocks(start, doc.content_size)
        self.editor.dispatch(tr)
        self._ranges.pop(beat_id, None)
        self._cursors.pop(beat_id, None)
        return True

    def sync_beat_attrs(
        self,
        beat_id: str,
        generated_content: Optional[str] = None,
        is_generating: Optional[bool] = None,
        **extra: Any,
    ) -> bool:
        """Update the beat node's attributes in one transaction.

        A no-op returning False when the beat was deleted meanwhile.
        """
        found = schema.find_beat(self.editor.doc, beat_id)
        if found is None:
            logger.debug(f"Beat {beat_id} not found, skipping attribute sync")
            return False
        pos, _, _ = found
        attrs: dict[str, Any] = {"updatedAt": utc_now().isoformat(), **extra}
        if generated_content is not None:
            attrs["generatedContent"] = generated_content
        if is_generating is not None:
            attrs["isGenerating"] = is_generating
        tr = self.editor.transaction(ORIGIN).set_node_attrs(pos, attrs)
        self.editor.dispatch(tr)
        return True
