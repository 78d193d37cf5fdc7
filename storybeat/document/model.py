"""
Position-addressed prose document.

The document is a flat list of blocks: paragraphs (text) and atoms (beat
nodes). Positions count like a ProseMirror document:

    - position 0 is before the first block
    - a paragraph of n characters occupies n + 2 positions (open, text, close);
      its text runs from ``start + 1`` to ``start + 1 + n``
    - an atom occupies exactly 1 position

A position is either a *boundary* between blocks or a point *inside* a
paragraph's text. All edits go through a ``Transaction``; each step records a
``StepMap`` so positions held elsewhere (cursors, ranges) can be mapped
through the edit instead of going stale.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Iterator, Optional

from storybeat.errors import InvalidPositionError

PARAGRAPH = "paragraph"


@dataclass
class Node:
    type: str
    text: str = ""
    attrs: dict[str, Any] = field(default_factory=dict)

    @property
    def is_paragraph(self) -> bool:
        return self.type == PARAGRAPH

    @property
    def is_atom(self) -> bool:
        return not self.is_paragraph

    @property
    def node_size(self) -> int:
        return len(self.text) + 2 if self.is_paragraph else 1

    def copy(self) -> Node:
        return Node(self.type, self.text, dict(self.attrs))


def paragraph(text: str = "") -> Node:
    return Node(PARAGRAPH, text)


@dataclass(frozen=True)
class ResolvedPos:
    """Where a position lands.

    ``index`` is the block the position is inside of, or for a boundary the
    block that follows it (``len(blocks)`` at the document end).
    ``offset`` is the text offset for positions inside a paragraph, else None.
    """

    pos: int
    index: int
    block_start: int
    offset: Optional[int] = None

    @property
    def in_paragraph(self) -> bool:
        return self.offset is not None

    @property
    def is_boundary(self) -> bool:
        return self.offset is None


class Document:
    def __init__(self, blocks: Optional[list[Node]] = None):
        self.blocks: list[Node] = list(blocks) if blocks else [paragraph()]

    @property
    def content_size(self) -> int:
        return sum(b.node_size for b in self.blocks)

    def copy(self) -> Document:
        return Document([b.copy() for b in self.blocks])

    def iter_blocks(self) -> Iterator[tuple[int, int, Node]]:
        """Yield ``(start, index, node)`` for every block."""
        pos = 0
        for index, node in enumerate(self.blocks):
            yield pos, index, node
            pos += node.node_size

    def block_start(self, index: int) -> int:
        return sum(b.node_size for b in self.blocks[:index])

    def resolve(self, pos: int) -> ResolvedPos:
        if pos < 0 or pos > self.content_size:
            raise InvalidPositionError(pos, f"outside document of size {self.content_size}")
        for start, index, node in self.iter_blocks():
            if pos == start:
                return ResolvedPos(pos, index, start)
            end = start + node.node_size
            if pos < end:
                # strictly inside a block; atoms have no interior
                return ResolvedPos(pos, index, start, pos - start - 1)
        return ResolvedPos(pos, len(self.blocks), pos)

    def find(self, predicate: Callable[[Node], bool]) -> Optional[tuple[int, int, Node]]:
        for start, index, node in self.iter_blocks():
            if predicate(node):
                return start, index, node
        return None

    def text_content(self, separator: str = "\n") -> str:
        return separator.join(b.text for b in self.blocks if b.is_paragraph)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Document):
            return NotImplemented
        return self.blocks == other.blocks

    def __repr__(self) -> str:
        return f"Document({self.blocks!r})"


@dataclass(frozen=True)
class StepMap:
    """One replaced range: ``old_size`` positions at ``start`` became ``new_size``."""

    start: int
    old_size: int
    new_size: int

    def map(self, pos: int, assoc: int = 1) -> int:
        end = self.start + self.old_size
        if pos < self.start:
            return pos
        if pos > end:
            return pos + self.new_size - self.old_size
        if self.old_size == 0:
            # pure insertion exactly at pos
            return pos + self.new_size if assoc > 0 else pos
        # pos touches the replaced range
        if pos == self.start and assoc < 0:
            return pos
        if pos == end and assoc > 0:
            return self.start + self.new_size
        return self.start + self.new_size if assoc > 0 else self.start


class Transaction:
    """A batch of document steps applied to a working copy.

    Steps take effect immediately on ``tr.doc``, so each step's positions
    refer to the document as left by the previous step.
    """

    def __init__(self, doc: Document, origin: str = "user"):
        self.before = doc
        self.doc = doc.copy()
        self.origin = origin
        self.maps: list[StepMap] = []
        self.meta: dict[str, Any] = {}

    @property
    def doc_changed(self) -> bool:
        return bool(self.maps)

    def map(self, pos: int, assoc: int = 1) -> int:
        for step_map in self.maps:
            pos = step_map.map(pos, assoc)
        return pos

    def set_meta(self, key: str, value: Any) -> Transaction:
        self.meta[key] = value
        return self

    # -- steps ---------------------------------------------------------

    def insert_text(self, pos: int, text: str) -> Transaction:
        if not text:
            return self
        if "\n" in text:
            raise ValueError("insert_text does not accept newlines; insert paragraphs instead")
        rp = self.doc.resolve(pos)
        if not rp.in_paragraph or not self.doc.blocks[rp.index].is_paragraph:
            raise InvalidPositionError(pos, "text can only be inserted inside a paragraph")
        node = self.doc.blocks[rp.index]
        assert rp.offset is not None
        node.text = node.text[: rp.offset] + text + node.text[rp.offset :]
        self.maps.append(StepMap(pos, 0, len(text)))
        return self

    def delete_text(self, from_pos: int, to_pos: int) -> Transaction:
        if to_pos <= from_pos:
            return self
        start = self.doc.resolve(from_pos)
        end = self.doc.resolve(to_pos)
        if not (start.in_paragraph and end.in_paragraph and start.index == end.index):
            raise InvalidPositionError(from_pos, "text deletion must stay within one paragraph")
        node = self.doc.blocks[start.index]
        assert start.offset is not None and end.offset is not None
        node.text = node.text[: start.offset] + node.text[end.offset :]
        self.maps.append(StepMap(from_pos, to_pos - from_pos, 0))
        return self

    def insert_blocks(self, pos: int, nodes: list[Node]) -> Transaction:
        if not nodes:
            return self
        rp = self.doc.resolve(pos)
        if not rp.is_boundary:
            raise InvalidPositionError(pos, "blocks can only be inserted between blocks")
        self.doc.blocks[rp.index:rp.index] = [n.copy() for n in nodes]
        self.maps.append(StepMap(pos, 0, sum(n.node_size for n in nodes)))
        return self

    def delete_blocks(self, from_pos: int, to_pos: int) -> Transaction:
        """Delete every block between two boundaries."""
        if to_pos <= from_pos:
            return self
        start = self.doc.resolve(from_pos)
        end = self.doc.resolve(to_pos)
        if not (start.is_boundary and end.is_boundary):
            raise InvalidPositionError(from_pos, "block deletion needs block boundaries")
        del self.doc.blocks[start.index:end.index]
        self.maps.append(StepMap(from_pos, to_pos - from_pos, 0))
        if not self.doc.blocks:
            self.doc.blocks.append(paragraph())
            self.maps.append(StepMap(0, 0, 2))
        return self

    def split(self, pos: int) -> Transaction:
        """Split the paragraph at ``pos`` into two (the Enter key)."""
        rp = self.doc.resolve(pos)
        if not rp.in_paragraph or not self.doc.blocks[rp.index].is_paragraph:
            raise InvalidPositionError(pos, "can only split inside a paragraph")
        node = self.doc.blocks[rp.index]
        assert rp.offset is not None
        tail = paragraph(node.text[rp.offset :])
        node.text = node.text[: rp.offset]
        self.doc.blocks.insert(rp.index + 1, tail)
        self.maps.append(StepMap(pos, 0, 2))
        return self

    def set_node_attrs(self, pos: int, attrs: dict[str, Any]) -> Transaction:
        """Merge ``attrs`` into the atom that starts at ``pos``."""
        rp = self.doc.resolve(pos)
        if not rp.is_boundary or rp.index >= len(self.doc.blocks):
            raise InvalidPositionError(pos, "no node starts here")
        node = self.doc.blocks[rp.index]
        node.attrs = {**node.attrs, **attrs}
        self.maps.append(StepMap(pos, 0, 0))
        return self
