"""
Beat node type and HTML (de)serialization.

A beat is an atomic block whose attributes are the camelCase fields of
``Beat``. In stored HTML it is an empty ``div.beat-ai-node`` carrying those
attributes as ``data-*`` values. This module knows nothing about views.
"""
from __future__ import annotations

import html
import logging
import re
from typing import Any, Optional

from bs4 import BeautifulSoup, NavigableString, Tag

from storybeat.document.model import Document, Node, Transaction, paragraph
from storybeat.models.beat import Beat

logger = logging.getLogger(__name__)

BEAT = "beat"
BEAT_CLASS = "beat-ai-node"

BEAT_ATTR_DEFAULTS: dict[str, Any] = {
    "id": "",
    "prompt": "",
    "generatedContent": "",
    "isGenerating": False,
    "isEditing": False,
    "createdAt": None,
    "updatedAt": None,
    "wordCount": None,
    "beatType": "story",
    "model": "",
}

_BOOL_ATTRS = frozenset({"isGenerating", "isEditing"})
_INT_ATTRS = frozenset({"wordCount"})
_BLOCK_TAGS = ("p", "h1", "h2", "h3", "h4", "h5", "h6", "blockquote", "pre", "li")


def _kebab(name: str) -> str:
    return re.sub(r"([A-Z])", lambda m: "-" + m.group(1).lower(), name)


def create_beat_node(beat: Optional[Beat] = None) -> Node:
    beat = beat or Beat()
    return Node(BEAT, attrs={**BEAT_ATTR_DEFAULTS, **beat.to_attrs()})


def beat_from_node(node: Node) -> Beat:
    return Beat.from_attrs(node.attrs)


def is_beat(node: Node) -> bool:
    return node.type == BEAT


def find_beat(doc: Document, beat_id: str) -> Optional[tuple[int, int, Node]]:
    """``(pos, index, node)`` of the beat with this id, or None."""
    return doc.find(lambda n: is_beat(n) and n.attrs.get("id") == beat_id)


def beat_nodes(doc: Document) -> list[tuple[int, Node]]:
    return [(start, node) for start, _, node in doc.iter_blocks() if is_beat(node)]


def insert_beat(tr: Transaction, pos: int, beat: Optional[Beat] = None) -> int:
    """Insert a beat node at ``pos`` and return the position it landed at.

    Inside a paragraph the beat goes before it (offset 0), after it (at the
    end of its text), or into a split between the two halves.
    """
    node = create_beat_node(beat)
    rp = tr.doc.resolve(pos)
    if rp.is_boundary:
        target = pos
    else:
        block = tr.doc.blocks[rp.index]
        assert rp.offset is not None
        if rp.offset == 0:
            target = rp.block_start
        elif rp.offset >= len(block.text):
            target = rp.block_start + block.node_size
        else:
            tr.split(pos)
            target = pos + 1
    tr.insert_blocks(target, [node])
    return target


def delete_beat(tr: Transaction, beat_id: str) -> bool:
    found = find_beat(tr.doc, beat_id)
    if found is None:
        return False
    pos, _, _ = found
    tr.delete_blocks(pos, pos + 1)
    return True


# ----------------------------------------------------------------------
# HTML
# ----------------------------------------------------------------------

def _attr_to_html(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def node_to_html(node: Node) -> str:
    if node.is_paragraph:
        return f"<p>{html.escape(node.text, quote=False)}</p>"
    attrs = " ".join(
        f'data-{_kebab(key)}="{html.escape(_attr_to_html(value))}"'
        for key, value in node.attrs.items()
        if value is not None
    )
    return f'<div class="{BEAT_CLASS}" {attrs}></div>'


def to_html(doc: Document) -> str:
    return "".join(node_to_html(node) for node in doc.blocks)


def _beat_attrs_from_tag(tag: Tag) -> dict[str, Any]:
    attrs = dict(BEAT_ATTR_DEFAULTS)
    for key in BEAT_ATTR_DEFAULTS:
        raw = tag.get(f"data-{_kebab(key)}")
        if raw is None:
            continue
        if isinstance(raw, list):
            raw = " ".join(raw)
        if key in _BOOL_ATTRS:
            attrs[key] = raw.strip().lower() == "true"
        elif key in _INT_ATTRS:
            try:
                attrs[key] = int(raw)
            except ValueError:
                logger.warning(f"Ignoring non-numeric {key}={raw!r} on beat node")
        else:
            attrs[key] = raw
    return attrs


def _is_beat_tag(tag: Tag) -> bool:
    return BEAT_CLASS in (tag.get("class") or [])


def from_html(markup: Optional[str]) -> Document:
    """Parse stored scene HTML into a Document.

    Top-level block elements become paragraphs, beat nodes become beat
    atoms, loose text becomes a paragraph. Beats nested in wrappers are
    found wherever they are.
    """
    soup = BeautifulSoup(markup or "", "html.parser")
    blocks: list[Node] = []

    def visit(element: Tag) -> None:
        for child in element.children:
            if isinstance(child, NavigableString):
                text = str(child).strip()
                if text and type(child) is NavigableString:
                    blocks.append(paragraph(text))
                continue
            if not isinstance(child, Tag):
                continue
            if _is_beat_tag(child):
                blocks.append(Node(BEAT, attrs=_beat_attrs_from_tag(child)))
            elif child.name in _BLOCK_TAGS:
                blocks.append(paragraph(child.get_text().replace("\n", " ")))
            else:
                visit(child)

    visit(soup)
    return Document(blocks)
