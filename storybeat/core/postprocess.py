"""Completion-time cleanup of generated text.

Some models echo their own scene analysis ahead of or between prose
paragraphs, and repeat it when a stream is retried. Only repeats are removed:
the first block under each heading stays, so nothing the writer might want
is lost.
"""
from __future__ import annotations

import re

_BLOCK_SPLIT_RE = re.compile(r"(\n[ \t]*\n)")
_EXCESS_BLANK_LINES_RE = re.compile(r"\n(?:[ \t]*\n){3,}")

_ANALYSIS_HEADER_RE = re.compile(
    r"^[ \t]*(?P<marker>#{1,6}[ \t]*|[\[*_]+)?[ \t]*"
    r"(?P<label>(?:[\w-]+[ \t]+){0,2}analy[sz]\w*(?:[ \t]+[\w-]+){0,3})"
    r"[ \t]*[\]*_]*[ \t]*(?P<end>:|$)",
    re.IGNORECASE,
)


def analysis_identifier(block: str) -> str | None:
    """Normalized heading of an analysis block, or None for ordinary prose."""
    first_line = block.lstrip("\n").split("\n", 1)[0]
    match = _ANALYSIS_HEADER_RE.match(first_line)
    if match is None:
        return None
    if not match.group("marker") and match.group("end") != ":":
        return None
    return " ".join(match.group("label").lower().split())


def dedupe_analysis_blocks(text: str) -> str:
    """Drop analysis blocks whose heading already appeared earlier.

    Everything else is returned byte-for-byte.
    """
    parts = _BLOCK_SPLIT_RE.split(text)
    seen: set[str] = set()
    kept: list[str] = []
    for index, part in enumerate(parts):
        if index % 2 == 1:
            kept.append(part)
            continue
        identifier = analysis_identifier(part)
        if identifier is not None:
            if identifier in seen:
                if kept:
                    kept.pop()  # separator before the dropped block
                continue
            seen.add(identifier)
        kept.append(part)
    return "".join(kept)


def collapse_blank_lines(text: str) -> str:
    """Collapse three or more consecutive blank lines into one."""
    return _EXCESS_BLANK_LINES_RE.sub("\n\n", text)


def clean_generated_text(text: str) -> str:
    return collapse_blank_lines(dedupe_analysis_blocks(text))
