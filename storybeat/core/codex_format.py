"""Deterministic XML serialization of codex entries for prompts."""
from __future__ import annotations

import re
from typing import Any, Iterable

from storybeat.models.codex import EntryCategory, KnowledgeEntry

PROTAGONIST_ROLE = "protagonist"

_XML_ESCAPES = {
    "&": "&amp;",
    "<": "&lt;",
    ">": "&gt;",
    '"': "&quot;",
    "'": "&apos;",
}
_XML_ESCAPE_RE = re.compile(r"[&<>\"']")

_TAG_BY_CATEGORY: dict[EntryCategory, str] = {
    EntryCategory.CHARACTER: "character",
    EntryCategory.LOCATION: "location",
    EntryCategory.ITEM: "item",
}

# Metadata keys rendered elsewhere (attributes, custom fields) or internal.
_HANDLED_METADATA = frozenset({
    "storyRole",
    "aliases",
    "customFields",
    "importance",
    "globalInclude",
})


def escape_xml(value: Any) -> str:
    return _XML_ESCAPE_RE.sub(lambda m: _XML_ESCAPES[m.group(0)], str(value))


def sanitize_tag_name(name: str) -> str:
    """Turn a free-form field name into an XML tag name.

    "Hair Color" -> "hairColor", "Age (years)" -> "ageYears".
    """
    s = name.strip().lower()
    s = re.sub(r"^[^a-z0-9]+", "", s)
    s = re.sub(r"[^a-z0-9]+([a-z])", lambda m: m.group(1).upper(), s)
    s = re.sub(r"[^a-zA-Z0-9]", "", s)
    if not s or s[0].isdigit():
        s = "field" + s[:1].upper() + s[1:]
    return s


def tag_for(entry: KnowledgeEntry) -> str:
    return _TAG_BY_CATEGORY.get(entry.category, "other")


def _metadata_text(value: Any) -> str:
    if isinstance(value, (list, tuple)):
        return ", ".join(str(v) for v in value if v is not None and str(v) != "")
    return str(value)


def serialize_entry(entry: KnowledgeEntry) -> str:
    tag = tag_for(entry)
    attrs = [f'name="{escape_xml(entry.title)}"']
    if entry.aliases:
        attrs.append(f'aliases="{escape_xml(", ".join(entry.aliases))}"')
    if entry.story_role:
        attrs.append(f'storyRole="{escape_xml(entry.story_role)}"')

    lines = [f"<{tag} {' '.join(attrs)}>"]
    if entry.content:
        lines.append(f"  <description>{escape_xml(entry.content)}</description>")

    seen_tags: set[str] = {"description"}
    for custom in entry.custom_fields:
        if not custom.value:
            continue
        field_tag = sanitize_tag_name(custom.name)
        seen_tags.add(field_tag)
        lines.append(f"  <{field_tag}>{escape_xml(custom.value)}</{field_tag}>")

    for key in sorted(entry.metadata):
        if key in _HANDLED_METADATA:
            continue
        value = entry.metadata[key]
        if value is None or value == "" or isinstance(value, dict):
            continue
        field_tag = sanitize_tag_name(key)
        if field_tag in seen_tags:
            continue
        text = _metadata_text(value)
        if not text:
            continue
        seen_tags.add(field_tag)
        lines.append(f"  <{field_tag}>{escape_xml(text)}</{field_tag}>")

    lines.append(f"</{tag}>")
    return "\n".join(lines)


def serialize_entries(entries: Iterable[KnowledgeEntry]) -> str:
    """One element per entry, in the given order, separated by newlines."""
    return "\n".join(serialize_entry(e) for e in entries)


def find_protagonist(entries: Iterable[KnowledgeEntry]) -> KnowledgeEntry | None:
    for entry in entries:
        if entry.category == EntryCategory.CHARACTER and (entry.story_role or "").strip().lower() == PROTAGONIST_ROLE:
            return entry
    return None


def point_of_view(entries: Iterable[KnowledgeEntry]) -> str:
    """POV directive naming the first protagonist, or an empty string."""
    protagonist = find_protagonist(entries)
    if protagonist is None:
        return ""
    return (
        f"<pointOfView character=\"{escape_xml(protagonist.title)}\">"
        f"Write from the point of view of {escape_xml(protagonist.title)}, the protagonist."
        f"</pointOfView>"
    )
