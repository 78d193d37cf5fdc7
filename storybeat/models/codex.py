"""Codex (knowledge base) models and their projection onto relevance entries."""
from __future__ import annotations

import re
from enum import Enum
from typing import Any, Optional

from pydantic import Field

from storybeat.models.base import CamelModel


class EntryCategory(str, Enum):
    CHARACTER = "character"
    LOCATION = "location"
    ITEM = "item"
    LORE = "lore"
    NOTES = "notes"
    OTHER = "other"


class Importance(str, Enum):
    MAJOR = "major"
    MINOR = "minor"
    BACKGROUND = "background"


class CustomField(CamelModel):
    id: str = ""
    name: str
    value: str = ""


class CodexEntry(CamelModel):
    """An entry as the knowledge base stores it."""

    id: str
    title: str
    content: str = ""
    tags: list[str] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)
    custom_fields: list[CustomField] = Field(default_factory=list)
    story_role: Optional[str] = None
    always_include: bool = False
    order: int = 0


class CodexCategory(CamelModel):
    id: str
    title: str
    entries: list[CodexEntry] = Field(default_factory=list)
    order: int = 0


class KnowledgeEntry(CamelModel):
    """A codex entry as seen by the relevance filter and the prompt serializer."""

    id: str
    title: str
    category: EntryCategory = EntryCategory.OTHER
    content: str = ""
    aliases: list[str] = Field(default_factory=list)
    keywords: list[str] = Field(default_factory=list)
    importance: Importance = Importance.MINOR
    global_include: bool = False
    last_mentioned: Optional[int] = None
    mention_count: int = 0
    story_role: Optional[str] = None
    custom_fields: list[CustomField] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)


# Category titles in English and German, matched case-insensitively.
_CATEGORY_PATTERNS: list[tuple[re.Pattern[str], EntryCategory]] = [
    (re.compile(r"charact|\bfigur|person|charakter", re.I), EntryCategory.CHARACTER),
    (re.compile(r"locat|place|\borte?\b|setting", re.I), EntryCategory.LOCATION),
    (re.compile(r"item|object|gegenst|artifact", re.I), EntryCategory.ITEM),
    (re.compile(r"lore|histor|magic|world|welt", re.I), EntryCategory.LORE),
    (re.compile(r"note|notiz", re.I), EntryCategory.NOTES),
]


def classify_category(title: str) -> EntryCategory:
    """Map a free-form category title to an EntryCategory."""
    for pattern, category in _CATEGORY_PATTERNS:
        if pattern.search(title or ""):
            return category
    return EntryCategory.OTHER


def _as_list(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [v.strip() for v in value.split(",") if v.strip()]
    return [str(v).strip() for v in value if str(v).strip()]


def to_knowledge_entry(entry: CodexEntry, category_title: str) -> KnowledgeEntry:
    """Project a stored codex entry onto the relevance/serialization view."""
    metadata = dict(entry.metadata)
    importance_raw = str(metadata.get("importance", Importance.MINOR.value)).lower()
    try:
        importance = Importance(importance_raw)
    except ValueError:
        importance = Importance.MINOR

    custom_fields = list(entry.custom_fields)
    for raw in metadata.get("customFields", None) or []:
        if isinstance(raw, dict) and raw.get("name"):
            custom_fields.append(CustomField.model_validate(raw))

    return KnowledgeEntry(
        id=entry.id,
        title=entry.title,
        category=classify_category(category_title),
        content=entry.content,
        aliases=_as_list(metadata.get("aliases")),
        keywords=list(entry.tags),
        importance=importance,
        global_include=entry.always_include,
        story_role=entry.story_role or metadata.get("storyRole"),
        custom_fields=custom_fields,
        metadata=metadata,
    )
