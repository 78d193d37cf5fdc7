"""Request and response models for the storybeat API."""
from __future__ import annotations

from typing import Any, Optional

from pydantic import Field

from storybeat.models.base import CamelModel
from storybeat.models.beat import Beat, BeatType, CustomContext
from storybeat.models.codex import CodexCategory

# Generous limit for a single beat prompt; scene HTML has its own
_MAX_PROMPT_CHARS = 32_768


class DocumentRequest(CamelModel):
    """Scene document to open in a session."""

    html: str = ""
    story_id: Optional[str] = None
    chapter_id: Optional[str] = None
    scene_id: Optional[str] = None


class DocumentResponse(CamelModel):
    session_id: str
    html: str
    beats: list[Beat] = Field(default_factory=list)


class CodexRequest(CamelModel):
    categories: list[CodexCategory] = Field(default_factory=list)


class InsertBeatRequest(CamelModel):
    """Insert a new beat node; ``position`` defaults to the document end."""

    position: Optional[int] = Field(default=None, ge=0)
    prompt: str = Field(default="", max_length=_MAX_PROMPT_CHARS)
    beat_type: BeatType = BeatType.STORY
    word_count: Optional[int] = Field(default=None, ge=1)
    model: str = ""


class GenerateBeatRequest(CamelModel):
    """Generate or regenerate a beat. Omitted fields fall back to the beat's attributes."""

    prompt: Optional[str] = Field(default=None, max_length=_MAX_PROMPT_CHARS)
    word_count: Optional[int] = Field(default=None, ge=1)
    model: Optional[str] = None
    beat_type: Optional[BeatType] = None
    custom_context: CustomContext = Field(default_factory=CustomContext)


class GenerationStartedResponse(CamelModel):
    beat_id: str
    request_id: str
    status: str
    stream_url: str


class BeatActionResponse(CamelModel):
    beat_id: str
    ok: bool
    html: Optional[str] = None


class StoryResponse(CamelModel):
    story_id: str
    stats: dict[str, Any] = Field(default_factory=dict)
