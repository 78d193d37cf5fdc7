"""Beat models: the generation marker stored on a beat node and the prompt events its view emits."""
from __future__ import annotations

import secrets
import string
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import Field

from storybeat.models.base import CamelModel

_ID_ALPHABET = string.ascii_lowercase + string.digits


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def new_beat_id() -> str:
    """Random beat id of the form ``beat-xxxxxxxxx``."""
    return "beat-" + "".join(secrets.choice(_ID_ALPHABET) for _ in range(9))


class BeatType(str, Enum):
    """Whether the beat continues the story (with story-so-far) or only the scene."""

    STORY = "story"
    SCENE = "scene"


class BeatAction(str, Enum):
    """What a prompt submission asks for."""

    GENERATE = "generate"
    REGENERATE = "regenerate"
    DELETE_AFTER = "deleteAfter"


class Beat(CamelModel):
    """A generation marker embedded in the prose document.

    Round-trips through the beat node attributes via ``to_attrs`` /
    ``from_attrs`` (camelCase keys, ISO timestamps).
    """

    id: str = Field(default_factory=new_beat_id)
    prompt: str = ""
    generated_content: str = ""
    is_generating: bool = False
    is_editing: bool = False
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    word_count: Optional[int] = None
    beat_type: BeatType = BeatType.STORY
    model: str = ""

    def to_attrs(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")

    @classmethod
    def from_attrs(cls, attrs: dict[str, Any]) -> Beat:
        """Build a Beat from node attributes, dropping null values so defaults apply."""
        return cls.model_validate({k: v for k, v in attrs.items() if v is not None})


class CustomContext(CamelModel):
    """Explicit context choices made in the beat view."""

    selected_scenes: list[str] = Field(default_factory=list)
    # scene id -> full text the writer picked for the story-so-far
    selected_scene_texts: dict[str, str] = Field(default_factory=dict)
    include_story_outline: bool = True


class BeatPromptEvent(CamelModel):
    """Emitted by a beat view when the writer submits, regenerates or trims."""

    beat_id: str
    action: BeatAction = BeatAction.GENERATE
    prompt: Optional[str] = None
    word_count: Optional[int] = None
    model: Optional[str] = None
    story_id: Optional[str] = None
    chapter_id: Optional[str] = None
    scene_id: Optional[str] = None
    beat_type: BeatType = BeatType.STORY
    custom_context: CustomContext = Field(default_factory=CustomContext)
