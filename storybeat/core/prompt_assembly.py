"""
Prompt assembly: template substitution and message parsing.

Templates use ``{name}`` placeholders. A template written in the messages
format (``<message role="...">...</message>`` blocks) is split into
role-tagged messages after substitution; any other template becomes a single
user message.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, Mapping, Optional

logger = logging.getLogger(__name__)

PLACEHOLDER_RE = re.compile(r"\{([A-Za-z_][A-Za-z0-9_]*)\}")
_MESSAGE_RE = re.compile(
    r"<message\s+role\s*=\s*[\"'](system|user|assistant)[\"']\s*>(.*?)</message>",
    re.DOTALL | re.IGNORECASE,
)

# Older templates used these names; they resolve to the same values.
PLACEHOLDER_ALIASES: dict[str, str] = {
    "SystemMessage": "systemMessage",
    "summariesOfScenesBefore": "storySoFar",
}

DEFAULT_SYSTEM_MESSAGE = (
    "You are a creative writing assistant. You continue stories in the "
    "established voice, tense and style of the author. Write only story prose: "
    "no headings, no commentary, no analysis."
)

DEFAULT_BEAT_TEMPLATE = """<messages>
<message role="system">{systemMessage}</message>
<message role="user">
<codex>
{codexEntries}
</codex>

<storySoFar>
{storySoFar}
</storySoFar>

<currentScene>
{sceneFullText}
</currentScene>

{pointOfView}
<instructions>
Write the next beat of the story in about {wordCount} words.
{writingStyle}
</instructions>

<beat>
{prompt}
</beat>
</message>
</messages>"""


@dataclass(frozen=True)
class PromptMessage:
    role: str
    content: str

    def to_dict(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}


def assemble(template: str, placeholders: Mapping[str, Any]) -> str:
    """
    Substitute every ``{name}`` occurrence in one pass.

    Missing or ``None`` values become empty strings. Placeholders with no
    entry in ``placeholders`` are left as written. Substituted values are
    never re-scanned, so text that happens to contain ``{prompt}`` stays
    literal.
    """
    values: dict[str, Any] = dict(placeholders)
    for legacy, name in PLACEHOLDER_ALIASES.items():
        if legacy not in values and name in values:
            values[legacy] = values[name]

    def _replace(match: re.Match[str]) -> str:
        name = match.group(1)
        if name not in values:
            return match.group(0)
        value = values[name]
        return "" if value is None else str(value)

    return PLACEHOLDER_RE.sub(_replace, template)


def parse_messages(prompt: str) -> list[PromptMessage]:
    """Split an assembled prompt into role-tagged messages."""
    messages = [
        PromptMessage(role=role.lower(), content=content.strip())
        for role, content in _MESSAGE_RE.findall(prompt)
    ]
    messages = [m for m in messages if m.content]
    if messages:
        return messages
    return [PromptMessage(role="user", content=prompt.strip())]


def build_placeholders(
    *,
    system_message: Optional[str],
    codex_entries: str,
    story_so_far: str,
    scene_full_text: str,
    word_count: int,
    prompt: str,
    point_of_view: str,
    writing_style: Optional[str],
) -> dict[str, Any]:
    return {
        "systemMessage": system_message or DEFAULT_SYSTEM_MESSAGE,
        "codexEntries": codex_entries,
        "storySoFar": story_so_far,
        "sceneFullText": scene_full_text,
        "wordCount": word_count,
        "prompt": prompt,
        "pointOfView": point_of_view,
        "writingStyle": writing_style,
    }
