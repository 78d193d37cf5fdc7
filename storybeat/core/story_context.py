"""
Scene text extraction and story-so-far context.

Scenes are stored as editor HTML. Beat nodes (and their generated wrappers)
are stripped before the text is used as prompt context so a prompt never
feeds its own scaffolding back to the model.
"""
from __future__ import annotations

import logging
import re
from typing import Iterable, Optional

from bs4 import BeautifulSoup, Comment, Tag

from storybeat.models.story import FlatScene

logger = logging.getLogger(__name__)

BEAT_SELECTOR = ".beat-ai-wrapper, .beat-ai-node"
_BEAT_MARKER_RE = re.compile(r"\[Beat:[^\]]*\]")
_BLANK_RUN_RE = re.compile(r"\n\s*\n\s*\n")


def _parse(html: str) -> BeautifulSoup:
    soup = BeautifulSoup(html, "html.parser")
    for comment in soup.find_all(string=lambda s: isinstance(s, Comment)):
        if "Beat" in comment:
            comment.extract()
    return soup


def _paragraphs_to_text(paragraphs: Iterable[Tag]) -> str:
    text = ""
    for p in paragraphs:
        line = _BEAT_MARKER_RE.sub("", p.get_text()).strip()
        if line:
            text += line + "\n\n"
        else:
            text += "\n"
    return _BLANK_RUN_RE.sub("\n\n", text).strip()


def extract_full_text(html: Optional[str]) -> str:
    """Plain text of a stored scene, without beat nodes or beat markers.

    Paragraphs are separated by a blank line; an empty paragraph contributes
    a single newline.
    """
    if not html:
        return ""
    soup = _parse(html)
    for element in soup.select(BEAT_SELECTOR):
        element.decompose()
    paragraphs = soup.find_all("p")
    if not paragraphs:
        text = _BEAT_MARKER_RE.sub("", soup.get_text())
        return _BLANK_RUN_RE.sub("\n\n", text).strip()
    return _paragraphs_to_text(paragraphs)


def extract_text_before_beat(html: Optional[str], beat_id: str) -> str:
    """Text of the paragraphs that precede the given beat node.

    Falls back to the full scene text when the beat is not in the HTML.
    """
    if not html:
        return ""
    soup = _parse(html)
    stop = None
    for element in soup.select(BEAT_SELECTOR):
        if stop is None and element.get("data-id") == beat_id:
            stop = element
    if stop is None:
        logger.debug(f"Beat {beat_id} not found in scene HTML, using full text")
        return extract_full_text(html)

    keep = [stop, *stop.parents]
    for element in soup.select(BEAT_SELECTOR):
        if not any(element is kept for kept in keep):
            element.decompose()
    preceding = list(reversed(stop.find_all_previous("p")))
    return _paragraphs_to_text(preceding)


def _scene_index(flat_scenes: list[FlatScene], scene_id: str) -> int:
    for index, flat in enumerate(flat_scenes):
        if flat.scene.id == scene_id:
            return index
    return -1


def scenes_before(flat_scenes: list[FlatScene], target_scene_id: str) -> list[FlatScene]:
    """Scenes strictly before the target; empty when the target is unknown."""
    index = _scene_index(flat_scenes, target_scene_id)
    if index == -1:
        return []
    return flat_scenes[:index]


def previous_scene_text(flat_scenes: list[FlatScene], scene_id: str) -> str:
    """Full text of the scene immediately before ``scene_id`` (across chapters)."""
    index = _scene_index(flat_scenes, scene_id)
    if index <= 0:
        return ""
    return extract_full_text(flat_scenes[index - 1].scene.content)


def resolve_scene_context(
    flat_scenes: list[FlatScene],
    scene_id: str,
    stop_beat_id: Optional[str] = None,
    scene_html: Optional[str] = None,
) -> str:
    """Scene context for a beat.

    With ``stop_beat_id``, the text before that beat; otherwise the whole
    scene. An empty result falls back to the previous scene's full text.
    ``scene_html`` overrides the stored scene content (live editor state).
    """
    if scene_html is None:
        index = _scene_index(flat_scenes, scene_id)
        scene_html = flat_scenes[index].scene.content if index >= 0 else ""

    if stop_beat_id:
        text = extract_text_before_beat(scene_html, stop_beat_id)
    else:
        text = extract_full_text(scene_html)

    if not text.strip():
        text = previous_scene_text(flat_scenes, scene_id)
    return text


def serialize_story_so_far(
    flat_scenes: list[FlatScene],
    target_scene_id: str,
    selected_texts: Optional[dict[str, str]] = None,
    use_summaries: bool = True,
) -> str:
    """
    Story-so-far text for every scene before the target, in reading order.

    Each scene contributes its summary when present (and ``use_summaries``),
    else its extracted full text. Scenes in ``selected_texts`` contribute the
    supplied full text instead. A chapter title header opens the first
    emitted scene of each chapter.
    """
    selected_texts = selected_texts or {}
    parts: list[str] = []
    current_chapter: Optional[str] = None
    for flat in scenes_before(flat_scenes, target_scene_id):
        scene = flat.scene
        if scene.id in selected_texts:
            content = selected_texts[scene.id]
        elif use_summaries and scene.summary:
            content = scene.summary
        else:
            content = extract_full_text(scene.content)
        content = (content or "").strip()
        if not content:
            continue
        if flat.chapter_id != current_chapter:
            current_chapter = flat.chapter_id
            if flat.chapter_title:
                content = f"## {flat.chapter_title}\n\n{content}"
        parts.append(content)
    return "\n\n".join(parts)


def story_stats(flat_scenes: list[FlatScene]) -> dict[str, int]:
    """Counts used in request logs."""
    return {
        "totalScenes": len(flat_scenes),
        "totalChapters": len({f.chapter_id for f in flat_scenes}),
        "totalWords": sum(len(extract_full_text(f.scene.content).split()) for f in flat_scenes),
        "scenesWithSummaries": sum(1 for f in flat_scenes if f.scene.summary),
    }
