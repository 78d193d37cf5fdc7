"""
Relevance filter for codex entries.

Picks the knowledge-base entries worth spending prompt budget on for one
beat. Global entries are always kept; everything else must earn its place by
being mentioned in the recent scene text or the beat prompt.

Scoring (per entry):
    title hits * 1.0 + alias hits * 0.9 + keyword hits * 1.0
    (+ 0.35 for a keyword only found inside a longer word)
    + recency bonus 0.8 * exp(-distance / 2000)
    all multiplied by importance (major 1.5, minor 1.0, background 0.5)
    + prompt-pattern bonus (character 2.0, location 1.5)
    + frequency bonus 0.1 * ln(1 + mention_count) when the entry matched at all
"""
from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass, field
from typing import Iterable, Optional

from storybeat.core.tokens import estimate_tokens
from storybeat.models.codex import EntryCategory, Importance, KnowledgeEntry

logger = logging.getLogger(__name__)

CONTEXT_WINDOW_SIZE = 2000

KEYWORD_WEIGHT = 1.0
ALIAS_WEIGHT = 0.9
PARTIAL_WEIGHT = 0.7 * 0.5
RECENCY_DECAY = 0.8
FREQUENCY_WEIGHT = 0.1

IMPORTANCE_MULTIPLIER: dict[Importance, float] = {
    Importance.MAJOR: 1.5,
    Importance.MINOR: 1.0,
    Importance.BACKGROUND: 0.5,
}

MAX_ENTRIES_PER_CATEGORY: dict[EntryCategory, int] = {
    EntryCategory.CHARACTER: 5,
    EntryCategory.LOCATION: 3,
    EntryCategory.ITEM: 3,
    EntryCategory.LORE: 2,
    EntryCategory.OTHER: 2,
}
DEFAULT_CATEGORY_CAP = 2

_CHARACTER_PROMPT_PATTERNS = [
    re.compile(r"describe\s+\w+"),
    re.compile(r"dialog(?:ue)?\s+with\s+\w+"),
    re.compile(r"\w+\s+(?:says|asks|answers|replies|sagt|spricht|antwortet|fragt)"),
]
_LOCATION_PROMPT_PATTERNS = [
    re.compile(r"\b(?:in|at|inside|near|bei|am|im)\s+\w+"),
    re.compile(r"scene\s+(?:in|at|by)"),
    re.compile(r"describe\s+the\s+\w+"),
]


@dataclass
class RelevanceScore:
    entry_id: str
    score: float = 0.0
    matched: bool = False
    reasons: list[str] = field(default_factory=list)


def count_matches(text: str, term: str) -> int:
    """Case-insensitive, non-overlapping substring occurrences of ``term``."""
    term = term.strip().lower()
    if not term:
        return 0
    return text.lower().count(term)


def _count_word_matches(text: str, term: str) -> int:
    term = term.strip().lower()
    if not term:
        return 0
    return len(re.findall(rf"\b{re.escape(term)}\b", text.lower()))


def _recency_bonus(last_mentioned: int, text_length: int) -> float:
    distance = max(0, text_length - last_mentioned)
    return max(0.0, RECENCY_DECAY * math.exp(-distance / CONTEXT_WINDOW_SIZE))


def _prompt_bonus(entry: KnowledgeEntry, prompt_lower: str) -> float:
    if entry.title.lower() not in prompt_lower:
        return 0.0
    if entry.category == EntryCategory.CHARACTER:
        if any(p.search(prompt_lower) for p in _CHARACTER_PROMPT_PATTERNS):
            return 2.0
    elif entry.category == EntryCategory.LOCATION:
        if any(p.search(prompt_lower) for p in _LOCATION_PROMPT_PATTERNS):
            return 1.5
    return 0.0


def score_entry(entry: KnowledgeEntry, scene_context: str, user_prompt: str) -> RelevanceScore:
    """Score one entry against the recent scene text and the beat prompt."""
    result = RelevanceScore(entry_id=entry.id)
    window = scene_context[-CONTEXT_WINDOW_SIZE:]
    combined = f"{window} {user_prompt}".lower()
    base = 0.0

    title_hits = count_matches(combined, entry.title)
    if title_hits:
        base += title_hits * KEYWORD_WEIGHT
        result.reasons.append(f"title x{title_hits}")

    for alias in entry.aliases:
        hits = count_matches(combined, alias)
        if hits:
            base += hits * ALIAS_WEIGHT
            result.reasons.append(f"alias '{alias}' x{hits}")

    for keyword in entry.keywords:
        exact = _count_word_matches(combined, keyword)
        if exact:
            base += exact * KEYWORD_WEIGHT
            result.reasons.append(f"keyword '{keyword}' x{exact}")
        elif count_matches(combined, keyword):
            base += PARTIAL_WEIGHT
            result.reasons.append(f"keyword '{keyword}' partial")

    result.matched = base > 0
    if entry.last_mentioned is not None:
        bonus = _recency_bonus(entry.last_mentioned, len(scene_context))
        if bonus > 0:
            base += bonus
            result.reasons.append(f"recency +{bonus:.2f}")

    score = base * IMPORTANCE_MULTIPLIER.get(entry.importance, 1.0)

    prompt_bonus = _prompt_bonus(entry, user_prompt.lower())
    if prompt_bonus:
        score += prompt_bonus
        result.matched = True
        result.reasons.append(f"prompt +{prompt_bonus}")

    if result.matched and entry.mention_count:
        score += FREQUENCY_WEIGHT * math.log1p(entry.mention_count)

    result.score = score
    return result


def _group_by_category(
    entries: Iterable[KnowledgeEntry], order: list[KnowledgeEntry]
) -> list[KnowledgeEntry]:
    """Reorder ``entries`` into category groups following ``order`` (the input list)."""
    chosen = {e.id for e in entries}
    categories: list[EntryCategory] = []
    for entry in order:
        if entry.id in chosen and entry.category not in categories:
            categories.append(entry.category)
    return [e for category in categories for e in order if e.id in chosen and e.category == category]


def select(
    entries: list[KnowledgeEntry],
    scene_context: str,
    user_prompt: str,
    max_tokens: int,
    category_caps: Optional[dict[EntryCategory, int]] = None,
) -> list[KnowledgeEntry]:
    """
    Select the entries to serialize into the prompt.

    Global entries are kept unconditionally and count against the budget
    first. The rest are taken by descending score (ties keep input order)
    until the next one would push the running size past ``max_tokens``.
    The result is grouped by category in order of first appearance.
    """
    caps = MAX_ENTRIES_PER_CATEGORY if category_caps is None else category_caps

    global_entries = [e for e in entries if e.global_include]
    used = sum(estimate_tokens(e.content) for e in global_entries)

    scored: list[tuple[KnowledgeEntry, RelevanceScore]] = []
    for entry in entries:
        if entry.global_include:
            continue
        result = score_entry(entry, scene_context, user_prompt)
        if result.score > 0:
            scored.append((entry, result))

    # list.sort is stable, so equal scores keep input order
    scored.sort(key=lambda item: -item[1].score)

    selected: list[KnowledgeEntry] = []
    per_category: dict[EntryCategory, int] = {}
    for entry, result in scored:
        cap = caps.get(entry.category, DEFAULT_CATEGORY_CAP)
        if per_category.get(entry.category, 0) >= cap:
            logger.debug(f"Codex: skipping {entry.title}, category {entry.category.value} full")
            continue
        size = estimate_tokens(entry.content)
        if used + size > max_tokens:
            logger.debug(f"Codex: budget of {max_tokens} reached at {entry.title}")
            break
        used += size
        per_category[entry.category] = per_category.get(entry.category, 0) + 1
        selected.append(entry)
        logger.debug(f"Codex: selected {entry.title} score={result.score:.2f} ({', '.join(result.reasons)})")

    return _group_by_category(global_entries + selected, entries)


def update_mention_tracking(
    entries: list[KnowledgeEntry],
    generated_text: str,
    text_position: int,
) -> list[KnowledgeEntry]:
    """Return entries with mention data refreshed from freshly generated text.

    Entries not mentioned are returned unchanged (same object).
    """
    updated: list[KnowledgeEntry] = []
    for entry in entries:
        mentions = _count_word_matches(generated_text, entry.title)
        mentions += sum(_count_word_matches(generated_text, alias) for alias in entry.aliases)
        if mentions:
            updated.append(
                entry.model_copy(
                    update={
                        "last_mentioned": text_position,
                        "mention_count": entry.mention_count + mentions,
                    }
                )
            )
        else:
            updated.append(entry)
    return updated
