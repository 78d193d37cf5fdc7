"""Placeholder prose delivered when a generation fails for good.

The text is picked deterministically from the beat prompt, so the same
failed prompt always yields the same placeholder.
"""
from __future__ import annotations

import random
import zlib
from typing import Optional

NAMES = ["Sarah", "Michael", "Lisa", "David", "Anna", "Thomas", "Julia", "Martin", "Sophie", "Alex"]

TEMPLATES = [
    "{name} steps into the room and notices the tension at once. The air seems to crackle "
    "with unspoken words and held-back feelings.",
    "Taking a deep breath, {name} gathers courage and steps forward. What began as a simple "
    "encounter quickly turns into a moment that will change everything.",
    "The silence breaks when {name} finally says the words that have waited so long. A moment "
    "of truth that leaves no way back.",
    "Suddenly {name} understands that nothing will be the same again. Reality crashes in like "
    "a cold wave that sweeps everything away.",
    "In this decisive moment {name} has to choose. Left or right, forward or back: every choice "
    "will have consequences.",
]

# (keywords, template) pairs checked in order before the generic templates
KEYWORD_TEMPLATES: list[tuple[tuple[str, ...], str]] = [
    (
        ("confront", "argument", "fight", "konfrontation", "streit"),
        "The conflict escalates when {name} can no longer stay silent. Pent-up emotions break "
        "loose and the conversation turns into a heated clash in which neither side will yield.",
    ),
    (
        ("discover", "secret", "entdeckung", "geheimnis"),
        "{name} comes across something unexpected. What looks like a trivial find at first turns "
        "out to be the key to a well-kept secret that calls everything into question.",
    ),
    (
        ("escape", "flee", "flucht", "entkommen"),
        "Time is running out. {name} has to act fast, because the chance to escape will not last. "
        "Every heartbeat counts; any step could be the last.",
    ),
]


def build_fallback_text(prompt: str, character_name: Optional[str] = None) -> str:
    """Placeholder prose for a prompt, optionally naming a known character."""
    rng = random.Random(zlib.crc32(prompt.encode("utf-8")))
    name = character_name or rng.choice(NAMES)
    lowered = prompt.lower()
    for keywords, template in KEYWORD_TEMPLATES:
        if any(k in lowered for k in keywords):
            return template.format(name=name)
    return rng.choice(TEMPLATES).format(name=name)
