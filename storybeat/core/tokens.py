"""Character-based token estimation.

No tokenizer is shipped; these estimates size the codex budget and are logged
with each request.
"""
from __future__ import annotations

import math
import re

CHARS_PER_TOKEN = 4.0

_PUNCT_CLUSTER = re.compile(r"[.!?]{2,}")
_BRACKETS = re.compile(r"[<>{}\[\]()]")


def estimate_tokens(text: str) -> int:
    """Plain size estimate: one token per four characters, rounded up."""
    if not text:
        return 0
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def count_prompt_tokens(prompt: str, chars_per_token: float = CHARS_PER_TOKEN) -> int:
    """Estimate for a full prompt, counting tokens that tend to split off.

    Newlines, punctuation clusters, code fences and brackets usually
    tokenize separately, which matters for XML-heavy prompts.
    """
    text = prompt.replace("\r\n", "\n").replace("\t", "    ").strip()
    if not text:
        return 0
    base = math.ceil(len(text) / chars_per_token)
    special = (
        text.count("\n")
        + len(_PUNCT_CLUSTER.findall(text))
        + text.count("```") * 2
        + len(_BRACKETS.findall(text)) * 0.5
    )
    return base + math.ceil(special)
