"""Keyword extraction for the "describe your perfect movie" box.

This is a lookup table plus substring matching, not a language model: the
concepts below are matched against the lower-cased prompt, quoted phrases are
kept verbatim, and any other long word is passed through as a search keyword.
"""

from __future__ import annotations

import re

from .utils import unique_in_order

CONCEPTS: dict[str, tuple[str, ...]] = {
    "sci-fi": ("sci-fi", "science fiction", "space", "aliens", "future", "robots"),
    "comedy": ("funny", "comedy", "hilarious", "laugh"),
    "action": ("action", "explosions", "fast-paced", "chase"),
    "horror": ("horror", "scary", "terrifying", "ghosts", "monsters"),
    "thriller": ("thriller", "suspenseful", "mind-bending", "twist"),
    "drama": ("drama", "emotional", "serious"),
    "family": ("family", "kids", "children", "animation"),
    "romance": ("romance", "love", "romantic"),
    "heist": ("heist", "robbery", "con"),
}

TRIGGER_WORDS = frozenset(word for words in CONCEPTS.values() for word in words)
QUOTED_RE = re.compile(r'"(.*?)"')
MIN_WORD_LENGTH = 4


def extract_keywords(text: str) -> tuple[str, ...]:
    """Return the ordered, de-duplicated keywords found in ``text``."""

    lowered = text.lower()
    keywords: list[str] = [
        concept
        for concept, triggers in CONCEPTS.items()
        if any(trigger in lowered for trigger in triggers)
    ]
    keywords.extend(
        phrase.strip() for phrase in QUOTED_RE.findall(lowered) if phrase.strip()
    )

    remainder = QUOTED_RE.sub("", lowered)
    keywords.extend(
        word
        for word in remainder.split(" ")
        if len(word) >= MIN_WORD_LENGTH and word not in TRIGGER_WORDS
    )
    return tuple(unique_in_order(keywords))
