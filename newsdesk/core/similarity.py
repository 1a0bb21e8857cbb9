"""Jaccard similarity over character sets and keyword profiles.

Title similarity works on the *set of characters*, not on words. Two titles
made of the same characters in a different order score 1.0. This keeps the
comparison language-agnostic for CJK titles and is relied upon by the
title strategy thresholds, so it must not be changed to a token-based measure.
"""

from __future__ import annotations

import re
from collections import Counter
from collections.abc import Iterable

from newsdesk.core.canonical import canonicalize_text

PROFILE_SIZE = 20
MIN_TOKEN_LENGTH = 3

# Maximal runs of CJK characters or of ASCII letters (digits never form tokens)
_TOKEN_PATTERN = re.compile(r"[\u4e00-\u9fa5]+|[a-z]+")


def jaccard(left: Iterable[str], right: Iterable[str]) -> float:
    """|A & B| / |A | B|, 0.0 if either side is empty."""
    set_a = set(left)
    set_b = set(right)
    if not set_a or not set_b:
        return 0.0
    return len(set_a & set_b) / len(set_a | set_b)


def char_similarity(a: str, b: str) -> float:
    """Jaccard similarity of the character sets of two canonicalized strings."""
    return jaccard(canonicalize_text(a), canonicalize_text(b))


def extract_keyword_profile(text: str) -> list[str]:
    """Top 20 most frequent tokens longer than two characters.

    Ties keep first-seen order.
    """
    tokens = _TOKEN_PATTERN.findall(canonicalize_text(text))
    counts = Counter(token for token in tokens if len(token) >= MIN_TOKEN_LENGTH)
    return [token for token, _ in counts.most_common(PROFILE_SIZE)]


def profile_similarity(p1: list[str], p2: list[str]) -> float:
    """Jaccard similarity of two keyword profiles, order ignored."""
    return jaccard(p1, p2)
