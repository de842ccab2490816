"""Scoring functions for memory retrieval."""

import math
import re
from collections.abc import Sequence

_NON_ALNUM_RE = re.compile(r"[^a-z0-9\s]")


def tokenize(text: str | None) -> set[str]:
    """Lowercase, drop non-alphanumerics, split on whitespace."""
    return set(_NON_ALNUM_RE.sub("", (text or "").lower()).split())


def keyword_similarity(text_a: str | None, text_b: str | None) -> float:
    """Token-overlap score: ``|A ∩ B| / sqrt(|A| * |B|)`` over word sets."""
    words_a = tokenize(text_a)
    words_b = tokenize(text_b)
    if not words_a or not words_b:
        return 0.0
    return len(words_a & words_b) / math.sqrt(len(words_a) * len(words_b))


def cosine_similarity(a: Sequence[float] | None, b: Sequence[float] | None) -> float:
    """Dot product over magnitudes.

    Returns 0 for missing or empty vectors, mismatched dimensions, or a
    zero-magnitude side.
    """
    if not a or not b or len(a) != len(b):
        return 0.0
    dot = sum(x * y for x, y in zip(a, b, strict=True))
    mag_a = math.sqrt(sum(x * x for x in a))
    mag_b = math.sqrt(sum(y * y for y in b))
    denom = mag_a * mag_b
    if denom == 0:
        return 0.0
    return dot / denom
