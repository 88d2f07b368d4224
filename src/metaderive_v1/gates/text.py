from __future__ import annotations

import re
from typing import AbstractSet, Sequence

from ..config import NEGATION_MARKERS

_NON_WORD = re.compile(r"[^\w\s]")


def tokenize(text: object) -> frozenset[str]:
    """Lowercased word tokens longer than two characters."""
    cleaned = _NON_WORD.sub(" ", str(text or "").lower())
    return frozenset(word for word in cleaned.split() if len(word) > 2)


def jaccard_similarity(set_a: AbstractSet[str], set_b: AbstractSet[str]) -> float:
    if not set_a and not set_b:
        return 0.0
    intersection = len(set_a & set_b)
    union = len(set_a) + len(set_b) - intersection
    return intersection / union if union else 0.0


def text_similarity(text_a: object, text_b: object) -> float:
    return jaccard_similarity(tokenize(text_a), tokenize(text_b))


def _word_run(text: object) -> str:
    return " " + " ".join(_NON_WORD.sub(" ", str(text or "").lower()).split()) + " "


def has_marker(text: str, marker: str) -> bool:
    return _word_run(marker) in _word_run(text)


def contains_negation(
    text_a: str, text_b: str, markers: Sequence[str] = NEGATION_MARKERS
) -> bool:
    """True when some negation marker appears, as a whole word, in exactly one text."""
    for marker in markers:
        if not marker.strip():
            continue
        if has_marker(text_a, marker) != has_marker(text_b, marker):
            return True
    return False
