"""Lexical and structural similarity between two specification texts.

The score is a weighted combination of three signals:

* word overlap: Jaccard similarity of lowercased, whitespace-split word sets
* length: ratio of the shorter to the longer text
* structure: share of spec-writing idioms (user stories, Given/When/Then,
  "should"/"must" language, ...) on which both texts agree

Every signal is symmetric, so the combined score is too.
"""

from __future__ import annotations

import re
from typing import Iterable, Optional, Pattern, Sequence, Tuple


DEFAULT_STRUCTURE_PATTERNS: Tuple[Pattern[str], ...] = (
    re.compile(r"as a .+? i want", re.IGNORECASE),
    re.compile(r"given .+? when .+? then", re.IGNORECASE),
    re.compile(r"should .+", re.IGNORECASE),
    re.compile(r"must .+", re.IGNORECASE),
    re.compile(r"acceptance criteria", re.IGNORECASE),
    re.compile(r"user story", re.IGNORECASE),
)

LEXICAL_WEIGHT = 0.6
LENGTH_WEIGHT = 0.2
STRUCTURE_WEIGHT = 0.2


class SimilarityScorer:
    """Score how close two free-text specifications are, in [0, 1]."""

    def __init__(
        self,
        *,
        lexical_weight: float = LEXICAL_WEIGHT,
        length_weight: float = LENGTH_WEIGHT,
        structure_weight: float = STRUCTURE_WEIGHT,
        patterns: Optional[Iterable[Pattern[str]]] = None,
    ):
        weights = (lexical_weight, length_weight, structure_weight)
        if any(weight < 0 for weight in weights) or sum(weights) <= 0:
            raise ValueError("Similarity weights must be non-negative and not all zero")
        total = sum(weights)
        self.lexical_weight = lexical_weight / total
        self.length_weight = length_weight / total
        self.structure_weight = structure_weight / total
        self.patterns: Sequence[Pattern[str]] = tuple(patterns) if patterns is not None else DEFAULT_STRUCTURE_PATTERNS

    def score(self, text_a: str, text_b: str) -> float:
        """Return the similarity of two texts; 1.0 for identical input."""
        if text_a == text_b:
            return 1.0

        combined = (
            self.lexical_weight * self.word_similarity(text_a, text_b)
            + self.length_weight * self.length_similarity(text_a, text_b)
            + self.structure_weight * self.structure_similarity(text_a, text_b)
        )
        # rounding keeps identical signal sums equal regardless of float noise
        return min(1.0, max(0.0, round(combined, 12)))

    def word_similarity(self, text_a: str, text_b: str) -> float:
        words_a = set(text_a.lower().split())
        words_b = set(text_b.lower().split())
        union = words_a | words_b
        if not union:
            return 1.0
        return len(words_a & words_b) / len(union)

    def length_similarity(self, text_a: str, text_b: str) -> float:
        longest = max(len(text_a), len(text_b))
        if longest == 0:
            return 1.0
        return min(len(text_a), len(text_b)) / longest

    def structure_similarity(self, text_a: str, text_b: str) -> float:
        if not self.patterns:
            return 1.0
        agreements = sum(
            1 for pattern in self.patterns if bool(pattern.search(text_a)) == bool(pattern.search(text_b))
        )
        return agreements / len(self.patterns)
