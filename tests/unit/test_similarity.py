"""Unit tests for the spec similarity scorer."""

import itertools
import math
import re

import pytest

from speclinter.similarity import SimilarityScorer


SAMPLES = [
    "",
    "   ",
    "Users can reset their password",
    "As a user I want to reset my password so that I can log in again",
    "Given a locked account when the user resets the password then the account is unlocked",
    "The export must include every invoice and should finish within a minute",
    "User story: nightly invoice export. Acceptance criteria: CSV file lands in the bucket",
]


class TestScoreContract:
    """The properties every scorer must keep."""

    @pytest.fixture
    def scorer(self):
        return SimilarityScorer()

    @pytest.mark.parametrize("text", [s for s in SAMPLES if s])
    def test_identical_text_scores_one(self, scorer, text):
        assert scorer.score(text, text) == 1.0

    def test_two_empty_strings_score_one(self, scorer):
        assert scorer.score("", "") == 1.0

    def test_symmetric(self, scorer):
        for text_a, text_b in itertools.combinations(SAMPLES, 2):
            assert scorer.score(text_a, text_b) == scorer.score(text_b, text_a)

    def test_range_and_no_nan(self, scorer):
        for text_a, text_b in itertools.product(SAMPLES, repeat=2):
            score = scorer.score(text_a, text_b)
            assert not math.isnan(score)
            assert 0.0 <= score <= 1.0

    def test_deterministic(self, scorer):
        first = scorer.score(SAMPLES[3], SAMPLES[4])
        assert all(scorer.score(SAMPLES[3], SAMPLES[4]) == first for _ in range(5))


class TestSignals:
    """Each signal on its own."""

    @pytest.fixture
    def scorer(self):
        return SimilarityScorer()

    def test_word_similarity_is_case_insensitive_jaccard(self, scorer):
        assert scorer.word_similarity("Login User", "login user") == 1.0
        assert scorer.word_similarity("a b c", "b c d") == pytest.approx(2 / 4)

    def test_word_similarity_empty_sets(self, scorer):
        assert scorer.word_similarity("   ", "") == 1.0

    def test_length_similarity(self, scorer):
        assert scorer.length_similarity("abcd", "ab") == 0.5
        assert scorer.length_similarity("", "") == 1.0
        assert scorer.length_similarity("abc", "") == 0.0

    def test_structure_similarity_counts_agreeing_patterns(self, scorer):
        story = "As a user I want to log in"
        plain = "log in for users"
        assert scorer.structure_similarity(story, plain) == pytest.approx(5 / 6)
        assert scorer.structure_similarity(plain, "sign out") == 1.0

    def test_disjoint_texts_combine_length_and_structure(self, scorer):
        score = scorer.score("alpha beta", "gamma delta")
        assert score == pytest.approx(0.2 * 10 / 11 + 0.2)


class TestConfiguration:
    """Custom weights and patterns."""

    def test_weights_are_normalized(self):
        scorer = SimilarityScorer(lexical_weight=2, length_weight=0, structure_weight=0)
        assert scorer.score("a b", "b c") == pytest.approx(1 / 3)

    def test_negative_weight_rejected(self):
        with pytest.raises(ValueError):
            SimilarityScorer(lexical_weight=-0.1)

    def test_all_zero_weights_rejected(self):
        with pytest.raises(ValueError):
            SimilarityScorer(lexical_weight=0, length_weight=0, structure_weight=0)

    def test_custom_patterns(self):
        scorer = SimilarityScorer(patterns=[re.compile(r"invoice", re.IGNORECASE)])
        assert scorer.structure_similarity("Invoice export", "invoice import") == 1.0
        assert scorer.structure_similarity("Invoice export", "order import") == 0.0
