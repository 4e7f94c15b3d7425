"""Unit tests for the text and vector similarity helpers."""

from __future__ import annotations

import math

import numpy as np
import pytest

from src.models.embedding import SimilarityMetric
from src.utils.similarity import is_valid_vector, similarity, similarity_matrix
from src.utils.text import (
    estimate_tokens,
    extract_keywords,
    jaccard,
    split_paragraphs,
    split_sentences,
    text_jaccard,
    truncate,
    word_set,
    words,
)

# ======================================================================
# Token estimation / words
# ======================================================================


class TestEstimateTokens:
    def test_words_times_factor_rounded_up(self) -> None:
        assert estimate_tokens("one two three") == math.ceil(3 * 1.33)

    def test_empty_text_is_zero(self) -> None:
        assert estimate_tokens("") == 0
        assert estimate_tokens("   \n ") == 0

    def test_hundred_words(self) -> None:
        assert estimate_tokens(" ".join(["word"] * 100)) == 133


class TestWords:
    def test_lowercases_and_keeps_inner_punctuation(self) -> None:
        assert words("Hello, World's end-game 42") == ["hello", "world's", "end-game", "42"]

    def test_min_length_filters_short_words(self) -> None:
        assert words("a an the soil", min_length=3) == ["soil"]

    def test_word_set_deduplicates(self) -> None:
        assert word_set("Soil soil SOIL water") == {"soil", "water"}


# ======================================================================
# Jaccard
# ======================================================================


class TestJaccard:
    def test_both_empty_is_zero(self) -> None:
        assert jaccard(set(), set()) == 0.0

    def test_partial_overlap(self) -> None:
        assert jaccard({"a", "b"}, {"b", "c"}) == pytest.approx(1 / 3, abs=1e-9)

    def test_identical_sets(self) -> None:
        assert jaccard({"x"}, {"x"}) == 1.0

    def test_text_jaccard_is_case_insensitive(self) -> None:
        assert text_jaccard("Compost Heap", "compost heap") == 1.0


# ======================================================================
# Paragraph / sentence splitting
# ======================================================================


class TestSplitParagraphs:
    def test_blank_lines_separate_paragraphs(self) -> None:
        assert split_paragraphs("first\n\n  \n\nsecond\n") == ["first", "second"]

    def test_single_newline_does_not_split(self) -> None:
        assert split_paragraphs("line one\nline two") == ["line one\nline two"]


class TestSplitSentences:
    def test_basic_split(self) -> None:
        assert split_sentences("Water deeply. Mulch well! Why not?") == [
            "Water deeply.",
            "Mulch well!",
            "Why not?",
        ]

    def test_abbreviation_is_not_a_boundary(self) -> None:
        assert split_sentences("Dr. Smith arrived. He left!") == ["Dr. Smith arrived.", "He left!"]

    def test_trailing_text_without_terminator_is_kept(self) -> None:
        assert split_sentences("One sentence. and a tail") == ["One sentence.", "and a tail"]

    def test_whitespace_is_normalised(self) -> None:
        assert split_sentences("Spread   it\nthinly.  Then water.") == [
            "Spread it thinly.",
            "Then water.",
        ]

    def test_empty_text(self) -> None:
        assert split_sentences("") == []
        assert split_sentences("   ") == []

    def test_decimal_numbers_stay_together(self) -> None:
        assert split_sentences("The pH was 6.5 in spring. It rose later.") == [
            "The pH was 6.5 in spring.",
            "It rose later.",
        ]


# ======================================================================
# Keywords / truncate
# ======================================================================


class TestExtractKeywords:
    def test_most_frequent_first(self) -> None:
        text = "compost compost soil soil soil water"
        assert extract_keywords(text, limit=2) == ["soil", "compost"]

    def test_ties_keep_first_appearance(self) -> None:
        assert extract_keywords("mulch straw bark", limit=3) == ["mulch", "straw", "bark"]

    def test_stopwords_and_short_words_excluded(self) -> None:
        assert extract_keywords("the and with from soil") == ["soil"]

    def test_empty(self) -> None:
        assert extract_keywords("") == []


class TestTruncate:
    def test_short_text_unchanged(self) -> None:
        assert truncate("short text", 80) == "short text"

    def test_cuts_on_word_boundary(self) -> None:
        assert truncate("the quick brown fox", 10) == "the quick"

    def test_single_long_word_hard_cut(self) -> None:
        assert truncate("abcdefghijkl", 5) == "abcde"


# ======================================================================
# Vector similarity
# ======================================================================


class TestSimilarity:
    def test_cosine_identical_and_orthogonal(self) -> None:
        assert similarity([1.0, 0.0], [1.0, 0.0], SimilarityMetric.COSINE) == pytest.approx(1.0)
        assert similarity([1.0, 0.0], [0.0, 1.0], SimilarityMetric.COSINE) == pytest.approx(0.0)

    def test_cosine_zero_vector_scores_zero(self) -> None:
        assert similarity([0.0, 0.0], [1.0, 0.0], SimilarityMetric.COSINE) == 0.0

    def test_euclidean_is_inverse_distance(self) -> None:
        assert similarity([0.0, 0.0], [3.0, 4.0], SimilarityMetric.EUCLIDEAN) == pytest.approx(
            1 / 6, abs=1e-9
        )
        assert similarity([1.0, 2.0], [1.0, 2.0], SimilarityMetric.EUCLIDEAN) == 1.0

    def test_dot_product(self) -> None:
        assert similarity([1.0, 2.0], [3.0, 4.0], SimilarityMetric.DOT_PRODUCT) == 11.0

    def test_dimension_mismatch_raises(self) -> None:
        with pytest.raises(ValueError, match="dimension mismatch"):
            similarity([1.0, 0.0], [1.0, 0.0, 0.0], SimilarityMetric.COSINE)


class TestSimilarityMatrix:
    def test_cosine_rows_with_zero_row(self) -> None:
        matrix = np.array([[1.0, 0.0], [0.0, 1.0], [0.0, 0.0]])
        scores = similarity_matrix([1.0, 0.0], matrix, SimilarityMetric.COSINE)
        assert scores.tolist() == pytest.approx([1.0, 0.0, 0.0])

    def test_matches_pairwise_similarity(self) -> None:
        matrix = np.array([[0.2, 0.9], [0.7, 0.1]])
        query = [0.5, 0.5]
        for metric in SimilarityMetric:
            expected = [similarity(query, row, metric) for row in matrix]
            assert similarity_matrix(query, matrix, metric).tolist() == pytest.approx(expected)

    def test_empty_matrix(self) -> None:
        assert similarity_matrix([1.0], np.zeros((0, 1)), SimilarityMetric.COSINE).size == 0


class TestIsValidVector:
    @pytest.mark.parametrize(
        ("vector", "expected"),
        [
            ([0.1, 0.2], True),
            ([], False),
            (None, False),
            ([0.1, float("nan")], False),
            ([float("inf")], False),
        ],
    )
    def test_validity(self, vector: list[float] | None, expected: bool) -> None:
        assert is_valid_vector(vector) is expected
