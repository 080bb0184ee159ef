"""Tests for retrieval.py — tokenization, BM25 search and fusion primitives."""
from __future__ import annotations

import pytest

from agentic_rag.retrieval import bm25_search, build_bm25, fuse_scores, min_max_normalize, tokenize

CORPUS = [
    "Paris is the capital of France.",
    "Rome is the capital of Italy.",
    "Bananas are rich in potassium.",
    "Running shoes wear out after many runs.",
]


# ---------------------------------------------------------------------------
# tokenize
# ---------------------------------------------------------------------------

class TestTokenize:
    def test_lowercases_and_stems(self):
        assert tokenize("Running Runs") == ["run", "run"]

    def test_drops_stop_words(self):
        assert "the" not in tokenize("the capital of the country")
        assert tokenize("the of and") == []

    def test_drops_single_characters(self):
        assert tokenize("a b c capital") == tokenize("capital")
        assert len(tokenize("a b c capital")) == 1

    def test_strips_punctuation(self):
        assert tokenize("France!!! (Paris)") == tokenize("france paris")
        assert len(tokenize("France!!! (Paris)")) == 2

    def test_keeps_numbers(self):
        assert "1989" in tokenize("The wall fell in 1989.")


# ---------------------------------------------------------------------------
# build_bm25 / bm25_search
# ---------------------------------------------------------------------------

class TestBm25:
    def test_index_none_for_untokenizable_corpus(self):
        index, tokenized = build_bm25(["the of", "a"])
        assert index is None
        assert tokenized == [[], []]

    def test_only_matching_documents_returned(self):
        index, tokenized = build_bm25(CORPUS)
        hits = bm25_search(index, tokenized, "capital of France", top_n=10)
        positions = [position for position, _ in hits]
        assert set(positions) == {0, 1}
        assert positions[0] == 0

    def test_stemmed_query_matches(self):
        index, tokenized = build_bm25(CORPUS)
        hits = bm25_search(index, tokenized, "runner running", top_n=10)
        assert [position for position, _ in hits] == [3]

    def test_respects_top_n(self):
        index, tokenized = build_bm25(CORPUS)
        assert len(bm25_search(index, tokenized, "capital", top_n=1)) == 1

    def test_stop_word_query_returns_nothing(self):
        index, tokenized = build_bm25(CORPUS)
        assert bm25_search(index, tokenized, "the of", top_n=10) == []

    def test_empty_index_returns_nothing(self):
        assert bm25_search(None, [], "anything", top_n=10) == []


# ---------------------------------------------------------------------------
# min_max_normalize / fuse_scores
# ---------------------------------------------------------------------------

class TestMinMaxNormalize:
    def test_range(self):
        normalized = min_max_normalize([2.0, 4.0, 6.0])
        assert normalized[0] == 0.0
        assert normalized[1] == pytest.approx(0.5)
        assert normalized[2] == pytest.approx(1.0)
        assert all(0.0 <= v <= 1.0 for v in normalized)

    def test_equal_values_map_to_zero(self):
        assert min_max_normalize([3.0, 3.0]) == [0.0, 0.0]

    def test_empty(self):
        assert min_max_normalize([]) == []

    def test_monotone(self):
        base = [1.0, 5.0, 3.0]
        raised = [1.0, 5.0, 4.0]
        assert min_max_normalize(raised)[2] >= min_max_normalize(base)[2]


class TestFuseScores:
    def test_weighted_sum(self):
        fused = fuse_scores([0.0, 10.0], [1.0, 0.0], lexical_weight=0.6, vector_weight=0.4)
        assert fused[0] == pytest.approx(0.4)
        assert fused[1] == pytest.approx(0.6)

    def test_bounds(self):
        fused = fuse_scores([5.0, -1.0, 2.0, 0.0], [0.3, 0.9, 0.1, 0.5])
        assert all(0.0 <= score <= 1.0 for score in fused)
