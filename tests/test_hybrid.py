"""Tests for hybrid.py — score fusion, tie-breaking and the dimension guard."""
from __future__ import annotations

from unittest.mock import MagicMock

import numpy as np
import pytest

from agentic_rag.errors import AgentError, DimensionMismatchError, QueryEmbeddingError
from agentic_rag.hybrid import HybridSearcher, fuse_hits
from agentic_rag.index_store import IndexStore
from agentic_rag.schema import Chunk, Retrieved


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _lookup(chunk_id: str) -> Chunk:
    return Chunk(id=chunk_id, doc_id=chunk_id.split("#")[0], text=f"text of {chunk_id}")


def _mock_store(dimension: int = 3) -> MagicMock:
    store = MagicMock(spec=IndexStore)
    store.dimension = dimension
    store.get.side_effect = _lookup
    store.lexical_search.return_value = [("a#0", 4.0), ("b#0", 2.0)]
    store.vector_search.return_value = [("b#0", 0.9), ("c#0", 0.5)]
    return store


# ---------------------------------------------------------------------------
# fuse_hits
# ---------------------------------------------------------------------------

class TestFuseHits:
    def test_empty_union_returns_empty(self):
        assert fuse_hits([], [], _lookup) == []

    def test_union_of_channels(self):
        fused = fuse_hits([("a#0", 1.0)], [("b#0", 0.8)], _lookup)
        assert {item.chunk.id for item in fused} == {"a#0", "b#0"}

    def test_missing_channel_gets_zero_raw_score(self):
        fused = fuse_hits([("a#0", 3.0)], [("b#0", 0.8)], _lookup)
        by_id = {item.chunk.id: item for item in fused}
        assert by_id["a#0"].vector_score == 0.0
        assert by_id["b#0"].lexical_score == 0.0

    def test_weighted_fusion(self):
        fused = fuse_hits([("a#0", 3.0)], [("b#0", 0.8)], _lookup, lexical_weight=0.6, vector_weight=0.4)
        by_id = {item.chunk.id: item for item in fused}
        assert by_id["a#0"].fused_score == pytest.approx(0.6)
        assert by_id["b#0"].fused_score == pytest.approx(0.4)
        assert fused[0].chunk.id == "a#0"

    def test_scores_within_weight_bounds(self):
        lexical = [(f"d#{i}", float(10 - i)) for i in range(6)]
        vector = [(f"d#{i}", 0.1 * i) for i in range(3, 9)]
        fused = fuse_hits(lexical, vector, _lookup, lexical_weight=0.6, vector_weight=0.4)
        assert all(0.0 <= item.fused_score <= 1.0 for item in fused)

    def test_sorted_descending(self):
        lexical = [("a#0", 1.0), ("b#0", 9.0), ("c#0", 5.0)]
        fused = fuse_hits(lexical, [], _lookup)
        scores = [item.fused_score for item in fused]
        assert scores == sorted(scores, reverse=True)

    def test_ties_broken_by_lexical_rank(self):
        fused = fuse_hits([("z#0", 2.0), ("a#0", 2.0)], [], _lookup)
        assert [item.chunk.id for item in fused] == ["z#0", "a#0"]

    def test_ties_without_lexical_rank_broken_by_id(self):
        fused = fuse_hits([], [("z#0", 0.5), ("y#0", 0.5)], _lookup)
        assert [item.chunk.id for item in fused] == ["y#0", "z#0"]

    def test_raising_raw_score_never_lowers_rank_score(self):
        base = fuse_hits([("a#0", 1.0), ("b#0", 3.0)], [("a#0", 0.2), ("b#0", 0.6)], _lookup)
        raised = fuse_hits([("a#0", 2.5), ("b#0", 3.0)], [("a#0", 0.2), ("b#0", 0.6)], _lookup)
        score = lambda items: next(i.fused_score for i in items if i.chunk.id == "a#0")
        assert score(raised) >= score(base)


# ---------------------------------------------------------------------------
# HybridSearcher
# ---------------------------------------------------------------------------

class TestHybridSearcher:
    def test_search_returns_retrieved(self):
        store = _mock_store()
        searcher = HybridSearcher(store, embed_query=lambda q: np.array([1.0, 0.0, 0.0]))
        results = searcher.search("query", lexical_top_n=5, vector_top_n=7)
        assert all(isinstance(r, Retrieved) for r in results)
        assert [r.chunk.id for r in results][0] == "b#0"
        store.lexical_search.assert_called_once_with("query", top_n=5)
        assert store.vector_search.call_args.kwargs["top_n"] == 7

    def test_query_vector_is_normalized(self):
        store = _mock_store()
        searcher = HybridSearcher(store, embed_query=lambda q: np.array([3.0, 4.0, 0.0]))
        searcher.search("query")
        sent = store.vector_search.call_args.args[0]
        assert np.linalg.norm(sent) == pytest.approx(1.0)

    def test_dimension_mismatch_raises_before_any_search(self):
        store = _mock_store(dimension=1536)
        searcher = HybridSearcher(store, embed_query=lambda q: np.zeros(768))
        with pytest.raises(DimensionMismatchError) as excinfo:
            searcher.search("query")
        assert excinfo.value.expected == 1536
        assert excinfo.value.actual == 768
        store.lexical_search.assert_not_called()
        store.vector_search.assert_not_called()

    def test_embedding_failure_raises_agent_error(self):
        store = _mock_store()
        embed = MagicMock(side_effect=RuntimeError("connection refused"))
        searcher = HybridSearcher(store, embed_query=embed)
        with pytest.raises(QueryEmbeddingError, match="connection refused") as excinfo:
            searcher.search("query")
        assert isinstance(excinfo.value, AgentError)
        assert isinstance(excinfo.value.__cause__, RuntimeError)
        store.lexical_search.assert_not_called()
        store.vector_search.assert_not_called()

    def test_empty_channels_return_empty(self):
        store = _mock_store()
        store.lexical_search.return_value = []
        store.vector_search.return_value = []
        searcher = HybridSearcher(store, embed_query=lambda q: np.array([1.0, 0.0, 0.0]))
        assert searcher.search("query") == []

    def test_search_lexical_needs_no_embedding(self):
        store = _mock_store()
        embed = MagicMock()
        searcher = HybridSearcher(store, embed_query=embed)
        results = searcher.search_lexical("query", top_n=2)
        assert [r.chunk.id for r in results] == ["a#0", "b#0"]
        assert results[0].vector_score == 0.0
        assert results[0].fused_score == results[0].lexical_score
        embed.assert_not_called()

    def test_lexical_only_search_skips_vector_channel(self):
        store = _mock_store(dimension=1536)
        embed = MagicMock()
        searcher = HybridSearcher(store, embed_query=embed, lexical_only=True)
        results = searcher.search("query", lexical_top_n=100, vector_top_n=200)
        assert [r.chunk.id for r in results] == ["a#0", "b#0"]
        store.lexical_search.assert_called_once_with("query", top_n=100)
        store.vector_search.assert_not_called()
        embed.assert_not_called()


class TestParisScenario:
    def test_capital_question_ranks_paris_first(self, tmp_path):
        chunk = Chunk(
            id="paris.txt#0",
            doc_id="paris.txt",
            text="Paris is the capital of France. It has a population of about 2.1 million.",
        )
        store = IndexStore.build([chunk], [[1.0, 0.0, 0.0]], tmp_path / "index")
        searcher = HybridSearcher(store, embed_query=lambda q: np.array([0.9, 0.1, 0.0]))
        results = searcher.search("What is the capital of France?")
        assert results[0].chunk.id == "paris.txt#0"
        assert results[0].fused_score == max(r.fused_score for r in results)
