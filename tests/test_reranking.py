"""Tests for reranking.py — EmbeddingReranker and its embedding backends (all mocked)."""
from __future__ import annotations

from unittest.mock import MagicMock, patch

import numpy as np
from openai import OpenAIError

from agentic_rag.errors import LMError, Result
from agentic_rag.reranking import (
    PASSAGE_CHARS,
    EmbeddingReranker,
    LocalRerankEmbedder,
    OpenAIRerankEmbedder,
    build_rerank_embedder,
)
from agentic_rag.schema import Chunk, Retrieved


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _make_retrieved(chunk_id: str, text: str) -> Retrieved:
    return Retrieved(chunk=Chunk(id=chunk_id, doc_id=chunk_id.split("#")[0], text=text), fused_score=0.5)


class _TableEmbedder:
    """Embeds known strings to fixed vectors; unknown strings fail."""

    def __init__(self, table: dict[str, list[float]]):
        self.table = table
        self.calls: list[str] = []

    def embed(self, text: str) -> Result[np.ndarray]:
        self.calls.append(text)
        if text not in self.table:
            return Result.failure(LMError("rerank_embedding", "unknown text"))
        return Result.success(np.array(self.table[text], dtype=np.float32))


# ---------------------------------------------------------------------------
# EmbeddingReranker
# ---------------------------------------------------------------------------

class TestEmbeddingReranker:
    def test_empty_candidates(self):
        assert EmbeddingReranker(_TableEmbedder({})).rerank("q", []) == []

    def test_no_embedder_returns_first_k_unchanged(self):
        candidates = [_make_retrieved(f"d#{i}", f"text {i}") for i in range(5)]
        output = EmbeddingReranker(None).rerank("q", candidates, k=3)
        assert output == candidates[:3]

    def test_sorts_by_cosine_similarity(self):
        embedder = _TableEmbedder({
            "q": [1.0, 0.0],
            "far": [0.0, 1.0],
            "near": [1.0, 0.1],
            "mid": [1.0, 1.0],
        })
        candidates = [_make_retrieved("a#0", "far"), _make_retrieved("b#0", "near"), _make_retrieved("c#0", "mid")]
        output = EmbeddingReranker(embedder).rerank("q", candidates, k=3)
        assert [item.chunk.id for item in output] == ["b#0", "c#0", "a#0"]

    def test_truncates_to_k(self):
        embedder = _TableEmbedder({"q": [1.0, 0.0], "t": [1.0, 0.0]})
        candidates = [_make_retrieved(f"d#{i}", "t") for i in range(10)]
        assert len(EmbeddingReranker(embedder).rerank("q", candidates, k=4)) == 4

    def test_query_failure_returns_first_k(self):
        embedder = _TableEmbedder({"near": [1.0, 0.0]})
        candidates = [_make_retrieved("a#0", "far"), _make_retrieved("b#0", "near")]
        output = EmbeddingReranker(embedder).rerank("q", candidates, k=1)
        assert output == candidates[:1]

    def test_failed_passage_scores_zero(self):
        embedder = _TableEmbedder({"q": [1.0, 0.0], "good": [0.5, 0.5], "neg": [-1.0, 0.0]})
        candidates = [
            _make_retrieved("neg#0", "neg"),
            _make_retrieved("bad#0", "unknown passage"),
            _make_retrieved("good#0", "good"),
        ]
        output = EmbeddingReranker(embedder).rerank("q", candidates, k=3)
        assert [item.chunk.id for item in output] == ["good#0", "bad#0", "neg#0"]

    def test_shortlist_is_max_of_3k_and_30(self):
        embedder = _TableEmbedder({"q": [1.0, 0.0], "t": [1.0, 0.0]})
        candidates = [_make_retrieved(f"d#{i}", "t") for i in range(100)]
        EmbeddingReranker(embedder).rerank("q", candidates, k=2)
        assert len(embedder.calls) == 1 + 30

        embedder.calls.clear()
        EmbeddingReranker(embedder).rerank("q", candidates, k=15)
        assert len(embedder.calls) == 1 + 45

    def test_equal_scores_keep_fused_order(self):
        embedder = _TableEmbedder({"q": [1.0, 0.0], "t": [1.0, 0.0]})
        candidates = [_make_retrieved(f"d#{i}", "t") for i in range(5)]
        output = EmbeddingReranker(embedder, max_workers=4).rerank("q", candidates, k=5)
        assert output == candidates


# ---------------------------------------------------------------------------
# Backends
# ---------------------------------------------------------------------------

class TestOpenAIRerankEmbedder:
    def test_truncates_passage(self):
        client = MagicMock()
        client.embeddings.create.return_value.data = [MagicMock(embedding=[0.1, 0.2])]
        result = OpenAIRerankEmbedder(client, "rerank-model").embed("x" * 1000)
        assert result.ok
        sent = client.embeddings.create.call_args.kwargs["input"]
        assert len(sent) == PASSAGE_CHARS
        assert client.embeddings.create.call_args.kwargs["model"] == "rerank-model"

    def test_api_error_is_failure(self):
        client = MagicMock()
        client.embeddings.create.side_effect = OpenAIError("boom")
        result = OpenAIRerankEmbedder(client, "rerank-model").embed("text")
        assert not result.ok
        assert result.error.operation == "rerank_embedding"


class TestLocalRerankEmbedder:
    def test_uses_sentence_transformer(self):
        with patch("agentic_rag.reranking.SentenceTransformer") as mock_cls:
            mock_cls.return_value.encode.return_value = np.array([0.3, 0.4])
            embedder = LocalRerankEmbedder("local-model")
            result = embedder.embed("text")
        mock_cls.assert_called_once_with("local-model")
        assert result.ok
        np.testing.assert_allclose(result.value, [0.3, 0.4])


class TestBuildRerankEmbedder:
    def test_unconfigured_model_disables(self):
        assert build_rerank_embedder("openai", "", MagicMock()) is None

    def test_none_backend_disables(self):
        assert build_rerank_embedder("none", "model", MagicMock()) is None

    def test_openai_backend(self):
        assert isinstance(build_rerank_embedder("openai", "model", MagicMock()), OpenAIRerankEmbedder)

    def test_openai_backend_without_client(self):
        assert build_rerank_embedder("openai", "model", None) is None

    def test_local_backend(self):
        with patch("agentic_rag.reranking.SentenceTransformer"):
            assert isinstance(build_rerank_embedder("local", "model"), LocalRerankEmbedder)
