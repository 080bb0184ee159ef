from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Protocol

import numpy as np
from openai import OpenAI, OpenAIError
from sentence_transformers import SentenceTransformer

from .embeddings import cosine_similarity
from .errors import LMError, Result
from .schema import Retrieved

logger = logging.getLogger(__name__)

PASSAGE_CHARS = 400


class RerankEmbedder(Protocol):
    def embed(self, text: str) -> Result[np.ndarray]: ...


class OpenAIRerankEmbedder:
    """Rerank embeddings served by an OpenAI-compatible embeddings endpoint."""

    def __init__(self, client: OpenAI, model: str):
        self.client = client
        self.model = model

    def embed(self, text: str) -> Result[np.ndarray]:
        try:
            response = self.client.embeddings.create(model=self.model, input=text[:PASSAGE_CHARS])
        except OpenAIError as exc:
            return Result.failure(LMError("rerank_embedding", str(exc)))
        return Result.success(np.array(response.data[0].embedding, dtype=np.float32))


class LocalRerankEmbedder:
    """Rerank embeddings computed in-process with a sentence-transformers bi-encoder."""

    def __init__(self, model_name: str = "sentence-transformers/all-MiniLM-L6-v2"):
        self.model = SentenceTransformer(model_name)

    def embed(self, text: str) -> Result[np.ndarray]:
        vector = self.model.encode(text[:PASSAGE_CHARS])
        return Result.success(np.asarray(vector, dtype=np.float32))


def build_rerank_embedder(backend: str, model: str, client: OpenAI | None = None) -> RerankEmbedder | None:
    """Pick the rerank embedding backend, or ``None`` when reranking is unconfigured."""
    if backend == "none" or not model:
        logger.warning("RERANK_MODEL not configured - reranking disabled")
        return None
    if backend == "local":
        return LocalRerankEmbedder(model)
    if client is None:
        logger.warning("No rerank client available - reranking disabled")
        return None
    return OpenAIRerankEmbedder(client, model)


class EmbeddingReranker:
    """Second-stage reranker scoring candidates by query/passage cosine similarity."""

    def __init__(self, embedder: RerankEmbedder | None = None, max_workers: int = 16):
        """Initialize the reranker.

        Args:
            embedder: Embedding backend; ``None`` disables reranking.
            max_workers: Concurrent passage-embedding requests.
        """
        self.embedder = embedder
        self.max_workers = max_workers

    def rerank(self, query: str, candidates: list[Retrieved], k: int = 8) -> list[Retrieved]:
        """Reorder the fused shortlist by semantic similarity to the query.

        Only the first ``max(3k, 30)`` candidates are rescored. When the backend
        is missing or the query cannot be embedded, the first ``k`` fused
        candidates are returned unchanged.

        Args:
            query: User query string.
            candidates: Fused candidates, best first.
            k: Number of results to return.

        Returns:
            Top `k` candidates sorted by rerank score.
        """
        if not candidates:
            return []
        if self.embedder is None:
            return candidates[:k]

        query_result = self.embedder.embed(query)
        if not query_result.ok:
            logger.warning("Rerank embedding failed: %s", query_result.error)
            return candidates[:k]
        query_vector = query_result.value

        shortlist = candidates[: max(k * 3, 30)]
        with ThreadPoolExecutor(max_workers=max(1, min(self.max_workers, len(shortlist)))) as executor:
            passage_results = list(executor.map(lambda item: self.embedder.embed(item.chunk.text), shortlist))

        scores: list[float] = []
        for result in passage_results:
            if not result.ok:
                logger.warning("Rerank embedding failed: %s", result.error)
                scores.append(0.0)
                continue
            scores.append(float(cosine_similarity(query_vector, np.asarray([result.value]))[0]))

        order = sorted(range(len(shortlist)), key=lambda idx: scores[idx], reverse=True)
        return [shortlist[idx] for idx in order[:k]]
