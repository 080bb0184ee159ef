"""Hybrid lexical + vector search with min-max score fusion.

Each channel's raw scores are min-max normalized independently over the union
of hits, then combined as ``w_lex * lexical + w_vec * vector``. A chunk seen by
only one channel gets a raw score of 0 for the other before normalization.
Ties are broken by lexical rank, then chunk id, so rankings are reproducible.
"""
from __future__ import annotations

import logging
import math
from typing import Callable

import numpy as np

from .errors import DimensionMismatchError, QueryEmbeddingError
from .index_store import IndexStore
from .retrieval import fuse_scores
from .schema import Chunk, Retrieved

logger = logging.getLogger(__name__)


def fuse_hits(
    lexical_hits: list[tuple[str, float]],
    vector_hits: list[tuple[str, float]],
    lookup: Callable[[str], Chunk],
    lexical_weight: float = 0.6,
    vector_weight: float = 0.4,
) -> list[Retrieved]:
    """Fuse two ranked hit lists into one list sorted by fused score.

    Args:
        lexical_hits: `(chunk_id, score)` pairs in lexical rank order.
        vector_hits: `(chunk_id, score)` pairs in vector rank order.
        lookup: Resolves a chunk id to its chunk.
        lexical_weight: Weight applied to the normalized lexical score.
        vector_weight: Weight applied to the normalized vector score.

    Returns:
        Retrieved items with raw and fused scores, best first.
    """
    lexical = dict(lexical_hits)
    vector = dict(vector_hits)
    lexical_rank = {chunk_id: rank for rank, (chunk_id, _) in enumerate(lexical_hits)}

    union: list[str] = list(lexical)
    union.extend(chunk_id for chunk_id in vector if chunk_id not in lexical)
    if not union:
        return []

    items = [
        Retrieved(chunk=lookup(chunk_id), lexical_score=lexical.get(chunk_id, 0.0), vector_score=vector.get(chunk_id, 0.0))
        for chunk_id in union
    ]
    fused = fuse_scores(
        [item.lexical_score for item in items],
        [item.vector_score for item in items],
        lexical_weight=lexical_weight,
        vector_weight=vector_weight,
    )
    for item, score in zip(items, fused, strict=True):
        item.fused_score = score

    return sorted(
        items,
        key=lambda item: (-item.fused_score, lexical_rank.get(item.chunk.id, math.inf), item.chunk.id),
    )


class HybridSearcher:
    """Query one ``IndexStore`` through both channels and fuse the rankings."""

    def __init__(
        self,
        store: IndexStore,
        embed_query: Callable[[str], np.ndarray],
        lexical_weight: float = 0.6,
        vector_weight: float = 0.4,
        lexical_only: bool = False,
    ):
        self.store = store
        self.embed_query = embed_query
        self.lexical_weight = lexical_weight
        self.vector_weight = vector_weight
        self.lexical_only = lexical_only

    def search(self, query: str, lexical_top_n: int = 100, vector_top_n: int = 200) -> list[Retrieved]:
        """Run lexical and vector search and return the fused ranking.

        With ``lexical_only`` set, only BM25 runs and ``vector_top_n`` is ignored.

        Raises:
            DimensionMismatchError: If the query embedding width differs from
                the index width. Neither channel is searched in that case.
            QueryEmbeddingError: If the embedding call itself fails.
        """
        if self.lexical_only:
            return self.search_lexical(query, top_n=lexical_top_n)

        try:
            query_vector = np.asarray(self.embed_query(query), dtype=np.float32)
        except Exception as exc:
            raise QueryEmbeddingError(f"Could not embed the query: {exc}") from exc
        if query_vector.shape[-1] != self.store.dimension:
            raise DimensionMismatchError(expected=self.store.dimension, actual=int(query_vector.shape[-1]))

        norm = np.linalg.norm(query_vector)
        if norm > 0:
            query_vector = query_vector / norm

        lexical_hits = self.store.lexical_search(query, top_n=lexical_top_n)
        vector_hits = self.store.vector_search(query_vector, top_n=vector_top_n)
        fused = fuse_hits(
            lexical_hits,
            vector_hits,
            self.store.get,
            lexical_weight=self.lexical_weight,
            vector_weight=self.vector_weight,
        )
        logger.debug(
            "Hybrid search: %d lexical, %d vector, %d fused", len(lexical_hits), len(vector_hits), len(fused)
        )
        return fused

    def search_lexical(self, query: str, top_n: int = 200) -> list[Retrieved]:
        """BM25-only retrieval for corpora indexed without usable embeddings."""
        return [
            Retrieved(chunk=self.store.get(chunk_id), lexical_score=score, vector_score=0.0, fused_score=score)
            for chunk_id, score in self.store.lexical_search(query, top_n=top_n)
        ]
