"""Loaded retrieval indexes for one corpus.

An ``IndexStore`` bundles the ordered chunk list, a BM25 index over stemmed
tokens and a Chroma inner-product collection keyed by chunk id. It is built
once by ingestion, then loaded and only read at query time, so one instance
can be shared by concurrent queries without locking.
"""
from __future__ import annotations

import logging
from collections import Counter
from dataclasses import asdict, dataclass, field
from pathlib import Path

import numpy as np
from rank_bm25 import BM25Okapi

from .embeddings import l2_normalize
from .errors import DimensionMismatchError, IndexNotFoundError
from .io_utils import load_json, save_json
from .retrieval import bm25_search, build_bm25
from .schema import Chunk
from .vector_store import build_chroma_collection, dense_search, open_chroma_collection

logger = logging.getLogger(__name__)

METADATA_FILE = "metadata.json"
CHROMA_DIR = "chroma"


@dataclass
class IndexStore:
    chunks: list[Chunk]
    dimension: int
    collection: object
    bm25: BM25Okapi | None = None
    tokenized: list[list[str]] = field(default_factory=list)
    _by_id: dict[str, Chunk] = field(default_factory=dict, init=False, repr=False)

    def __post_init__(self) -> None:
        if not self.tokenized:
            self.bm25, self.tokenized = build_bm25([chunk.text for chunk in self.chunks])
        self._by_id = {chunk.id: chunk for chunk in self.chunks}
        if len(self._by_id) != len(self.chunks):
            raise ValueError("Chunk ids must be unique within a corpus")

    def __len__(self) -> int:
        return len(self.chunks)

    def get(self, chunk_id: str) -> Chunk:
        return self._by_id[chunk_id]

    def lexical_search(self, query: str, top_n: int = 100) -> list[tuple[str, float]]:
        """Return `(chunk_id, bm25_score)` pairs for chunks sharing a query term."""
        hits = bm25_search(self.bm25, self.tokenized, query, top_n=top_n)
        return [(self.chunks[position].id, score) for position, score in hits]

    def vector_search(self, query_vector: np.ndarray, top_n: int = 200) -> list[tuple[str, float]]:
        """Return `(chunk_id, inner_product)` pairs for the nearest chunks.

        Raises:
            DimensionMismatchError: If the query width differs from the index width.
        """
        if len(query_vector) != self.dimension:
            raise DimensionMismatchError(expected=self.dimension, actual=len(query_vector))
        return dense_search(self.collection, [float(x) for x in query_vector], top_n=top_n)

    @classmethod
    def build(cls, chunks: list[Chunk], vectors, index_dir: str | Path) -> "IndexStore":
        """Persist chunk metadata and vectors, returning the ready store.

        Args:
            chunks: Corpus chunks in index order.
            vectors: One embedding per chunk, all of the same width.
            index_dir: Directory receiving `metadata.json` and the Chroma files.

        Returns:
            The freshly built store.
        """
        rows = [list(vector) for vector in vectors]
        if len(rows) != len(chunks):
            raise ValueError(f"Expected {len(chunks)} vectors, got {len(rows)}")
        duplicates = sorted(chunk_id for chunk_id, count in Counter(chunk.id for chunk in chunks).items() if count > 1)
        if duplicates:
            raise ValueError(f"Duplicate chunk ids: {', '.join(duplicates)}")
        dimension = len(rows[0]) if rows else 0
        for row in rows:
            if len(row) != dimension:
                raise DimensionMismatchError(expected=dimension, actual=len(row))

        matrix = l2_normalize(np.array(rows, dtype=np.float32)) if rows else np.zeros((0, 0), dtype=np.float32)
        index_dir = Path(index_dir)
        collection = build_chroma_collection(
            chunks=chunks,
            embeddings=matrix.tolist(),
            persist_dir=str(index_dir / CHROMA_DIR),
        )
        save_json(
            {"dimension": dimension, "chunks": [asdict(chunk) for chunk in chunks]},
            index_dir / METADATA_FILE,
        )
        logger.info("Indexed %d chunks (%dD) into %s", len(chunks), dimension, index_dir)
        return cls(chunks=list(chunks), dimension=dimension, collection=collection)

    @classmethod
    def load(cls, index_dir: str | Path) -> "IndexStore":
        """Load a store previously written by :meth:`build`.

        Raises:
            IndexNotFoundError: If the metadata file or Chroma directory is missing.
        """
        index_dir = Path(index_dir)
        metadata_path = index_dir / METADATA_FILE
        chroma_path = index_dir / CHROMA_DIR
        if not metadata_path.exists() or not chroma_path.exists():
            raise IndexNotFoundError(f"No index found in {index_dir}; run `agentic-rag build-index` first.")

        metadata = load_json(metadata_path)
        chunks = [Chunk(**record) for record in metadata["chunks"]]
        store = cls(
            chunks=chunks,
            dimension=int(metadata["dimension"]),
            collection=open_chroma_collection(str(chroma_path)),
        )
        logger.info("Loaded index with %d chunks, %dD embeddings", len(store), store.dimension)
        return store
