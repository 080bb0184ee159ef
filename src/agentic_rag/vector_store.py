from __future__ import annotations

from pathlib import Path

import chromadb

from .schema import Chunk

COLLECTION_NAME = "chunks"


def build_chroma_collection(
    chunks: list[Chunk],
    embeddings: list[list[float]],
    collection_name: str = COLLECTION_NAME,
    persist_dir: str = "data/retrieval/chroma",
):
    """Create (or replace) a persistent inner-product Chroma collection.

    Args:
        chunks: Chunk records to index.
        embeddings: Unit-length embedding vectors aligned to chunks.
        collection_name: Chroma collection name.
        persist_dir: Local path for Chroma persistence.

    Returns:
        The created Chroma collection instance.
    """
    Path(persist_dir).mkdir(parents=True, exist_ok=True)
    client = chromadb.PersistentClient(path=persist_dir)
    existing = {getattr(collection, "name", collection) for collection in client.list_collections()}
    if collection_name in existing:
        client.delete_collection(collection_name)

    # inner product on unit vectors is cosine similarity
    collection = client.create_collection(name=collection_name, metadata={"hnsw:space": "ip"})
    if chunks:
        collection.add(
            ids=[chunk.id for chunk in chunks],
            embeddings=embeddings,
            documents=[chunk.text for chunk in chunks],
            metadatas=[{"doc_id": chunk.doc_id} for chunk in chunks],
        )
    return collection


def open_chroma_collection(persist_dir: str, collection_name: str = COLLECTION_NAME):
    """Open an existing persisted collection for read-only querying."""
    client = chromadb.PersistentClient(path=persist_dir)
    return client.get_collection(name=collection_name)


def dense_search(collection, query_embedding: list[float], top_n: int = 200) -> list[tuple[str, float]]:
    """Query a Chroma collection for nearest chunks by inner product.

    Args:
        collection: Chroma collection to query.
        query_embedding: Unit-length query vector.
        top_n: Number of nearest chunks to return.

    Returns:
        `(chunk_id, similarity)` pairs, most similar first.
    """
    available = collection.count()
    if available == 0 or top_n <= 0:
        return []

    response = collection.query(
        query_embeddings=[query_embedding],
        n_results=min(top_n, available),
        include=["distances"],
    )
    ids = response["ids"][0]
    distances = response["distances"][0]
    return [(chunk_id, float(1.0 - distance)) for chunk_id, distance in zip(ids, distances, strict=True)]
