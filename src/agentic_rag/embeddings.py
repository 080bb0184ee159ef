from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor

import numpy as np
from openai import OpenAI

logger = logging.getLogger(__name__)


def l2_normalize(matrix: np.ndarray) -> np.ndarray:
    """Scale each row to unit length; all-zero rows are left unchanged."""
    norms = np.linalg.norm(matrix, axis=-1, keepdims=True)
    return matrix / np.where(norms == 0, 1.0, norms)


def _embed_batch(client: OpenAI, texts: list[str], model: str) -> list[list[float]]:
    response = client.embeddings.create(model=model, input=texts)
    return [row.embedding for row in response.data]


def embed_texts(
    texts: list[str],
    model: str = "text-embedding-3-small",
    client: OpenAI | None = None,
    batch_size: int = 64,
    max_workers: int = 1,
) -> np.ndarray:
    """Generate unit-length embedding vectors for input texts.

    Texts are sent in batches of ``batch_size``. With ``max_workers > 1`` the
    batches are requested concurrently; rows are always reassembled in input
    order.

    Args:
        texts: Input strings to embed.
        model: Embedding model name.
        client: OpenAI-compatible client; a default client is created when omitted.
        batch_size: Maximum inputs per embeddings request.
        max_workers: Number of batches in flight at once.

    Returns:
        A `float32` NumPy matrix shaped `(len(texts), embedding_dim)`.
    """
    if not texts:
        return np.zeros((0, 0), dtype=np.float32)

    client = client or OpenAI()
    batches = [texts[start : start + batch_size] for start in range(0, len(texts), batch_size)]
    logger.debug("Embedding %d texts in %d batches", len(texts), len(batches))

    if max_workers > 1 and len(batches) > 1:
        with ThreadPoolExecutor(max_workers=max_workers) as executor:
            results = list(executor.map(lambda batch: _embed_batch(client, batch, model), batches))
    else:
        results = [_embed_batch(client, batch, model) for batch in batches]

    vectors = [vector for batch_vectors in results for vector in batch_vectors]
    return l2_normalize(np.array(vectors, dtype=np.float32))


def embed_query(query: str, model: str = "text-embedding-3-small", client: OpenAI | None = None) -> np.ndarray:
    """Embed one query string into a unit-length 1D vector."""
    return embed_texts([query], model=model, client=client)[0]


def cosine_similarity(query_vector: np.ndarray, matrix: np.ndarray) -> np.ndarray:
    """Compute cosine similarity between one query vector and many vectors.

    Args:
        query_vector: Query embedding vector.
        matrix: Candidate embedding matrix where each row is one vector.

    Returns:
        A 1D array of cosine similarity scores aligned to matrix rows.
    """
    query_norm = np.linalg.norm(query_vector)
    matrix_norm = np.linalg.norm(matrix, axis=1)
    denominator = np.maximum(query_norm * matrix_norm, 1e-12)
    return (matrix @ query_vector) / denominator
