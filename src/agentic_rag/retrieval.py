from __future__ import annotations

import re

from nltk.stem import PorterStemmer
from rank_bm25 import BM25Okapi
from sklearn.feature_extraction.text import ENGLISH_STOP_WORDS

_STEMMER = PorterStemmer()
_TOKEN = re.compile(r"[a-z0-9]+")


def tokenize(text: str) -> list[str]:
    """Lowercase, drop stop words and single characters, then Porter-stem."""
    tokens = _TOKEN.findall(text.lower())
    return [_STEMMER.stem(token) for token in tokens if len(token) > 1 and token not in ENGLISH_STOP_WORDS]


def build_bm25(texts: list[str]) -> tuple[BM25Okapi | None, list[list[str]]]:
    """Create a BM25 index over stemmed tokens.

    Args:
        texts: Corpus texts in index order.

    Returns:
        Tuple of `(index, tokenized_corpus)`. The index is ``None`` when no
        text yields a single token.
    """
    tokenized = [tokenize(text) for text in texts]
    if not any(tokenized):
        return None, tokenized
    return BM25Okapi(tokenized), tokenized


def bm25_search(
    index: BM25Okapi | None,
    tokenized_corpus: list[list[str]],
    query: str,
    top_n: int = 100,
) -> list[tuple[int, float]]:
    """Run BM25 keyword retrieval over documents sharing at least one query term.

    Args:
        index: Pre-built BM25 index, or ``None`` for an empty corpus.
        tokenized_corpus: Token lists aligned with the index.
        query: User query string.
        top_n: Maximum number of hits to return.

    Returns:
        `(position, score)` pairs sorted by score descending, position ascending.
    """
    query_tokens = tokenize(query)
    if index is None or not query_tokens:
        return []

    scores = index.get_scores(query_tokens)
    wanted = set(query_tokens)
    matched = [idx for idx, tokens in enumerate(tokenized_corpus) if wanted.intersection(tokens)]
    ranked = sorted(matched, key=lambda idx: (-scores[idx], idx))[:top_n]
    return [(idx, float(scores[idx])) for idx in ranked]


def min_max_normalize(values: list[float], eps: float = 1e-9) -> list[float]:
    """Scale values into [0, 1) via ``(v - min) / (max - min + eps)``."""
    if not values:
        return []
    low = min(values)
    high = max(values)
    return [(value - low) / (high - low + eps) for value in values]


def fuse_scores(
    lexical: list[float],
    vector: list[float],
    lexical_weight: float = 0.6,
    vector_weight: float = 0.4,
) -> list[float]:
    """Weighted sum of independently min-max normalized score columns."""
    norm_lexical = min_max_normalize(lexical)
    norm_vector = min_max_normalize(vector)
    return [lexical_weight * lex + vector_weight * vec for lex, vec in zip(norm_lexical, norm_vector, strict=True)]
