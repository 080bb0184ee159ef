from __future__ import annotations

import re

from .schema import Chunk

_SENTENCE_BOUNDARY = re.compile(r"(?<=[.!?])\s+(?=[A-Z0-9])")


def chunk_id(doc_id: str, ordinal: int) -> str:
    return f"{doc_id}#{ordinal}"


def fixed_chunk(text: str, doc_id: str, chunk_chars: int = 800, start_ordinal: int = 0) -> list[Chunk]:
    """Split text into non-overlapping fixed-width character windows.

    Args:
        text: Raw document text.
        doc_id: Identifier of the source document.
        chunk_chars: Maximum number of characters per chunk.
        start_ordinal: Ordinal assigned to the first window.

    Returns:
        Chunks for every window that contains non-whitespace text.
    """
    chunks: list[Chunk] = []
    ordinal = start_ordinal
    for start in range(0, len(text), chunk_chars):
        segment = text[start : start + chunk_chars]
        if segment.strip():
            chunks.append(Chunk(id=chunk_id(doc_id, ordinal), doc_id=doc_id, text=segment))
        ordinal += 1
    return chunks


def sentence_chunk(
    text: str,
    doc_id: str,
    target_chars: int = 900,
    overlap_sentences: int = 1,
    start_ordinal: int = 0,
) -> list[Chunk]:
    """Group sentences into chunks near a target size, overlapping at the seams.

    Sentences are accumulated until adding the next one would exceed
    ``target_chars``; the buffer is then flushed and the next buffer starts
    with the last ``overlap_sentences`` sentences of the flushed one.

    Args:
        text: Raw document text; whitespace runs are collapsed first.
        doc_id: Identifier of the source document.
        target_chars: Character budget per chunk.
        overlap_sentences: Sentences carried over into the next chunk.
        start_ordinal: Ordinal assigned to the first chunk.

    Returns:
        Chunk records in document order.
    """
    normalized = re.sub(r"\s+", " ", text).strip()
    if not normalized:
        return []

    sentences = [part.strip() for part in _SENTENCE_BOUNDARY.split(normalized) if part.strip()]
    chunks: list[Chunk] = []
    buffer: list[str] = []
    buffer_len = 0
    ordinal = start_ordinal

    def flush() -> None:
        nonlocal ordinal
        joined = " ".join(buffer).strip()
        if joined:
            chunks.append(Chunk(id=chunk_id(doc_id, ordinal), doc_id=doc_id, text=joined))
            ordinal += 1

    for sentence in sentences:
        if buffer and buffer_len + len(sentence) + 1 > target_chars:
            flush()
            keep = max(0, min(overlap_sentences, len(buffer)))
            buffer = buffer[len(buffer) - keep :]
            buffer_len = len(" ".join(buffer))
        buffer.append(sentence)
        buffer_len += (1 if buffer_len else 0) + len(sentence)

    if buffer:
        flush()
    return chunks


def chunk_text(text: str, doc_id: str, start_ordinal: int = 0) -> list[Chunk]:
    """Chunk by sentences, falling back to fixed windows for degenerate text."""
    chunks = sentence_chunk(text, doc_id, start_ordinal=start_ordinal)
    if chunks:
        return chunks
    return fixed_chunk(text, doc_id, start_ordinal=start_ordinal)


def chunk_pages(pages: list[str], doc_id: str) -> list[Chunk]:
    """Chunk a paginated document, keeping ordinals continuous across pages.

    Args:
        pages: Extracted text per page, in page order.
        doc_id: Identifier of the source document.

    Returns:
        Chunks tagged with their 1-based page number.
    """
    chunks: list[Chunk] = []
    next_ordinal = 0
    for page_num, page_text in enumerate(pages, start=1):
        page_chunks = chunk_text(page_text, doc_id, start_ordinal=next_ordinal)
        for chunk in page_chunks:
            chunks.append(Chunk(id=chunk.id, doc_id=doc_id, text=chunk.text, page=page_num))
        if page_chunks:
            # fixed windows may skip ordinals for blank slices
            next_ordinal = int(page_chunks[-1].id.rsplit("#", 1)[1]) + 1
    return chunks
