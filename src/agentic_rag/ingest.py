"""Corpus ingestion: load documents, chunk them and build the persisted index."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

import numpy as np
from pypdf import PdfReader

from .chunking import chunk_pages, chunk_text
from .errors import AgentError
from .index_store import IndexStore
from .io_utils import read_text
from .schema import Chunk

logger = logging.getLogger(__name__)

TEXT_SUFFIXES = {".txt", ".md"}
PDF_SUFFIX = ".pdf"


@dataclass(slots=True)
class SourceDocument:
    """Raw document text; PDFs keep one entry per page."""

    doc_id: str
    pages: list[str]
    paginated: bool = False


def extract_pdf_pages(path: str | Path) -> list[str]:
    reader = PdfReader(str(path))
    return [" ".join((page.extract_text() or "").split()) for page in reader.pages]


def load_documents(docs_dir: str | Path) -> list[SourceDocument]:
    """Read every supported file under ``docs_dir`` in a stable order.

    Args:
        docs_dir: Directory holding `.txt`, `.md` and `.pdf` files.

    Returns:
        One ``SourceDocument`` per file, keyed by its POSIX path relative to
        ``docs_dir`` so same-named files in different folders stay distinct.
    """
    directory = Path(docs_dir)
    if not directory.is_dir():
        raise AgentError(f"Documents directory {directory} does not exist")

    documents: list[SourceDocument] = []
    for path in sorted(directory.rglob("*")):
        if not path.is_file():
            continue
        doc_id = path.relative_to(directory).as_posix()
        suffix = path.suffix.lower()
        if suffix in TEXT_SUFFIXES:
            documents.append(SourceDocument(doc_id=doc_id, pages=[read_text(path)]))
        elif suffix == PDF_SUFFIX:
            documents.append(SourceDocument(doc_id=doc_id, pages=extract_pdf_pages(path), paginated=True))
        else:
            logger.debug("Skipping unsupported file %s", path)
    logger.info("Loaded %d documents from %s", len(documents), directory)
    return documents


def chunk_documents(documents: list[SourceDocument]) -> list[Chunk]:
    chunks: list[Chunk] = []
    for document in documents:
        if document.paginated:
            chunks.extend(chunk_pages(document.pages, document.doc_id))
        else:
            chunks.extend(chunk_text("\n".join(document.pages), document.doc_id))
    return chunks


def build_index(
    docs_dir: str | Path,
    index_dir: str | Path,
    embed_fn: Callable[[list[str]], np.ndarray],
) -> IndexStore:
    """Chunk and embed a document directory into a fresh ``IndexStore``.

    Args:
        docs_dir: Source documents directory.
        index_dir: Destination for the persisted index.
        embed_fn: Maps chunk texts to an embedding matrix with one row per
            text, in input order. Batching and concurrency live inside it.

    Returns:
        The built store.
    """
    chunks = chunk_documents(load_documents(docs_dir))
    if not chunks:
        raise AgentError(f"No indexable text found in {docs_dir}")

    logger.info("Embedding %d chunks", len(chunks))
    vectors = np.asarray(embed_fn([chunk.text for chunk in chunks]), dtype=np.float32)
    return IndexStore.build(chunks, vectors, index_dir)
