from __future__ import annotations

import os
from dataclasses import dataclass, field

from dotenv import load_dotenv


@dataclass(slots=True)
class LMSettings:
    """Runtime model configuration for chat, embedding and reranking calls."""

    base_url: str | None = None
    api_key: str = "not-needed"
    chat_model: str = "gpt-4.1-mini"
    embedding_model: str = "text-embedding-3-small"
    rerank_backend: str = "openai"
    rerank_model: str = ""
    timeout_s: float = 60.0


@dataclass(slots=True)
class RetrievalSettings:
    """Candidate pool sizes and fusion weights for hybrid search."""

    lexical_weight: float = 0.6
    vector_weight: float = 0.4
    lexical_top_n: int = 100
    vector_top_n: int = 200
    rerank_k: int = 8
    multi_lexical_top_n: int = 200
    multi_vector_top_n: int = 400
    multi_rerank_k: int = 12
    embed_batch_size: int = 64
    rerank_workers: int = 16
    lexical_only: bool = False


@dataclass(slots=True)
class VerifySettings:
    """Thresholds and evidence windows for claim verification."""

    gate_threshold: float = 0.7
    support_threshold: float = 0.5
    evidence_k: int = 3
    resynth_context_k: int = 10
    resynth_evidence_k: int = 4
    cite_k: int = 3


@dataclass(slots=True)
class Paths:
    """Locations of persisted indexes and raw corpora."""

    index_dir: str = "data/retrieval"
    docs_dir: str = "data/docs"
    tables_dir: str = "data/tables"
    table_index_path: str = "data/tools/table_index.json"


@dataclass(slots=True)
class Settings:
    lm: LMSettings = field(default_factory=LMSettings)
    retrieval: RetrievalSettings = field(default_factory=RetrievalSettings)
    verify: VerifySettings = field(default_factory=VerifySettings)
    paths: Paths = field(default_factory=Paths)


def load_settings() -> Settings:
    """Load environment-backed settings and return typed config objects.

    Returns:
        Settings populated from the process environment and any ``.env`` file.
    """
    load_dotenv()
    return Settings(
        lm=LMSettings(
            base_url=os.getenv("LM_BASE_URL") or None,
            api_key=os.getenv("LM_API_KEY", "not-needed"),
            chat_model=os.getenv("LM_MODEL", "gpt-4.1-mini"),
            embedding_model=os.getenv("EMBED_MODEL", "text-embedding-3-small"),
            rerank_backend=os.getenv("RERANK_BACKEND", "openai").lower(),
            rerank_model=os.getenv("RERANK_MODEL", ""),
            timeout_s=float(os.getenv("LM_TIMEOUT_S", "60")),
        ),
        retrieval=RetrievalSettings(
            lexical_weight=float(os.getenv("FUSION_LEXICAL_WEIGHT", "0.6")),
            vector_weight=float(os.getenv("FUSION_VECTOR_WEIGHT", "0.4")),
            lexical_only=os.getenv("LEXICAL_ONLY", "").lower() in {"1", "true", "yes"},
        ),
        verify=VerifySettings(),
        paths=Paths(
            index_dir=os.getenv("INDEX_DIR", "data/retrieval"),
            docs_dir=os.getenv("DOCS_DIR", "data/docs"),
            tables_dir=os.getenv("TABLES_DIR", "data/tables"),
            table_index_path=os.getenv("TABLE_INDEX_PATH", "data/tools/table_index.json"),
        ),
    )
