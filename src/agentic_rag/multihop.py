"""Multi-hop retrieval: decompose, retrieve per sub-question, merge.

Each sub-question gets its own hybrid search and rerank pass. The merged
candidate list keeps the first occurrence of every chunk id in sub-question
order, and the synthesis context keeps one labelled block per hop so the
drafting step can tell which hop contributed which evidence.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field

from .hybrid import HybridSearcher
from .lm import LMClient
from .reranking import EmbeddingReranker
from .schema import Retrieved

logger = logging.getLogger(__name__)

_DECOMPOSE_SYSTEM = (
    "Break the question into the minimal sequence of simpler sub-questions that,\n"
    "answered in order, answer the original question.\n"
    "Return a JSON array of strings and nothing else."
)


@dataclass(slots=True)
class MultiHopResult:
    """Merged evidence from all hops plus per-hop bookkeeping for tracing."""

    subquestions: list[str]
    per_hop_ids: list[list[str]]
    merged: list[Retrieved]
    context_text: str
    hops: list[list[Retrieved]] = field(default_factory=list)


def decompose(lm: LMClient, question: str) -> list[str]:
    """Ask the LM for sub-questions; fall back to the question itself."""
    result = lm.complete_json(_DECOMPOSE_SYSTEM, question, temperature=0, operation="decompose")
    parsed = result.unwrap_or(None)
    if not isinstance(parsed, list):
        return [question]
    subquestions = [str(item).strip() for item in parsed if str(item).strip()]
    return subquestions or [question]


def merge_hops(hops: list[list[Retrieved]]) -> list[Retrieved]:
    """Deduplicate candidates by chunk id, keeping each at its first occurrence."""
    seen: set[str] = set()
    merged: list[Retrieved] = []
    for hop in hops:
        for item in hop:
            if item.chunk.id in seen:
                continue
            seen.add(item.chunk.id)
            merged.append(item)
    return merged


def format_hop_context(subquestions: list[str], hops: list[list[Retrieved]]) -> str:
    blocks = []
    for subquestion, hop in zip(subquestions, hops, strict=True):
        passages = "\n".join(f"[{item.chunk.id}] {item.chunk.text}" for item in hop)
        blocks.append(f"SUBQ: {subquestion}\n{passages}")
    return "\n\n".join(blocks)


class MultiHopOrchestrator:
    def __init__(
        self,
        lm: LMClient,
        searcher: HybridSearcher,
        reranker: EmbeddingReranker,
        lexical_top_n: int = 200,
        vector_top_n: int = 400,
        rerank_k: int = 12,
    ):
        self.lm = lm
        self.searcher = searcher
        self.reranker = reranker
        self.lexical_top_n = lexical_top_n
        self.vector_top_n = vector_top_n
        self.rerank_k = rerank_k

    def run(self, question: str) -> MultiHopResult:
        """Retrieve evidence for every sub-question, in order.

        Args:
            question: The original multi-part question.

        Returns:
            MultiHopResult with merged candidates and a per-hop context string.
        """
        subquestions = decompose(self.lm, question)
        logger.info("Decomposed question into %d sub-questions", len(subquestions))

        hops: list[list[Retrieved]] = []
        for subquestion in subquestions:
            candidates = self.searcher.search(
                subquestion,
                lexical_top_n=self.lexical_top_n,
                vector_top_n=self.vector_top_n,
            )
            hops.append(self.reranker.rerank(subquestion, candidates, k=self.rerank_k))

        return MultiHopResult(
            subquestions=subquestions,
            per_hop_ids=[[item.chunk.id for item in hop] for hop in hops],
            merged=merge_hops(hops),
            context_text=format_hop_context(subquestions, hops),
            hops=hops,
        )
