"""End-to-end question answering: plan, retrieve, call tools, draft and verify.

``Agent`` owns every collaborator explicitly, including the loaded
``IndexStore``, so several agents over different corpora can live in one
process. ``build_agent`` wires the production clients from ``Settings``.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass

from .embeddings import embed_query
from .hybrid import HybridSearcher
from .index_store import IndexStore
from .lm import LMClient, create_client
from .multihop import MultiHopOrchestrator
from .planner import classify, route
from .reranking import EmbeddingReranker, build_rerank_embedder
from .schema import MultiHopTrace, Plan, Retrieved, Trace
from .settings import Settings
from .tools import SqlEngine, SqlTool, ToolRouter, load_table_index
from .tracing import (
    ATTR_INPUT_VALUE,
    ATTR_LLM_MODEL_NAME,
    ATTR_OUTPUT_VALUE,
    ATTR_RETRIEVAL_DOCUMENTS,
    assemble_trace,
    get_tracer,
    traced_stage,
)
from .verify import VerifyLoop, format_context

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class _RetrievalStage:
    retrieved: list[Retrieved]
    context_text: str
    latency_ms: float
    # ranked superset of ``retrieved`` handed to the verifier for resynthesis
    candidates: list[Retrieved]
    multi: MultiHopTrace | None = None


class Agent:
    """One configured answering pipeline over one corpus."""

    def __init__(
        self,
        store: IndexStore,
        lm: LMClient,
        searcher: HybridSearcher,
        reranker: EmbeddingReranker,
        router: ToolRouter,
        verifier: VerifyLoop,
        settings: Settings | None = None,
    ):
        self.store = store
        self.lm = lm
        self.searcher = searcher
        self.reranker = reranker
        self.router = router
        self.verifier = verifier
        self.settings = settings or Settings()
        self.tracer = get_tracer("agentic_rag.pipeline")

    def _retrieve_single(self, question: str) -> _RetrievalStage:
        retrieval = self.settings.retrieval
        started = time.perf_counter()
        candidates = self.searcher.search(
            question,
            lexical_top_n=retrieval.lexical_top_n,
            vector_top_n=retrieval.vector_top_n,
        )
        wide_k = max(retrieval.rerank_k, self.settings.verify.resynth_context_k)
        ranked = self.reranker.rerank(question, candidates, k=wide_k)
        top = ranked[: retrieval.rerank_k]
        latency_ms = (time.perf_counter() - started) * 1000
        return _RetrievalStage(
            retrieved=top,
            context_text=format_context(top),
            latency_ms=latency_ms,
            candidates=ranked,
        )

    def _retrieve_multi(self, question: str) -> _RetrievalStage:
        retrieval = self.settings.retrieval
        orchestrator = MultiHopOrchestrator(
            self.lm,
            self.searcher,
            self.reranker,
            lexical_top_n=retrieval.multi_lexical_top_n,
            vector_top_n=retrieval.multi_vector_top_n,
            rerank_k=retrieval.multi_rerank_k,
        )
        started = time.perf_counter()
        result = orchestrator.run(question)
        latency_ms = (time.perf_counter() - started) * 1000
        return _RetrievalStage(
            retrieved=result.merged,
            context_text=result.context_text,
            latency_ms=latency_ms,
            candidates=result.merged,
            multi=MultiHopTrace(subquestions=result.subquestions, per_hop_ids=result.per_hop_ids),
        )

    def run(self, question: str) -> Trace:
        """Answer one question and return its full trace.

        Args:
            question: Natural-language question.

        Returns:
            Trace with the answer, retrieval ids and scores, tool outcomes and
            verification counts.

        Raises:
            DimensionMismatchError: If the query embedding does not match the index.
            QueryEmbeddingError: If the embedding service fails on the query.
        """
        started = time.perf_counter()
        with traced_stage(self.tracer, "agent", **{ATTR_INPUT_VALUE: question}) as agent_span:
            with traced_stage(self.tracer, "plan") as span:
                plan = classify(self.lm, question)
                branch = route(plan)
                span.set_attribute("agent.plan", plan.value)
            logger.info("Planned %r as %s", question, plan.value)

            with traced_stage(self.tracer, "retrieval") as span:
                if branch is Plan.MULTI:
                    stage = self._retrieve_multi(question)
                else:
                    stage = self._retrieve_single(question)
                span.set_attribute(ATTR_RETRIEVAL_DOCUMENTS, [item.chunk.id for item in stage.retrieved])

            with traced_stage(self.tracer, "tools") as span:
                outcome = self.router.route(branch, question)
                span.set_attribute("agent.tools_ok", outcome.any_ok)

            with traced_stage(self.tracer, "verify", **{ATTR_LLM_MODEL_NAME: self.settings.lm.chat_model}) as span:
                verified = self.verifier.draft_and_verify(
                    question,
                    stage.context_text,
                    outcome.text,
                    stage.candidates,
                    tool_ok=outcome.any_ok,
                )
                span.set_attribute("agent.precision", verified.precision)
                span.set_attribute("agent.resynthesized", verified.resynthesized)

            total_ms = (time.perf_counter() - started) * 1000
            agent_span.set_attribute(ATTR_OUTPUT_VALUE, verified.answer)

        return assemble_trace(
            plan=plan,
            retrieval_latency_ms=stage.latency_ms,
            retrieved=stage.retrieved,
            tools=outcome.entries,
            outcome=verified,
            total_ms=total_ms,
            multi=stage.multi,
        )


def build_agent(settings: Settings) -> Agent:
    """Load the persisted index and wire production clients into an ``Agent``.

    Raises:
        IndexNotFoundError: If no index has been built in ``settings.paths.index_dir``.
    """
    client = create_client(settings.lm)
    lm = LMClient(client, model=settings.lm.chat_model)
    store = IndexStore.load(settings.paths.index_dir)

    searcher = HybridSearcher(
        store,
        embed_query=lambda text: embed_query(text, model=settings.lm.embedding_model, client=client),
        lexical_weight=settings.retrieval.lexical_weight,
        vector_weight=settings.retrieval.vector_weight,
        lexical_only=settings.retrieval.lexical_only,
    )
    reranker = EmbeddingReranker(
        build_rerank_embedder(settings.lm.rerank_backend, settings.lm.rerank_model, client),
        max_workers=settings.retrieval.rerank_workers,
    )
    router = ToolRouter(
        lm,
        sql_tool=SqlTool(SqlEngine(settings.paths.tables_dir)),
        table_index=load_table_index(settings.paths.table_index_path),
    )
    return Agent(
        store=store,
        lm=lm,
        searcher=searcher,
        reranker=reranker,
        router=router,
        verifier=VerifyLoop(lm, settings.verify),
        settings=settings,
    )


def run_agent(question: str, agent: Agent) -> Trace:
    """Transport-agnostic entry point shared by the CLI, HTTP adapter and eval harness."""
    return agent.run(question)
