from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


@dataclass(slots=True, frozen=True)
class Chunk:
    """Retrieval unit cut from one source document."""

    id: str
    doc_id: str
    text: str
    page: int | None = None


@dataclass(slots=True)
class Retrieved:
    """Per-query candidate carrying raw channel scores and the fused score."""

    chunk: Chunk
    lexical_score: float = 0.0
    vector_score: float = 0.0
    fused_score: float | None = None


class Plan(str, Enum):
    """Routing label produced by the planner."""

    SINGLE = "single"
    MULTI = "multi"
    NEEDS_CALC = "needs_calc"
    NEEDS_SQL = "needs_sql"
    NOT_ANSWERABLE = "not_answerable"


@dataclass(slots=True)
class SupportJudgment:
    """Whether one claim is backed by the evidence window."""

    claim: str
    supported: bool
    probability: float


@dataclass(slots=True)
class ToolTraceEntry:
    """Timing and outcome of one tool invocation."""

    name: str
    ok: bool
    latency_ms: float

    def to_dict(self) -> dict:
        return {"name": self.name, "ok": self.ok, "latency_ms": self.latency_ms}


@dataclass(slots=True)
class VerifyOutcome:
    """Final answer plus the attribution counts that were reported for it."""

    answer: str
    claim_count: int
    supported_count: int
    precision: float
    resynthesized: bool = False
    ttft_ms: float = -1.0
    tokens_per_second: float = 0.0


@dataclass(slots=True)
class MultiHopTrace:
    subquestions: list[str] = field(default_factory=list)
    per_hop_ids: list[list[str]] = field(default_factory=list)


@dataclass(slots=True)
class Trace:
    """Structured record returned for every answered question."""

    plan: str
    retrieval_latency_ms: float
    k: int
    retrieved: list[Retrieved]
    tools: list[ToolTraceEntry]
    claim_count: int
    supported_count: int
    precision: float
    resynthesized: bool
    ttft_ms: float
    tokens_per_second: float
    total_ms: float
    answer: str
    multi: MultiHopTrace | None = None

    @property
    def ids(self) -> list[str]:
        return [item.chunk.id for item in self.retrieved]

    def to_dict(self) -> dict:
        """Serialize to the wire shape consumed by the CLI, HTTP adapter and eval harness."""
        payload = {
            "plan": self.plan,
            "retrieval": {
                "latency_ms": self.retrieval_latency_ms,
                "k": self.k,
                "ids": self.ids,
                "items": [
                    {
                        "id": item.chunk.id,
                        "doc_id": item.chunk.doc_id,
                        "page": item.chunk.page,
                        "lexical_score": item.lexical_score,
                        "vector_score": item.vector_score,
                        "fused_score": item.fused_score,
                    }
                    for item in self.retrieved
                ],
            },
            "tools": [entry.to_dict() for entry in self.tools],
            "verify": {
                "claim_count": self.claim_count,
                "supported_count": self.supported_count,
                "precision": self.precision,
                "resynthesized": self.resynthesized,
            },
            "ttft_ms": self.ttft_ms,
            "tokens_per_second": self.tokens_per_second,
            "total_ms": self.total_ms,
            "answer": self.answer,
        }
        if self.multi is not None:
            payload["multi"] = {
                "subquestions": list(self.multi.subquestions),
                "per_hop_ids": [list(ids) for ids in self.multi.per_hop_ids],
            }
        return payload
