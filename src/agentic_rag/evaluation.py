from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable

from .io_utils import load_json
from .schema import Trace

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class EvalCase:
    """One evaluation question with the documents that should be retrieved."""

    q: str
    gold_doc_ids: list[str]


@dataclass(slots=True)
class EvalRow:
    """Single-query evaluation output used for aggregate reporting."""

    q: str
    hit: bool
    total_ms: float
    precision: float
    retrieved_doc_ids: list[str] = field(default_factory=list)


@dataclass(slots=True)
class EvalReport:
    hit_rate: float
    p50_ms: float
    p95_ms: float
    rows: list[EvalRow]

    def summary(self) -> dict[str, float]:
        return {
            "cases": len(self.rows),
            "hit_rate": self.hit_rate,
            "p50_ms": self.p50_ms,
            "p95_ms": self.p95_ms,
        }


def load_cases(path: str | Path) -> list[EvalCase]:
    """Read a JSON list of `{"q", "gold_doc_ids"}` objects."""
    return [EvalCase(q=record["q"], gold_doc_ids=list(record["gold_doc_ids"])) for record in load_json(path)]


def doc_id_of(chunk_id: str) -> str:
    """Strip the `#ordinal` suffix from a chunk id."""
    return chunk_id.split("#")[0]


def is_hit(trace: Trace, case: EvalCase) -> bool:
    """Whether any retrieved chunk belongs to one of the case's gold documents."""
    gold = set(case.gold_doc_ids)
    return any(doc_id_of(chunk_id) in gold for chunk_id in trace.ids)


def percentile(values: list[float], q: float) -> float:
    """Nearest-rank percentile: the sorted value at index `floor(n * q)`."""
    if not values:
        return 0.0
    ordered = sorted(values)
    index = min(len(ordered) - 1, math.floor(len(ordered) * q))
    return ordered[index]


def evaluate(cases: list[EvalCase], run_fn: Callable[[str], Trace]) -> EvalReport:
    """Run every case through the pipeline and aggregate hit rate and latency.

    Args:
        cases: Evaluation questions with gold document ids.
        run_fn: Callable answering one question with a ``Trace``.

    Returns:
        `EvalReport` with hit rate, p50/p95 total latency and per-case rows.
    """
    rows: list[EvalRow] = []
    for case in cases:
        trace = run_fn(case.q)
        row = EvalRow(
            q=case.q,
            hit=is_hit(trace, case),
            total_ms=trace.total_ms,
            precision=trace.precision,
            retrieved_doc_ids=sorted({doc_id_of(chunk_id) for chunk_id in trace.ids}),
        )
        logger.info("%s %s (%.0f ms)", "HIT " if row.hit else "MISS", case.q, row.total_ms)
        rows.append(row)

    latencies = [row.total_ms for row in rows]
    return EvalReport(
        hit_rate=sum(1 for row in rows if row.hit) / len(rows) if rows else 0.0,
        p50_ms=percentile(latencies, 0.5),
        p95_ms=percentile(latencies, 0.95),
        rows=rows,
    )
