"""Agentic retrieval-augmented question answering with verified citations."""

from .errors import AgentError, DimensionMismatchError, IndexNotFoundError, LMError, Result
from .pipeline import Agent, build_agent, run_agent
from .schema import Chunk, MultiHopTrace, Plan, Retrieved, SupportJudgment, ToolTraceEntry, Trace, VerifyOutcome

__all__ = [
    "Agent",
    "AgentError",
    "Chunk",
    "DimensionMismatchError",
    "IndexNotFoundError",
    "LMError",
    "MultiHopTrace",
    "Plan",
    "Result",
    "Retrieved",
    "SupportJudgment",
    "ToolTraceEntry",
    "Trace",
    "VerifyOutcome",
    "build_agent",
    "run_agent",
]
