"""Draft, verify and (at most once) resynthesize an answer.

The loop is a bounded state machine::

    DRAFTED -> VERIFIED -> DONE
    DRAFTED -> VERIFIED -> RESYNTHESIZED -> DONE

A draft is streamed from the context, split into atomic claims, and each claim
is judged against a small evidence window. When attribution precision falls
below the gate threshold and no tool produced an authoritative result, the
answer is regenerated once from a wider context and verified again; the
re-verified counts replace the original ones.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum

from .lm import LMClient
from .schema import Retrieved, SupportJudgment, VerifyOutcome
from .settings import VerifySettings

logger = logging.getLogger(__name__)

_DRAFT_SYSTEM = (
    "Answer using ONLY the provided CONTEXT and TOOL RESULTS.\n"
    "- Quote verbatim short phrases.\n"
    "- After each statement add citations like [CIT:chunkId] using the ids shown in brackets.\n"
    "- If insufficient evidence, say so explicitly."
)

_CLAIMS_SYSTEM = "Extract the atomic factual claims (no opinions). Return a JSON array of short strings."

_SUPPORT_SYSTEM = (
    "Decide if the context supports the claim.\n"
    'Answer with JSON: {"support": "yes"|"no", "prob": 0..1}.\n'
    "Only use the context provided."
)


class VerifyState(str, Enum):
    DRAFTED = "drafted"
    VERIFIED = "verified"
    RESYNTHESIZED = "resynthesized"
    DONE = "done"


@dataclass(slots=True)
class Attribution:
    claim_count: int
    supported_count: int

    @property
    def precision(self) -> float:
        # no claims means nothing unattributed
        if self.claim_count == 0:
            return 1.0
        return self.supported_count / self.claim_count


def cite(chunk_id: str) -> str:
    return f"[CIT:{chunk_id}]"


def format_context(retrieved: list[Retrieved]) -> str:
    return "\n\n".join(f"[{item.chunk.id}] {item.chunk.text}" for item in retrieved)


def ensure_citations(text: str, chunk_ids: list[str]) -> str:
    """Append any citation marker from ``chunk_ids`` that the text lacks."""
    for chunk_id in chunk_ids:
        marker = cite(chunk_id)
        if marker not in text:
            text = f"{text} {marker}"
    return text


def extract_claims(lm: LMClient, text: str) -> list[str]:
    """Split an answer into atomic factual claims; empty on any failure."""
    if not text.strip():
        return []
    parsed = lm.complete_json(_CLAIMS_SYSTEM, text, temperature=0, operation="extract_claims").unwrap_or([])
    if not isinstance(parsed, list):
        return []
    return [str(claim).strip() for claim in parsed if str(claim).strip()]


def judge_support(lm: LMClient, claim: str, evidence: str, threshold: float = 0.5) -> SupportJudgment:
    """Ask whether ``evidence`` supports ``claim``.

    A claim counts as supported only when the model answers yes with a
    probability strictly above ``threshold``. Failures judge the claim
    unsupported with probability 0.
    """
    parsed = lm.complete_json(
        _SUPPORT_SYSTEM,
        f"CONTEXT: {evidence}\n\nCLAIM: {claim}",
        temperature=0,
        operation="judge_support",
    ).unwrap_or(None)
    if not isinstance(parsed, dict):
        return SupportJudgment(claim=claim, supported=False, probability=0.0)

    try:
        probability = float(parsed.get("prob", 0.0))
    except (TypeError, ValueError):
        probability = 0.0
    probability = min(1.0, max(0.0, probability))
    says_yes = str(parsed.get("support", "no")).strip().lower() == "yes"
    return SupportJudgment(claim=claim, supported=says_yes and probability > threshold, probability=probability)


class VerifyLoop:
    def __init__(self, lm: LMClient, settings: VerifySettings | None = None):
        self.lm = lm
        self.settings = settings or VerifySettings()

    def verify(self, text: str, retrieved: list[Retrieved], evidence_k: int) -> Attribution:
        """Count how many claims in ``text`` the top ``evidence_k`` chunks support."""
        claims = extract_claims(self.lm, text)
        evidence = "\n\n".join(item.chunk.text for item in retrieved[:evidence_k])
        judgments = [judge_support(self.lm, claim, evidence, self.settings.support_threshold) for claim in claims]
        return Attribution(claim_count=len(claims), supported_count=sum(1 for j in judgments if j.supported))

    def should_resynthesize(self, attribution: Attribution, tool_ok: bool) -> bool:
        return attribution.precision < self.settings.gate_threshold and not tool_ok

    def resynthesize(self, question: str, retrieved: list[Retrieved], tool_text: str) -> str | None:
        """Regenerate the answer from a wider context with forced citations."""
        wide = retrieved[: self.settings.resynth_context_k]
        context = format_context(wide)
        if tool_text:
            context = f"{context}\n\nTOOL RESULTS:\n{tool_text}"
        result = self.lm.complete(
            _DRAFT_SYSTEM,
            f"CONTEXT: {context}\n\nQUESTION: {question}",
            temperature=0.2,
            operation="resynthesize",
        )
        if not result.ok:
            return None
        cite_ids = [item.chunk.id for item in retrieved[: self.settings.cite_k]]
        return ensure_citations(result.value, cite_ids)

    def draft_and_verify(
        self,
        question: str,
        context_text: str,
        tool_text: str,
        retrieved: list[Retrieved],
        tool_ok: bool = False,
    ) -> VerifyOutcome:
        """Draft an answer, measure its attribution and resynthesize if needed.

        Args:
            question: User question.
            context_text: Retrieved passages rendered for the prompt.
            tool_text: Rendered tool results, empty when no tool ran.
            retrieved: Ranked candidates backing the context.
            tool_ok: Whether any tool produced an authoritative result.

        Returns:
            VerifyOutcome carrying the final answer and its attribution counts.
        """
        user = f"CONTEXT:\n{context_text}\n\nTOOL RESULTS:\n{tool_text or '(none)'}\n\nQUESTION: {question}"
        streamed = self.lm.stream(
            [{"role": "system", "content": _DRAFT_SYSTEM}, {"role": "user", "content": user}],
            operation="draft",
        )
        draft = streamed.value.text if streamed.ok else ""
        ttft_ms = streamed.value.ttft_ms if streamed.ok else -1.0
        tokens_per_second = streamed.value.tokens_per_second if streamed.ok else 0.0
        path = [VerifyState.DRAFTED]

        attribution = self.verify(draft, retrieved, self.settings.evidence_k)
        path.append(VerifyState.VERIFIED)
        answer = draft
        resynthesized = False
        logger.info(
            "Draft attribution %d/%d (p=%.2f)",
            attribution.supported_count,
            attribution.claim_count,
            attribution.precision,
        )

        if self.should_resynthesize(attribution, tool_ok):
            regenerated = self.resynthesize(question, retrieved, tool_text)
            if regenerated is not None:
                answer = regenerated
                attribution = self.verify(regenerated, retrieved, self.settings.resynth_evidence_k)
                resynthesized = True
                path.append(VerifyState.RESYNTHESIZED)
                logger.info(
                    "Resynthesized attribution %d/%d (p=%.2f)",
                    attribution.supported_count,
                    attribution.claim_count,
                    attribution.precision,
                )

        path.append(VerifyState.DONE)
        logger.debug("Verify path: %s", " -> ".join(step.value for step in path))
        return VerifyOutcome(
            answer=answer,
            claim_count=attribution.claim_count,
            supported_count=attribution.supported_count,
            precision=attribution.precision,
            resynthesized=resynthesized,
            ttft_ms=ttft_ms,
            tokens_per_second=tokens_per_second,
        )
