from __future__ import annotations

import logging

from .lm import LMClient
from .schema import Plan

logger = logging.getLogger(__name__)

_PLANNER_SYSTEM = (
    "You are a planner. Output exactly one label:\n"
    "- single\n"
    "- multi\n"
    "- needs_calc\n"
    "- needs_sql\n"
    "- not_answerable\n"
    "If multiple apply, choose the most specific one. Only output the label."
)


def classify(lm: LMClient, question: str) -> Plan:
    """Label a question with the pipeline branch that should answer it.

    Planning errors are never fatal: any failed call, empty reply or unknown
    label yields ``Plan.SINGLE``.
    """
    result = lm.complete(_PLANNER_SYSTEM, question, temperature=0, operation="classify_plan")
    raw = result.unwrap_or("")
    label = raw.strip().strip("`'\".").lower()
    try:
        return Plan(label)
    except ValueError:
        logger.warning("Planner returned unusable label %r; defaulting to single", raw)
        return Plan.SINGLE


def route(plan: Plan) -> Plan:
    """Map a plan label onto the branch that executes it.

    ``not_answerable`` has no branch of its own and is answered like ``single``.
    """
    if plan is Plan.NOT_ANSWERABLE:
        return Plan.SINGLE
    return plan
