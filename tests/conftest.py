"""Shared pytest fixtures for agentic_rag unit tests."""
from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from agentic_rag.errors import Result
from agentic_rag.lm import LMClient
from agentic_rag.schema import Chunk, Retrieved


@pytest.fixture()
def sample_chunks() -> list[Chunk]:
    return [
        Chunk(id="paris.txt#0", doc_id="paris.txt", text="Paris is the capital of France. It has a population of about 2.1 million."),
        Chunk(id="rome.txt#0", doc_id="rome.txt", text="Rome is the capital of Italy and sits on the Tiber river."),
        Chunk(id="berlin.txt#0", doc_id="berlin.txt", text="Berlin is the capital of Germany. Its wall fell in 1989."),
    ]


@pytest.fixture()
def sample_retrieved(sample_chunks) -> list[Retrieved]:
    return [
        Retrieved(chunk=chunk, lexical_score=3.0 - i, vector_score=0.9 - i * 0.1, fused_score=1.0 - i * 0.3)
        for i, chunk in enumerate(sample_chunks)
    ]


@pytest.fixture()
def mock_lm() -> MagicMock:
    """LMClient double whose calls fail unless a test configures them."""
    lm = MagicMock(spec=LMClient)
    failure = Result.failure(_lm_error("unconfigured"))
    lm.complete.return_value = failure
    lm.complete_json.return_value = failure
    lm.stream.return_value = failure
    lm.tool_call.return_value = failure
    return lm


def _lm_error(message: str):
    from agentic_rag.errors import LMError

    return LMError("test", message)
