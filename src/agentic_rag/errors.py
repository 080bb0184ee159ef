"""Error taxonomy for the answering pipeline.

Only configuration errors (``DimensionMismatchError``, ``IndexNotFoundError``)
and ``QueryEmbeddingError`` escape ``Agent.run``. Other upstream service
failures are wrapped in ``LMError`` and carried inside a ``Result`` so each
call site picks its own fallback value.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, TypeVar

T = TypeVar("T")


class AgentError(Exception):
    """Base class for all pipeline errors."""


class DimensionMismatchError(AgentError):
    """Query embedding width differs from the width the index was built with."""

    def __init__(self, expected: int, actual: int):
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Embedding dimension mismatch: query={actual}, index={expected}. "
            "Ensure EMBED_MODEL at query time matches the one used for indexing."
        )


class IndexNotFoundError(AgentError):
    """Persisted index files are missing; run ingestion first."""


class QueryEmbeddingError(AgentError):
    """The embedding service could not embed a query, so no search ran."""


class LMError(AgentError):
    """A language-model or embedding call failed or returned unusable output."""

    def __init__(self, operation: str, message: str):
        self.operation = operation
        super().__init__(f"{operation}: {message}")


@dataclass(slots=True)
class Result(Generic[T]):
    """Outcome of an upstream call: either a value or an ``LMError``."""

    value: T | None = None
    error: LMError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap_or(self, default: T) -> T:
        if self.error is not None:
            return default
        return self.value  # type: ignore[return-value]

    @classmethod
    def success(cls, value: T) -> "Result[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, error: LMError) -> "Result[T]":
        return cls(error=error)
