"""Thin adapter over an OpenAI-compatible chat service.

Every call returns a ``Result`` instead of raising, so each caller decides
which fallback applies when the service is unreachable, times out, or
answers with something unusable.
"""
from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass

from openai import OpenAI, OpenAIError

from .errors import LMError, Result
from .settings import LMSettings

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class StreamStats:
    """Streamed completion text with latency metadata."""

    text: str
    ttft_ms: float
    tokens_per_second: float


@dataclass(slots=True)
class ToolCall:
    name: str
    arguments_json: str


def parse_json(text: str):
    """Extract the JSON payload from an LLM response string."""
    text = text.strip()
    # Strip markdown code fences if present
    if text.startswith("```"):
        lines = text.splitlines()
        text = "\n".join(lines[1:-1] if lines[-1].strip() == "```" else lines[1:])
    return json.loads(text)


def create_client(settings: LMSettings) -> OpenAI:
    return OpenAI(base_url=settings.base_url, api_key=settings.api_key, timeout=settings.timeout_s)


class LMClient:
    """Chat, streaming and tool-call access for the pipeline."""

    def __init__(self, client: OpenAI, model: str = "gpt-4.1-mini"):
        self.client = client
        self.model = model

    def complete(self, system: str, user: str, temperature: float = 0.0, operation: str = "complete") -> Result[str]:
        """Run one non-streamed chat completion.

        Args:
            system: System instruction.
            user: User content.
            temperature: Sampling temperature.
            operation: Label used in errors and logs.

        Returns:
            Result holding the stripped completion text.
        """
        try:
            response = self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": system},
                    {"role": "user", "content": user},
                ],
                temperature=temperature,
            )
        except OpenAIError as exc:
            logger.warning("LM call %s failed: %s", operation, exc)
            return Result.failure(LMError(operation, str(exc)))

        if not response.choices:
            return Result.failure(LMError(operation, "empty response"))
        return Result.success((response.choices[0].message.content or "").strip())

    def complete_json(self, system: str, user: str, temperature: float = 0.0, operation: str = "complete_json") -> Result:
        """Run a completion and decode its JSON body."""
        result = self.complete(system, user, temperature=temperature, operation=operation)
        if not result.ok:
            return result
        try:
            return Result.success(parse_json(result.value))
        except (json.JSONDecodeError, ValueError) as exc:
            logger.warning("LM call %s returned malformed JSON: %s", operation, exc)
            return Result.failure(LMError(operation, f"malformed JSON: {exc}"))

    def stream(self, messages: list[dict], temperature: float = 0.2, operation: str = "stream") -> Result[StreamStats]:
        """Stream a completion, timing the first non-empty delta and the stream end.

        Returns:
            Result holding the full text, time-to-first-token (-1 when no token
            arrived) and output tokens per second.
        """
        started = time.perf_counter()
        first = -1.0
        deltas = 0
        parts: list[str] = []
        try:
            stream = self.client.chat.completions.create(
                model=self.model,
                messages=messages,
                temperature=temperature,
                stream=True,
            )
            for event in stream:
                if not event.choices:
                    continue
                delta = event.choices[0].delta.content or ""
                if delta:
                    if first < 0:
                        first = time.perf_counter()
                    deltas += 1
                    parts.append(delta)
        except OpenAIError as exc:
            logger.warning("LM call %s failed: %s", operation, exc)
            return Result.failure(LMError(operation, str(exc)))

        ended = time.perf_counter()
        if first < 0:
            return Result.success(StreamStats(text="", ttft_ms=-1.0, tokens_per_second=0.0))
        elapsed = ended - first
        return Result.success(
            StreamStats(
                text="".join(parts),
                ttft_ms=(first - started) * 1000,
                tokens_per_second=deltas / elapsed if elapsed > 0 else float(deltas),
            )
        )

    def tool_call(self, system: str, user: str, tools: list[dict], operation: str = "tool_call") -> Result[ToolCall]:
        """Ask the model to emit one structured tool call.

        Args:
            system: System instruction.
            user: User content.
            tools: Tool specs as `{"name", "description", "parameters"}` dicts.
            operation: Label used in errors and logs.

        Returns:
            Result holding the first tool call the model emitted.
        """
        try:
            response = self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": system},
                    {"role": "user", "content": user},
                ],
                tools=[{"type": "function", "function": spec} for spec in tools],
                tool_choice="auto",
                temperature=0,
            )
        except OpenAIError as exc:
            logger.warning("LM call %s failed: %s", operation, exc)
            return Result.failure(LMError(operation, str(exc)))

        if not response.choices:
            return Result.failure(LMError(operation, "empty response"))
        calls = response.choices[0].message.tool_calls or []
        if not calls:
            return Result.failure(LMError(operation, "no tool call emitted"))
        return Result.success(ToolCall(name=calls[0].function.name, arguments_json=calls[0].function.arguments or "{}"))

