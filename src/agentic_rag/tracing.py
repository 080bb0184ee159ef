"""Observability for the answering pipeline.

Two layers live here:

- OpenTelemetry helpers. ``configure_tracing`` installs a provider and
  exporter, ``get_tracer`` hands out tracers, and ``traced_stage`` wraps one
  pipeline stage (plan, retrieval, tools, verify) in a span.
- ``assemble_trace``, the pure function that packages timings, scores,
  citations and verification counts into the ``Trace`` record returned to
  callers.

Usage with Arize Phoenix (local backend):

    from agentic_rag.tracing import configure_tracing

    configure_tracing(
        endpoint="http://localhost:6006/v1/traces",
        service_name="agentic-rag",
    )

Without a backend, spans are printed to stdout via ``ConsoleSpanExporter``.
If ``configure_tracing`` is never called, spans go to the no-op global
provider and are discarded.
"""
from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator

from opentelemetry import trace
from opentelemetry.sdk.resources import SERVICE_NAME, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import ConsoleSpanExporter, SimpleSpanProcessor, SpanExporter

from .schema import MultiHopTrace, Plan, Retrieved, ToolTraceEntry, Trace, VerifyOutcome

# ---------------------------------------------------------------------------
# OpenInference semantic-convention attribute names
# ---------------------------------------------------------------------------

ATTR_INPUT_VALUE = "input.value"
ATTR_OUTPUT_VALUE = "output.value"
ATTR_LLM_MODEL_NAME = "llm.model_name"
ATTR_RETRIEVAL_DOCUMENTS = "retrieval.documents"

# ---------------------------------------------------------------------------
# Provider lifecycle helpers
# ---------------------------------------------------------------------------

_provider: TracerProvider | None = None


def configure_tracing(
    endpoint: str | None = None,
    service_name: str = "agentic-rag",
    exporter: SpanExporter | None = None,
) -> TracerProvider:
    """Create and register a global TracerProvider.

    Args:
        endpoint: OTLP HTTP endpoint URL to send traces to. When *None* and no
            custom *exporter* is given, spans are printed to stdout.
        service_name: Label identifying this application in the backend.
        exporter: An already-constructed exporter, e.g. an
            ``InMemorySpanExporter`` in tests. When provided, *endpoint* is ignored.

    Returns:
        The configured :class:`~opentelemetry.sdk.trace.TracerProvider`.
    """
    global _provider

    resource = Resource(attributes={SERVICE_NAME: service_name})
    provider = TracerProvider(resource=resource)

    if exporter is not None:
        chosen_exporter: SpanExporter = exporter
    elif endpoint is not None:
        try:
            from opentelemetry.exporter.otlp.proto.http.trace_exporter import (
                OTLPSpanExporter,
            )
        except ImportError as exc:  # pragma: no cover
            raise ImportError(
                "opentelemetry-exporter-otlp-proto-http is required to export "
                "traces to an OTLP endpoint.  Install it with:\n"
                "  pip install 'agentic-rag[otlp]'"
            ) from exc
        chosen_exporter = OTLPSpanExporter(endpoint=endpoint)
    else:
        chosen_exporter = ConsoleSpanExporter()

    provider.add_span_processor(SimpleSpanProcessor(chosen_exporter))
    trace.set_tracer_provider(provider)
    _provider = provider
    return provider


def get_tracer(name: str) -> trace.Tracer:
    """Return a tracer from the most recently configured provider.

    Args:
        name: Instrumentation scope name, e.g. ``"agentic_rag.pipeline"``.

    Returns:
        A :class:`~opentelemetry.trace.Tracer` instance.
    """
    if _provider is not None:
        return _provider.get_tracer(name)
    return trace.get_tracer(name)


@contextmanager
def traced_stage(tracer: trace.Tracer, name: str, **attributes) -> Iterator[trace.Span]:
    """Run one pipeline stage inside a span, recording status and exceptions.

    Example::

        with traced_stage(tracer, "retrieval", **{ATTR_INPUT_VALUE: question}) as span:
            results = searcher.search(question)
            span.set_attribute(ATTR_RETRIEVAL_DOCUMENTS, len(results))
    """
    with tracer.start_as_current_span(name) as span:
        for key, value in attributes.items():
            span.set_attribute(key, value)
        try:
            yield span
        except Exception as exc:
            span.set_status(trace.StatusCode.ERROR, str(exc))
            span.record_exception(exc)
            raise
        span.set_status(trace.StatusCode.OK)


# ---------------------------------------------------------------------------
# Trace record assembly
# ---------------------------------------------------------------------------


def assemble_trace(
    plan: Plan,
    retrieval_latency_ms: float,
    retrieved: list[Retrieved],
    tools: list[ToolTraceEntry],
    outcome: VerifyOutcome,
    total_ms: float,
    multi: MultiHopTrace | None = None,
) -> Trace:
    """Package one query's measurements into a ``Trace``; no policy decisions."""
    return Trace(
        plan=plan.value,
        retrieval_latency_ms=retrieval_latency_ms,
        k=len(retrieved),
        retrieved=list(retrieved),
        tools=list(tools),
        claim_count=outcome.claim_count,
        supported_count=outcome.supported_count,
        precision=outcome.precision,
        resynthesized=outcome.resynthesized,
        ttft_ms=outcome.ttft_ms,
        tokens_per_second=outcome.tokens_per_second,
        total_ms=total_ms,
        answer=outcome.answer,
        multi=multi,
    )
