"""Tests for tracing.py — configure_tracing, get_tracer, traced_stage and assemble_trace.

OTel spans are collected with InMemorySpanExporter so tests run fully offline.
"""
from __future__ import annotations

import pytest
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter
from opentelemetry.trace import StatusCode

from agentic_rag.schema import Chunk, MultiHopTrace, Plan, Retrieved, ToolTraceEntry, VerifyOutcome
from agentic_rag.tracing import (
    ATTR_INPUT_VALUE,
    assemble_trace,
    configure_tracing,
    get_tracer,
    traced_stage,
)


# ---------------------------------------------------------------------------
# Shared in-memory exporter fixture
# ---------------------------------------------------------------------------


@pytest.fixture()
def mem_exporter() -> InMemorySpanExporter:
    """Fresh InMemorySpanExporter and a configured TracerProvider."""
    exporter = InMemorySpanExporter()
    configure_tracing(exporter=exporter, service_name="test-service")
    return exporter


# ---------------------------------------------------------------------------
# configure_tracing / get_tracer
# ---------------------------------------------------------------------------


class TestConfigureTracing:
    def test_returns_tracer_provider(self):
        from opentelemetry.sdk.trace import TracerProvider

        provider = configure_tracing(exporter=InMemorySpanExporter(), service_name="svc")
        assert isinstance(provider, TracerProvider)
        assert provider.resource.attributes["service.name"] == "svc"

    def test_missing_otlp_package_raises_import_error(self, monkeypatch):
        """When the otlp exporter package is absent, a helpful ImportError is raised."""
        import builtins
        real_import = builtins.__import__

        def mock_import(name, *args, **kwargs):
            if "otlp" in name:
                raise ImportError("mocked missing package")
            return real_import(name, *args, **kwargs)

        monkeypatch.setattr(builtins, "__import__", mock_import)
        with pytest.raises(ImportError, match="opentelemetry-exporter-otlp"):
            configure_tracing(endpoint="http://localhost:6006/v1/traces")


class TestGetTracer:
    def test_returns_tracer(self, mem_exporter):
        tracer = get_tracer("test.component")
        assert hasattr(tracer, "start_as_current_span")

    def test_spans_reach_configured_exporter(self, mem_exporter):
        with get_tracer("test").start_as_current_span("startup-check"):
            pass
        assert [s.name for s in mem_exporter.get_finished_spans()] == ["startup-check"]


# ---------------------------------------------------------------------------
# traced_stage
# ---------------------------------------------------------------------------


class TestTracedStage:
    def test_span_created_with_attributes(self, mem_exporter):
        with traced_stage(get_tracer("t"), "retrieval", **{ATTR_INPUT_VALUE: "capital of France"}):
            pass
        span = mem_exporter.get_finished_spans()[0]
        assert span.name == "retrieval"
        assert span.attributes[ATTR_INPUT_VALUE] == "capital of France"
        assert span.status.status_code == StatusCode.OK

    def test_error_status_and_reraise(self, mem_exporter):
        with pytest.raises(RuntimeError):
            with traced_stage(get_tracer("t"), "verify"):
                raise RuntimeError("model error")
        span = mem_exporter.get_finished_spans()[0]
        assert span.status.status_code == StatusCode.ERROR
        assert any(event.name == "exception" for event in span.events)

    def test_nested_stages_share_trace(self, mem_exporter):
        tracer = get_tracer("t")
        with traced_stage(tracer, "agent"):
            with traced_stage(tracer, "plan"):
                pass
        spans = {s.name: s for s in mem_exporter.get_finished_spans()}
        assert spans["plan"].parent.span_id == spans["agent"].context.span_id


# ---------------------------------------------------------------------------
# assemble_trace
# ---------------------------------------------------------------------------


class TestAssembleTrace:
    def _outcome(self) -> VerifyOutcome:
        return VerifyOutcome(
            answer="Paris [CIT:paris.txt#0]",
            claim_count=1,
            supported_count=1,
            precision=1.0,
            resynthesized=False,
            ttft_ms=40.0,
            tokens_per_second=25.0,
        )

    def test_copies_measurements(self):
        retrieved = [Retrieved(chunk=Chunk(id="paris.txt#0", doc_id="paris.txt", text="Paris"), fused_score=0.6)]
        tools = [ToolTraceEntry(name="math", ok=True, latency_ms=1.5)]
        trace = assemble_trace(Plan.NEEDS_CALC, 12.0, retrieved, tools, self._outcome(), total_ms=90.0)

        assert trace.plan == "needs_calc"
        assert trace.k == 1
        assert trace.ids == ["paris.txt#0"]
        assert trace.tools == tools
        assert trace.precision == 1.0
        assert trace.ttft_ms == 40.0
        assert trace.total_ms == 90.0
        assert trace.answer == "Paris [CIT:paris.txt#0]"
        assert trace.multi is None

    def test_keeps_not_answerable_label(self):
        trace = assemble_trace(Plan.NOT_ANSWERABLE, 0.0, [], [], self._outcome(), total_ms=1.0)
        assert trace.plan == "not_answerable"
        assert trace.k == 0

    def test_multi_section(self):
        multi = MultiHopTrace(subquestions=["A?", "B?"], per_hop_ids=[["x#0"], ["y#1"]])
        trace = assemble_trace(Plan.MULTI, 5.0, [], [], self._outcome(), total_ms=9.0, multi=multi)
        assert trace.to_dict()["multi"] == {"subquestions": ["A?", "B?"], "per_hop_ids": [["x#0"], ["y#1"]]}
