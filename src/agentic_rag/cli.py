"""Command-line entry point: ``agentic-rag <command>``."""
from __future__ import annotations

import argparse
import json
import logging
import sys

import uvicorn

from .embeddings import embed_texts
from .errors import AgentError
from .evaluation import evaluate, load_cases
from .ingest import build_index
from .io_utils import save_json
from .lm import LMClient, create_client
from .pipeline import Agent, build_agent, run_agent
from .schema import Trace
from .server import create_app
from .settings import Settings, load_settings
from .tools import SqlEngine, build_table_index, save_table_index
from .tracing import configure_tracing

HELP_TEXT = "Commands: /exit to quit, /help to show this message"


def metrics_rows(trace: Trace) -> list[tuple[str, str]]:
    return [
        ("plan", trace.plan),
        ("ttft_ms", f"{trace.ttft_ms:.0f}"),
        ("toks_per_s", f"{trace.tokens_per_second:.1f}"),
        ("retrieval_ms", f"{trace.retrieval_latency_ms:.0f}"),
        ("agent_overhead_ms", f"{trace.total_ms - trace.retrieval_latency_ms:.0f}"),
        ("claims", str(trace.claim_count)),
        ("supported", str(trace.supported_count)),
        ("attr_p", f"{trace.precision:.2f}"),
        ("resynthesized", "yes" if trace.resynthesized else "no"),
    ]


def format_metrics(trace: Trace) -> str:
    rows = metrics_rows(trace)
    width = max(len(name) for name, _ in rows)
    return "\n".join(f"{name.ljust(width)}  {value}" for name, value in rows)


def render_trace(trace: Trace) -> str:
    lines = ["", "=== ANSWER ===", trace.answer, "", "=== METRICS ===", format_metrics(trace)]
    for tool in trace.tools:
        lines.append(f"tool {tool.name}: {'ok' if tool.ok else 'failed'} ({tool.latency_ms:.0f} ms)")
    lines.append(f"Citations: {', '.join(trace.ids)}")
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


def cmd_ask(args: argparse.Namespace, settings: Settings) -> int:
    agent = build_agent(settings)
    trace = run_agent(args.question, agent)
    if args.json:
        print(json.dumps(trace.to_dict(), indent=2))
    else:
        print(render_trace(trace))
    return 0


def chat_loop(agent: Agent, read=input, write=print) -> None:
    """Interactive question loop; ``/exit`` or end of input leaves it."""
    write("Agentic RAG Chat. Type your question and press Enter. (/help for help)")
    while True:
        try:
            line = read("Q> ")
        except EOFError:
            break
        question = line.strip()
        if not question:
            continue
        if question == "/exit":
            break
        if question == "/help":
            write(HELP_TEXT)
            continue
        try:
            write(render_trace(run_agent(question, agent)))
        except AgentError as exc:
            write(f"Error: {exc}")
    write("Bye")


def cmd_chat(args: argparse.Namespace, settings: Settings) -> int:
    chat_loop(build_agent(settings))
    return 0


def cmd_build_index(args: argparse.Namespace, settings: Settings) -> int:
    docs_dir = args.docs_dir or settings.paths.docs_dir
    index_dir = args.index_dir or settings.paths.index_dir
    client = create_client(settings.lm)

    def embed_fn(texts: list[str]):
        return embed_texts(
            texts,
            model=settings.lm.embedding_model,
            client=client,
            batch_size=settings.retrieval.embed_batch_size,
            max_workers=args.workers,
        )

    store = build_index(docs_dir, index_dir, embed_fn)
    print(f"Indexed {len(store)} chunks ({store.dimension}D) into {index_dir}")
    return 0


def cmd_build_table_index(args: argparse.Namespace, settings: Settings) -> int:
    tables_dir = args.tables_dir or settings.paths.tables_dir
    output = args.output or settings.paths.table_index_path
    lm = LMClient(create_client(settings.lm), model=settings.lm.chat_model)
    tables = build_table_index(SqlEngine(tables_dir), lm)
    save_table_index(tables, output)
    print(f"Indexed {len(tables)} tables into {output}")
    return 0


def cmd_eval(args: argparse.Namespace, settings: Settings) -> int:
    agent = build_agent(settings)
    report = evaluate(load_cases(args.cases), lambda question: run_agent(question, agent))
    summary = report.summary()
    print(json.dumps(summary, indent=2))
    if args.output:
        save_json(
            {"summary": summary, "rows": [{"q": row.q, "hit": row.hit, "total_ms": row.total_ms} for row in report.rows]},
            args.output,
            indent=2,
        )
    return 0


def cmd_serve(args: argparse.Namespace, settings: Settings) -> int:
    uvicorn.run(create_app(build_agent(settings)), host=args.host, port=args.port)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="agentic-rag",
        description="Answer questions over a document and table corpus with verified citations.",
    )
    parser.add_argument("--log-level", default="WARNING", help="logging level (DEBUG, INFO, WARNING, ...)")
    parser.add_argument("--otlp-endpoint", help="export OpenTelemetry spans to this OTLP HTTP endpoint")
    subparsers = parser.add_subparsers(dest="command", required=True)

    ask = subparsers.add_parser("ask", help="answer one question")
    ask.add_argument("question")
    ask.add_argument("--json", action="store_true", help="print the full trace as JSON")
    ask.set_defaults(func=cmd_ask)

    chat = subparsers.add_parser("chat", help="interactive question loop")
    chat.set_defaults(func=cmd_chat)

    index = subparsers.add_parser("build-index", help="chunk, embed and index a documents directory")
    index.add_argument("--docs-dir")
    index.add_argument("--index-dir")
    index.add_argument("--workers", type=int, default=1, help="embedding batches in flight at once")
    index.set_defaults(func=cmd_build_index)

    tables = subparsers.add_parser("build-table-index", help="describe CSV tables for the sql tool")
    tables.add_argument("--tables-dir")
    tables.add_argument("--output")
    tables.set_defaults(func=cmd_build_table_index)

    evaluation = subparsers.add_parser("eval", help="measure hit rate and latency over a case file")
    evaluation.add_argument("cases", help='JSON list of {"q", "gold_doc_ids"} objects')
    evaluation.add_argument("--output", help="write the report to this JSON file")
    evaluation.set_defaults(func=cmd_eval)

    serve = subparsers.add_parser("serve", help="run the HTTP API")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8787)
    serve.set_defaults(func=cmd_serve)

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main entry point for the ``agentic-rag`` command."""
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=args.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    if args.otlp_endpoint:
        configure_tracing(endpoint=args.otlp_endpoint)

    settings = load_settings()
    try:
        return args.func(args, settings)
    except AgentError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
