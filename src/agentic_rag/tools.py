"""Deterministic tool backends and the plan-driven router that invokes them.

The tool set is closed: ``MathTool`` evaluates arithmetic and ``SqlTool`` runs
SQL over CSV-derived DuckDB tables. Both take one JSON argument string and
return a result string; a leading ``ERROR:`` marks failure. Tool failures are
reported in the trace and never abort the pipeline.
"""
from __future__ import annotations

import ast
import json
import logging
import operator
import re
import time
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Callable, Protocol

import duckdb

from .io_utils import load_json, save_json
from .lm import LMClient
from .schema import Plan, ToolTraceEntry

logger = logging.getLogger(__name__)

ERROR_PREFIX = "ERROR:"
MAX_SQL_OUTPUT_CHARS = 8000
MAX_EXPONENT = 1000
MAX_RESULT_DIGITS = 4000
_MAX_RESULT_BITS = (10**MAX_RESULT_DIGITS).bit_length()

_CANDIDATE = re.compile(r"[0-9.+\-*/%^()\s]+")
_NUMBER = re.compile(r"\d+(?:\.\d+)?")
_OPERATOR = re.compile(r"[+\-*/%^]")

_BINARY_OPS: dict[type, Callable] = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.FloorDiv: operator.floordiv,
    ast.Mod: operator.mod,
    ast.Pow: operator.pow,
}
_UNARY_OPS: dict[type, Callable] = {ast.UAdd: operator.pos, ast.USub: operator.neg}


def is_error(result: str) -> bool:
    return result.startswith(ERROR_PREFIX)


# ---------------------------------------------------------------------------
# Arithmetic
# ---------------------------------------------------------------------------


def _balanced(text: str) -> bool:
    depth = 0
    for char in text:
        if char == "(":
            depth += 1
        elif char == ")":
            depth -= 1
            if depth < 0:
                return False
    return depth == 0


def _is_expression(candidate: str) -> bool:
    if len(_NUMBER.findall(candidate)) < 2:
        return False
    if not _balanced(candidate):
        return False
    compact = candidate.replace(" ", "")
    if "()" in compact:
        return False
    return bool(_OPERATOR.search(candidate)) or "(" in candidate


def extract_arithmetic_expression(question: str) -> str | None:
    """Pull the longest plausible arithmetic expression out of free text.

    A candidate is a run of digits, operators, parentheses and spaces that
    holds at least two numbers, balanced parentheses, at least one operator
    or parenthesis pair, and no empty ``()``.

    Args:
        question: Raw user question.

    Returns:
        The longest valid candidate, or ``None`` when there is none.
    """
    candidates = []
    for match in _CANDIDATE.findall(question):
        candidate = match.strip().rstrip(".").strip()
        if candidate and _is_expression(candidate):
            candidates.append(candidate)
    if not candidates:
        return None
    return max(candidates, key=len)


def _check_size(value):
    if isinstance(value, int) and abs(value).bit_length() > _MAX_RESULT_BITS:
        raise ValueError("result too large")
    return value


def _eval_node(node: ast.AST):
    if isinstance(node, ast.Expression):
        return _eval_node(node.body)
    if isinstance(node, ast.Constant) and isinstance(node.value, (int, float)) and not isinstance(node.value, bool):
        return node.value
    if isinstance(node, ast.BinOp) and type(node.op) in _BINARY_OPS:
        left = _eval_node(node.left)
        right = _eval_node(node.right)
        if isinstance(node.op, ast.Pow) and abs(right) > MAX_EXPONENT:
            raise ValueError("exponent too large")
        if isinstance(node.op, ast.Pow) and isinstance(left, int) and isinstance(right, int) and right > 0:
            if (abs(left).bit_length() - 1) * right >= _MAX_RESULT_BITS:
                raise ValueError("result too large")
        return _check_size(_BINARY_OPS[type(node.op)](left, right))
    if isinstance(node, ast.UnaryOp) and type(node.op) in _UNARY_OPS:
        return _UNARY_OPS[type(node.op)](_eval_node(node.operand))
    raise ValueError(f"unsupported syntax: {type(node).__name__}")


def evaluate_expression(expr: str) -> str:
    """Safely evaluate an arithmetic expression, returning the result as text."""
    try:
        tree = ast.parse(expr.replace("^", "**"), mode="eval")
        value = _eval_node(tree)
        if isinstance(value, float) and value.is_integer():
            value = int(value)
        return str(value)
    except (SyntaxError, ValueError, TypeError, ZeroDivisionError, OverflowError) as exc:
        return f"{ERROR_PREFIX} {exc}"


# ---------------------------------------------------------------------------
# SQL over CSV tables
# ---------------------------------------------------------------------------


def _table_alias(path: Path) -> str:
    return re.sub(r"[^a-zA-Z0-9_]", "_", path.stem)


class SqlEngine:
    """In-memory DuckDB database holding one table per CSV file."""

    def __init__(self, tables_dir: str | Path | None = None):
        self.conn = duckdb.connect(":memory:")
        if tables_dir is not None:
            self.load_csv_dir(tables_dir)

    def load_csv_dir(self, tables_dir: str | Path) -> list[str]:
        """Register every CSV in ``tables_dir`` as a table named by its file stem."""
        directory = Path(tables_dir)
        if not directory.is_dir():
            logger.warning("Tables directory %s not found; SQL tool has no tables", directory)
            return []
        aliases = []
        for csv_path in sorted(directory.glob("*.csv")):
            alias = _table_alias(csv_path)
            escaped = str(csv_path).replace("'", "''")
            self.conn.execute(
                f'CREATE OR REPLACE TABLE "{alias}" AS SELECT * FROM read_csv_auto(\'{escaped}\', header=true)'
            )
            aliases.append(alias)
        logger.info("Loaded %d CSV tables from %s", len(aliases), directory)
        return aliases

    def list_tables(self) -> list[str]:
        rows = self.conn.execute(
            "SELECT table_name FROM information_schema.tables WHERE table_schema = 'main' ORDER BY table_name"
        ).fetchall()
        return [row[0] for row in rows]

    def query_rows(self, sql: str) -> list[dict]:
        cursor = self.conn.cursor()
        try:
            result = cursor.execute(sql)
            columns = [column[0] for column in result.description]
            return [dict(zip(columns, row)) for row in result.fetchall()]
        finally:
            cursor.close()

    def execute(self, sql: str) -> str:
        """Run SQL and return JSON rows (truncated) or an ``ERROR:`` string."""
        try:
            rows = self.query_rows(sql)
        except duckdb.Error as exc:
            return f"{ERROR_PREFIX} {exc}"
        return json.dumps(rows, default=str)[:MAX_SQL_OUTPUT_CHARS]


# ---------------------------------------------------------------------------
# Table index
# ---------------------------------------------------------------------------


@dataclass(slots=True)
class TableInfo:
    """Schema plus LM-written domain/description for one queryable table."""

    alias: str
    domain: str
    columns: list[str]
    sample_row: dict
    description: str


_TABLE_CLASSIFY_SYSTEM = (
    "You are a database schema analyst. Analyze the provided table structure and sample data "
    "to determine its domain and purpose. Always respond with valid JSON."
)


def classify_table(lm: LMClient, columns: list[str], sample_row: dict) -> tuple[str, str]:
    prompt = (
        "Analyze this database table and classify its domain and purpose.\n\n"
        f"Table Columns: {', '.join(columns)}\n"
        f"Sample Row: {json.dumps(sample_row, default=str, indent=2)}\n\n"
        "Choose a specific domain name (not a broad category) and write a description detailed "
        "enough that someone could understand the table's purpose.\n\n"
        'Respond with JSON in this exact format:\n{"domain": "...", "description": "..."}'
    )
    parsed = lm.complete_json(_TABLE_CLASSIFY_SYSTEM, prompt, temperature=0.1, operation="classify_table").unwrap_or(None)
    if not isinstance(parsed, dict):
        return "Unknown", "Unable to classify table structure"
    return str(parsed.get("domain", "Unknown")), str(parsed.get("description", ""))


def build_table_index(engine: SqlEngine, lm: LMClient) -> list[TableInfo]:
    """Describe every table in ``engine`` for later LM-driven table selection."""
    tables: list[TableInfo] = []
    for alias in engine.list_tables():
        rows = engine.query_rows(f'SELECT * FROM "{alias}" LIMIT 1')
        if not rows:
            logger.warning("Skipping empty table %s", alias)
            continue
        sample = {key: (value if isinstance(value, (int, float, str, bool)) or value is None else str(value)) for key, value in rows[0].items()}
        domain, description = classify_table(lm, list(sample), sample)
        tables.append(TableInfo(alias=alias, domain=domain, columns=list(sample), sample_row=sample, description=description))
        logger.info("Classified %s as %s", alias, domain)
    return tables


def save_table_index(tables: list[TableInfo], path: str | Path) -> None:
    save_json([asdict(table) for table in tables], path, indent=2)


def load_table_index(path: str | Path) -> list[TableInfo]:
    if not Path(path).exists():
        logger.warning("Table index %s not found; SQL questions will report an error", path)
        return []
    return [TableInfo(**record) for record in load_json(path)]


# ---------------------------------------------------------------------------
# Tools and routing
# ---------------------------------------------------------------------------


class Tool(Protocol):
    name: str
    spec: dict

    def invoke(self, args_json: str) -> str: ...


def _argument(args_json: str, key: str) -> str:
    try:
        args = json.loads(args_json)
    except json.JSONDecodeError as exc:
        raise ValueError(f"invalid arguments: {exc}") from exc
    if not isinstance(args, dict) or not isinstance(args.get(key), str):
        raise ValueError(f"missing '{key}' argument")
    return args[key]


class MathTool:
    name = "math"
    spec = {
        "name": "math",
        "description": "Evaluate an arithmetic expression and return the numeric result.",
        "parameters": {
            "type": "object",
            "properties": {"expr": {"type": "string", "description": "Arithmetic expression, e.g. (3 + 4) * 2"}},
            "required": ["expr"],
        },
    }

    def invoke(self, args_json: str) -> str:
        try:
            expr = _argument(args_json, "expr")
        except ValueError as exc:
            return f"{ERROR_PREFIX} {exc}"
        return evaluate_expression(expr)


class SqlTool:
    name = "sql"
    spec = {
        "name": "sql",
        "description": "Run one read-only SQL query against the indexed tables.",
        "parameters": {
            "type": "object",
            "properties": {"sql": {"type": "string"}},
            "required": ["sql"],
        },
    }

    def __init__(self, engine: SqlEngine):
        self.engine = engine

    def invoke(self, args_json: str) -> str:
        try:
            sql = _argument(args_json, "sql")
        except ValueError as exc:
            return f"{ERROR_PREFIX} {exc}"
        return self.engine.execute(sql)


@dataclass(slots=True)
class ToolOutcome:
    """Tool results rendered for the drafting prompt, plus trace entries."""

    text: str = ""
    entries: list[ToolTraceEntry] = field(default_factory=list)

    @property
    def any_ok(self) -> bool:
        return any(entry.ok for entry in self.entries)


_CALC_SYSTEM = "You compute answers with the math tool. Call it with the single arithmetic expression the question needs."

_TABLE_SELECT_SYSTEM = (
    "You pick database tables for a question. Given the question and table descriptions, "
    "return a JSON array with up to 3 table aliases, most relevant first. Return [] if none apply."
)

_SQL_SYSTEM = (
    "You write one DuckDB SQL query that answers the question using only the given table. "
    "Quote identifiers with double quotes. Output only the SQL, no explanation."
)


def _strip_sql(text: str) -> str:
    text = text.strip()
    if text.startswith("```"):
        lines = text.splitlines()
        text = "\n".join(lines[1:-1] if lines[-1].strip() == "```" else lines[1:])
    return text.strip().rstrip(";")


class ToolRouter:
    """Invoke the deterministic tool the plan calls for and record its outcome."""

    def __init__(
        self,
        lm: LMClient,
        math_tool: MathTool | None = None,
        sql_tool: SqlTool | None = None,
        table_index: list[TableInfo] | None = None,
        max_tables: int = 3,
    ):
        self.lm = lm
        self.math_tool = math_tool or MathTool()
        self.sql_tool = sql_tool
        self.table_index = table_index or []
        self.max_tables = max_tables
        self._handlers: dict[Plan, Callable[[str], str]] = {
            Plan.NEEDS_CALC: self._run_calc,
            Plan.NEEDS_SQL: self._run_sql,
        }
        self._tool_names = {Plan.NEEDS_CALC: MathTool.name, Plan.NEEDS_SQL: SqlTool.name}

    def route(self, plan: Plan, question: str) -> ToolOutcome:
        """Run the tool for ``plan``; plans without a tool produce an empty outcome."""
        handler = self._handlers.get(plan)
        if handler is None:
            return ToolOutcome()

        name = self._tool_names[plan]
        started = time.perf_counter()
        result = handler(question)
        latency_ms = (time.perf_counter() - started) * 1000
        ok = not is_error(result)
        if not ok:
            logger.warning("Tool %s failed: %s", name, result)
        return ToolOutcome(
            text=f"TOOL {name}: {result}",
            entries=[ToolTraceEntry(name=name, ok=ok, latency_ms=latency_ms)],
        )

    def _run_calc(self, question: str) -> str:
        expr = extract_arithmetic_expression(question)
        if expr is not None:
            return self.math_tool.invoke(json.dumps({"expr": expr}))

        call = self.lm.tool_call(_CALC_SYSTEM, question, [MathTool.spec], operation="calc_tool_call")
        if not call.ok:
            return f"{ERROR_PREFIX} no arithmetic expression found ({call.error})"
        if call.value.name != MathTool.name:
            return f"{ERROR_PREFIX} unexpected tool '{call.value.name}'"
        return self.math_tool.invoke(call.value.arguments_json)

    def select_tables(self, question: str) -> list[TableInfo]:
        by_alias = {table.alias: table for table in self.table_index}
        catalog = "\n".join(
            f"- {table.alias} ({table.domain}): {table.description}" for table in self.table_index
        )
        result = self.lm.complete_json(
            _TABLE_SELECT_SYSTEM,
            f"Question: {question}\n\nTables:\n{catalog}",
            operation="select_tables",
        )
        chosen = result.unwrap_or([])
        if not isinstance(chosen, list):
            return []
        return [by_alias[str(alias)] for alias in chosen if str(alias) in by_alias][: self.max_tables]

    def _run_sql(self, question: str) -> str:
        if self.sql_tool is None or not self.table_index:
            return f"{ERROR_PREFIX} no tables indexed"

        tables = self.select_tables(question)
        if not tables:
            return f"{ERROR_PREFIX} no relevant table found"

        table = tables[0]
        schema = (
            f'Table "{table.alias}" ({table.domain}): {table.description}\n'
            f"Columns: {', '.join(table.columns)}\n"
            f"Sample row: {json.dumps(table.sample_row, default=str)}"
        )
        result = self.lm.complete(_SQL_SYSTEM, f"{schema}\n\nQuestion: {question}", operation="generate_sql")
        if not result.ok:
            return f"{ERROR_PREFIX} {result.error}"
        sql = _strip_sql(result.value)
        if not sql:
            return f"{ERROR_PREFIX} empty SQL"
        return self.sql_tool.invoke(json.dumps({"sql": sql}))
