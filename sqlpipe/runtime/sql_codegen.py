"""Render an operator tree into dialect SQL steps.

Each node becomes a SELECT nested around its child's SELECT. Subqueries get
deterministic aliases (``sqlpipe_1``, ``sqlpipe_2``, ...) numbered in render
order, and select lists always name columns explicitly in schema order.
External transforms split the output into several steps.
"""

from __future__ import annotations

import math
import re
import textwrap
from typing import TYPE_CHECKING

from sqlpipe.errors import DialectUnsupportedError
from sqlpipe.ir.expr import Const, Expr, Fragment, Var
from sqlpipe.ir.graph import (
    DropColumns,
    Extend,
    ExternalTransform,
    Ident,
    NaturalJoin,
    Node,
    OrderBy,
    Project,
    RawStatement,
    RenameColumns,
    SelectColumns,
    SelectRows,
    SourceRef,
    TableSource,
    ThetaJoin,
)
from sqlpipe.runtime.materialize import materialize_sql_statement, resolve_temporary
from sqlpipe.runtime.steps import ExternalStep, SqlStep

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

    from sqlpipe.runtime.dialect import Dialect
    from sqlpipe.runtime.steps import Step

WINDOW_FUNCTIONS = frozenset(
    {
        "avg",
        "count",
        "cume_dist",
        "dense_rank",
        "first_value",
        "lag",
        "last_value",
        "lead",
        "max",
        "min",
        "nth_value",
        "ntile",
        "percent_rank",
        "rank",
        "row_number",
        "stddev",
        "sum",
        "variance",
    }
)

_JOIN_KEYWORDS = {
    "INNER": "INNER JOIN",
    "LEFT": "LEFT JOIN",
    "RIGHT": "RIGHT JOIN",
    "FULL": "FULL OUTER JOIN",
}

_CALL_NAME = re.compile(r"([A-Za-z_][A-Za-z0-9_]*)\s*$")
_TRAILING_LIMIT = re.compile(r"(\sLIMIT\s+)(\d+)(\s*)$", re.IGNORECASE)


def normalize_limit(value: int | float | None, *, label: str) -> int | None:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise TypeError(f"{label} must be a number, got {value!r}")
    if isinstance(value, float):
        if not math.isfinite(value):
            raise ValueError(f"{label} must be finite, got {value!r}")
        value = math.ceil(value)
    if value < 0:
        raise ValueError(f"{label} must be non-negative, got {value}")
    return int(value)


def _indent(sql: str) -> str:
    return textwrap.indent(sql, "  ")


class SqlGenerator:
    """Stateful renderer for one ``generate_statements`` call."""

    def __init__(self, dialect: Dialect, *, source_limit: int | None = None) -> None:
        self.dialect = dialect
        self.source_limit = source_limit
        self.steps: list[Step] = []
        self._alias_count = 0

    # -- helpers ----------------------------------------------------------

    def q(self, name: str) -> str:
        return self.dialect.quote_identifier(name)

    def _alias(self) -> str:
        self._alias_count += 1
        return f"sqlpipe_{self._alias_count}"

    def _ref(self, alias: str, column: str) -> str:
        return f"{self.q(alias)}.{self.q(column)}"

    def _as(self, expr_sql: str, name: str) -> str:
        quoted = self.q(name)
        if expr_sql == quoted:
            return quoted
        return f"{expr_sql} AS {quoted}"

    def limit_clause(self, label: str, count: int) -> str:
        if not self.dialect.supports_limit:
            raise DialectUnsupportedError(label, "LIMIT", self.dialect.name)
        return f"LIMIT {count}"

    def _subquery(self, inner: str) -> str:
        alias = self._alias()
        return f"(\n{_indent(inner)}\n) {self.q(alias)}"

    @staticmethod
    def _select(items: Sequence[str], source: str, clauses: Sequence[str] = ()) -> str:
        lines = ["SELECT", ",\n".join(f"  {item}" for item in items), source]
        lines.extend(clauses)
        return "\n".join(lines)

    def _expr(self, expr: Expr, resolve: Callable[[str], str]) -> str:
        if isinstance(expr, Var):
            return resolve(expr.name)
        if isinstance(expr, Const):
            return self.dialect.quote_literal(expr.value)
        if isinstance(expr, Fragment):
            return "".join(
                part if isinstance(part, str) else self._expr(part, resolve)
                for part in expr.parts
            )
        raise TypeError(f"Unsupported expression type for SQL codegen: {type(expr)!r}")

    def _windowed_expr(
        self, expr: Expr, resolve: Callable[[str], str], over: str
    ) -> str:
        """Render ``expr`` appending ``OVER (...)`` after window function calls."""

        if not isinstance(expr, Fragment):
            return self._expr(expr, resolve)
        out: list[str] = []
        calls: list[bool] = []
        in_string = False
        for part in expr.parts:
            if not isinstance(part, str):
                out.append(self._expr(part, resolve))
                continue
            for ch in part:
                if in_string:
                    in_string = ch != "'"
                elif ch == "'":
                    in_string = True
                elif ch == "(":
                    match = _CALL_NAME.search("".join(out))
                    calls.append(
                        match is not None and match.group(1).lower() in WINDOW_FUNCTIONS
                    )
                elif ch == ")" and calls and calls.pop():
                    out.append(f") OVER ({over})")
                    continue
                out.append(ch)
        return "".join(out)

    def _over_clause(self, node: Extend) -> str:
        parts: list[str] = []
        if node.partition_by:
            parts.append("PARTITION BY " + ", ".join(self.q(c) for c in node.partition_by))
        if node.window_order:
            descending = set(node.reverse)
            parts.append(
                "ORDER BY "
                + ", ".join(
                    self.q(c) + (" DESC" if c in descending else "")
                    for c in node.window_order
                )
            )
        return " ".join(parts)

    # -- dispatch ---------------------------------------------------------

    def render(self, node: Node) -> str:
        if isinstance(node, TableSource):
            return self._table_source(node)
        if isinstance(node, Extend):
            return self._extend(node)
        if isinstance(node, Project):
            return self._project(node)
        if isinstance(node, NaturalJoin):
            return self._natural_join(node)
        if isinstance(node, ThetaJoin):
            return self._theta_join(node)
        if isinstance(node, SelectRows):
            return self._select_rows(node)
        if isinstance(node, (SelectColumns, DropColumns)):
            source = self._subquery(self.render(node.source))
            return self._select([self.q(c) for c in node.schema], f"FROM {source}")
        if isinstance(node, RenameColumns):
            return self._rename_columns(node)
        if isinstance(node, OrderBy):
            return self._order_by(node)
        if isinstance(node, RawStatement):
            return self._raw_statement(node)
        if isinstance(node, ExternalTransform):
            return self._external_transform(node)
        raise TypeError(f"Unsupported node type for SQL codegen: {type(node)!r}")

    # -- node renderers ---------------------------------------------------

    def _table_source(self, node: TableSource) -> str:
        clauses = []
        if self.source_limit is not None:
            clauses.append(self.limit_clause(node.label(), self.source_limit))
        return self._select(
            [self.q(c) for c in node.schema],
            f"FROM {self.q(node.table.table_name)}",
            clauses,
        )

    def _extend(self, node: Extend) -> str:
        if node.windowed and not self.dialect.supports_window_functions:
            raise DialectUnsupportedError(node.label(), "window functions", self.dialect.name)
        over = self._over_clause(node) if node.windowed else ""
        sql = self.render(node.source)
        current = list(node.source.schema)
        last = len(node.groups) - 1
        for index, group in enumerate(node.groups):
            by_target = {a.target: a for a in group}
            if index == last:
                order = list(node.schema)
            else:
                order = current + [a.target for a in group if a.target not in current]
            items: list[str] = []
            for name in order:
                assignment = by_target.get(name)
                if assignment is None:
                    items.append(self.q(name))
                    continue
                if node.windowed:
                    expr_sql = self._windowed_expr(assignment.expr, self.q, over)
                else:
                    expr_sql = self._expr(assignment.expr, self.q)
                items.append(self._as(expr_sql, name))
            sql = self._select(items, f"FROM {self._subquery(sql)}")
            current = order
        return sql

    def _project(self, node: Project) -> str:
        source = self._subquery(self.render(node.source))
        items = [self.q(c) for c in node.group_by]
        items.extend(
            self._as(self._expr(a.expr, self.q), a.target) for a in node.aggregates
        )
        clauses = []
        if node.group_by:
            clauses.append("GROUP BY " + ", ".join(self.q(c) for c in node.group_by))
        return self._select(items, f"FROM {source}", clauses)

    def _join_sources(self, node: NaturalJoin | ThetaJoin) -> tuple[str, str, str, str]:
        if not self.dialect.supports_join(node.join_type):
            raise DialectUnsupportedError(
                node.label(), f"{node.join_type} joins", self.dialect.name
            )
        left_sql = self.render(node.left)
        right_sql = self.render(node.right)
        left_alias = self._alias()
        right_alias = self._alias()
        source = (
            f"FROM (\n{_indent(left_sql)}\n) {self.q(left_alias)}\n"
            f"{_JOIN_KEYWORDS[node.join_type]} (\n{_indent(right_sql)}\n) "
            f"{self.q(right_alias)}"
        )
        return source, left_alias, right_alias, node.join_type

    def _natural_join(self, node: NaturalJoin) -> str:
        source, la, ra, join_type = self._join_sources(node)
        keys = set(node.plan.keys)
        items: list[str] = []
        for out in node.plan.output:
            if out.left is not None and out.right is not None:
                left_ref = self._ref(la, out.left)
                right_ref = self._ref(ra, out.right)
                if out.name in keys and join_type in {"INNER", "LEFT"}:
                    expr_sql = left_ref
                elif out.name in keys and join_type == "RIGHT":
                    expr_sql = right_ref
                else:
                    expr_sql = f"COALESCE({left_ref}, {right_ref})"
            elif out.left is not None:
                expr_sql = self._ref(la, out.left)
            else:
                expr_sql = self._ref(ra, out.right)  # type: ignore[arg-type]
            items.append(f"{expr_sql} AS {self.q(out.name)}")
        condition = " AND ".join(
            f"{self._ref(la, k)} = {self._ref(ra, k)}" for k in node.plan.keys
        )
        return self._select(items, source, [f"ON {condition}"])

    def _theta_join(self, node: ThetaJoin) -> str:
        source, la, ra, _ = self._join_sources(node)
        plan = node.plan
        items = [f"{self._ref(la, col)} AS {self.q(out)}" for col, out in plan.left_pairs]
        items.extend(
            f"{self._ref(ra, col)} AS {self.q(out)}" for col, out in plan.right_pairs
        )
        lookup = {
            name: self._ref(la if side == "left" else ra, col)
            for name, side, col in plan.references
        }
        condition = self._expr(node.predicate, lookup.__getitem__)
        return self._select(items, source, [f"ON {condition}"])

    def _select_rows(self, node: SelectRows) -> str:
        source = self._subquery(self.render(node.source))
        condition = self._expr(node.predicate, self.q)
        return self._select(
            [self.q(c) for c in node.schema], f"FROM {source}", [f"WHERE {condition}"]
        )

    def _rename_columns(self, node: RenameColumns) -> str:
        source = self._subquery(self.render(node.source))
        renames = node.renames()
        items = [self._as(self.q(c), renames.get(c, c)) for c in node.source.schema]
        return self._select(items, f"FROM {source}")

    def _order_by(self, node: OrderBy) -> str:
        source = self._subquery(self.render(node.source))
        clauses = []
        if node.columns:
            descending = set(node.reverse)
            clauses.append(
                "ORDER BY "
                + ", ".join(
                    self.q(c) + (" DESC" if c in descending else "") for c in node.columns
                )
            )
        if node.limit is not None:
            clauses.append(self.limit_clause(node.label(), node.limit))
        return self._select([self.q(c) for c in node.schema], f"FROM {source}", clauses)

    def _raw_statement(self, node: RawStatement) -> str:
        inner = self.render(node.source)
        pieces: list[str] = []
        for part in node.template:
            if isinstance(part, SourceRef):
                pieces.append(self._subquery(inner))
            elif isinstance(part, (Var, Ident)):
                pieces.append(self.q(part.name))
            elif isinstance(part, Const):
                pieces.append(self.dialect.quote_literal(part.value))
            else:
                pieces.append(part)
        return "".join(pieces)

    def _external_transform(self, node: ExternalTransform) -> str:
        temporary = resolve_temporary(self.dialect, node.temporary, node=node.label())
        inner = self.render(node.source)
        self.steps.append(
            SqlStep(
                materialize_sql_statement(
                    self.dialect, inner, node.incoming_table_name, temporary=temporary
                )
            )
        )
        self.steps.append(
            ExternalStep(
                transform=node.transform,
                incoming_table_name=node.incoming_table_name,
                outgoing_table_name=node.outgoing_table_name,
                display_form=node.label(),
                used=node.source.schema,
                produced=node.produced,
                temporary=temporary,
            )
        )
        return self._select(
            [self.q(c) for c in node.produced],
            f"FROM {self.q(node.outgoing_table_name)}",
        )


def _apply_output_limit(generator: SqlGenerator, tree: Node, sql: str, count: int) -> str:
    """Cap the final statement at ``count`` rows, tightening a trailing LIMIT."""

    clause = generator.limit_clause(tree.label(), count)
    match = _TRAILING_LIMIT.search(sql)
    if match is None:
        return f"{sql}\n{clause}"
    if int(match.group(2)) <= count:
        return sql
    return f"{sql[: match.start(2)]}{count}{match.group(3)}"


def generate_statements(
    tree: Node,
    dialect: Dialect,
    *,
    output_limit: int | float | None = None,
    source_limit: int | float | None = None,
) -> list[Step]:
    """Render ``tree`` as-is (no narrowing) into an ordered step list."""

    output_limit = normalize_limit(output_limit, label="output_limit")
    generator = SqlGenerator(
        dialect, source_limit=normalize_limit(source_limit, label="source_limit")
    )
    final = generator.render(tree)
    if output_limit is not None:
        final = _apply_output_limit(generator, tree, final, output_limit)
    return [*generator.steps, SqlStep(final)]


__all__ = ["SqlGenerator", "WINDOW_FUNCTIONS", "generate_statements", "normalize_limit"]
