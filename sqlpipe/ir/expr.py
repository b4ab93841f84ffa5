"""Scalar expression model, builder API and string expression parser.

An expression is one of three frozen variants:

  - ``Var(name)``: a column reference resolved against the current schema,
  - ``Const(value)``: a literal rendered per dialect,
  - ``Fragment(parts)``: dialect text interleaved with ``Var``/``Const`` parts.

Expressions are built either with the ``col``/``lit``/``fn`` builders (whose
``Term`` wrapper overloads Python operators) or by parsing SQL-like text with
``parse_expr``. Nothing here captures unevaluated Python code.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Union

import numpy as np

if TYPE_CHECKING:
    from collections.abc import Iterable
else:
    from collections import abc as _abc

    Iterable = _abc.Iterable


@dataclass(frozen=True)
class Expr:
    """Base class for scalar expressions."""


@dataclass(frozen=True)
class Var(Expr):
    name: str

    def __post_init__(self) -> None:
        if not isinstance(self.name, str) or not self.name:
            raise ValueError(f"Variable names must be non-empty strings, got {self.name!r}")


@dataclass(frozen=True)
class Const(Expr):
    value: Any

    def __post_init__(self) -> None:
        value = self.value
        if isinstance(value, np.generic):
            value = value.item()
            object.__setattr__(self, "value", value)
        if value is not None and not isinstance(value, (bool, int, float, str)):
            raise TypeError(f"Unsupported literal type: {type(value)!r}")


FragmentPart = Union[Var, Const, str]


@dataclass(frozen=True)
class Fragment(Expr):
    parts: tuple[FragmentPart, ...]

    def __post_init__(self) -> None:
        merged: list[FragmentPart] = []
        for part in _flatten(self.parts):
            if isinstance(part, str):
                if not part:
                    continue
                if merged and isinstance(merged[-1], str):
                    merged[-1] = merged[-1] + part
                    continue
            elif not isinstance(part, (Var, Const)):
                raise TypeError(f"Unsupported fragment part: {type(part)!r}")
            merged.append(part)
        object.__setattr__(self, "parts", tuple(merged))


def _flatten(parts: Iterable[object]) -> Iterable[object]:
    for part in parts:
        if isinstance(part, Fragment):
            yield from part.parts
        else:
            yield part


@dataclass(frozen=True)
class Assignment:
    """A ``target := expr`` pair used by extend and aggregate operators."""

    target: str
    expr: Expr

    def __post_init__(self) -> None:
        if not isinstance(self.target, str) or not self.target:
            raise ValueError(f"Assignment targets must be non-empty strings, got {self.target!r}")
        if not isinstance(self.expr, Expr):
            raise TypeError(f"Assignment expression must be an Expr, got {type(self.expr)!r}")

    def reads(self) -> set[str]:
        return expr_columns(self.expr)


def expr_columns(expr: Expr) -> set[str]:
    """Return the set of column names referenced by an expression."""

    if isinstance(expr, Var):
        return {expr.name}
    if isinstance(expr, Const):
        return set()
    if isinstance(expr, Fragment):
        return {part.name for part in expr.parts if isinstance(part, Var)}
    raise TypeError(f"Unsupported expression type: {type(expr)!r}")


def ordered_columns(expr: Expr) -> tuple[str, ...]:
    """Referenced column names in first-appearance order."""

    if isinstance(expr, Var):
        return (expr.name,)
    if isinstance(expr, Fragment):
        seen: dict[str, None] = {}
        for part in expr.parts:
            if isinstance(part, Var):
                seen.setdefault(part.name, None)
        return tuple(seen)
    return ()


_PLAIN_NAME = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def format_name(name: str) -> str:
    if _PLAIN_NAME.match(name):
        return name
    escaped = name.replace('"', '""')
    return f'"{escaped}"'


def format_const(value: Any) -> str:
    if value is None:
        return "NULL"
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, str):
        escaped = value.replace("'", "''")
        return f"'{escaped}'"
    return repr(value)


def format_expr(expr: Expr) -> str:
    """Human readable form of an expression (not dialect SQL)."""

    if isinstance(expr, Var):
        return format_name(expr.name)
    if isinstance(expr, Const):
        return format_const(expr.value)
    if isinstance(expr, Fragment):
        pieces: list[str] = []
        for part in expr.parts:
            if isinstance(part, Var):
                pieces.append(format_name(part.name))
            elif isinstance(part, Const):
                pieces.append(format_const(part.value))
            else:
                pieces.append(part)
        return "".join(pieces)
    raise TypeError(f"Unsupported expression type: {type(expr)!r}")


# --- builder API -----------------------------------------------------------

TermLike = Union["Term", Expr, int, float, bool, str, None]


def _operand(expr: Expr) -> tuple[FragmentPart, ...]:
    if isinstance(expr, Fragment):
        return ("(", *expr.parts, ")")
    return (expr,)  # type: ignore[return-value]


def _term_expr(value: TermLike) -> Expr:
    if isinstance(value, Term):
        return value.expr
    if isinstance(value, Expr):
        return value
    # Plain values inside builder expressions are literals, never parsed.
    return Const(value)


@dataclass(frozen=True)
class Term:
    """Operator-overloading wrapper producing ``Fragment`` expressions."""

    expr: Expr

    def _binary(self, op: str, other: TermLike) -> Term:
        rhs = _term_expr(other)
        return Term(Fragment((*_operand(self.expr), f" {op} ", *_operand(rhs))))

    def _reflected(self, op: str, other: TermLike) -> Term:
        lhs = _term_expr(other)
        return Term(Fragment((*_operand(lhs), f" {op} ", *_operand(self.expr))))

    def __add__(self, other: TermLike) -> Term:
        return self._binary("+", other)

    def __radd__(self, other: TermLike) -> Term:
        return self._reflected("+", other)

    def __sub__(self, other: TermLike) -> Term:
        return self._binary("-", other)

    def __rsub__(self, other: TermLike) -> Term:
        return self._reflected("-", other)

    def __mul__(self, other: TermLike) -> Term:
        return self._binary("*", other)

    def __rmul__(self, other: TermLike) -> Term:
        return self._reflected("*", other)

    def __truediv__(self, other: TermLike) -> Term:
        return self._binary("/", other)

    def __rtruediv__(self, other: TermLike) -> Term:
        return self._reflected("/", other)

    def __eq__(self, other: TermLike) -> Term:  # type: ignore[override]
        return self._binary("=", other)

    def __ne__(self, other: TermLike) -> Term:  # type: ignore[override]
        return self._binary("<>", other)

    def __lt__(self, other: TermLike) -> Term:
        return self._binary("<", other)

    def __le__(self, other: TermLike) -> Term:
        return self._binary("<=", other)

    def __gt__(self, other: TermLike) -> Term:
        return self._binary(">", other)

    def __ge__(self, other: TermLike) -> Term:
        return self._binary(">=", other)

    def __and__(self, other: TermLike) -> Term:
        return self._binary("AND", other)

    def __or__(self, other: TermLike) -> Term:
        return self._binary("OR", other)

    def __invert__(self) -> Term:
        return Term(Fragment(("NOT ", *_operand(self.expr))))

    def is_null(self) -> Term:
        return Term(Fragment((*_operand(self.expr), " IS NULL")))

    def alias(self, target: str) -> Assignment:
        return Assignment(target, self.expr)


def col(name: str) -> Term:
    return Term(Var(name))


def lit(value: Any) -> Term:
    return Term(Const(value))


def fn(name: str, *args: TermLike) -> Term:
    """Function call ``name(arg, ...)``; the name is emitted verbatim."""

    if not _PLAIN_NAME.match(name):
        raise ValueError(f"Invalid function name {name!r}")
    parts: list[FragmentPart] = [f"{name}("]
    for index, arg in enumerate(args):
        if index:
            parts.append(", ")
        expr = _term_expr(arg)
        if isinstance(expr, Fragment):
            parts.extend(expr.parts)
        else:
            parts.append(expr)  # type: ignore[arg-type]
    parts.append(")")
    return Term(Fragment(tuple(parts)))


# --- string parser ---------------------------------------------------------

_TOKEN_RE = re.compile(
    r"""
    (?P<space>\s+)
  | (?P<string>'(?:[^']|'')*')
  | (?P<quoted>"(?:[^"]|"")+")
  | (?P<number>(?:\d+\.\d*|\.\d+|\d+)(?:[eE][+-]?\d+)?)
  | (?P<ident>[A-Za-z_][A-Za-z0-9_]*)
  | (?P<op>==|!=|<>|<=|>=|\|\||[-+*/%<>=(),!&|~.^])
    """,
    re.VERBOSE,
)

SQL_KEYWORDS = frozenset(
    {
        "AND",
        "AS",
        "ASC",
        "BETWEEN",
        "BY",
        "CASE",
        "CAST",
        "DESC",
        "DISTINCT",
        "ELSE",
        "END",
        "ESCAPE",
        "EXISTS",
        "FILTER",
        "FOLLOWING",
        "ILIKE",
        "IN",
        "IS",
        "LIKE",
        "NOT",
        "NULLS",
        "OR",
        "ORDER",
        "OVER",
        "PARTITION",
        "PRECEDING",
        "RANGE",
        "ROWS",
        "THEN",
        "UNBOUNDED",
        "WHEN",
        "WHERE",
    }
)
_CAST_FUNCTIONS = frozenset({"CAST", "TRY_CAST"})
_NULLS_PLACEMENT = frozenset({"FIRST", "LAST"})


def _tokens(text: str) -> list[tuple[str, str]]:
    tokens: list[tuple[str, str]] = []
    pos = 0
    while pos < len(text):
        match = _TOKEN_RE.match(text, pos)
        if match is None:
            raise ValueError(f"Cannot parse expression {text!r} near position {pos}")
        kind = match.lastgroup
        assert kind is not None
        tokens.append((kind, match.group()))
        pos = match.end()
    return tokens


def parse_expr(text: str) -> Expr:
    """Parse SQL-like expression text into an ``Expr``.

    Bare and double-quoted identifiers become ``Var`` unless they name a
    function (followed by ``(``), are SQL keywords, or spell the target type
    of a ``CAST(... AS type)``. Numbers, single-quoted strings, ``TRUE``/
    ``FALSE`` and ``NULL`` become ``Const``. ``==`` is rewritten to ``=``; all
    other text is kept verbatim.
    """

    stripped = text.strip()
    if not stripped:
        raise ValueError("Expression text must not be empty")
    tokens = _tokens(stripped)
    parts: list[FragmentPart] = []
    # one entry per open paren: "group", "cast", or "cast_type" once past AS
    parens: list[str] = []
    opens_cast = False
    previous = ""
    for index, (kind, value) in enumerate(tokens):
        if kind == "string":
            parts.append(Const(value[1:-1].replace("''", "'")))
        elif kind == "quoted":
            parts.append(Var(value[1:-1].replace('""', '"')))
        elif kind == "number":
            is_float = any(ch in value for ch in ".eE")
            parts.append(Const(float(value) if is_float else int(value)))
        elif kind == "ident":
            upper = value.upper()
            if _next_significant(tokens, index) == "(":
                parts.append(value)
                opens_cast = upper in _CAST_FUNCTIONS
            elif "cast_type" in parens:
                parts.append(value)
            elif upper in _NULLS_PLACEMENT and previous == "NULLS":
                parts.append(value)
            elif upper in {"TRUE", "FALSE"}:
                parts.append(Const(upper == "TRUE"))
            elif upper == "NULL":
                parts.append(Const(None))
            elif upper in SQL_KEYWORDS:
                parts.append(value)
                if upper == "AS" and parens and parens[-1] == "cast":
                    parens[-1] = "cast_type"
            else:
                parts.append(Var(value))
        elif kind == "op" and value == "==":
            parts.append("=")
        elif kind == "op" and value == "(":
            parens.append("cast" if opens_cast else "group")
            opens_cast = False
            parts.append(value)
        elif kind == "op" and value == ")":
            if parens:
                parens.pop()
            parts.append(value)
        else:
            parts.append(value)
        if kind != "space":
            previous = value.upper()
    if len(parts) == 1 and isinstance(parts[0], (Var, Const)):
        return parts[0]
    return Fragment(tuple(parts))


def _next_significant(tokens: list[tuple[str, str]], index: int) -> str | None:
    for kind, value in tokens[index + 1 :]:
        if kind != "space":
            return value
    return None


def to_expr(value: TermLike) -> Expr:
    """Coerce builder terms, expression text and plain values to an ``Expr``."""

    if isinstance(value, Term):
        return value.expr
    if isinstance(value, Expr):
        return value
    if isinstance(value, str):
        return parse_expr(value)
    if value is None or isinstance(value, (bool, int, float, np.generic)):
        return Const(value)
    raise TypeError(f"Cannot build an expression from {type(value)!r}")


__all__ = [
    "Assignment",
    "Const",
    "Expr",
    "Fragment",
    "FragmentPart",
    "SQL_KEYWORDS",
    "Term",
    "Var",
    "col",
    "expr_columns",
    "fn",
    "format_const",
    "format_expr",
    "format_name",
    "lit",
    "ordered_columns",
    "parse_expr",
    "to_expr",
]
