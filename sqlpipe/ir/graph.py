"""Operator-tree IR: table descriptions and relational operator nodes.

Every node is a frozen dataclass. Construction runs the validator, which
derives the node's output schema (plus variant-specific plans such as join
column plans or extend assignment groups) and raises ``SchemaError``,
``JoinKeyError`` or ``PartitionError`` before the node can be linked into a
tree. Chaining methods on ``Node`` return a new node wrapping the receiver.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Union

from sqlpipe.errors import SchemaError
from sqlpipe.ir.expr import (
    Assignment,
    Const,
    Expr,
    Var,
    format_const,
    format_expr,
    format_name,
    to_expr,
)

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Mapping

    import pandas as pd

    from sqlpipe.ir.join_semantics import NaturalJoinPlan, ThetaJoinPlan
    from sqlpipe.runtime.context import ExecutionContext

    Transform = Callable[[ExecutionContext, str, str], None]
else:
    from collections import abc as _abc

    Callable = _abc.Callable
    Iterable = _abc.Iterable
    Mapping = _abc.Mapping


def _names(values: Iterable[str] | str | None) -> tuple[str, ...]:
    if values is None:
        return ()
    if isinstance(values, str):
        return (values,)
    return tuple(values)


def coerce_assignments(items: Iterable[Any]) -> tuple[Assignment, ...]:
    """Accept ``Assignment`` objects, ``(target, expr)`` pairs or mappings."""

    out: list[Assignment] = []
    for item in items:
        if isinstance(item, Assignment):
            out.append(item)
        elif isinstance(item, Mapping):
            out.extend(Assignment(str(k), to_expr(v)) for k, v in item.items())
        elif isinstance(item, (tuple, list)) and len(item) == 2:
            out.append(Assignment(str(item[0]), to_expr(item[1])))
        else:
            raise TypeError(
                "Assignments must be Assignment objects, (target, expr) pairs "
                f"or mappings, got {item!r}"
            )
    return tuple(out)


@dataclass(frozen=True)
class TableDescription:
    """Name and ordered column list of a real or hypothetical table."""

    table_name: str
    columns: tuple[str, ...]

    def __post_init__(self) -> None:
        object.__setattr__(self, "columns", _names(self.columns))
        if not isinstance(self.table_name, str) or not self.table_name:
            raise SchemaError("Table descriptions need a non-empty table name")
        if not self.columns:
            raise SchemaError(f"Table {self.table_name!r} must have at least one column")
        if any(not isinstance(c, str) or not c for c in self.columns):
            raise SchemaError(f"Table {self.table_name!r} has an empty or non-string column")
        seen: set[str] = set()
        duplicates = [c for c in self.columns if c in seen or seen.add(c)]
        if duplicates:
            raise SchemaError(
                f"Table {self.table_name!r} has duplicate columns: {duplicates!r}",
                columns=duplicates,
            )

    @classmethod
    def from_pandas(cls, table_name: str, frame: pd.DataFrame) -> TableDescription:
        return cls(table_name, tuple(str(column) for column in frame.columns))

    def source(self) -> TableSource:
        return TableSource(self)


def table(table_name: str, columns: Iterable[str]) -> TableSource:
    """Shorthand for ``TableDescription(table_name, columns).source()``."""

    return TableDescription(table_name, tuple(columns)).source()


@dataclass(frozen=True)
class Ident:
    """Identifier inside a raw statement template, quoted but not validated."""

    name: str


@dataclass(frozen=True)
class SourceRef:
    """Placeholder for the input relation inside a raw statement template."""


SOURCE = SourceRef()

TemplatePart = Union[str, Var, Const, Ident, SourceRef]


@dataclass(frozen=True)
class Node:
    schema: tuple[str, ...] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        self._normalize()
        from sqlpipe.ir.validate import validate_node

        for name, value in validate_node(self).items():
            object.__setattr__(self, name, value)

    def _normalize(self) -> None:
        """Coerce constructor arguments into their canonical tuple/Expr forms."""

    def _set(self, name: str, value: Any) -> None:
        object.__setattr__(self, name, value)

    def children(self) -> tuple[Node, ...]:
        raise NotImplementedError

    def columns_produced(self) -> tuple[str, ...]:
        return self.schema

    def columns_used_locally(self) -> set[str]:
        raise NotImplementedError

    def label(self) -> str:
        raise NotImplementedError

    def __str__(self) -> str:
        from sqlpipe.planner.inspect import format_tree

        return format_tree(self)

    # -- chaining ---------------------------------------------------------

    def extend(
        self,
        *assignments: Any,
        partition_by: Iterable[str] | str | None = None,
        order_by: Iterable[str] | str | None = None,
        reverse: Iterable[str] | str | None = None,
        **named: Any,
    ) -> Extend:
        batch = coerce_assignments(assignments) + coerce_assignments([named])
        return Extend(
            self,
            batch,
            partition_by=_names(partition_by),
            window_order=_names(order_by),
            reverse=_names(reverse),
        )

    def project(
        self,
        *aggregates: Any,
        group_by: Iterable[str] | str | None = None,
        **named: Any,
    ) -> Project:
        batch = coerce_assignments(aggregates) + coerce_assignments([named])
        return Project(self, _names(group_by), batch)

    def natural_join(
        self,
        other: Node,
        *,
        by: Iterable[str] | str | None = None,
        join_type: str = "INNER",
    ) -> NaturalJoin:
        keys = None if by is None else _names(by)
        return NaturalJoin(self, other, by=keys, join_type=join_type)

    def theta_join(
        self,
        other: Node,
        predicate: Any,
        *,
        join_type: str = "INNER",
        suffixes: tuple[str, str] = ("_a", "_b"),
    ) -> ThetaJoin:
        return ThetaJoin(
            self, other, to_expr(predicate), join_type=join_type, suffixes=suffixes
        )

    def select_rows(self, predicate: Any) -> SelectRows:
        return SelectRows(self, to_expr(predicate))

    def select_columns(self, columns: Iterable[str] | str) -> SelectColumns:
        return SelectColumns(self, _names(columns))

    def drop_columns(self, columns: Iterable[str] | str) -> DropColumns:
        return DropColumns(self, _names(columns))

    def rename_columns(
        self,
        mapping: Mapping[str, str] | Iterable[tuple[str, str]] | None = None,
        **named: str,
    ) -> RenameColumns:
        """Rename columns; keys are new names, values the existing names."""

        pairs: list[tuple[str, str]] = []
        if mapping is not None:
            items = mapping.items() if isinstance(mapping, Mapping) else mapping
            pairs.extend((str(new), str(old)) for new, old in items)
        pairs.extend((new, str(old)) for new, old in named.items())
        return RenameColumns(self, tuple(pairs))

    def order_by(
        self,
        columns: Iterable[str] | str | None = None,
        *,
        reverse: Iterable[str] | str | None = None,
        limit: int | None = None,
    ) -> OrderBy:
        return OrderBy(self, _names(columns), reverse=_names(reverse), limit=limit)

    def sql_node(
        self,
        exprs: Mapping[str, Any] | Iterable[Any] | None = None,
        *,
        mods: str | None = None,
        orig_columns: bool = True,
        display_form: str | None = None,
    ) -> RawStatement:
        """``SELECT [input columns,] exprs FROM <input> [mods]`` as a raw node.

        ``mods`` is appended verbatim (for example a ``GROUP BY`` clause).
        """

        batch = coerce_assignments([exprs] if isinstance(exprs, Mapping) else exprs or ())
        targets = {a.target for a in batch}
        passed = tuple(c for c in self.schema if c not in targets) if orig_columns else ()
        items: list[list[TemplatePart]] = [[Var(c)] for c in passed]
        for assignment in batch:
            items.append([to_expr(assignment.expr), " AS ", Ident(assignment.target)])
        template: list[TemplatePart] = ["SELECT "]
        for index, item in enumerate(items):
            if index:
                template.append(", ")
            for part in item:
                if isinstance(part, Expr) and not isinstance(part, (Var, Const)):
                    template.extend(part.parts)  # type: ignore[attr-defined]
                else:
                    template.append(part)
        template.extend([" FROM ", SOURCE])
        if mods:
            template.append(f" {mods}")
        used = None if orig_columns else tuple(
            c for c in self.schema if any(c in a.reads() for a in batch)
        )
        produced = passed + tuple(a.target for a in batch)
        return RawStatement(
            self,
            tuple(template),
            produced=produced,
            used=used,
            display_form=display_form,
        )

    def non_sql_node(
        self,
        transform: Transform | None,
        *,
        produced: Iterable[str],
        used: Iterable[str] | None = None,
        incoming_table_name: str | None = None,
        outgoing_table_name: str | None = None,
        display_form: str | None = None,
        temporary: bool = True,
        names: Callable[[], str] | None = None,
    ) -> ExternalTransform:
        """Delegate a step to ``transform(ctx, incoming, outgoing)``.

        Staging table names default to fresh names from ``names`` (a
        ``TempNameSource`` when not given).
        """

        if names is None:
            from sqlpipe.runtime.context import TempNameSource

            names = TempNameSource("sqlpipe_ext")
        incoming = incoming_table_name or names()
        outgoing = outgoing_table_name or names()
        return ExternalTransform(
            self,
            transform,
            produced=tuple(produced),
            used=None if used is None else tuple(used),
            incoming_table_name=incoming,
            outgoing_table_name=outgoing,
            display_form=display_form,
            temporary=temporary,
        )


def _format_assignments(assignments: Iterable[Assignment]) -> str:
    return ", ".join(
        f"{format_name(a.target)} := {format_expr(a.expr)}" for a in assignments
    )


def _format_order(columns: Iterable[str], reverse: Iterable[str]) -> str:
    descending = set(reverse)
    return ", ".join(
        format_name(c) + (" DESC" if c in descending else "") for c in columns
    )


@dataclass(frozen=True)
class TableSource(Node):
    table: TableDescription
    selected: tuple[str, ...] | None = None

    def _normalize(self) -> None:
        if self.selected is not None:
            self._set("selected", _names(self.selected))

    def children(self) -> tuple[Node, ...]:
        return ()

    def columns_used_locally(self) -> set[str]:
        return set()

    def label(self) -> str:
        cols = ", ".join(format_name(c) for c in self.schema)
        return f"table({self.table.table_name!r}; {cols})"


@dataclass(frozen=True)
class Extend(Node):
    source: Node
    assignments: tuple[Assignment, ...]
    partition_by: tuple[str, ...] = ()
    window_order: tuple[str, ...] = ()
    reverse: tuple[str, ...] = ()
    groups: tuple[tuple[Assignment, ...], ...] = field(
        init=False, repr=False, compare=False
    )

    def _normalize(self) -> None:
        self._set("assignments", coerce_assignments(self.assignments))
        self._set("partition_by", _names(self.partition_by))
        self._set("window_order", _names(self.window_order))
        self._set("reverse", _names(self.reverse))

    @property
    def windowed(self) -> bool:
        return bool(self.partition_by or self.window_order)

    def targets(self) -> tuple[str, ...]:
        return tuple(dict.fromkeys(a.target for a in self.assignments))

    def children(self) -> tuple[Node, ...]:
        return (self.source,)

    def columns_used_locally(self) -> set[str]:
        used = set(self.partition_by) | set(self.window_order)
        produced: set[str] = set()
        for group in self.groups:
            for assignment in group:
                used |= assignment.reads() - produced
            produced |= {a.target for a in group}
        return used

    def label(self) -> str:
        text = _format_assignments(self.assignments)
        if self.partition_by:
            text += "; partition_by=[" + ", ".join(map(format_name, self.partition_by)) + "]"
        if self.window_order:
            text += "; order_by=[" + _format_order(self.window_order, self.reverse) + "]"
        return f"extend({text})"


@dataclass(frozen=True)
class Project(Node):
    source: Node
    group_by: tuple[str, ...]
    aggregates: tuple[Assignment, ...]

    def _normalize(self) -> None:
        self._set("group_by", _names(self.group_by))
        self._set("aggregates", coerce_assignments(self.aggregates))

    def children(self) -> tuple[Node, ...]:
        return (self.source,)

    def columns_used_locally(self) -> set[str]:
        used = set(self.group_by)
        for assignment in self.aggregates:
            used |= assignment.reads()
        return used

    def label(self) -> str:
        text = _format_assignments(self.aggregates)
        groups = ", ".join(map(format_name, self.group_by))
        return f"project({text}; group_by=[{groups}])"


@dataclass(frozen=True)
class NaturalJoin(Node):
    left: Node
    right: Node
    by: tuple[str, ...] | None = None
    join_type: str = "INNER"
    plan: NaturalJoinPlan = field(init=False, repr=False, compare=False)

    def _normalize(self) -> None:
        if self.by is not None:
            self._set("by", _names(self.by))

    @property
    def keys(self) -> tuple[str, ...]:
        return self.plan.keys

    def children(self) -> tuple[Node, ...]:
        return (self.left, self.right)

    def columns_used_locally(self) -> set[str]:
        return set(self.plan.keys)

    def label(self) -> str:
        keys = ", ".join(map(format_name, self.plan.keys))
        return f"natural_join(by=[{keys}]; join_type={self.join_type})"


@dataclass(frozen=True)
class ThetaJoin(Node):
    left: Node
    right: Node
    predicate: Expr
    join_type: str = "INNER"
    suffixes: tuple[str, str] = ("_a", "_b")
    suffixed: tuple[str, ...] | None = None
    plan: ThetaJoinPlan = field(init=False, repr=False, compare=False)

    def _normalize(self) -> None:
        self._set("predicate", to_expr(self.predicate))
        self._set("suffixes", tuple(self.suffixes))
        if self.suffixed is not None:
            self._set("suffixed", _names(self.suffixed))

    def children(self) -> tuple[Node, ...]:
        return (self.left, self.right)

    def columns_used_locally(self) -> set[str]:
        return {name for name, _, _ in self.plan.references}

    def label(self) -> str:
        return f"theta_join({format_expr(self.predicate)}; join_type={self.join_type})"


@dataclass(frozen=True)
class SelectRows(Node):
    source: Node
    predicate: Expr

    def _normalize(self) -> None:
        self._set("predicate", to_expr(self.predicate))

    def children(self) -> tuple[Node, ...]:
        return (self.source,)

    def columns_used_locally(self) -> set[str]:
        from sqlpipe.ir.expr import expr_columns

        return expr_columns(self.predicate)

    def label(self) -> str:
        return f"select_rows({format_expr(self.predicate)})"


@dataclass(frozen=True)
class SelectColumns(Node):
    source: Node
    columns: tuple[str, ...]

    def _normalize(self) -> None:
        self._set("columns", _names(self.columns))

    def children(self) -> tuple[Node, ...]:
        return (self.source,)

    def columns_used_locally(self) -> set[str]:
        return set(self.columns)

    def label(self) -> str:
        return "select_columns(" + ", ".join(map(format_name, self.columns)) + ")"


@dataclass(frozen=True)
class DropColumns(Node):
    source: Node
    columns: tuple[str, ...]

    def _normalize(self) -> None:
        self._set("columns", _names(self.columns))

    def children(self) -> tuple[Node, ...]:
        return (self.source,)

    def columns_used_locally(self) -> set[str]:
        return set()

    def label(self) -> str:
        return "drop_columns(" + ", ".join(map(format_name, self.columns)) + ")"


@dataclass(frozen=True)
class RenameColumns(Node):
    source: Node
    mapping: tuple[tuple[str, str], ...]

    def _normalize(self) -> None:
        mapping = self.mapping
        if isinstance(mapping, Mapping):
            mapping = mapping.items()
        self._set("mapping", tuple((str(new), str(old)) for new, old in mapping))

    def renames(self) -> dict[str, str]:
        """Old name to new name."""

        return {old: new for new, old in self.mapping}

    def children(self) -> tuple[Node, ...]:
        return (self.source,)

    def columns_used_locally(self) -> set[str]:
        return {old for _, old in self.mapping}

    def label(self) -> str:
        pairs = ", ".join(
            f"{format_name(new)} := {format_name(old)}" for new, old in self.mapping
        )
        return f"rename_columns({pairs})"


@dataclass(frozen=True)
class OrderBy(Node):
    source: Node
    columns: tuple[str, ...]
    reverse: tuple[str, ...] = ()
    limit: int | None = None

    def _normalize(self) -> None:
        self._set("columns", _names(self.columns))
        self._set("reverse", _names(self.reverse))

    def children(self) -> tuple[Node, ...]:
        return (self.source,)

    def columns_used_locally(self) -> set[str]:
        return set(self.columns)

    def label(self) -> str:
        text = _format_order(self.columns, self.reverse)
        if self.limit is not None:
            text = f"{text}; limit={self.limit}" if text else f"limit={self.limit}"
        return f"order_by({text})"


def format_template(template: Iterable[TemplatePart]) -> str:
    pieces: list[str] = []
    for part in template:
        if isinstance(part, SourceRef):
            pieces.append(".")
        elif isinstance(part, (Var, Ident)):
            pieces.append(format_name(part.name))
        elif isinstance(part, Const):
            pieces.append(format_const(part.value))
        else:
            pieces.append(part)
    return "".join(pieces)


@dataclass(frozen=True)
class RawStatement(Node):
    source: Node
    template: tuple[TemplatePart, ...]
    produced: tuple[str, ...]
    used: tuple[str, ...] | None = None
    display_form: str | None = None

    def _normalize(self) -> None:
        self._set("template", tuple(self.template))
        self._set("produced", _names(self.produced))
        if self.used is not None:
            self._set("used", _names(self.used))

    def template_columns(self) -> set[str]:
        return {part.name for part in self.template if isinstance(part, Var)}

    def children(self) -> tuple[Node, ...]:
        return (self.source,)

    def columns_used_locally(self) -> set[str]:
        used = set(self.source.schema) if self.used is None else set(self.used)
        return used | self.template_columns()

    def label(self) -> str:
        return f"sql_node({self.display_form or format_template(self.template)})"


@dataclass(frozen=True)
class ExternalTransform(Node):
    source: Node
    transform: Transform | None
    produced: tuple[str, ...]
    used: tuple[str, ...] | None = None
    incoming_table_name: str = ""
    outgoing_table_name: str = ""
    display_form: str | None = None
    temporary: bool = True

    def _normalize(self) -> None:
        self._set("produced", _names(self.produced))
        if self.used is not None:
            self._set("used", _names(self.used))

    def children(self) -> tuple[Node, ...]:
        return (self.source,)

    def columns_used_locally(self) -> set[str]:
        return set(self.source.schema) if self.used is None else set(self.used)

    def label(self) -> str:
        if self.display_form:
            return self.display_form
        return (
            f"non_sql_node(., {self.incoming_table_name}, {self.outgoing_table_name})"
        )


__all__ = [
    "DropColumns",
    "Extend",
    "ExternalTransform",
    "Ident",
    "NaturalJoin",
    "Node",
    "OrderBy",
    "Project",
    "RawStatement",
    "RenameColumns",
    "SOURCE",
    "SelectColumns",
    "SelectRows",
    "SourceRef",
    "TableDescription",
    "TableSource",
    "TemplatePart",
    "ThetaJoin",
    "coerce_assignments",
    "format_template",
    "table",
]
