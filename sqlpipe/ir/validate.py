"""Construction-time validation and schema derivation for operator nodes.

``validate_node`` is called from ``Node.__post_init__``. It returns the
attributes to set on the freshly built node (always ``schema``, plus derived
plans for some variants) or raises before the node can be used.
"""

from __future__ import annotations

import warnings
from collections import Counter
from typing import TYPE_CHECKING, Any

from sqlpipe.errors import SchemaError
from sqlpipe.ir.expr import Const, Expr, Var, format_expr, ordered_columns
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
from sqlpipe.ir.join_semantics import (
    build_natural_join_plan,
    build_theta_join_plan,
    normalize_join_type,
)
from sqlpipe.planner.partition import partition_indices, reuse_hazards

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence


def _tables_hint(node: Node) -> str:
    names: list[str] = []
    stack = [node]
    while stack:
        current = stack.pop()
        if isinstance(current, TableSource):
            if current.table.table_name not in names:
                names.append(current.table.table_name)
        else:
            stack.extend(reversed(current.children()))
    return ", ".join(repr(name) for name in names)


def _require_node(value: object, label: str) -> Node:
    if not isinstance(value, Node):
        raise TypeError(f"{label} must be a Node, got {type(value)!r}")
    return value


def _require_columns(
    columns: Iterable[str],
    available: Sequence[str],
    *,
    what: str,
    source: Node,
) -> None:
    lookup = set(available)
    missing = [c for c in columns if c not in lookup]
    if missing:
        raise SchemaError(
            f"{what}: unknown column(s) {missing!r}; available columns "
            f"{list(available)!r} (tables {_tables_hint(source)})",
            columns=missing,
        )


def _require_unique(columns: Sequence[str], *, what: str) -> None:
    duplicates = [name for name, count in Counter(columns).items() if count > 1]
    if duplicates:
        raise SchemaError(f"{what}: duplicate column(s) {duplicates!r}", columns=duplicates)


def _validate_table_source(node: TableSource) -> dict[str, Any]:
    if node.selected is None:
        return {"schema": node.table.columns}
    if not node.selected:
        raise SchemaError(
            f"table {node.table.table_name!r}: selected columns must not be empty"
        )
    what = f"table {node.table.table_name!r}"
    _require_unique(node.selected, what=what)
    _require_columns(node.selected, node.table.columns, what=what, source=node)
    return {"schema": node.selected}


def _validate_extend(node: Extend) -> dict[str, Any]:
    source = _require_node(node.source, "extend source")
    assignments = node.assignments
    if not assignments:
        raise SchemaError("extend requires at least one assignment")
    input_cols = source.schema
    targets = tuple(dict.fromkeys(a.target for a in assignments))

    reads: dict[str, None] = {}
    for assignment in assignments:
        for name in ordered_columns(assignment.expr):
            reads.setdefault(name, None)
    _require_columns(
        reads, input_cols + targets, what="extend expressions", source=source
    )

    for label, columns in (
        ("partition_by", node.partition_by),
        ("order_by", node.window_order),
    ):
        _require_unique(columns, what=f"extend {label}")
        _require_columns(columns, input_cols, what=f"extend {label}", source=source)
        clashes = [c for c in columns if c in targets]
        if clashes:
            raise SchemaError(
                f"extend {label} columns can not be assigned: {clashes!r}",
                columns=clashes,
            )
    stray = [c for c in node.reverse if c not in node.window_order]
    if stray:
        raise SchemaError(
            f"extend reverse columns must appear in order_by: {stray!r}", columns=stray
        )

    index_groups = partition_indices(assignments, input_cols)
    for assignment, name in reuse_hazards(assignments, index_groups):
        warnings.warn(
            f"extend assignment {assignment.target} := {format_expr(assignment.expr)} "
            f"reads {name!r}, which is reassigned in the same batch; the staged "
            "result differs from sequential evaluation",
            category=RuntimeWarning,
            stacklevel=5,
        )
    groups = tuple(tuple(assignments[i] for i in group) for group in index_groups)
    existing = set(input_cols)
    schema = input_cols + tuple(t for t in targets if t not in existing)
    return {"schema": schema, "groups": groups}


def _validate_project(node: Project) -> dict[str, Any]:
    source = _require_node(node.source, "project source")
    if not node.group_by and not node.aggregates:
        raise SchemaError("project requires group_by columns or aggregates")
    _require_unique(node.group_by, what="project group_by")
    _require_columns(node.group_by, source.schema, what="project group_by", source=source)
    targets = tuple(a.target for a in node.aggregates)
    _require_unique(targets, what="project aggregates")
    clashes = [t for t in targets if t in node.group_by]
    if clashes:
        raise SchemaError(
            f"project aggregate targets collide with group_by: {clashes!r}",
            columns=clashes,
        )
    for assignment in node.aggregates:
        _require_columns(
            ordered_columns(assignment.expr),
            source.schema,
            what=f"project aggregate {assignment.target!r}",
            source=source,
        )
    return {"schema": node.group_by + targets}


def _validate_natural_join(node: NaturalJoin) -> dict[str, Any]:
    left = _require_node(node.left, "natural_join left")
    right = _require_node(node.right, "natural_join right")
    object.__setattr__(node, "join_type", normalize_join_type(node.join_type))
    plan = build_natural_join_plan(
        left_columns=left.schema, right_columns=right.schema, by=node.by
    )
    return {"schema": plan.output_columns, "plan": plan}


def _validate_theta_join(node: ThetaJoin) -> dict[str, Any]:
    left = _require_node(node.left, "theta_join left")
    right = _require_node(node.right, "theta_join right")
    object.__setattr__(node, "join_type", normalize_join_type(node.join_type))
    plan = build_theta_join_plan(
        left_columns=left.schema,
        right_columns=right.schema,
        predicate_columns=ordered_columns(node.predicate),
        suffixes=node.suffixes,
        suffixed=node.suffixed,
    )
    return {"schema": plan.output_columns, "plan": plan}


def _validate_select_rows(node: SelectRows) -> dict[str, Any]:
    source = _require_node(node.source, "select_rows source")
    _require_columns(
        ordered_columns(node.predicate),
        source.schema,
        what="select_rows predicate",
        source=source,
    )
    return {"schema": source.schema}


def _validate_select_columns(node: SelectColumns) -> dict[str, Any]:
    source = _require_node(node.source, "select_columns source")
    if not node.columns:
        raise SchemaError("select_columns requires at least one column")
    _require_unique(node.columns, what="select_columns")
    _require_columns(node.columns, source.schema, what="select_columns", source=source)
    return {"schema": node.columns}


def _validate_drop_columns(node: DropColumns) -> dict[str, Any]:
    source = _require_node(node.source, "drop_columns source")
    _require_unique(node.columns, what="drop_columns")
    _require_columns(node.columns, source.schema, what="drop_columns", source=source)
    dropped = set(node.columns)
    schema = tuple(c for c in source.schema if c not in dropped)
    if not schema:
        raise SchemaError("drop_columns can not remove every column", columns=node.columns)
    return {"schema": schema}


def _validate_rename_columns(node: RenameColumns) -> dict[str, Any]:
    source = _require_node(node.source, "rename_columns source")
    if not node.mapping:
        raise SchemaError("rename_columns requires at least one mapping")
    new_names = [new for new, _ in node.mapping]
    old_names = [old for _, old in node.mapping]
    _require_unique(new_names, what="rename_columns new names")
    _require_unique(old_names, what="rename_columns old names")
    _require_columns(old_names, source.schema, what="rename_columns", source=source)
    renames = node.renames()
    schema = tuple(renames.get(c, c) for c in source.schema)
    _require_unique(schema, what="rename_columns result")
    return {"schema": schema}


def _validate_order_by(node: OrderBy) -> dict[str, Any]:
    source = _require_node(node.source, "order_by source")
    if node.limit is not None:
        if isinstance(node.limit, bool) or not isinstance(node.limit, int):
            raise TypeError(f"order_by limit must be an int, got {node.limit!r}")
        if node.limit < 0:
            raise ValueError(f"order_by limit must be non-negative, got {node.limit}")
    if not node.columns and node.limit is None:
        raise SchemaError("order_by requires columns or a limit")
    _require_unique(node.columns, what="order_by")
    _require_columns(node.columns, source.schema, what="order_by", source=source)
    stray = [c for c in node.reverse if c not in node.columns]
    if stray:
        raise SchemaError(
            f"order_by reverse columns must appear in columns: {stray!r}", columns=stray
        )
    return {"schema": source.schema}


def _validate_produced(produced: Sequence[str], *, what: str) -> None:
    if not produced:
        raise SchemaError(f"{what} must declare at least one produced column")
    if any(not isinstance(c, str) or not c for c in produced):
        raise SchemaError(f"{what} produced columns must be non-empty strings")
    _require_unique(produced, what=f"{what} produced")


def _validate_raw_statement(node: RawStatement) -> dict[str, Any]:
    source = _require_node(node.source, "sql_node source")
    sources = 0
    for part in node.template:
        if isinstance(part, SourceRef):
            sources += 1
        elif isinstance(part, (Var, Const, Ident)):
            continue
        elif isinstance(part, Expr):
            raise TypeError(
                "sql_node templates hold str, Var, Const, Ident or SOURCE parts; "
                "flatten expressions into their parts"
            )
        elif not isinstance(part, str):
            raise TypeError(f"Unsupported template part: {type(part)!r}")
    if sources == 0:
        raise SchemaError("sql_node template must reference its source (SOURCE)")
    _require_columns(
        sorted(node.template_columns()),
        source.schema,
        what="sql_node template",
        source=source,
    )
    if node.used is not None:
        _require_columns(node.used, source.schema, what="sql_node used", source=source)
    _validate_produced(node.produced, what="sql_node")
    return {"schema": node.produced}


def _validate_external_transform(node: ExternalTransform) -> dict[str, Any]:
    source = _require_node(node.source, "non_sql_node source")
    if node.transform is not None and not callable(node.transform):
        raise TypeError(f"non_sql_node transform must be callable, got {node.transform!r}")
    if node.used is not None:
        _require_unique(node.used, what="non_sql_node used")
        _require_columns(node.used, source.schema, what="non_sql_node used", source=source)
    _validate_produced(node.produced, what="non_sql_node")
    if not node.incoming_table_name or not node.outgoing_table_name:
        raise ValueError("non_sql_node requires incoming and outgoing table names")
    if node.incoming_table_name == node.outgoing_table_name:
        raise ValueError(
            "non_sql_node incoming and outgoing table names must differ, got "
            f"{node.incoming_table_name!r}"
        )
    return {"schema": node.produced}


def validate_node(node: Node) -> dict[str, Any]:
    """Validate ``node`` against its children and derive its schema."""

    if isinstance(node, TableSource):
        return _validate_table_source(node)
    if isinstance(node, Extend):
        return _validate_extend(node)
    if isinstance(node, Project):
        return _validate_project(node)
    if isinstance(node, NaturalJoin):
        return _validate_natural_join(node)
    if isinstance(node, ThetaJoin):
        return _validate_theta_join(node)
    if isinstance(node, SelectRows):
        return _validate_select_rows(node)
    if isinstance(node, SelectColumns):
        return _validate_select_columns(node)
    if isinstance(node, DropColumns):
        return _validate_drop_columns(node)
    if isinstance(node, RenameColumns):
        return _validate_rename_columns(node)
    if isinstance(node, OrderBy):
        return _validate_order_by(node)
    if isinstance(node, RawStatement):
        return _validate_raw_statement(node)
    if isinstance(node, ExternalTransform):
        return _validate_external_transform(node)
    raise TypeError(f"Unsupported node type: {type(node)!r}")


__all__ = ["validate_node"]
