"""Serialization helpers for sqlpipe expressions and operator trees.

These functions convert trees to simple dictionaries suitable for JSON
payloads, and back again. External transforms are opaque callables and are
not embedded; callers rebind them by name during deserialization using a
provided transform mapping.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from sqlpipe.ir.expr import Assignment, Const, Expr, Fragment, Var
from sqlpipe.ir.graph import (
    SOURCE,
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
    TableDescription,
    TableSource,
    ThetaJoin,
)

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping


def _part_to_dict(part: object) -> dict[str, Any]:
    if isinstance(part, str):
        return {"kind": "text", "text": part}
    if isinstance(part, Ident):
        return {"kind": "ident", "name": part.name}
    if isinstance(part, SourceRef):
        return {"kind": "source"}
    return expr_to_dict(part)  # type: ignore[arg-type]


def _part_from_dict(data: Mapping[str, Any]) -> object:
    kind = data.get("kind")
    if kind == "text":
        return str(data["text"])
    if kind == "ident":
        return Ident(str(data["name"]))
    if kind == "source":
        return SOURCE
    return expr_from_dict(data)


def expr_to_dict(expr: Expr) -> dict[str, Any]:
    if isinstance(expr, Var):
        return {"kind": "var", "name": expr.name}
    if isinstance(expr, Const):
        return {"kind": "const", "value": expr.value}
    if isinstance(expr, Fragment):
        return {"kind": "fragment", "parts": [_part_to_dict(p) for p in expr.parts]}
    raise TypeError(f"Unsupported expr for serialization: {type(expr)!r}")


def expr_from_dict(data: Mapping[str, Any]) -> Expr:
    kind = data.get("kind")
    if kind == "var":
        return Var(str(data["name"]))
    if kind == "const":
        return Const(data.get("value"))
    if kind == "fragment":
        return Fragment(tuple(_part_from_dict(p) for p in data["parts"]))  # type: ignore[misc]
    raise ValueError(f"Unknown expr kind: {kind!r}")


def _assignments_to_list(assignments: tuple[Assignment, ...]) -> list[dict[str, Any]]:
    return [{"target": a.target, "expr": expr_to_dict(a.expr)} for a in assignments]


def _assignments_from_list(items: list[Mapping[str, Any]]) -> tuple[Assignment, ...]:
    return tuple(
        Assignment(str(item["target"]), expr_from_dict(item["expr"])) for item in items
    )


def node_to_dict(node: Node) -> dict[str, Any]:
    if isinstance(node, TableSource):
        return {
            "type": "table",
            "table_name": node.table.table_name,
            "columns": list(node.table.columns),
            "selected": None if node.selected is None else list(node.selected),
        }
    if isinstance(node, Extend):
        return {
            "type": "extend",
            "source": node_to_dict(node.source),
            "assignments": _assignments_to_list(node.assignments),
            "partition_by": list(node.partition_by),
            "order_by": list(node.window_order),
            "reverse": list(node.reverse),
        }
    if isinstance(node, Project):
        return {
            "type": "project",
            "source": node_to_dict(node.source),
            "group_by": list(node.group_by),
            "aggregates": _assignments_to_list(node.aggregates),
        }
    if isinstance(node, NaturalJoin):
        return {
            "type": "natural_join",
            "left": node_to_dict(node.left),
            "right": node_to_dict(node.right),
            "by": None if node.by is None else list(node.by),
            "join_type": node.join_type,
        }
    if isinstance(node, ThetaJoin):
        return {
            "type": "theta_join",
            "left": node_to_dict(node.left),
            "right": node_to_dict(node.right),
            "predicate": expr_to_dict(node.predicate),
            "join_type": node.join_type,
            "suffixes": list(node.suffixes),
            "suffixed": None if node.suffixed is None else list(node.suffixed),
        }
    if isinstance(node, SelectRows):
        return {
            "type": "select_rows",
            "source": node_to_dict(node.source),
            "predicate": expr_to_dict(node.predicate),
        }
    if isinstance(node, (SelectColumns, DropColumns)):
        kind = "select_columns" if isinstance(node, SelectColumns) else "drop_columns"
        return {
            "type": kind,
            "source": node_to_dict(node.source),
            "columns": list(node.columns),
        }
    if isinstance(node, RenameColumns):
        return {
            "type": "rename_columns",
            "source": node_to_dict(node.source),
            "mapping": [[new, old] for new, old in node.mapping],
        }
    if isinstance(node, OrderBy):
        return {
            "type": "order_by",
            "source": node_to_dict(node.source),
            "columns": list(node.columns),
            "reverse": list(node.reverse),
            "limit": node.limit,
        }
    if isinstance(node, RawStatement):
        return {
            "type": "sql_node",
            "source": node_to_dict(node.source),
            "template": [_part_to_dict(p) for p in node.template],
            "produced": list(node.produced),
            "used": None if node.used is None else list(node.used),
            "display_form": node.display_form,
        }
    if isinstance(node, ExternalTransform):
        # Avoid embedding the callable; bind it back by name
        return {
            "type": "non_sql_node",
            "source": node_to_dict(node.source),
            "transform": getattr(node.transform, "__name__", None),
            "produced": list(node.produced),
            "used": None if node.used is None else list(node.used),
            "incoming_table_name": node.incoming_table_name,
            "outgoing_table_name": node.outgoing_table_name,
            "display_form": node.display_form,
            "temporary": node.temporary,
        }
    raise TypeError(f"Unsupported node for serialization: {type(node)!r}")


_UNARY_TYPES = frozenset(
    {
        "extend",
        "project",
        "select_rows",
        "select_columns",
        "drop_columns",
        "rename_columns",
        "order_by",
        "sql_node",
        "non_sql_node",
    }
)


def _optional_names(value: object) -> tuple[str, ...] | None:
    if value is None:
        return None
    return tuple(str(v) for v in value)  # type: ignore[union-attr]


def node_from_dict(
    data: Mapping[str, Any],
    transforms: Mapping[str, Callable[..., Any]] | None = None,
) -> Node:
    """Rebuild a tree; every node is re-validated on construction."""

    t = data.get("type")
    if t == "table":
        table = TableDescription(str(data["table_name"]), tuple(data["columns"]))
        return TableSource(table, selected=_optional_names(data.get("selected")))
    if t == "natural_join":
        return NaturalJoin(
            node_from_dict(data["left"], transforms),
            node_from_dict(data["right"], transforms),
            by=_optional_names(data.get("by")),
            join_type=str(data.get("join_type", "INNER")),
        )
    if t == "theta_join":
        return ThetaJoin(
            node_from_dict(data["left"], transforms),
            node_from_dict(data["right"], transforms),
            expr_from_dict(data["predicate"]),
            join_type=str(data.get("join_type", "INNER")),
            suffixes=tuple(data.get("suffixes", ("_a", "_b"))),  # type: ignore[arg-type]
            suffixed=_optional_names(data.get("suffixed")),
        )

    if t not in _UNARY_TYPES:
        raise ValueError(f"Unknown node type: {t!r}")
    source = node_from_dict(data["source"], transforms)
    if t == "extend":
        return Extend(
            source,
            _assignments_from_list(data["assignments"]),
            partition_by=tuple(data.get("partition_by", ())),
            window_order=tuple(data.get("order_by", ())),
            reverse=tuple(data.get("reverse", ())),
        )
    if t == "project":
        return Project(
            source,
            tuple(data.get("group_by", ())),
            _assignments_from_list(data.get("aggregates", [])),
        )
    if t == "select_rows":
        return SelectRows(source, expr_from_dict(data["predicate"]))
    if t == "select_columns":
        return SelectColumns(source, tuple(data["columns"]))
    if t == "drop_columns":
        return DropColumns(source, tuple(data["columns"]))
    if t == "rename_columns":
        return RenameColumns(source, tuple((str(n), str(o)) for n, o in data["mapping"]))
    if t == "order_by":
        return OrderBy(
            source,
            tuple(data.get("columns", ())),
            reverse=tuple(data.get("reverse", ())),
            limit=data.get("limit"),
        )
    if t == "sql_node":
        return RawStatement(
            source,
            tuple(_part_from_dict(p) for p in data["template"]),  # type: ignore[misc]
            produced=tuple(data["produced"]),
            used=_optional_names(data.get("used")),
            display_form=data.get("display_form"),
        )
    if t == "non_sql_node":
        name = data.get("transform")
        transform = None
        if transforms is not None and name is not None:
            transform = transforms.get(str(name))
        return ExternalTransform(
            source,
            transform,
            produced=tuple(data["produced"]),
            used=_optional_names(data.get("used")),
            incoming_table_name=str(data["incoming_table_name"]),
            outgoing_table_name=str(data["outgoing_table_name"]),
            display_form=data.get("display_form"),
            temporary=bool(data.get("temporary", True)),
        )
    raise ValueError(f"Unknown node type: {t!r}")


__all__ = ["expr_from_dict", "expr_to_dict", "node_from_dict", "node_to_dict"]
