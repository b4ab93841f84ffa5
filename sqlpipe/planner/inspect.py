"""Introspection helpers for operator trees."""

from __future__ import annotations

from typing import TYPE_CHECKING

from sqlpipe.ir.graph import NaturalJoin, Node, TableSource, ThetaJoin
from sqlpipe.planner.optimizer import narrow

if TYPE_CHECKING:
    from collections.abc import Iterator


def walk(tree: Node) -> Iterator[Node]:
    """Pre-order traversal, left child before right."""

    stack = [tree]
    while stack:
        node = stack.pop()
        yield node
        stack.extend(reversed(node.children()))


def column_names(tree: Node) -> tuple[str, ...]:
    return tree.schema


def tables_used(tree: Node) -> set[str]:
    return {
        node.table.table_name for node in walk(tree) if isinstance(node, TableSource)
    }


def columns_used(tree: Node) -> dict[str, set[str]]:
    """Columns each table must supply to produce the full root schema."""

    used: dict[str, set[str]] = {}
    for node in walk(narrow(tree)):
        if isinstance(node, TableSource):
            used.setdefault(node.table.table_name, set()).update(node.schema)
    return used


def _format_lines(node: Node) -> list[str]:
    if isinstance(node, TableSource):
        return [node.label()]
    if isinstance(node, (NaturalJoin, ThetaJoin)):
        name, _, params = node.label().partition("(")
        lines = [f"{name}("]
        for child in node.children():
            child_lines = _format_lines(child)
            child_lines[-1] += ","
            lines.extend(f"  {line}" for line in child_lines)
        lines.append(f"  {params}")
        return lines
    (source,) = node.children()
    return [*_format_lines(source), f"  .{node.label()}"]


def format_tree(tree: Node) -> str:
    """Readable pipeline text, one operator per line."""

    return "\n".join(_format_lines(tree))


__all__ = ["column_names", "columns_used", "format_tree", "tables_used", "walk"]
