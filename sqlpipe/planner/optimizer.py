"""Column-narrowing optimizer.

Walks the tree from the root down, computing for every node the columns its
parent actually needs, and rebuilds the tree so each node only carries those
(plus whatever it reads itself). Table sources end up selecting only the
columns used anywhere above them.
"""

from __future__ import annotations

from dataclasses import replace
from typing import TYPE_CHECKING

from sqlpipe.errors import SchemaError
from sqlpipe.ir.graph import (
    DropColumns,
    Extend,
    ExternalTransform,
    NaturalJoin,
    Node,
    OrderBy,
    Project,
    RawStatement,
    RenameColumns,
    SelectColumns,
    SelectRows,
    TableSource,
    ThetaJoin,
)

if TYPE_CHECKING:
    from collections.abc import Iterable


def _rebuild(node: Node, **changes: object) -> Node:
    if all(getattr(node, name) is value for name, value in changes.items()):
        return node
    return replace(node, **changes)


def _wanted(node: Node, needed: set[str]) -> tuple[str, ...]:
    wanted = tuple(c for c in node.schema if c in needed)
    # Keep one column so the row count survives.
    return wanted or node.schema[:1]


def _narrow_child(child: Node, needed: set[str]) -> Node:
    return _narrow(child, needed & set(child.schema))


def _narrow(node: Node, needed: set[str]) -> Node:
    wanted = _wanted(node, needed)
    wanted_set = set(wanted)

    if isinstance(node, TableSource):
        if wanted == node.schema:
            return node
        return TableSource(node.table, wanted)

    if isinstance(node, Extend):
        # Overwritten input columns stay requested so they keep their position.
        child_needed = wanted_set | node.columns_used_locally()
        return _rebuild(node, source=_narrow_child(node.source, child_needed))

    if isinstance(node, Project):
        return _rebuild(
            node, source=_narrow_child(node.source, node.columns_used_locally())
        )

    if isinstance(node, NaturalJoin):
        plan = node.plan
        left_needed = set(plan.keys)
        right_needed = set(plan.keys)
        for out in plan.output:
            if out.name in wanted_set:
                if out.left is not None:
                    left_needed.add(out.left)
                if out.right is not None:
                    right_needed.add(out.right)
        left = _narrow_child(node.left, left_needed)
        right = _narrow_child(node.right, right_needed)
        if left is node.left and right is node.right and node.by == plan.keys:
            return node
        return replace(node, left=left, right=right, by=plan.keys)

    if isinstance(node, ThetaJoin):
        plan = node.plan
        left_needed = {col for col, out in plan.left_pairs if out in wanted_set}
        right_needed = {col for col, out in plan.right_pairs if out in wanted_set}
        for _, side, col in plan.references:
            (left_needed if side == "left" else right_needed).add(col)
        left = _narrow_child(node.left, left_needed)
        right = _narrow_child(node.right, right_needed)
        if left is node.left and right is node.right and node.suffixed == plan.suffixed:
            return node
        return replace(node, left=left, right=right, suffixed=plan.suffixed)

    if isinstance(node, SelectRows):
        child_needed = wanted_set | node.columns_used_locally()
        return _rebuild(node, source=_narrow_child(node.source, child_needed))

    if isinstance(node, SelectColumns):
        columns = tuple(c for c in node.columns if c in wanted_set)
        source = _narrow_child(node.source, set(columns))
        if columns == node.columns:
            return _rebuild(node, source=source)
        return replace(node, source=source, columns=columns)

    if isinstance(node, DropColumns):
        source = _narrow_child(node.source, wanted_set)
        remaining = tuple(c for c in node.columns if c in source.schema)
        if not remaining:
            return source
        if remaining == node.columns:
            return _rebuild(node, source=source)
        return replace(node, source=source, columns=remaining)

    if isinstance(node, RenameColumns):
        renames = node.renames()
        old_of = {new: old for old, new in renames.items()}
        child_needed = {old_of.get(c, c) for c in wanted}
        source = _narrow_child(node.source, child_needed)
        mapping = tuple(
            (new, old) for new, old in node.mapping if old in source.schema
        )
        if not mapping:
            return source
        if mapping == node.mapping:
            return _rebuild(node, source=source)
        return replace(node, source=source, mapping=mapping)

    if isinstance(node, OrderBy):
        child_needed = wanted_set | node.columns_used_locally()
        return _rebuild(node, source=_narrow_child(node.source, child_needed))

    if isinstance(node, (RawStatement, ExternalTransform)):
        return _rebuild(
            node, source=_narrow_child(node.source, node.columns_used_locally())
        )

    raise TypeError(f"Unsupported node type: {type(node)!r}")


def narrow(tree: Node, columns: Iterable[str] | None = None) -> Node:
    """Return ``tree`` rewritten to carry only the columns needed at the root.

    ``columns`` defaults to the root schema; when given (and different from
    what the narrowed root produces) the result is wrapped in a
    ``SelectColumns`` so the output is exactly ``columns`` in that order.
    """

    if columns is None:
        return _narrow(tree, set(tree.schema))
    requested = tuple(columns)
    if not requested:
        raise SchemaError("narrow requires at least one requested column")
    missing = [c for c in requested if c not in set(tree.schema)]
    if missing:
        raise SchemaError(
            f"Requested column(s) {missing!r} not produced by the tree; "
            f"available {list(tree.schema)!r}",
            columns=missing,
        )
    if len(set(requested)) != len(requested):
        raise SchemaError(f"Requested columns contain duplicates: {requested!r}")
    result = _narrow(tree, set(requested))
    if result.schema != requested:
        result = SelectColumns(result, requested)
    return result


__all__ = ["narrow"]
