"""Entry points turning an operator tree into SQL steps."""

from __future__ import annotations

from typing import TYPE_CHECKING

from sqlpipe.planner.optimizer import narrow
from sqlpipe.runtime.dialect import get_dialect
from sqlpipe.runtime.sql_codegen import generate_statements
from sqlpipe.runtime.steps import SqlStep

if TYPE_CHECKING:
    from collections.abc import Iterable

    from sqlpipe.ir.graph import Node
    from sqlpipe.runtime.dialect import Dialect
    from sqlpipe.runtime.steps import Step


def generate(
    tree: Node,
    dialect: Dialect | str | None = None,
    *,
    columns: Iterable[str] | None = None,
    output_limit: int | float | None = None,
    source_limit: int | float | None = None,
) -> list[Step]:
    """Narrow ``tree`` to ``columns`` and render it for ``dialect``.

    Returns SQL steps (plus external steps where the tree delegates work);
    the last step's statement yields the result rows. ``dialect`` may be a
    ``Dialect``, a built-in name, or ``None`` for the ``SQLPIPE_DIALECT``
    default.
    """

    resolved = get_dialect(dialect)
    optimized = narrow(tree, columns)
    return generate_statements(
        optimized,
        resolved,
        output_limit=output_limit,
        source_limit=source_limit,
    )


def to_sql(
    tree: Node,
    dialect: Dialect | str | None = None,
    *,
    columns: Iterable[str] | None = None,
    output_limit: int | float | None = None,
    source_limit: int | float | None = None,
) -> str:
    """Single SELECT statement for trees without external transforms."""

    steps = generate(
        tree,
        dialect,
        columns=columns,
        output_limit=output_limit,
        source_limit=source_limit,
    )
    if len(steps) != 1 or not isinstance(steps[0], SqlStep):
        raise ValueError(
            "Tree contains external transforms and renders to "
            f"{len(steps)} steps; use generate() instead"
        )
    return steps[0].sql


__all__ = ["generate", "to_sql"]
