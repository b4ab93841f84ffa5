"""Table materialization statements and step-list invariants."""

from __future__ import annotations

import warnings
from typing import TYPE_CHECKING

from sqlpipe.errors import DialectUnsupportedError
from sqlpipe.runtime.steps import ExternalStep, SqlStep

if TYPE_CHECKING:
    from collections.abc import Sequence

    from sqlpipe.runtime.dialect import Dialect
    from sqlpipe.runtime.steps import Step


def resolve_temporary(dialect: Dialect, temporary: bool, *, node: str = "materialize") -> bool:
    """Whether a ``TEMPORARY`` table can be created, honouring the fallback flag."""

    if not temporary or dialect.supports_temporary_tables:
        return temporary
    if not dialect.allow_temporary_fallback:
        raise DialectUnsupportedError(node, "temporary tables", dialect.name)
    warnings.warn(
        f"Dialect {dialect.name!r} has no temporary tables; {node} creates a "
        "regular table instead",
        category=RuntimeWarning,
        stacklevel=3,
    )
    return False


def materialize_sql_statement(
    dialect: Dialect,
    sql: str,
    table_name: str,
    *,
    temporary: bool = False,
) -> str:
    """``CREATE [TEMPORARY] TABLE <name> [options] AS <sql>``."""

    temporary = resolve_temporary(dialect, temporary)
    head = "CREATE TEMPORARY TABLE" if temporary else "CREATE TABLE"
    options = f" {dialect.create_options}" if dialect.create_options else ""
    return f"{head} {dialect.quote_identifier(table_name)}{options} AS\n{sql}"


def validate_steps(steps: Sequence[Step]) -> None:
    """Check the shape an execution layer relies on.

    The list is non-empty, starts and ends with SQL, and never has two
    external steps in a row.
    """

    if not steps:
        raise ValueError("Step list is empty")
    if not isinstance(steps[0], SqlStep):
        raise ValueError("First step must be a SQL statement")
    if not isinstance(steps[-1], SqlStep):
        raise ValueError("Last step must be a SQL statement")
    for previous, current in zip(steps, steps[1:]):
        if isinstance(previous, ExternalStep) and isinstance(current, ExternalStep):
            raise ValueError("Two external steps can not follow each other")
    for step in steps:
        if not isinstance(step, (SqlStep, ExternalStep)):
            raise TypeError(f"Unsupported step type: {type(step)!r}")


def intermediate_tables(steps: Sequence[Step]) -> tuple[str, ...]:
    """Staging tables created while running ``steps``, in creation order."""

    names: list[str] = []
    for step in steps:
        if isinstance(step, ExternalStep):
            for name in (step.incoming_table_name, step.outgoing_table_name):
                if name not in names:
                    names.append(name)
    return tuple(names)


__all__ = [
    "intermediate_tables",
    "materialize_sql_statement",
    "resolve_temporary",
    "validate_steps",
]
