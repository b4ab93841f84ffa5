"""Quantiles of non-NULL column values as an external-transform node.

Quantiles are not interpolated: each probability picks an actual row of the
ordered non-NULL values, fetched with ``ROW_NUMBER()`` so the database must
support window functions.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import numpy as np
import pandas as pd

from sqlpipe.errors import DialectUnsupportedError, SchemaError
from sqlpipe.runtime.context import TempNameSource

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Sequence

    from sqlpipe.ir.graph import ExternalTransform, Node
    from sqlpipe.runtime.context import ExecutionContext

DEFAULT_PROBS = (0.0, 0.25, 0.5, 0.75, 1.0)
DEFAULT_PROBS_NAME = "quantile_probability"


def quantile_indexes(nrows: int, probs: Sequence[float]) -> np.ndarray:
    """1-based row positions picked for ``probs`` among ``nrows`` values."""

    indexes = np.rint((nrows + 0.5) * np.asarray(probs, dtype=float))
    return np.clip(indexes, 1, nrows).astype(int)


def quantile_column(
    ctx: ExecutionContext,
    incoming_table_name: str,
    probs: Sequence[float],
    column: str,
) -> list[object]:
    q = ctx.dialect.quote_identifier
    counts = ctx.query(
        f"SELECT COUNT(1) AS {q('n')} FROM {q(incoming_table_name)} "
        f"WHERE {q(column)} IS NOT NULL"
    )
    nrows = int(counts.iloc[0, 0])
    if nrows < 1:
        return [None] * len(probs)
    indexes = quantile_indexes(nrows, probs)
    # Row 1 is always fetched so a single value still comes back.
    unique = np.unique(np.concatenate(([1], indexes, [nrows])))
    positions = ", ".join(str(int(i)) for i in unique)
    rows = ctx.query(
        "SELECT * FROM (\n"
        f"  SELECT {q(column)}, ROW_NUMBER() OVER (ORDER BY {q(column)}) AS {q('sqlpipe_idx')}\n"
        f"  FROM {q(incoming_table_name)}\n"
        f"  WHERE {q(column)} IS NOT NULL\n"
        f") {q('sqlpipe_qtable')}\n"
        f"WHERE {q('sqlpipe_idx')} IN ({positions})\n"
        f"ORDER BY {q('sqlpipe_idx')}"
    )
    values = rows[column].tolist()
    lookup = {int(pos): values[i] for i, pos in enumerate(unique)}
    return [lookup[int(i)] for i in indexes]


def quantile_columns(
    ctx: ExecutionContext,
    incoming_table_name: str,
    *,
    probs: Sequence[float] = DEFAULT_PROBS,
    probs_name: str = DEFAULT_PROBS_NAME,
    cols: Iterable[str],
) -> pd.DataFrame:
    """Table with one row per probability and one column per input column."""

    if not ctx.dialect.supports_window_functions:
        raise DialectUnsupportedError("quantile_node", "window functions", ctx.dialect.name)
    qtable = pd.DataFrame({probs_name: list(probs)})
    for column in cols:
        qtable[column] = quantile_column(ctx, incoming_table_name, probs, column)
    return qtable


def quantile_node(
    source: Node,
    cols: Iterable[str] | None = None,
    *,
    probs: Sequence[float] = DEFAULT_PROBS,
    probs_name: str = DEFAULT_PROBS_NAME,
    names: Callable[[], str] | None = None,
    temporary: bool = True,
) -> ExternalTransform:
    """Node whose output is the quantile table of ``cols`` (default: all)."""

    columns = tuple(source.schema if cols is None else cols)
    if probs_name in columns:
        raise SchemaError(
            f"quantile_node probs_name {probs_name!r} must be disjoint from cols",
            columns=[probs_name],
        )
    missing = [c for c in columns if c not in source.schema]
    if missing:
        raise SchemaError(
            f"quantile_node: unknown column(s) {missing!r}", columns=missing
        )
    probs = tuple(float(p) for p in probs)
    if not probs or any(not 0.0 <= p <= 1.0 for p in probs):
        raise ValueError(f"quantile probabilities must lie in [0, 1], got {probs!r}")
    names = names or TempNameSource("qn")
    incoming = names()
    outgoing = names()

    def transform(ctx: ExecutionContext, incoming_table_name: str, outgoing_table_name: str) -> None:
        qtable = quantile_columns(
            ctx, incoming_table_name, probs=probs, probs_name=probs_name, cols=columns
        )
        ctx.write_table(outgoing_table_name, qtable, temporary=temporary)

    return source.non_sql_node(
        transform,
        produced=(probs_name, *columns),
        used=columns,
        incoming_table_name=incoming,
        outgoing_table_name=outgoing,
        display_form=f"quantile_node(., {incoming}, {outgoing})",
        temporary=temporary,
    )


__all__ = [
    "DEFAULT_PROBS",
    "DEFAULT_PROBS_NAME",
    "quantile_column",
    "quantile_columns",
    "quantile_indexes",
    "quantile_node",
]
