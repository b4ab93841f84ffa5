from __future__ import annotations

import pandas as pd
import pytest
from sqlpipe.errors import DialectUnsupportedError, SchemaError
from sqlpipe.ir.graph import TableDescription, table
from sqlpipe.planner.plan import generate
from sqlpipe.runtime.dialect import SQL92, SQLITE
from sqlpipe.runtime.quantile import quantile_columns, quantile_indexes, quantile_node
from sqlpipe.runtime.steps import ExternalStep


def test_quantile_indexes_round_half_even_and_clip():
    assert quantile_indexes(4, [0.0, 0.25, 0.5, 0.75, 1.0]).tolist() == [1, 1, 2, 3, 4]
    assert quantile_indexes(1, [0.0, 0.5, 1.0]).tolist() == [1, 1, 1]


def test_quantile_node_end_to_end(sqlite_ctx, survey_frame: pd.DataFrame):
    source = TableDescription.from_pandas("d", survey_frame).source()
    tree = quantile_node(source, ["assessmentTotal"])
    assert tree.schema == ("quantile_probability", "assessmentTotal")

    steps = generate(tree, SQLITE)
    assert isinstance(steps[1], ExternalStep)
    assert steps[1].used == ("assessmentTotal",)

    result = sqlite_ctx.run(steps)
    assert result["quantile_probability"].tolist() == [0.0, 0.25, 0.5, 0.75, 1.0]
    assert result["assessmentTotal"].tolist() == [2, 2, 3, 4, 5]


def test_quantiles_ignore_nulls(sqlite_ctx):
    frame = pd.DataFrame({"v": [None, 7.0, None], "empty": [None, None, None]})
    sqlite_ctx.write_table("sparse", frame)
    qtable = quantile_columns(
        sqlite_ctx, "sparse", probs=(0.0, 0.5, 1.0), cols=["v", "empty"]
    )
    assert qtable["v"].tolist() == [7.0, 7.0, 7.0]
    assert qtable["empty"].isna().all()


def test_probs_name_must_not_clash_with_columns():
    source = table("d", ["quantile_probability", "x"])
    with pytest.raises(SchemaError):
        quantile_node(source)
    with pytest.raises(SchemaError):
        quantile_node(table("d", ["x"]), ["nope"])
    with pytest.raises(ValueError):
        quantile_node(table("d", ["x"]), probs=(0.5, 2.0))


def test_quantiles_need_window_functions(sqlite_ctx):
    sqlite_ctx.dialect = SQL92
    with pytest.raises(DialectUnsupportedError):
        quantile_columns(sqlite_ctx, "d", cols=["assessmentTotal"])
