from __future__ import annotations

import numpy as np
import pytest
from sqlpipe.ir.expr import (
    Const,
    Fragment,
    Var,
    col,
    expr_columns,
    fn,
    format_expr,
    lit,
    ordered_columns,
    parse_expr,
    to_expr,
)


def test_parse_single_identifier_is_var():
    assert parse_expr("qty") == Var("qty")


def test_parse_numbers_and_strings_become_constants():
    assert parse_expr("3") == Const(3)
    assert parse_expr("0.237") == Const(0.237)
    assert parse_expr("'it''s'") == Const("it's")


def test_parse_function_names_and_keywords_stay_raw():
    expr = parse_expr("exp(assessmentTotal * 0.237)")
    assert isinstance(expr, Fragment)
    assert expr_columns(expr) == {"assessmentTotal"}
    assert format_expr(expr) == "exp(assessmentTotal * 0.237)"

    expr = parse_expr("CASE WHEN x IS NULL THEN 0 ELSE x END")
    assert expr_columns(expr) == {"x"}


def test_parse_keeps_cast_target_types_raw():
    expr = parse_expr("CAST(qty AS REAL) / CAST(total AS DECIMAL(10, 2))")
    assert expr_columns(expr) == {"qty", "total"}
    assert format_expr(expr) == "CAST(qty AS REAL) / CAST(total AS DECIMAL(10, 2))"

    nested = parse_expr("CAST((price + tax) AS DOUBLE PRECISION) * rate")
    assert expr_columns(nested) == {"price", "tax", "rate"}


def test_parse_window_words_are_not_columns():
    expr = parse_expr(
        "sum(qty) OVER (PARTITION BY user_id ORDER BY day NULLS LAST "
        "ROWS BETWEEN UNBOUNDED PRECEDING AND 1 FOLLOWING)"
    )
    assert expr_columns(expr) == {"qty", "user_id", "day"}
    assert parse_expr("last + first") == Fragment((Var("last"), " ", "+", " ", Var("first")))


def test_parse_rewrites_double_equals_and_literals():
    expr = parse_expr("flag == TRUE AND other IS NOT NULL")
    assert Const(True) in expr.parts
    assert "=" in "".join(p for p in expr.parts if isinstance(p, str))
    assert "==" not in format_expr(expr)
    assert expr_columns(expr) == {"flag", "other"}


def test_parse_quoted_identifier():
    expr = parse_expr('"odd name" + 1')
    assert expr_columns(expr) == {"odd name"}
    assert format_expr(expr) == '"odd name" + 1'


def test_parse_rejects_garbage():
    with pytest.raises(ValueError):
        parse_expr("a $ b")
    with pytest.raises(ValueError):
        parse_expr("   ")


def test_builder_operators_produce_fragments():
    expr = to_expr((col("a") + 1) * col("b") > lit(2))
    assert ordered_columns(expr) == ("a", "b")
    assert format_expr(expr) == "((a + 1) * b) > 2"


def test_builder_comparison_and_logic_render_sql_operators():
    expr = to_expr((col("a") == 1) & ~(col("b") != "x"))
    assert format_expr(expr) == "(a = 1) AND (NOT (b <> 'x'))"


def test_fn_and_alias_build_assignments():
    assignment = fn("sum", col("probability")).alias("total")
    assert assignment.target == "total"
    assert assignment.reads() == {"probability"}
    with pytest.raises(ValueError):
        fn("bad name")


def test_numpy_scalars_become_python_literals():
    const = Const(np.int64(7))
    assert const.value == 7
    assert type(const.value) is int
    with pytest.raises(TypeError):
        Const(object())


def test_ordered_columns_keeps_first_appearance():
    expr = parse_expr("b + a + b")
    assert ordered_columns(expr) == ("b", "a")
