from __future__ import annotations

import re

import pytest
from sqlpipe.errors import DialectUnsupportedError
from sqlpipe.runtime.context import TempNameSource
from sqlpipe.runtime.dialect import POSTGRES, SPARK
from sqlpipe.runtime.materialize import (
    intermediate_tables,
    materialize_sql_statement,
    validate_steps,
)
from sqlpipe.runtime.steps import ExternalStep, SqlStep


def _external(incoming: str = "i", outgoing: str = "o") -> ExternalStep:
    return ExternalStep(
        transform=None,
        incoming_table_name=incoming,
        outgoing_table_name=outgoing,
        display_form="noop",
        used=("a",),
        produced=("a",),
    )


def test_materialize_statement_variants():
    assert materialize_sql_statement(POSTGRES, "SELECT 1", "t") == 'CREATE TABLE "t" AS\nSELECT 1'
    assert materialize_sql_statement(POSTGRES, "SELECT 1", "t", temporary=True).startswith(
        'CREATE TEMPORARY TABLE "t" AS'
    )
    with_options = POSTGRES.with_options(create_options="WITH (fillfactor = 70)")
    assert materialize_sql_statement(with_options, "SELECT 1", "t") == (
        'CREATE TABLE "t" WITH (fillfactor = 70) AS\nSELECT 1'
    )


def test_materialize_temporary_on_dialect_without_temp_tables():
    with pytest.raises(DialectUnsupportedError):
        materialize_sql_statement(SPARK, "SELECT 1", "t", temporary=True)
    lenient = SPARK.with_options(allow_temporary_fallback=True)
    with pytest.warns(RuntimeWarning):
        sql = materialize_sql_statement(lenient, "SELECT 1", "t", temporary=True)
    assert sql.startswith("CREATE TABLE `t` AS")


def test_validate_steps_shape():
    validate_steps([SqlStep("SELECT 1")])
    validate_steps([SqlStep("CREATE"), _external(), SqlStep("SELECT 1")])
    with pytest.raises(ValueError):
        validate_steps([])
    with pytest.raises(ValueError):
        validate_steps([_external(), SqlStep("SELECT 1")])
    with pytest.raises(ValueError):
        validate_steps([SqlStep("CREATE"), _external()])
    with pytest.raises(ValueError):
        validate_steps([SqlStep("CREATE"), _external(), _external("o", "p"), SqlStep("SELECT 1")])


def test_intermediate_tables_in_creation_order():
    steps = [
        SqlStep("CREATE"),
        _external("a_in", "a_out"),
        SqlStep("CREATE"),
        _external("b_in", "b_out"),
        SqlStep("SELECT 1"),
    ]
    assert intermediate_tables(steps) == ("a_in", "a_out", "b_in", "b_out")


def test_temp_name_source_produces_fresh_names():
    names = TempNameSource("qn")
    first, second = names(), names()
    assert first != second
    assert re.fullmatch(r"qn_[0-9a-f]{10}_\d{7}", first)
    assert TempNameSource("qn")() != first
