from __future__ import annotations

import dataclasses

import pandas as pd
import pytest
from sqlpipe.errors import JoinKeyError, SchemaError
from sqlpipe.ir.expr import col, fn
from sqlpipe.ir.graph import (
    Extend,
    NaturalJoin,
    TableDescription,
    TableSource,
    table,
)
from sqlpipe.planner.inspect import column_names


def _survey() -> TableSource:
    return table("d", ["subjectID", "surveyCategory", "assessmentTotal"])


def test_table_description_rejects_duplicates_and_empty():
    with pytest.raises(SchemaError) as excinfo:
        TableDescription("d", ("a", "a"))
    assert excinfo.value.columns == ("a",)
    with pytest.raises(SchemaError):
        TableDescription("d", ())


def test_table_description_from_pandas(sample_frame: pd.DataFrame):
    desc = TableDescription.from_pandas("orders", sample_frame)
    assert desc.columns == ("user_id", "unit_price", "qty")
    assert column_names(desc.source()) == desc.columns


def test_extend_appends_new_targets_and_keeps_overwrites_in_place():
    node = _survey().extend(
        assessmentTotal="assessmentTotal * 2",
        score="assessmentTotal + 1",
    )
    assert node.schema == ("subjectID", "surveyCategory", "assessmentTotal", "score")


def test_chaining_returns_new_nodes_and_leaves_receiver_unchanged():
    source = _survey()
    node = source.extend(x="assessmentTotal + 1")
    assert node.source is source
    assert source.schema == ("subjectID", "surveyCategory", "assessmentTotal")
    with pytest.raises(dataclasses.FrozenInstanceError):
        node.source = source  # type: ignore[misc]


def test_builder_terms_are_accepted_by_extend():
    node = _survey().extend(fn("sum", col("assessmentTotal")).alias("total"), partition_by="subjectID")
    assert isinstance(node, Extend)
    assert node.windowed
    assert node.schema[-1] == "total"


def test_undefined_column_raises_schema_error_naming_it():
    with pytest.raises(SchemaError) as excinfo:
        _survey().extend(x="missing + 1")
    assert "missing" in str(excinfo.value)
    assert "'d'" in str(excinfo.value)


def test_project_schema_and_validation():
    node = _survey().project(n="count(1)", group_by=["subjectID"])
    assert node.schema == ("subjectID", "n")
    with pytest.raises(SchemaError):
        _survey().project(subjectID="count(1)", group_by=["subjectID"])
    with pytest.raises(SchemaError):
        _survey().project(n="sum(nope)", group_by=["subjectID"])


def test_natural_join_schema_and_missing_keys():
    left = table("l", ["k", "a", "shared"])
    right = table("r", ["k", "b", "shared"])
    node = left.natural_join(right, by=["k"], join_type="left")
    assert node.join_type == "LEFT"
    assert node.schema == ("k", "a", "shared", "b")

    implicit = left.natural_join(right)
    assert implicit.keys == ("k", "shared")

    with pytest.raises(JoinKeyError):
        table("x", ["a"]).natural_join(table("y", ["b"]))
    with pytest.raises(SchemaError):
        left.natural_join(right, by=["a"])
    with pytest.raises(ValueError):
        left.natural_join(right, by=["k"], join_type="SIDEWAYS")


def test_outer_is_an_alias_for_full_join():
    node = NaturalJoin(table("l", ["k"]), table("r", ["k", "v"]), join_type="outer")
    assert node.join_type == "FULL"


def test_theta_join_suffixes_shared_columns_and_resolves_predicate():
    left = table("l", ["id", "lo"])
    right = table("r", ["id", "hi"])
    node = left.theta_join(right, "id_a = id_b AND lo < hi")
    assert node.schema == ("id_a", "lo", "id_b", "hi")
    references = {name: (side, column) for name, side, column in node.plan.references}
    assert references["id_a"] == ("left", "id")
    assert references["hi"] == ("right", "hi")


def test_theta_join_rejects_ambiguous_predicate_names():
    left = table("l", ["id", "lo"])
    right = table("r", ["id", "hi"])
    with pytest.raises(SchemaError) as excinfo:
        left.theta_join(right, "id = 1")
    assert "ambiguous" in str(excinfo.value)


def test_select_drop_rename_and_order_by_schemas():
    source = _survey()
    assert source.select_columns(["assessmentTotal", "subjectID"]).schema == (
        "assessmentTotal",
        "subjectID",
    )
    assert source.drop_columns("surveyCategory").schema == ("subjectID", "assessmentTotal")
    renamed = source.rename_columns({"diagnosis": "surveyCategory"})
    assert renamed.schema == ("subjectID", "diagnosis", "assessmentTotal")
    ordered = source.order_by(["subjectID"], limit=3)
    assert ordered.schema == source.schema

    with pytest.raises(SchemaError):
        source.select_columns(["subjectID", "subjectID"])
    with pytest.raises(SchemaError):
        source.drop_columns(["subjectID", "surveyCategory", "assessmentTotal"])
    with pytest.raises(SchemaError):
        source.rename_columns({"subjectID": "surveyCategory"})
    with pytest.raises(ValueError):
        source.order_by(["subjectID"], limit=-1)
    with pytest.raises(SchemaError):
        source.order_by(["subjectID"], reverse=["assessmentTotal"])


def test_extend_window_columns_must_exist_and_not_be_assigned():
    source = _survey()
    with pytest.raises(SchemaError):
        source.extend(r="rank()", partition_by="nope")
    with pytest.raises(SchemaError):
        source.extend(subjectID="1", partition_by="subjectID")
    with pytest.raises(SchemaError):
        source.extend(r="rank()", order_by=["assessmentTotal"], reverse=["subjectID"])


def test_sql_node_declares_produced_columns():
    node = _survey().sql_node({"total": "assessmentTotal * 2"}, orig_columns=False)
    assert node.schema == ("total",)
    assert node.columns_used_locally() == {"assessmentTotal"}


def test_non_sql_node_generates_distinct_table_names():
    node = _survey().non_sql_node(None, produced=["subjectID"])
    assert node.incoming_table_name != node.outgoing_table_name
    assert node.schema == ("subjectID",)
    with pytest.raises(SchemaError):
        _survey().non_sql_node(None, produced=["x"], used=["nope"])
