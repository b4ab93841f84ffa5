from __future__ import annotations

from sqlpipe.ir.graph import table
from sqlpipe.planner.inspect import column_names, columns_used, format_tree, tables_used


def _pipeline():
    d = table("d", ["subjectID", "surveyCategory", "assessmentTotal", "irrelevant"])
    labels = table("labels", ["surveyCategory", "label", "note"])
    return (
        d.extend(score="assessmentTotal * 2")
        .natural_join(labels, by=["surveyCategory"])
        .select_columns(["subjectID", "label", "score"])
    )


def test_column_names_match_root_schema():
    tree = _pipeline()
    assert column_names(tree) == ("subjectID", "label", "score")


def test_tables_used_lists_every_leaf():
    assert tables_used(_pipeline()) == {"d", "labels"}


def test_columns_used_follows_narrowing():
    assert columns_used(_pipeline()) == {
        "d": {"subjectID", "surveyCategory", "assessmentTotal"},
        "labels": {"surveyCategory", "label"},
    }


def test_format_tree_renders_one_operator_per_line():
    tree = table("d", ["a", "b"]).extend(x="a + 1").select_rows("x > 2")
    assert format_tree(tree) == (
        "table('d'; a, b)\n"
        "  .extend(x := a + 1)\n"
        "  .select_rows(x > 2)"
    )
    assert str(tree) == format_tree(tree)


def test_format_tree_nests_join_children():
    left = table("l", ["k", "a"])
    right = table("r", ["k", "b"]).extend(c="b * 2")
    text = format_tree(left.natural_join(right, join_type="left"))
    assert text.splitlines() == [
        "natural_join(",
        "  table('l'; k, a),",
        "  table('r'; k, b)",
        "    .extend(c := b * 2),",
        "  by=[k]; join_type=LEFT)",
    ]
