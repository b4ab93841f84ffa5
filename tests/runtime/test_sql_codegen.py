from __future__ import annotations

import pytest
from sqlpipe.errors import DialectUnsupportedError
from sqlpipe.ir.expr import Const, Var
from sqlpipe.ir.graph import SOURCE, Ident, RawStatement, table
from sqlpipe.planner.plan import generate, to_sql
from sqlpipe.runtime.dialect import MYSQL, POSTGRES, SPARK, SQL92, SQLITE, get_dialect
from sqlpipe.runtime.steps import ExternalStep, SqlStep


def _survey():
    return table("d", ["subjectID", "surveyCategory", "assessmentTotal"])


def test_table_source_selects_explicit_columns():
    sql = to_sql(_survey(), SQLITE)
    assert sql == (
        "SELECT\n"
        '  "subjectID",\n'
        '  "surveyCategory",\n'
        '  "assessmentTotal"\n'
        'FROM "d"'
    )
    assert "*" not in sql


def test_generation_is_deterministic():
    tree = (
        _survey()
        .extend(x="assessmentTotal + 1")
        .natural_join(table("labels", ["surveyCategory", "label"]), by=["surveyCategory"])
    )
    first = generate(tree, POSTGRES)
    second = generate(tree, POSTGRES)
    assert first == second
    assert '"sqlpipe_1"' in first[-1].sql
    assert '"sqlpipe_3"' in first[-1].sql


def test_each_extend_group_is_its_own_stage():
    tree = _survey().extend(x="assessmentTotal + 1", y="x * 2")
    sql = to_sql(tree, POSTGRES)
    assert sql.count("SELECT") == 3
    assert '"assessmentTotal" + 1 AS "x"' in sql
    assert '"x" * 2 AS "y"' in sql
    # Inner stage computes x before the outer stage reads it.
    assert sql.index('AS "y"') < sql.index('AS "x"')


def test_windowed_extend_appends_over_clause():
    tree = _survey().extend(
        rank="rank()",
        total="sum(assessmentTotal)",
        partition_by=["subjectID"],
        order_by=["assessmentTotal", "surveyCategory"],
        reverse=["assessmentTotal"],
    )
    sql = to_sql(tree, POSTGRES)
    over = 'OVER (PARTITION BY "subjectID" ORDER BY "assessmentTotal" DESC, "surveyCategory")'
    assert f"rank() {over} AS \"rank\"" in sql
    assert f'sum("assessmentTotal") {over} AS "total"' in sql


def test_window_call_inside_scalar_expression():
    tree = _survey().extend(share="assessmentTotal / sum(assessmentTotal)", partition_by="subjectID")
    sql = to_sql(tree, POSTGRES)
    assert '"assessmentTotal" / sum("assessmentTotal") OVER (PARTITION BY "subjectID") AS "share"' in sql


def test_missing_window_support_raises_with_node_and_capability():
    tree = _survey().extend(r="rank()", partition_by="subjectID")
    with pytest.raises(DialectUnsupportedError) as excinfo:
        generate(tree, SQL92)
    assert excinfo.value.capability == "window functions"
    assert "extend(" in str(excinfo.value)


def test_unsupported_join_type_raises():
    tree = table("l", ["k", "a"]).natural_join(table("r", ["k", "b"]), join_type="FULL")
    with pytest.raises(DialectUnsupportedError):
        generate(tree, MYSQL)
    sql = to_sql(tree, POSTGRES)
    assert "FULL OUTER JOIN" in sql
    assert 'COALESCE("sqlpipe_1"."k", "sqlpipe_2"."k") AS "k"' in sql


def test_natural_join_coalesces_shared_non_key_columns():
    tree = table("l", ["k", "v"]).natural_join(table("r", ["k", "v", "w"]), by=["k"])
    sql = to_sql(tree, POSTGRES)
    assert '"sqlpipe_1"."k" AS "k"' in sql
    assert 'COALESCE("sqlpipe_1"."v", "sqlpipe_2"."v") AS "v"' in sql
    assert 'ON "sqlpipe_1"."k" = "sqlpipe_2"."k"' in sql


def test_theta_join_qualifies_predicate_columns():
    tree = table("l", ["id", "lo"]).theta_join(table("r", ["id", "hi"]), "lo <= hi", join_type="LEFT")
    sql = to_sql(tree, SQLITE)
    assert "LEFT JOIN" in sql
    assert 'ON "sqlpipe_1"."lo" <= "sqlpipe_2"."hi"' in sql
    assert '"sqlpipe_1"."id" AS "id_a"' in sql


def test_output_limit_and_source_limit():
    tree = _survey().select_rows("assessmentTotal > 2")
    sql = to_sql(tree, SQLITE, output_limit=5, source_limit=100)
    assert sql.endswith("LIMIT 5")
    assert 'FROM "d"\nLIMIT 100' in sql

    ordered = _survey().order_by(["subjectID"], limit=3)
    limited = to_sql(ordered, SQLITE, output_limit=5)
    assert limited.endswith("LIMIT 3")
    assert "LIMIT 5" not in limited

    tighter = to_sql(ordered, SQLITE, output_limit=2)
    assert tighter.endswith("LIMIT 2")
    assert "LIMIT 3" not in tighter

    bare = to_sql(_survey(), SQLITE, output_limit=1, source_limit=3)
    assert bare.endswith("LIMIT 1")
    assert "LIMIT 3" not in bare

    with pytest.raises(ValueError):
        generate(tree, SQLITE, output_limit=-1)


def test_limits_need_dialect_support():
    ordered = _survey().order_by(["subjectID"], limit=3)
    with pytest.raises(DialectUnsupportedError) as excinfo:
        generate(ordered, SQL92)
    assert excinfo.value.capability == "LIMIT"
    with pytest.raises(DialectUnsupportedError):
        generate(_survey(), SQL92, output_limit=5)
    with pytest.raises(DialectUnsupportedError):
        generate(_survey(), SQL92, source_limit=5)
    assert "LIMIT" not in to_sql(_survey().select_rows("assessmentTotal > 2"), SQL92)


def test_literals_follow_dialect():
    tree = _survey().extend(flag="TRUE", label="'it''s'")
    assert '1 AS "flag"' in to_sql(tree, SQLITE)
    postgres = to_sql(tree, POSTGRES)
    assert 'TRUE AS "flag"' in postgres
    assert "'it''s' AS \"label\"" in postgres


def test_identifier_quoting_per_dialect():
    assert MYSQL.quote_identifier("a`b") == "`a``b`"
    assert POSTGRES.quote_identifier('a"b') == '"a""b"'
    sql = to_sql(_survey().select_columns(["subjectID"]), MYSQL)
    assert "`subjectID`" in sql


def test_raw_statement_template_renders_source_subquery():
    source = _survey()
    node = RawStatement(
        source,
        ("SELECT ", Var("subjectID"), ", COUNT(1) AS ", Ident("n"), " FROM ", SOURCE,
         " WHERE ", Var("assessmentTotal"), " > ", Const(1), " GROUP BY ", Var("subjectID")),
        produced=("subjectID", "n"),
        used=("subjectID", "assessmentTotal"),
    )
    sql = to_sql(node, POSTGRES)
    assert sql.startswith('SELECT "subjectID", COUNT(1) AS "n" FROM (')
    assert '"sqlpipe_1" WHERE "assessmentTotal" > 1 GROUP BY "subjectID"' in sql
    assert '"surveyCategory"' not in sql


def test_external_transform_splits_into_steps():
    def transform(ctx, incoming, outgoing):
        return None

    tree = (
        _survey()
        .non_sql_node(
            transform,
            produced=["subjectID", "score"],
            used=["subjectID", "assessmentTotal"],
            incoming_table_name="stage_in",
            outgoing_table_name="stage_out",
        )
        .select_rows("score > 0")
    )
    steps = generate(tree, POSTGRES)
    assert [type(step) for step in steps] == [SqlStep, ExternalStep, SqlStep]
    assert steps[0].sql.startswith('CREATE TEMPORARY TABLE "stage_in" AS\nSELECT')
    assert '"surveyCategory"' not in steps[0].sql
    assert steps[1].transform is transform
    assert steps[1].used == ("subjectID", "assessmentTotal")
    assert 'FROM "stage_out"' in steps[2].sql

    with pytest.raises(ValueError):
        to_sql(tree, POSTGRES)


def test_temporary_tables_are_strict_unless_fallback_enabled():
    tree = _survey().non_sql_node(
        None, produced=["subjectID"], incoming_table_name="i", outgoing_table_name="o"
    )
    with pytest.raises(DialectUnsupportedError):
        generate(tree, SPARK)
    lenient = SPARK.with_options(allow_temporary_fallback=True)
    with pytest.warns(RuntimeWarning):
        steps = generate(tree, lenient)
    assert steps[0].sql.startswith("CREATE TABLE `i` AS")


def test_get_dialect_reads_environment(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("SQLPIPE_DIALECT", "postgres")
    assert get_dialect() is POSTGRES
    monkeypatch.setenv("SQLPIPE_DIALECT", "nonsense")
    with pytest.warns(RuntimeWarning):
        assert get_dialect() is SQLITE
    monkeypatch.delenv("SQLPIPE_DIALECT")
    assert get_dialect() is SQLITE
    with pytest.raises(ValueError):
        get_dialect("oracle-ish")
