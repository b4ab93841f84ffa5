"""Pytest configuration for sqlpipe tests."""

from __future__ import annotations

import math
import sqlite3
import sys
from pathlib import Path

import pandas as pd
import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from sqlpipe.runtime.dialect import SQLITE  # noqa: E402
from sqlpipe.runtime.materialize import intermediate_tables, validate_steps  # noqa: E402
from sqlpipe.runtime.steps import ExternalStep, SqlStep  # noqa: E402


class SQLiteContext:
    """In-memory SQLite execution context used by end-to-end tests."""

    def __init__(self) -> None:
        self.dialect = SQLITE
        self.connection = sqlite3.connect(":memory:")
        self.connection.create_function("exp", 1, math.exp)
        self.executed: list[str] = []

    def execute(self, sql: str) -> None:
        self.executed.append(sql)
        self.connection.execute(sql)

    def query(self, sql: str) -> pd.DataFrame:
        self.executed.append(sql)
        return pd.read_sql_query(sql, self.connection)

    def write_table(
        self, table_name: str, frame: pd.DataFrame, *, temporary: bool = False
    ) -> None:
        frame.to_sql(table_name, self.connection, index=False, if_exists="replace")

    def remove_table(self, table_name: str) -> None:
        name = self.dialect.quote_identifier(table_name)
        self.connection.execute(f"DROP TABLE IF EXISTS {name}")

    def run(self, steps: list[object]) -> pd.DataFrame:
        validate_steps(steps)
        try:
            for step in steps[:-1]:
                if isinstance(step, SqlStep):
                    self.execute(step.sql)
                elif isinstance(step, ExternalStep):
                    assert step.transform is not None
                    step.transform(self, step.incoming_table_name, step.outgoing_table_name)
            return self.query(steps[-1].sql)
        finally:
            for table_name in intermediate_tables(steps):
                self.remove_table(table_name)

    def close(self) -> None:
        self.connection.close()


@pytest.fixture
def survey_frame() -> pd.DataFrame:
    return pd.DataFrame(
        {
            "subjectID": [1, 1, 2, 2],
            "surveyCategory": [
                "withdrawal behavior",
                "positive re-framing",
                "withdrawal behavior",
                "positive re-framing",
            ],
            "assessmentTotal": [5, 2, 3, 4],
            "irrelevantCol1": ["irrel1"] * 4,
            "irrelevantCol2": ["irrel2"] * 4,
        }
    )


@pytest.fixture
def sample_frame() -> pd.DataFrame:
    return pd.DataFrame(
        {
            "user_id": [1, 2, 1, 3],
            "unit_price": [10.0, 5.0, 2.0, 4.0],
            "qty": [2, 3, 5, 1],
        }
    )


@pytest.fixture
def sqlite_ctx(survey_frame: pd.DataFrame, sample_frame: pd.DataFrame):
    ctx = SQLiteContext()
    ctx.write_table("d", survey_frame)
    ctx.write_table("orders", sample_frame)
    yield ctx
    ctx.close()
