"""Runtime helpers for sqlpipe: dialects, code generation and steps."""

from sqlpipe.runtime.context import ExecutionContext, TempNameSource
from sqlpipe.runtime.dialect import (
    DIALECTS,
    MYSQL,
    POSTGRES,
    SPARK,
    SQL92,
    SQLITE,
    Dialect,
    get_dialect,
)
from sqlpipe.runtime.materialize import (
    intermediate_tables,
    materialize_sql_statement,
    validate_steps,
)
from sqlpipe.runtime.quantile import quantile_node
from sqlpipe.runtime.sql_codegen import generate_statements
from sqlpipe.runtime.steps import ExternalStep, SqlStep, Step

__all__ = [
    "DIALECTS",
    "Dialect",
    "ExecutionContext",
    "ExternalStep",
    "MYSQL",
    "POSTGRES",
    "SPARK",
    "SQL92",
    "SQLITE",
    "SqlStep",
    "Step",
    "TempNameSource",
    "generate_statements",
    "get_dialect",
    "intermediate_tables",
    "materialize_sql_statement",
    "quantile_node",
    "validate_steps",
]
