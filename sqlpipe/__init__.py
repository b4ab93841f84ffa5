"""Top-level sqlpipe package exports."""

from sqlpipe.errors import (
    DialectUnsupportedError,
    JoinKeyError,
    PartitionError,
    SchemaError,
    SqlPipeError,
)
from sqlpipe.ir import (
    SOURCE,
    Assignment,
    Ident,
    Node,
    TableDescription,
    col,
    fn,
    lit,
    parse_expr,
    table,
)
from sqlpipe.planner import (
    column_names,
    columns_used,
    format_tree,
    generate,
    narrow,
    tables_used,
    to_sql,
)
from sqlpipe.runtime import (
    Dialect,
    ExternalStep,
    SqlStep,
    TempNameSource,
    get_dialect,
    quantile_node,
)

__all__ = [
    "Assignment",
    "Dialect",
    "DialectUnsupportedError",
    "ExternalStep",
    "Ident",
    "JoinKeyError",
    "Node",
    "PartitionError",
    "SOURCE",
    "SchemaError",
    "SqlPipeError",
    "SqlStep",
    "TableDescription",
    "TempNameSource",
    "col",
    "column_names",
    "columns_used",
    "fn",
    "format_tree",
    "generate",
    "get_dialect",
    "lit",
    "narrow",
    "parse_expr",
    "quantile_node",
    "table",
    "tables_used",
    "to_sql",
]
