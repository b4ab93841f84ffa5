"""Planner utilities."""

from sqlpipe.planner.inspect import column_names, columns_used, format_tree, tables_used
from sqlpipe.planner.optimizer import narrow
from sqlpipe.planner.partition import partition_assignments
from sqlpipe.planner.plan import generate, to_sql

__all__ = [
    "column_names",
    "columns_used",
    "format_tree",
    "generate",
    "narrow",
    "partition_assignments",
    "tables_used",
    "to_sql",
]
