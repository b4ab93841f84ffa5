"""Expression and operator-tree IR."""

from sqlpipe.ir.expr import (
    Assignment,
    Const,
    Expr,
    Fragment,
    Term,
    Var,
    col,
    fn,
    lit,
    parse_expr,
)
from sqlpipe.ir.graph import (
    SOURCE,
    DropColumns,
    Extend,
    ExternalTransform,
    Ident,
    NaturalJoin,
    Node,
    OrderBy,
    Project,
    RawStatement,
    RenameColumns,
    SelectColumns,
    SelectRows,
    TableDescription,
    TableSource,
    ThetaJoin,
    table,
)

__all__ = [
    "Assignment",
    "Const",
    "DropColumns",
    "Expr",
    "Extend",
    "ExternalTransform",
    "Fragment",
    "Ident",
    "NaturalJoin",
    "Node",
    "OrderBy",
    "Project",
    "RawStatement",
    "RenameColumns",
    "SOURCE",
    "SelectColumns",
    "SelectRows",
    "TableDescription",
    "TableSource",
    "Term",
    "ThetaJoin",
    "Var",
    "col",
    "fn",
    "lit",
    "parse_expr",
    "table",
]
