"""SQL dialect descriptors.

A ``Dialect`` carries identifier quoting, literal rendering and the
capability flags the code generator checks. Dialects are plain frozen values
passed explicitly to ``generate``; ``get_dialect()`` resolves a name (or the
``SQLPIPE_DIALECT`` environment variable) to a built-in descriptor.
"""

from __future__ import annotations

import math
import os
import warnings
from dataclasses import dataclass, replace
from typing import Any

import numpy as np

DEFAULT_DIALECT = "sqlite"
ENV_VAR = "SQLPIPE_DIALECT"


@dataclass(frozen=True)
class Dialect:
    name: str
    quote_open: str = '"'
    quote_close: str = '"'
    supports_window_functions: bool = True
    supports_temporary_tables: bool = True
    supports_limit: bool = True
    join_types: frozenset[str] = frozenset({"INNER", "LEFT", "RIGHT", "FULL"})
    true_literal: str = "TRUE"
    false_literal: str = "FALSE"
    create_options: str = ""
    allow_temporary_fallback: bool = False

    def quote_identifier(self, name: str) -> str:
        escaped = name.replace(self.quote_close, self.quote_close * 2)
        return f"{self.quote_open}{escaped}{self.quote_close}"

    def quote_literal(self, value: Any) -> str:
        if isinstance(value, np.generic):
            value = value.item()
        if value is None:
            return "NULL"
        if isinstance(value, bool):
            return self.true_literal if value else self.false_literal
        if isinstance(value, int):
            return str(value)
        if isinstance(value, float):
            if not math.isfinite(value):
                raise ValueError(f"Non-finite float literal {value!r} has no SQL form")
            return repr(value)
        if isinstance(value, str):
            escaped = value.replace("'", "''")
            return f"'{escaped}'"
        raise TypeError(f"Unsupported literal type: {type(value)!r}")

    def supports_join(self, join_type: str) -> bool:
        return join_type in self.join_types

    def with_options(self, **changes: Any) -> Dialect:
        return replace(self, **changes)


SQLITE = Dialect(
    name="sqlite",
    join_types=frozenset({"INNER", "LEFT"}),
    true_literal="1",
    false_literal="0",
)
POSTGRES = Dialect(name="postgresql")
MYSQL = Dialect(
    name="mysql",
    quote_open="`",
    quote_close="`",
    join_types=frozenset({"INNER", "LEFT", "RIGHT"}),
)
SPARK = Dialect(
    name="spark",
    quote_open="`",
    quote_close="`",
    supports_temporary_tables=False,
)
SQL92 = Dialect(name="sql92", supports_window_functions=False, supports_limit=False)

DIALECTS: dict[str, Dialect] = {
    dialect.name: dialect for dialect in (SQLITE, POSTGRES, MYSQL, SPARK, SQL92)
}
_ALIASES = {"postgres": "postgresql", "pg": "postgresql", "sparksql": "spark"}


def _lookup(name: str) -> Dialect | None:
    key = name.strip().lower()
    return DIALECTS.get(_ALIASES.get(key, key))


def get_dialect(name: str | Dialect | None = None) -> Dialect:
    """Resolve a dialect by name; ``None`` reads ``SQLPIPE_DIALECT``."""

    if isinstance(name, Dialect):
        return name
    if name is None:
        requested = os.environ.get(ENV_VAR, DEFAULT_DIALECT)
        dialect = _lookup(requested)
        if dialect is None:
            warnings.warn(
                f"Unknown {ENV_VAR}={requested!r}; defaulting to {DEFAULT_DIALECT}",
                category=RuntimeWarning,
                stacklevel=2,
            )
            dialect = DIALECTS[DEFAULT_DIALECT]
        return dialect
    dialect = _lookup(name)
    if dialect is None:
        raise ValueError(f"Unknown dialect {name!r}; expected one of {sorted(DIALECTS)!r}")
    return dialect


__all__ = [
    "DEFAULT_DIALECT",
    "DIALECTS",
    "Dialect",
    "ENV_VAR",
    "MYSQL",
    "POSTGRES",
    "SPARK",
    "SQL92",
    "SQLITE",
    "get_dialect",
]
