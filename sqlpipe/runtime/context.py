"""Interfaces an execution layer supplies to run generated steps."""

from __future__ import annotations

import itertools
import secrets
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    import pandas as pd

    from sqlpipe.runtime.dialect import Dialect


class ExecutionContext(Protocol):
    """A database connection as seen by external transforms."""

    dialect: Dialect

    def execute(self, sql: str) -> None: ...

    def query(self, sql: str) -> pd.DataFrame: ...

    def write_table(
        self, table_name: str, frame: pd.DataFrame, *, temporary: bool = False
    ) -> None: ...

    def remove_table(self, table_name: str) -> None: ...


class TempNameSource:
    """Produce fresh staging table names ``<prefix>_<token>_<n>``.

    The token is random per instance so names from separate sources do not
    collide in a shared database.
    """

    def __init__(self, prefix: str = "sqlpipe_tmp") -> None:
        if not prefix:
            raise ValueError("prefix must be non-empty")
        self.prefix = prefix
        self.token = secrets.token_hex(5)
        self._counter = itertools.count(1)

    def __call__(self) -> str:
        return f"{self.prefix}_{self.token}_{next(self._counter):07d}"


__all__ = ["ExecutionContext", "TempNameSource"]
