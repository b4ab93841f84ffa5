"""Error taxonomy raised by tree construction, partitioning and generation."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterable


class SqlPipeError(Exception):
    """Base class for all sqlpipe errors."""


class SchemaError(SqlPipeError, ValueError):
    """Unknown, duplicate or ambiguous column reference at node construction."""

    def __init__(self, message: str, *, columns: Iterable[str] = ()) -> None:
        super().__init__(message)
        self.columns = tuple(columns)


class PartitionError(SqlPipeError, ValueError):
    """An assignment batch contains an unresolvable circular dependency."""

    def __init__(self, message: str, *, targets: Iterable[str] = ()) -> None:
        super().__init__(message)
        self.targets = tuple(targets)


class JoinKeyError(SqlPipeError, ValueError):
    """A join has no usable join condition."""


class DialectUnsupportedError(SqlPipeError, NotImplementedError):
    """A node needs a capability the target dialect lacks."""

    def __init__(self, node: str, capability: str, dialect: str) -> None:
        super().__init__(
            f"{node} requires {capability}, which dialect {dialect!r} does not support"
        )
        self.node = node
        self.capability = capability
        self.dialect = dialect


__all__ = [
    "DialectUnsupportedError",
    "JoinKeyError",
    "PartitionError",
    "SchemaError",
    "SqlPipeError",
]
