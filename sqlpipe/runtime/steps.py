"""Step types produced by the code generator."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Union

if TYPE_CHECKING:
    from collections.abc import Callable


@dataclass(frozen=True)
class SqlStep:
    sql: str


@dataclass(frozen=True)
class ExternalStep:
    """Opaque step: ``transform(ctx, incoming, outgoing)`` run by the caller.

    The incoming table is created by the preceding ``SqlStep``; the following
    SQL reads ``outgoing_table_name``.
    """

    transform: Callable[..., Any] | None
    incoming_table_name: str
    outgoing_table_name: str
    display_form: str
    used: tuple[str, ...]
    produced: tuple[str, ...]
    temporary: bool = True


Step = Union[SqlStep, ExternalStep]


def describe_step(step: Step) -> str:
    if isinstance(step, SqlStep):
        return step.sql
    if isinstance(step, ExternalStep):
        return (
            f"-- external step: {step.display_form}\n"
            f"--   reads {step.incoming_table_name} ({', '.join(step.used)})\n"
            f"--   writes {step.outgoing_table_name} ({', '.join(step.produced)})"
        )
    raise TypeError(f"Unsupported step type: {type(step)!r}")


__all__ = ["ExternalStep", "SqlStep", "Step", "describe_step"]
