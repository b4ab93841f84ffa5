"""Partition an extend assignment batch into order-independent groups.

Each group becomes one generated SELECT stage, so assignments in a group may
not see each other's results. The scan is greedy and repeated over the
not-yet-placed assignments; an assignment joins the current group when

  (a) every column it reads is an input column or a target of an earlier,
      completed group,
  (b) it does not read a target already placed in the current group, and
  (c) its target is not already assigned in the current group.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from sqlpipe.errors import PartitionError
from sqlpipe.ir.expr import format_expr

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from sqlpipe.ir.expr import Assignment


def partition_indices(
    assignments: Sequence[Assignment],
    available: Iterable[str],
) -> list[list[int]]:
    known = set(available)
    remaining = list(range(len(assignments)))
    groups: list[list[int]] = []
    while remaining:
        group: list[int] = []
        group_targets: set[str] = set()
        waiting: list[int] = []
        for index in remaining:
            assignment = assignments[index]
            reads = assignment.reads()
            if (
                reads - known
                or reads & group_targets
                or assignment.target in group_targets
            ):
                waiting.append(index)
                continue
            group.append(index)
            group_targets.add(assignment.target)
        if not group:
            stuck = [assignments[i] for i in waiting]
            details = "; ".join(
                f"{a.target} := {format_expr(a.expr)} (waiting on "
                f"{sorted(a.reads() - known) or sorted(a.reads())})"
                for a in stuck
            )
            raise PartitionError(
                f"Cannot order assignments, circular dependency: {details}",
                targets=[a.target for a in stuck],
            )
        groups.append(group)
        known |= group_targets
        remaining = waiting
    return groups


def partition_assignments(
    assignments: Sequence[Assignment],
    available: Iterable[str],
) -> tuple[tuple[Assignment, ...], ...]:
    """Group ``assignments`` into stages given the ``available`` input columns."""

    return tuple(
        tuple(assignments[i] for i in group)
        for group in partition_indices(assignments, available)
    )


def reuse_hazards(
    assignments: Sequence[Assignment],
    groups: Sequence[Sequence[int]],
) -> list[tuple[Assignment, str]]:
    """Reads whose value under grouping differs from sequential list order.

    Returns ``(assignment, column)`` pairs. Sequentially a read sees the latest
    earlier assignment to that name (or the input); grouped, it sees the last
    assignment in the latest earlier group.
    """

    group_of: dict[int, int] = {}
    for position, group in enumerate(groups):
        for index in group:
            group_of[index] = position

    hazards: list[tuple[Assignment, str]] = []
    for index, assignment in enumerate(assignments):
        for name in sorted(assignment.reads()):
            sequential = None
            for earlier in range(index - 1, -1, -1):
                if assignments[earlier].target == name:
                    sequential = earlier
                    break
            grouped = None
            for position in range(group_of[index] - 1, -1, -1):
                hits = [i for i in groups[position] if assignments[i].target == name]
                if hits:
                    grouped = hits[-1]
                    break
            if sequential != grouped:
                hazards.append((assignment, name))
    return hazards


__all__ = ["partition_assignments", "partition_indices", "reuse_hazards"]
