"""Join key and output-schema semantics shared by validation and codegen."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from typing import TYPE_CHECKING

from sqlpipe.errors import JoinKeyError, SchemaError

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence


JoinKeys = tuple[str, ...]

JOIN_TYPES = ("INNER", "LEFT", "RIGHT", "FULL")

_JOIN_ALIASES = {
    "INNER": "INNER",
    "LEFT": "LEFT",
    "LEFT OUTER": "LEFT",
    "RIGHT": "RIGHT",
    "RIGHT OUTER": "RIGHT",
    "FULL": "FULL",
    "FULL OUTER": "FULL",
    "OUTER": "FULL",
}


def normalize_join_type(value: str) -> str:
    if not isinstance(value, str):
        raise TypeError(f"join_type must be a string, got {type(value)!r}")
    key = " ".join(value.upper().split())
    if key.endswith(" JOIN"):
        key = key[: -len(" JOIN")]
    try:
        return _JOIN_ALIASES[key]
    except KeyError:
        raise ValueError(
            f"Unsupported join type {value!r}; expected one of {JOIN_TYPES!r}"
        ) from None


def _normalize_keys(value: Sequence[str], *, label: str) -> JoinKeys:
    keys = tuple(str(key) for key in value)
    if not keys:
        raise JoinKeyError(f"`{label}` must contain at least one column")
    if any(not key for key in keys):
        raise ValueError(f"`{label}` cannot contain empty column names")
    if len(set(keys)) != len(keys):
        raise ValueError(f"`{label}` cannot contain duplicate columns: {keys!r}")
    return keys


def normalize_suffixes(suffixes: tuple[str, str]) -> tuple[str, str]:
    if len(suffixes) != 2:
        raise ValueError("suffixes must be a 2-tuple")
    left_suffix, right_suffix = suffixes
    if not isinstance(left_suffix, str) or not isinstance(right_suffix, str):
        raise TypeError("suffixes entries must be strings")
    if left_suffix == right_suffix:
        raise ValueError(f"suffixes must differ, got {suffixes!r}")
    return left_suffix, right_suffix


@dataclass(frozen=True)
class JoinOutput:
    """One natural-join output column and the side column(s) feeding it."""

    name: str
    left: str | None
    right: str | None


@dataclass(frozen=True)
class NaturalJoinPlan:
    keys: JoinKeys
    output: tuple[JoinOutput, ...]

    @property
    def output_columns(self) -> tuple[str, ...]:
        return tuple(out.name for out in self.output)


@dataclass(frozen=True)
class ThetaJoinPlan:
    left_pairs: tuple[tuple[str, str], ...]
    right_pairs: tuple[tuple[str, str], ...]
    suffixed: tuple[str, ...]
    # (predicate name, "left" | "right", input column)
    references: tuple[tuple[str, str, str], ...]

    @property
    def output_columns(self) -> tuple[str, ...]:
        return tuple(out for _, out in self.left_pairs) + tuple(
            out for _, out in self.right_pairs
        )


def build_natural_join_plan(
    *,
    left_columns: Sequence[str],
    right_columns: Sequence[str],
    by: Sequence[str] | None,
) -> NaturalJoinPlan:
    left_cols = tuple(left_columns)
    right_cols = tuple(right_columns)
    right_lookup = set(right_cols)
    left_lookup = set(left_cols)

    if by is None:
        keys = tuple(col for col in left_cols if col in right_lookup)
        if not keys:
            raise JoinKeyError(
                "natural_join has no shared columns to join on: "
                f"left {left_cols!r}, right {right_cols!r}"
            )
    else:
        keys = _normalize_keys(by, label="by")

    missing_left = [key for key in keys if key not in left_lookup]
    if missing_left:
        raise SchemaError(
            f"Left join key columns missing: {missing_left}", columns=missing_left
        )
    missing_right = [key for key in keys if key not in right_lookup]
    if missing_right:
        raise SchemaError(
            f"Right join key columns missing: {missing_right}", columns=missing_right
        )

    output: list[JoinOutput] = []
    for col in left_cols:
        output.append(JoinOutput(col, col, col if col in right_lookup else None))
    for col in right_cols:
        if col not in left_lookup:
            output.append(JoinOutput(col, None, col))
    return NaturalJoinPlan(keys=keys, output=tuple(output))


def _resolve_reference(
    name: str,
    left_pairs: Sequence[tuple[str, str]],
    right_pairs: Sequence[tuple[str, str]],
) -> tuple[str, str]:
    for side, pairs in (("left", left_pairs), ("right", right_pairs)):
        for col, out_name in pairs:
            if out_name == name:
                return side, col
    sides = [
        side
        for side, pairs in (("left", left_pairs), ("right", right_pairs))
        if any(col == name for col, _ in pairs)
    ]
    if len(sides) == 1:
        return sides[0], name
    if sides:
        raise SchemaError(
            f"Join predicate column {name!r} is ambiguous; it exists on both "
            "sides, use the suffixed output names",
            columns=[name],
        )
    raise SchemaError(
        f"Join predicate references unknown column {name!r}", columns=[name]
    )


def build_theta_join_plan(
    *,
    left_columns: Sequence[str],
    right_columns: Sequence[str],
    predicate_columns: Iterable[str],
    suffixes: tuple[str, str],
    suffixed: Sequence[str] | None = None,
) -> ThetaJoinPlan:
    left_cols = tuple(left_columns)
    right_cols = tuple(right_columns)
    left_suffix, right_suffix = normalize_suffixes(suffixes)

    if suffixed is None:
        right_lookup = set(right_cols)
        suffixed = tuple(col for col in left_cols if col in right_lookup)
    suffixed = tuple(suffixed)
    suffixed_lookup = set(suffixed)

    left_pairs = tuple(
        (col, f"{col}{left_suffix}" if col in suffixed_lookup else col)
        for col in left_cols
    )
    right_pairs = tuple(
        (col, f"{col}{right_suffix}" if col in suffixed_lookup else col)
        for col in right_cols
    )

    output_columns = tuple(out for _, out in left_pairs) + tuple(
        out for _, out in right_pairs
    )
    counts = Counter(output_columns)
    duplicates = tuple(name for name, count in counts.items() if count > 1)
    if duplicates:
        raise SchemaError(
            "Join output columns collide after suffix application: "
            f"{duplicates!r}. Adjust suffixes or input column names.",
            columns=duplicates,
        )

    references = tuple(
        (name, *_resolve_reference(name, left_pairs, right_pairs))
        for name in predicate_columns
    )
    return ThetaJoinPlan(
        left_pairs=left_pairs,
        right_pairs=right_pairs,
        suffixed=suffixed,
        references=references,
    )


__all__ = [
    "JOIN_TYPES",
    "JoinKeys",
    "JoinOutput",
    "NaturalJoinPlan",
    "ThetaJoinPlan",
    "build_natural_join_plan",
    "build_theta_join_plan",
    "normalize_join_type",
    "normalize_suffixes",
]
