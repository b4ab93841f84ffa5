"""CLI rendering a serialized operator tree (JSON) to a SQL script."""

from __future__ import annotations

import argparse
import json
from pathlib import Path

from sqlpipe.ir.serialize import node_from_dict
from sqlpipe.planner.plan import generate
from sqlpipe.runtime.dialect import DIALECTS, get_dialect
from sqlpipe.runtime.steps import describe_step


def _parse_columns(value: str | None) -> list[str] | None:
    if value is None:
        return None
    columns = [c.strip() for c in value.split(",") if c.strip()]
    if not columns:
        raise argparse.ArgumentTypeError("--columns must name at least one column")
    return columns


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument(
        "--tree",
        type=Path,
        required=True,
        help="Path to the tree JSON written by node_to_dict",
    )
    parser.add_argument(
        "--dialect",
        choices=sorted(DIALECTS),
        default=None,
        help="Target dialect (default: $SQLPIPE_DIALECT or sqlite)",
    )
    parser.add_argument(
        "--columns",
        help="Comma separated result columns (default: all)",
        default=None,
    )
    parser.add_argument("--limit", type=int, help="Limit on result rows")
    parser.add_argument("--source-limit", type=int, help="Limit on every table read")
    parser.add_argument(
        "--out",
        type=Path,
        required=True,
        help="Output path for the SQL script",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        columns = _parse_columns(args.columns)
    except argparse.ArgumentTypeError as exc:
        parser.error(str(exc))
    data = json.loads(args.tree.read_text(encoding="utf-8"))
    tree = node_from_dict(data)
    steps = generate(
        tree,
        get_dialect(args.dialect),
        columns=columns,
        output_limit=args.limit,
        source_limit=args.source_limit,
    )
    script = ";\n\n".join(describe_step(step) for step in steps) + ";\n"
    args.out.write_text(script, encoding="utf-8")
    return 0


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
