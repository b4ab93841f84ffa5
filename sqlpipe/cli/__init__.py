"""Command-line entry points for sqlpipe tooling."""

from __future__ import annotations

from sqlpipe.cli import render_sql

__all__ = ["render_sql"]
