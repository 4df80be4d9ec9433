"""Command line interface for agenttrace."""

from __future__ import annotations

import argparse
import logging
from pathlib import Path
from typing import cast

from rich.logging import RichHandler

from .inspect_cmd import VerbosityArg, run_inspect
from .traces_cmd import run_traces


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="agenttrace")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    subparsers = parser.add_subparsers(dest="command", required=True)

    traces_parser = subparsers.add_parser("traces", help="List stored traces")
    traces_parser.add_argument("--db", type=Path, required=True, help="Path to the trace database")
    traces_parser.add_argument("--project", default=None, help="Only list this project's traces")
    traces_parser.add_argument("--limit", type=int, default=50, help="Maximum traces to list")
    traces_parser.add_argument("--offset", type=int, default=0, help="Traces to skip")
    traces_parser.add_argument(
        "--json",
        action="store_true",
        help="Emit machine-readable JSON instead of a table",
    )

    inspect_parser = subparsers.add_parser("inspect", help="Inspect one stored trace")
    inspect_parser.add_argument("--db", type=Path, required=True, help="Path to the trace database")
    inspect_parser.add_argument("trace_id", help="Trace identifier")
    inspect_parser.add_argument(
        "--verbosity",
        choices=["minimal", "standard", "full"],
        default="standard",
        help="Console render verbosity",
    )
    inspect_parser.add_argument(
        "--json",
        action="store_true",
        help="Emit machine-readable summary JSON instead of text output",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.debug:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(message)s",
            handlers=[RichHandler(rich_tracebacks=True)],
        )

    if args.command == "traces":
        return run_traces(
            args.db,
            project=args.project,
            limit=args.limit,
            offset=args.offset,
            as_json=args.json,
        )
    if args.command == "inspect":
        return run_inspect(
            args.db,
            args.trace_id,
            cast(VerbosityArg, args.verbosity),
            as_json=args.json,
        )

    parser.error("Unknown command")
    return 2


if __name__ == "__main__":
    raise SystemExit(main())
