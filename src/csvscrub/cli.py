#!/usr/bin/env python3
"""
csvscrub CLI

Stream a CSV file through the clean + dedupe pipeline and print stats.

Subcommands:
  - clean: drop rows with empty fields, then exact duplicates
"""

from __future__ import annotations

import argparse
import json
import logging
import signal
import sys
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional, Sequence

import pandas as pd

from .errors import ConfigurationError
from .options import ParseOptions
from .pipeline import CancelToken, PipelineState, process_csv
from .stats import ProcessingStats

logger = logging.getLogger(__name__)

EXIT_CANCELLED = 130


@contextmanager
def _sigint_cancels(token: CancelToken) -> Iterator[None]:
    """Turn Ctrl-C into a cooperative cancel for the duration of the block."""
    if threading.current_thread() is not threading.main_thread():
        yield
        return

    def _handler(signum, frame):
        logger.info("interrupt received, cancelling")
        token.cancel()

    previous = signal.signal(signal.SIGINT, _handler)
    try:
        yield
    finally:
        signal.signal(signal.SIGINT, previous)


def _summarize(stats: ProcessingStats) -> str:
    lines = [
        f"Total records:     {stats.total_records}",
        f"Complete records:  {stats.complete_records}",
        f"Cleaned records:   {stats.cleaned_records}",
        f"Optimization gain: {stats.optimization_gain_percent:.2f}%",
    ]
    if stats.malformed_rows:
        lines.append(f"Malformed rows skipped: {stats.malformed_rows}")
    return "\n".join(lines)


def cmd_clean(args: argparse.Namespace) -> int:
    if args.input == "-":
        source = sys.stdin.buffer
    else:
        source = Path(args.input)
        if not source.is_file():
            print(f"Error: input file not found: {source}", file=sys.stderr)
            return 1

    try:
        options = ParseOptions(
            delimiter=args.delimiter,
            has_header=not args.no_header,
            strict=args.strict,
            encoding=args.encoding,
            null_markers=tuple(args.null_marker or ()),
        )
    except ConfigurationError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2

    token = CancelToken()
    with _sigint_cancels(token):
        result = process_csv(
            source,
            options,
            output=args.output,
            required=args.required or None,
            use_digest=args.digest,
            track_groups=bool(args.report),
            cancel=token,
        )

    if result.state is PipelineState.CANCELLED:
        print("Cancelled.", file=sys.stderr)
        return EXIT_CANCELLED
    stats = result.stats
    if stats is None:
        print(f"Error: {result.error}", file=sys.stderr)
        return 1

    if args.report:
        report_path = Path(args.report)
        report_path.parent.mkdir(parents=True, exist_ok=True)
        report = pd.DataFrame(result.duplicate_report or [], columns=["row_digest", "count"])
        report.to_csv(report_path, index=False)

    if args.json:
        payload = stats.as_dict()
        payload["columns"] = result.columns or []
        payload["row_errors"] = [
            {"row": e.row, "line": e.line, "reason": e.reason} for e in result.row_errors
        ]
        print(json.dumps(payload, indent=2))
    else:
        print(_summarize(stats))
        if args.output:
            print(f"Wrote cleaned CSV to: {args.output}")
        if args.report:
            print(f"Wrote duplicate report to: {args.report}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="csvscrub",
        description="Drop incomplete and duplicate rows from CSV files.",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="More logging on stderr (-v info, -vv debug).",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    p_clean = subparsers.add_parser(
        "clean",
        help="Drop rows with empty fields, then exact duplicates, and print stats.",
    )
    p_clean.add_argument("input", help='Input CSV file ("-" reads stdin).')
    p_clean.add_argument(
        "-o",
        "--output",
        help="Write the surviving rows to this CSV file.",
    )
    p_clean.add_argument(
        "-d",
        "--delimiter",
        default=",",
        help='Field delimiter. Default: ",".',
    )
    p_clean.add_argument(
        "--no-header",
        action="store_true",
        help="Treat the first row as data; columns become Column_1..Column_N.",
    )
    p_clean.add_argument(
        "--strict",
        action="store_true",
        help="Stop at the first malformed row instead of skipping it.",
    )
    p_clean.add_argument(
        "--encoding",
        default="utf-8-sig",
        help='Input encoding. Default: "utf-8-sig".',
    )
    p_clean.add_argument(
        "--required",
        nargs="*",
        help="Only these columns must be non-empty. If omitted, all columns are checked.",
    )
    p_clean.add_argument(
        "--null-marker",
        nargs="*",
        help='Extra tokens treated as empty, e.g. --null-marker NULL "N/A".',
    )
    p_clean.add_argument(
        "--digest",
        action="store_true",
        help="Index duplicates by SHA-256 digest instead of full row (less memory).",
    )
    p_clean.add_argument(
        "--report",
        help="Write a duplicate-group report (row_digest, count) to this CSV file.",
    )
    p_clean.add_argument(
        "--json",
        action="store_true",
        help="Print stats as JSON.",
    )
    p_clean.set_defaults(func=cmd_clean)

    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    level = logging.WARNING - 10 * min(args.verbose, 2)
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s")

    try:
        func = args.func
    except AttributeError:
        parser.print_help()
        return 1

    return func(args)


if __name__ == "__main__":
    raise SystemExit(main())
