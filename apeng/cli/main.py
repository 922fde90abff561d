"""Main CLI entry point for apeng."""

from __future__ import annotations

import argparse
import logging
import sys

from .frames_cli import build_frames_parsers


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="apeng",
        description="Animated PNG frame-sequence codec",
    )
    parser.add_argument("--version", action="version", version="apeng 0.1.0")
    parser.add_argument(
        "--config", default=None,
        help="YAML file with codec options (compression_level, bgr_output, ...)",
    )
    parser.add_argument(
        "-v", "--verbose", action="count", default=0,
        help="Log codec progress (-vv for chunk-level detail)",
    )
    subparsers = parser.add_subparsers(dest="command")
    build_frames_parsers(subparsers)
    args = parser.parse_args(argv)
    if args.verbose:
        logging.basicConfig(
            level=logging.DEBUG if args.verbose > 1 else logging.INFO,
            format="%(levelname)s %(name)s: %(message)s",
        )
    if args.command is None:
        parser.print_help()
        return 0
    return args.func(args)


def cli_entry() -> None:
    sys.exit(main())
