"""Main CLI entry point for framefit."""

from __future__ import annotations

import argparse
import logging
import sys

from .. import __version__
from .encode_cli import build_encode_parser
from .info_cli import build_info_parser


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="framefit",
        description="Size-constrained animated GIF/WebP/APNG encoder",
    )
    parser.add_argument("--version", action="version", version=f"framefit {__version__}")
    parser.add_argument(
        "-v", "--verbose", action="count", default=0,
        help="Log progress details (-vv for debug output)",
    )
    subparsers = parser.add_subparsers(dest="command")
    build_encode_parser(subparsers)
    build_info_parser(subparsers)
    args = parser.parse_args(argv)

    level = logging.WARNING
    if args.verbose == 1:
        level = logging.INFO
    elif args.verbose >= 2:
        level = logging.DEBUG
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s")

    if args.command is None:
        parser.print_help()
        return 0
    return args.func(args)


def cli_entry() -> None:
    sys.exit(main())
