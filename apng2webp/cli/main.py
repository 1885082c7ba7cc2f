"""
Main CLI entry point for apng2webp.

Usage:
    apng2webp input.apng output.webp
    apng2webp input.apng output.png --format apng --progress -v
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from .. import __version__
from ..exceptions import Apng2WebpError
from ..pipeline import convert_file
from ..types import ConversionConfig, OutputFormat


_FORMAT_MAP = {
    "webp": OutputFormat.WEBP,
    "apng": OutputFormat.APNG,
}

_LOG_LEVELS = [logging.WARNING, logging.INFO, logging.DEBUG]


class _UsageParser(argparse.ArgumentParser):
    """ArgumentParser that reports usage errors with exit code 1."""

    def error(self, message: str) -> None:  # type: ignore[override]
        self.print_usage(sys.stderr)
        self.exit(1, f"{self.prog}: error: {message}\n")


def build_parser() -> argparse.ArgumentParser:
    p = _UsageParser(
        prog="apng2webp",
        description="Convert an animated PNG into an animated WebP.",
    )
    p.add_argument("--version", action="version", version=f"apng2webp {__version__}")
    p.add_argument("input", help="Path to the animated PNG to convert")
    p.add_argument("output", help="Path of the animation to write")
    p.add_argument(
        "--format", choices=sorted(_FORMAT_MAP), default=None,
        help="Output format (default: from the output suffix, else webp)",
    )
    p.add_argument(
        "--progress", action="store_true",
        help="Show a progress bar while compositing frames",
    )
    p.add_argument(
        "-v", "--verbose", action="count", default=0,
        help="Increase log verbosity (-v info, -vv debug)",
    )
    return p


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=_LOG_LEVELS[min(args.verbose, len(_LOG_LEVELS) - 1)],
        format="%(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    config = ConversionConfig(
        output_format=_FORMAT_MAP[args.format] if args.format else None,
        show_progress=args.progress,
    )
    input_path = Path(args.input)
    output_path = Path(args.output)

    try:
        convert_file(input_path, output_path, config)
    except Apng2WebpError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    print(f"Converted {input_path} to {output_path}")
    return 0


def cli_entry() -> None:
    sys.exit(main())
