"""Command-line entry point for the EPUB generator."""

from __future__ import annotations

import argparse
import logging
import sys
import time
from pathlib import Path
from typing import Sequence

from .book import load_book, read_context
from .errors import Md2EpubError
from .generator import generate
from .utils import TRACE

logger = logging.getLogger("md2epub.cli")


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description=(
            "Render a markdown book into an EPUB file, either as a renderer plugin "
            "reading its context from STDIN or standalone from a book directory."
        ),
    )
    parser.add_argument(
        "root",
        nargs="?",
        default=".",
        type=Path,
        help="The book to render (directory holding book.toml)",
    )
    parser.add_argument(
        "-s",
        "--standalone",
        action="store_true",
        help="Run standalone (i.e. not as a renderer plugin)",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )
    parser.add_argument(
        "--trace",
        action="store_true",
        help="Enable very detailed logging of every link and token rewrite",
    )
    return parser.parse_args(list(sys.argv[1:] if argv is None else argv))


def _configure_logging(args: argparse.Namespace) -> None:
    level = logging.INFO
    if args.verbose:
        level = logging.DEBUG
    if args.trace:
        level = TRACE
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        force=True,
    )


def run(args: argparse.Namespace) -> Path:
    if args.standalone:
        logger.info("Running as standalone app for %s", args.root)
        ctx = load_book(args.root)
    else:
        logger.info("Running as renderer plugin")
        ctx = read_context(sys.stdin)
    logger.debug("EPUB book destination folder is: %s", ctx.destination)
    return generate(ctx)


def main(argv: Sequence[str] | None = None) -> None:
    args = parse_args(argv)
    _configure_logging(args)
    started = time.perf_counter()
    try:
        outfile = run(args)
    except (Md2EpubError, OSError) as exc:
        logger.error("%s", exc)
        sys.exit(1)
    logger.info(
        "Book is READY in directory: '%s' (%.2fs)",
        outfile.parent,
        time.perf_counter() - started,
    )


if __name__ == "__main__":
    main()
