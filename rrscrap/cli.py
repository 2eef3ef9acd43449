"""Command-line entry point: ``rrscrap -i <first chapter url> [-i ...]``."""

from __future__ import annotations

import argparse
import asyncio
from pathlib import Path
from typing import List, Optional, Sequence

import structlog

from .config import CONTENT_SELECTOR, DEFAULT_TIMEOUT, DEFAULT_UA, NAV_SELECTOR, Settings
from .logs import configure_logging
from .relay import DEFAULT_CAPACITY, BackpressurePolicy
from .scrape import run_all

logger = structlog.get_logger("rrscrap.cli")


def _positive_int(value: str) -> int:
    number = int(value)
    if number < 1:
        raise argparse.ArgumentTypeError(f"must be at least 1, got {number}")
    return number


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="rrscrap",
        description="Royal Road fiction → streamed .tar.br archive of chapter texts.",
    )
    ap.add_argument(
        "-i", "--initial-chapter",
        action="append", required=True, metavar="URL",
        help="The initial chapter to start scraping from. Repeat (-i url -i url) to scrape several fictions.",
    )
    ap.add_argument("-u", "--user-agent", default=DEFAULT_UA, help="User agent sent with every request")
    ap.add_argument("-o", "--out", default=".", type=Path, help="Output folder (default: current directory)")
    ap.add_argument(
        "--capacity", type=_positive_int, default=DEFAULT_CAPACITY,
        help=f"Chapters buffered between crawler and archive writer (default: {DEFAULT_CAPACITY})",
    )
    ap.add_argument(
        "--backpressure",
        choices=[p.value for p in BackpressurePolicy],
        default=BackpressurePolicy.DROP_OLDEST.value,
        help="What to do when the writer falls behind: drop the oldest chapters or block the crawler",
    )
    ap.add_argument("--timeout", type=float, default=DEFAULT_TIMEOUT, help="HTTP timeout in seconds")
    ap.add_argument("--content-selector", default=CONTENT_SELECTOR, help="CSS selector for chapter paragraphs")
    ap.add_argument("--nav-selector", default=NAV_SELECTOR, help="CSS selector for navigation buttons")
    ap.add_argument("--json-logs", action="store_true", help="Emit logs as JSON lines")
    ap.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    return ap


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    return build_parser().parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    configure_logging(verbose=args.verbose, json_logs=args.json_logs)
    settings = Settings.from_args(args)

    try:
        outcomes = asyncio.run(run_all(args.initial_chapter, settings))
    except KeyboardInterrupt:
        logger.warning("aborted by user")
        return 130

    failed = [o for o in outcomes if not o.ok]
    logger.info(
        "finished",
        succeeded=len(outcomes) - len(failed),
        failed=len(failed),
        archives=[str(o.result.output_path) for o in outcomes if o.ok],
    )
    return 1 if failed else 0
