"""Logging setup: stdlib ``logging`` underneath, ``structlog`` on top."""

from __future__ import annotations

import json
import logging
from functools import partial

import structlog


def configure_logging(verbose: bool = False, json_logs: bool = False) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, format="%(message)s", force=True)

    if json_logs:
        renderer = structlog.processors.JSONRenderer(
            serializer=partial(json.dumps, ensure_ascii=False)
        )
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=False)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.stdlib.add_log_level,
            structlog.processors.format_exc_info,
            renderer,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
    )
