"""Run settings and their defaults."""

from __future__ import annotations

import argparse
from dataclasses import dataclass
from pathlib import Path

from .relay import DEFAULT_CAPACITY, BackpressurePolicy

# --------- Defaults ---------
DEFAULT_UA = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/123.0.0.0 Safari/537.36 Edg/122.0.2365.106"
)
CONTENT_SELECTOR = "div.chapter-inner.chapter-content > p"
NAV_SELECTOR = "a.btn.btn-primary.col-xs-12"
DEFAULT_TIMEOUT = 30.0
ARCHIVE_SUFFIX = ".tar.br"


@dataclass
class Settings:
    """Everything one invocation needs to crawl and archive fictions."""

    output_dir: Path = Path(".")
    user_agent: str = DEFAULT_UA
    relay_capacity: int = DEFAULT_CAPACITY
    backpressure: BackpressurePolicy = BackpressurePolicy.DROP_OLDEST
    timeout: float = DEFAULT_TIMEOUT
    content_selector: str = CONTENT_SELECTOR
    nav_selector: str = NAV_SELECTOR

    def __post_init__(self) -> None:
        self.output_dir = Path(self.output_dir)
        self.backpressure = BackpressurePolicy(self.backpressure)
        if self.relay_capacity < 1:
            raise ValueError(f"relay capacity must be positive, got {self.relay_capacity}")

    @classmethod
    def from_args(cls, args: argparse.Namespace) -> "Settings":
        return cls(
            output_dir=Path(args.out),
            user_agent=args.user_agent,
            relay_capacity=args.capacity,
            backpressure=BackpressurePolicy(args.backpressure),
            timeout=args.timeout,
            content_selector=args.content_selector,
            nav_selector=args.nav_selector,
        )

    def archive_path(self, target: str) -> Path:
        return self.output_dir / f"{target}{ARCHIVE_SUFFIX}"
