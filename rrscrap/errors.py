"""Exceptions raised by the scrape pipeline.

Every fatal condition derives from ``ScrapeError`` and names the URL or path
that failed. Relay signals (``RelayLagged``, ``RelayClosed``) live in
``rrscrap.relay`` and are not errors.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional, Union


class ScrapeError(Exception):
    """Base class for unrecoverable run failures."""


class InvalidRunTarget(ScrapeError):
    def __init__(self, url: str):
        super().__init__(f"could not guess fiction name from first chapter url: {url}")
        self.url = url


class MissingChapterName(ScrapeError):
    def __init__(self, url: str):
        super().__init__(f"chapter does not have name: {url}")
        self.url = url


class FetchError(ScrapeError):
    def __init__(self, url: str, status_code: Optional[int] = None):
        detail = f" (HTTP {status_code})" if status_code is not None else ""
        super().__init__(f"fetch failed for {url}{detail}")
        self.url = url
        self.status_code = status_code


class ExtractionError(ScrapeError):
    def __init__(self, url: str):
        super().__init__(f"could not parse markup from {url}")
        self.url = url


class RelayHandoffError(ScrapeError):
    """The relay refused a chapter because nobody is reading any more."""


class ArchiveError(ScrapeError):
    def __init__(self, path: Union[str, Path], stage: str = "write"):
        super().__init__(f"archive {stage} failed for {path}")
        self.path = Path(path)
        self.stage = stage
