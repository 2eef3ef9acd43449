"""Crawl a serialized fiction chapter by chapter into a compressed tar archive."""

from .chapters import Chapter, ChapterExtractor, PageFetcher, run_target, walk
from .config import Settings
from .errors import (
    ArchiveError,
    ExtractionError,
    FetchError,
    InvalidRunTarget,
    MissingChapterName,
    RelayHandoffError,
    ScrapeError,
)
from .relay import BackpressurePolicy, Relay, RelayClosed, RelayLagged
from .scrape import RunOutcome, RunResult, run, run_all
from .tarball import ChapterArchive, drain

__version__ = "0.1.0"
